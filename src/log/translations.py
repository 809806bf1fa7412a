"""
Loads the message templates used to localize log entries on read.

Templates are stored as flat YAML mappings, one file per language
(``locales/<lang>.yaml``), keyed by dotted translation keys such as
``comfyui.logs.captured_pid``.
"""
import yaml
import logging
from pathlib import Path
from typing import Dict, Optional

from src.settings import LOCALES_DIR

log = logging.getLogger(__name__)

Catalog = Dict[str, Dict[str, str]]

FALLBACK_LANGUAGE = "en"
SOURCE_LANGUAGE = "zh"

_catalog: Optional[Catalog] = None


def load_catalog(locales_dir: Path = LOCALES_DIR) -> Catalog:
    """
    Reads every ``*.yaml`` locale file in a directory.

    :param locales_dir: Directory containing the locale files.
    :return: A mapping of language code to {translation key: template}.
    """
    catalog: Catalog = {}
    for locale_file in sorted(locales_dir.glob("*.yaml")):
        try:
            data = yaml.safe_load(locale_file.read_text(encoding="utf-8")) or {}
        except (yaml.YAMLError, OSError) as e:
            log.error(f"Failed to load locale file '{locale_file}': {e}")
            continue
        if not isinstance(data, dict):
            log.warning(f"Locale file '{locale_file}' is not a mapping. Ignoring.")
            continue
        catalog[locale_file.stem] = {str(k): str(v) for k, v in data.items()}
        log.debug(f"Loaded {len(data)} templates for language '{locale_file.stem}'.")
    return catalog


def get_catalog() -> Catalog:
    """Returns the process-wide template catalog, loading it on first use."""
    global _catalog
    if _catalog is None:
        _catalog = load_catalog()
    return _catalog


def normalize_language(language: Optional[str]) -> str:
    """Reduces a language tag such as 'en-US' or 'zh_CN' to its primary subtag."""
    if not language:
        return FALLBACK_LANGUAGE
    return language.replace("_", "-").split("-")[0].strip().lower() or FALLBACK_LANGUAGE


def get_template(key: str, language: str, catalog: Optional[Catalog] = None) -> str:
    """
    Looks up a template: requested language, then English, then the key itself.

    :param key: The translation key.
    :param language: Any language tag; it is normalized first.
    :param catalog: Optional catalog, defaults to the process-wide one.
    :return: The template string.
    """
    catalog = get_catalog() if catalog is None else catalog
    lang = normalize_language(language)
    templates = catalog.get(lang) or catalog.get(FALLBACK_LANGUAGE, {})
    if key in templates:
        return templates[key]
    return catalog.get(FALLBACK_LANGUAGE, {}).get(key, key)
