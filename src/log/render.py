"""
Renders stored log entries into display strings for a requested language.

Everything here is a pure function of (entry, language, catalog): rendering
never touches a recorder, so the same entries can be shown in any language.
"""
import re
from typing import Any, Dict, Iterable, List, Optional

from src.log.entries import LINE_RE, LiteralEntry, LogEntry, TemplatedEntry, is_translation_key
from src.log.translations import Catalog, get_template

PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

# (source-language pattern, English pattern, parameter names) pairs used to
# recover parameters from already-rendered text.
_RECOVERY_PATTERNS = [
    (re.compile(r"退出码:\s*(\S+),\s*信号:\s*(\S+)"),
     re.compile(r"exit code:\s*(\S+),\s*signal:\s*(\S+)", re.IGNORECASE),
     ("code", "signal")),
    (re.compile(r"尝试\s+(\d+)/(\d+)"),
     re.compile(r"attempt\s+(\d+)/(\d+)", re.IGNORECASE),
     ("retry", "maxRetries")),
    (re.compile(r"PID:\s*(\d+)", re.IGNORECASE),
     re.compile(r"PID:\s*(\d+)", re.IGNORECASE),
     ("pid",)),
    (re.compile(r"进程错误:\s*(.*?)$"),
     re.compile(r"process error:\s*(.*?)$", re.IGNORECASE),
     ("message",)),
]


def substitute(template: str, params: Optional[Dict[str, Any]]) -> str:
    """Replaces {name} placeholders with parameter values, leaving unknown ones literal."""
    if not params:
        return template
    values = {k: str(v) for k, v in params.items()}
    return PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def translate(key: str, language: str, params: Optional[Dict[str, Any]] = None,
              catalog: Optional[Catalog] = None) -> str:
    """Looks up the template for a key and fills in its parameters."""
    return substitute(get_template(key, language, catalog), params)


def recover_params(text: str) -> Optional[Dict[str, str]]:
    """
    Best-effort recovery of template parameters from a rendered message.

    Both the source-language (Chinese) and English phrasings are tried.

    :param text: A rendered message, optionally still carrying its
                 ``[timestamp] ERROR:`` prefix.
    :return: The recovered parameters, or None when nothing matched.
    """
    if not text:
        return None
    match = LINE_RE.match(text)
    message = match.group(3) if match else text

    for source_re, english_re, names in _RECOVERY_PATTERNS:
        found = source_re.search(message) or english_re.search(message)
        if found:
            return dict(zip(names, found.groups()))
    return None


def render_message(entry: LogEntry, language: str, catalog: Optional[Catalog] = None) -> str:
    """Renders only the message part of an entry."""
    if isinstance(entry, TemplatedEntry):
        message = translate(entry.key, language, entry.params, catalog)
        if not entry.params and PLACEHOLDER_RE.search(message):
            recovered = recover_params(entry.text)
            if recovered:
                message = translate(entry.key, language, recovered, catalog)
        return message

    if isinstance(entry, LiteralEntry) and is_translation_key(entry.text):
        return translate(entry.text, language, None, catalog)
    return entry.text


def render_entry(entry: LogEntry, language: str, catalog: Optional[Catalog] = None) -> str:
    """Renders an entry into the `[timestamp] ERROR: text` display format."""
    prefix = "ERROR: " if entry.is_error else ""
    return f"[{entry.timestamp}] {prefix}{render_message(entry, language, catalog)}"


def render(entries: Iterable[LogEntry], language: str, catalog: Optional[Catalog] = None) -> List[str]:
    """Renders a sequence of entries for one language."""
    return [render_entry(entry, language, catalog) for entry in entries]
