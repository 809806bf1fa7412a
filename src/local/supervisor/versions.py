"""
Reads version and environment information shown on the status page.
"""
import os
import re
import json
import time
import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from src.log.render import translate

log = logging.getLogger(__name__)

VERSION_ASSIGN_RE = re.compile(r"""__version__\s*=\s*["']([^"']+)["']""")
FRONTEND_ARG_RE = re.compile(r"--front-end-version\s+[^@\s]+@(v[\d.]+)")
HTML_VERSION_RES = (
    re.compile(r"ComfyUI\s+v([\d.]+)", re.IGNORECASE),
    re.compile(r"""version:\s*["']([\d.]+)["']""", re.IGNORECASE),
)
JS_VERSION_RES = (
    re.compile(r"""version:\s*["']([\d.]+)["']""", re.IGNORECASE),
    re.compile(r"""APP_VERSION\s*=\s*["']([\d.]+)["']""", re.IGNORECASE),
)


def _first_match(text: str, patterns) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


async def _git_describe(app_root: Path) -> Optional[str]:
    try:
        process = await asyncio.create_subprocess_exec(
            "git", "describe", "--tags",
            cwd=str(app_root),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        log.debug(f"git is not available: {e}")
        return None
    stdout, _ = await process.communicate()
    if process.returncode != 0:
        return None
    return stdout.decode("utf-8", errors="replace").strip() or None


async def read_app_version(app_root: Path) -> Optional[str]:
    """
    Finds the ComfyUI version.

    Tried in order: `comfyui_version.py`, a plain `version` file, `git describe --tags`,
    and `package.json`.

    :param app_root: The ComfyUI root directory.
    :return: The version string, or None.
    """
    if not app_root.is_dir():
        return None

    version_file = app_root / "comfyui_version.py"
    if version_file.is_file():
        match = VERSION_ASSIGN_RE.search(version_file.read_text(encoding="utf-8", errors="replace"))
        if match:
            return match.group(1)

    legacy_file = app_root / "version"
    if legacy_file.is_file():
        return legacy_file.read_text(encoding="utf-8", errors="replace").strip() or None

    version = await _git_describe(app_root)
    if version:
        return version

    package_json = app_root / "package.json"
    if package_json.is_file():
        try:
            return json.loads(package_json.read_text(encoding="utf-8")).get("version")
        except (json.JSONDecodeError, AttributeError) as e:
            log.warning(f"Could not parse ComfyUI version from package.json: {e}")
    return None


def read_frontend_version(app_root: Path, cli_args: Optional[str]) -> Optional[str]:
    """
    Finds the frontend version.

    The `--front-end-version owner/repo@vX.Y.Z` launch argument wins; otherwise
    the bundled `web/index.html` and `web/scripts/app.js` are searched.
    """
    if cli_args:
        match = FRONTEND_ARG_RE.search(cli_args)
        if match:
            return match.group(1)

    index_html = app_root / "web" / "index.html"
    if not index_html.is_file():
        return None
    version = _first_match(index_html.read_text(encoding="utf-8", errors="replace"), HTML_VERSION_RES)
    if version:
        return version

    app_js = app_root / "web" / "scripts" / "app.js"
    if app_js.is_file():
        return _first_match(app_js.read_text(encoding="utf-8", errors="replace"), JS_VERSION_RES)
    return None


class VersionInspector:
    """Caches the ComfyUI and frontend versions for `cache_timeout` seconds."""

    def __init__(self, app_root: Path, cli_args_env: str = "CLI_ARGS", cache_timeout: float = 600) -> None:
        self.app_root = Path(app_root)
        self.cli_args_env = cli_args_env
        self.cache_timeout = cache_timeout
        self._cache: Dict[str, Optional[str]] = {}
        self._cached_at: Optional[float] = None

    async def get_versions(self) -> Dict[str, Optional[str]]:
        now = time.monotonic()
        if self._cached_at is not None and now - self._cached_at < self.cache_timeout:
            return dict(self._cache)

        try:
            self._cache = {
                "comfyui": await read_app_version(self.app_root),
                "frontend": read_frontend_version(self.app_root, os.getenv(self.cli_args_env)),
            }
        except OSError as e:
            log.error(f"Failed to read version information: {e}")
            self._cache = {"comfyui": None, "frontend": None}
        self._cached_at = now
        return dict(self._cache)

    def invalidate(self) -> None:
        self._cached_at = None


def get_gpu_mode(env_var: str = "NVSHARE_MANAGED_MEMORY") -> str:
    """'independent' when GPU memory sharing is disabled ('0'), 'shared' otherwise."""
    return "independent" if os.getenv(env_var) == "0" else "shared"


def format_uptime(start_time: Optional[datetime], language: str, now: Optional[datetime] = None) -> str:
    """
    Formats the time since `start_time` for display.

    :param start_time: When the application was started, or None.
    :param language: Display language.
    :param now: Reference time, defaults to the current time.
    :return: e.g. '42s', '3m 5s' or '2h 10m' in English.
    """
    if start_time is None:
        return translate("comfyui.uptime.seconds", language, {"seconds": 0})
    seconds = max(0, int(((now or datetime.now()) - start_time).total_seconds()))
    if seconds < 60:
        return translate("comfyui.uptime.seconds", language, {"seconds": seconds})
    if seconds < 3600:
        return translate("comfyui.uptime.minutes", language, {"minutes": seconds // 60, "seconds": seconds % 60})
    return translate("comfyui.uptime.hours", language, {"hours": seconds // 3600, "minutes": (seconds % 3600) // 60})
