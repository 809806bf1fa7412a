import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, List

from src.local.supervisor import process_utils
from src.local.supervisor.reset import clear_directory
from src.local.supervisor.state import WipeStatus

if TYPE_CHECKING:
    from .supervisor import Supervisor

log = logging.getLogger(__name__)


async def detect_running_instance(supervisor: "Supervisor") -> None:
    """
    Adopts a ComfyUI instance that was already running before the launcher started.

    :param supervisor: The Supervisor instance.
    """
    pid = await process_utils.resolve_real_pid(supervisor)
    if pid is None:
        log.info("No running ComfyUI instance found.")
        return
    supervisor.identity.set(pid, datetime.now())
    supervisor.session_log.record_key("comfyui.logs.found_pid", {"pid": pid})


def cleanup_disabled_plugins(app_root: Path, plugins_dir_name: str = "custom_nodes",
                             disabled_dir_name: str = ".disabled") -> List[str]:
    """
    Removes plugins that exist both enabled and disabled.

    A plugin directory under `custom_nodes/.disabled/` means the plugin was
    disabled; a copy left in `custom_nodes/` would still be loaded.

    :param app_root: The ComfyUI root directory.
    :param plugins_dir_name: Name of the plugins directory.
    :param disabled_dir_name: Name of the disabled plugins directory inside it.
    :return: Names of the plugin directories that were removed.
    """
    plugins_dir = Path(app_root) / plugins_dir_name
    disabled_dir = plugins_dir / disabled_dir_name

    if not plugins_dir.is_dir():
        log.warning(f"Plugins directory '{plugins_dir}' does not exist. Skipping plugin cleanup.")
        return []
    if not disabled_dir.is_dir():
        log.info("No disabled plugins directory, nothing to clean up.")
        return []

    disabled = sorted(p.name for p in disabled_dir.iterdir() if p.is_dir())
    if not disabled:
        log.info("No disabled plugins found, nothing to clean up.")
        return []
    log.info(f"Found {len(disabled)} disabled plugins.")

    removed = []
    for name in disabled:
        plugin_path = plugins_dir / name
        if not plugin_path.is_dir():
            continue
        log.warning(f"Disabled plugin '{name}' is also present in '{plugins_dir}'. Removing it...")
        outcomes = clear_directory(plugin_path, remove_dir_itself=True)
        if plugin_path.exists() or any(o.status is WipeStatus.FAILED for o in outcomes):
            log.error(f"Failed to fully remove disabled plugin '{name}'.")
            continue
        removed.append(name)
        log.info(f"Removed disabled plugin: {name}")

    if removed:
        log.info(f"Plugin cleanup finished, removed {len(removed)} duplicated plugins.")
    return removed


async def initialize_supervision(supervisor: "Supervisor") -> None:
    """
    One-time setup run when the server starts.

    :param supervisor: The Supervisor instance.
    """
    settings = supervisor.settings
    await detect_running_instance(supervisor)

    app_root = Path(settings.COMFYUI_PATH)
    if not app_root.is_dir():
        log.warning(f"ComfyUI path '{app_root}' does not exist. Skipping plugin cleanup.")
        return
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(
        None, cleanup_disabled_plugins, app_root, settings.PLUGINS_DIR_NAME, settings.DISABLED_PLUGINS_DIR_NAME
    )
