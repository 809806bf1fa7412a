"""
Destructive reset of the ComfyUI installation directory.

A reset stops the application, empties the cache directory, deletes every
top-level entry of the application root that is not preserved, then runs a
best-effort recovery that reinstalls the application files.
"""
import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, FrozenSet, Iterable, List, Optional, Tuple

from src.log.recorder import LogRecorder
from src.log.render import translate
from src.local.supervisor import shutdown
from src.local.supervisor.errors import RecoveryFailed, ResetAborted, ResetFailed, StopFailed
from src.local.supervisor.state import ResetMode, ResetRequest, ResetResult, WipeOutcome, WipeStatus

if TYPE_CHECKING:
    from .supervisor import Supervisor

log = logging.getLogger(__name__)

ALWAYS_PRESERVED = frozenset({"models", "output", "input"})
NORMAL_MODE_PRESERVED = frozenset({"user", "custom_nodes"})


#* --- Directory Wipe ---
def compute_preserved_dirs(mode: ResetMode, app_root: Path, data_dir: Optional[Path] = None) -> FrozenSet[str]:
    """
    Names of the top-level entries of `app_root` a reset must keep.

    :param mode: NORMAL also keeps user data and installed plugins.
    :param app_root: The application root being wiped.
    :param data_dir: The data directory, kept when it lives inside `app_root`.
    :return: A set of entry names.
    """
    preserved = set(ALWAYS_PRESERVED)
    if mode is ResetMode.NORMAL:
        preserved |= NORMAL_MODE_PRESERVED

    nested = nested_data_dir(app_root, data_dir)
    if nested is not None:
        preserved.add(nested)
    return frozenset(preserved)

def nested_data_dir(app_root: Path, data_dir: Optional[Path]) -> Optional[str]:
    """
    Returns the name of the top-level entry of `app_root` that contains `data_dir`, if any.

    Both paths are resolved first, so '..' segments and symlinks cannot hide the nesting.
    """
    if data_dir is None:
        return None
    root = Path(app_root).resolve()
    data = Path(data_dir).resolve()
    if data == root or not data.is_relative_to(root):
        return None
    return data.relative_to(root).parts[0]

def _remove_tree(path: Path) -> List[Tuple[Path, OSError]]:
    """
    Deletes a directory tree bottom-up, continuing past entries that cannot be removed.

    A directory is only removed once everything below it is gone.

    :return: (path, error) for every entry that could not be deleted.
    """
    failures: List[Tuple[Path, OSError]] = []
    try:
        children = sorted(path.iterdir(), key=lambda p: p.name)
    except OSError as e:
        return [(path, e)]

    for child in children:
        if child.is_dir() and not child.is_symlink():
            failures.extend(_remove_tree(child))
            continue
        try:
            child.unlink()
        except OSError as e:
            log.debug(f"Could not delete '{child}': {e}")
            failures.append((child, e))

    if not failures:
        try:
            path.rmdir()
        except OSError as e:
            failures.append((path, e))
    return failures

def _remove_entry(entry: Path) -> List[Tuple[Path, OSError]]:
    if entry.is_dir() and not entry.is_symlink():
        return _remove_tree(entry)
    try:
        entry.unlink()
    except OSError as e:
        return [(entry, e)]
    return []

def _failure_reason(entry: Path, failures: List[Tuple[Path, OSError]]) -> str:
    path, error = failures[0]
    reason = str(error) if path == entry else f"{path.relative_to(entry)}: {error}"
    if len(failures) > 1:
        reason += f" (+{len(failures) - 1} more)"
    return reason

def clear_directory(path: Path, remove_dir_itself: bool = False,
                    preserved: Iterable[str] = ()) -> List[WipeOutcome]:
    """
    Deletes the contents of a directory, entry by entry.

    A failure on one entry is reported in its outcome and the wipe continues.

    :param path: The directory to empty.
    :param remove_dir_itself: Also remove `path` once it is empty.
    :param preserved: Names of top-level entries to keep.
    :return: One outcome per top-level entry, in name order. Empty if `path` does not exist.
    """
    path = Path(path)
    if not path.is_dir():
        return []

    keep = set(preserved)
    outcomes: List[WipeOutcome] = []
    for entry in sorted(path.iterdir(), key=lambda p: p.name):
        is_dir = entry.is_dir() and not entry.is_symlink()
        if entry.name in keep:
            outcomes.append(WipeOutcome(entry, WipeStatus.PRESERVED, is_dir=is_dir))
            continue
        failures = _remove_entry(entry)
        if failures:
            reason = _failure_reason(entry, failures)
            log.warning(f"Could not fully delete '{entry}': {reason}")
            outcomes.append(WipeOutcome(entry, WipeStatus.FAILED, reason=reason, is_dir=is_dir))
        else:
            outcomes.append(WipeOutcome(entry, WipeStatus.DELETED, is_dir=is_dir))

    if remove_dir_itself and all(o.status is WipeStatus.DELETED for o in outcomes):
        try:
            path.rmdir()
        except OSError as e:
            outcomes.append(WipeOutcome(path, WipeStatus.FAILED, reason=str(e), is_dir=True))
    return outcomes

def record_outcomes(outcomes: List[WipeOutcome], recorder: LogRecorder) -> None:
    """Writes one reset log entry per wipe outcome."""
    for outcome in outcomes:
        name = outcome.path.name
        if outcome.status is WipeStatus.PRESERVED:
            recorder.record_key("comfyui.reset.keeping_dir", {"name": name})
            continue
        recorder.record_key("comfyui.reset.deleting_dir" if outcome.is_dir else "comfyui.reset.deleting_file",
                            {"name": name})
        if outcome.status is WipeStatus.FAILED:
            recorder.record_key("comfyui.reset.delete_failed",
                                {"path": str(outcome.path), "message": outcome.reason}, is_error=True)


#* --- Recovery ---
async def run_command(*args: str) -> str:
    """
    Runs a command and returns its combined output.

    :raises RecoveryFailed: If it cannot be started or exits with a non-zero status.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise RecoveryFailed(f"{args[0]}: {e}") from e

    output, _ = await process.communicate()
    text = output.decode("utf-8", errors="replace").strip()
    if process.returncode != 0:
        raise RecoveryFailed(f"'{' '.join(args)}' exited with status {process.returncode}: {text}")
    return text

async def run_recovery(supervisor: "Supervisor", recorder: LogRecorder) -> None:
    """
    Restores the application files after a wipe.

    :raises RecoveryFailed: On the first failing command.
    """
    settings = supervisor.settings
    script = str(settings.UPGRADE_SCRIPT)

    recorder.record_key("comfyui.reset.recovery_started")
    await run_command("chmod", "+x", script)
    recorder.record_key("comfyui.reset.chmod_done")

    upgrade_output = await run_command("sh", script)
    recorder.record_key("comfyui.reset.upgrade_output", {"output": upgrade_output or "-"})

    rsync_output = await run_command(
        "rsync", "-av", "--update", f"{settings.SCRIPTS_SOURCE_DIR}/", f"{settings.SCRIPTS_TARGET_DIR}/"
    )
    first_line = rsync_output.splitlines()[0] if rsync_output else "-"
    recorder.record_key("comfyui.reset.rsync_output", {"output": first_line})
    recorder.record_key("comfyui.reset.recovery_completed")


#* --- Orchestrator ---
async def _wipe(supervisor: "Supervisor", request: ResetRequest, recorder: LogRecorder) -> None:
    settings = supervisor.settings
    loop = asyncio.get_running_loop()

    cache_dir: Optional[Path] = settings.CACHE_DIR
    if cache_dir is not None and Path(cache_dir).is_dir():
        recorder.record_key("comfyui.reset.cleaning_cache", {"path": str(cache_dir)})
        outcomes = await loop.run_in_executor(None, clear_directory, Path(cache_dir), False)
        for outcome in outcomes:
            if outcome.status is WipeStatus.FAILED:
                recorder.record_key("comfyui.reset.delete_failed",
                                    {"path": str(outcome.path), "message": outcome.reason}, is_error=True)
    else:
        recorder.record_key("comfyui.reset.cache_not_exist", {"path": str(cache_dir)}, is_error=True)

    app_root = Path(settings.COMFYUI_PATH)
    if not app_root.is_dir():
        recorder.record_key("comfyui.reset.path_not_exist", {"path": str(app_root)}, is_error=True)
        return

    recorder.record_key("comfyui.reset.cleaning_path", {"path": str(app_root)})
    preserved = compute_preserved_dirs(request.mode, app_root, settings.DATA_DIR)
    if request.mode is ResetMode.NORMAL:
        recorder.record_key("comfyui.reset.preserving_normal_dirs")
    else:
        recorder.record_key("comfyui.reset.preserving_hard_dirs")
    if nested_data_dir(app_root, settings.DATA_DIR) is not None:
        recorder.record_key("comfyui.reset.data_dir_preserved", {"path": str(settings.DATA_DIR)})

    outcomes = await loop.run_in_executor(None, clear_directory, app_root, False, preserved)
    record_outcomes(outcomes, recorder)

async def reset(supervisor: "Supervisor", request: ResetRequest) -> ResetResult:
    """
    Runs a full reset and returns the localized result.

    :param supervisor: The Supervisor instance.
    :param request: Display language and reset mode.
    :return: A ResetResult with the success message and the rendered reset log.
    :raises ResetAborted: If the application could not be stopped. Nothing was deleted.
    :raises ResetFailed: On any unexpected error before recovery.
    """
    recorder = supervisor.reset_log
    language = request.language

    recorder.clear()
    recorder.record_key("comfyui.reset.started")
    recorder.record_key("comfyui.reset.mode_hard" if request.mode is ResetMode.HARD else "comfyui.reset.mode_normal")

    try:
        if await supervisor.is_running():
            recorder.record_key("comfyui.reset.stopping")
            try:
                await shutdown.terminate(supervisor, recorder, language)
            except StopFailed as e:
                recorder.record_key("comfyui.reset.stop_failed", is_error=True)
                raise ResetAborted(translate("comfyui.reset.stop_failed", language),
                                   logs=recorder.render(language)) from e

        await _wipe(supervisor, request, recorder)
    except ResetAborted:
        raise
    except Exception as e:
        log.error(f"Reset failed: {e}", exc_info=True)
        recorder.record_key("comfyui.reset.failed", {"message": str(e)}, is_error=True)
        raise ResetFailed(translate("comfyui.reset.failed", language, {"message": str(e)}),
                          logs=recorder.render(language)) from e

    try:
        await run_recovery(supervisor, recorder)
    except RecoveryFailed as e:
        recorder.record_key("comfyui.reset.recovery_failed", {"message": e.message}, is_error=True)

    recorder.record_key("comfyui.reset.reset_completed")
    return ResetResult(message=translate("comfyui.reset.completed", language), logs=recorder.render(language))
