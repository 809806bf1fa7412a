import os
import re
import asyncio
import logging
import signal
import psutil
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Set, Tuple

if TYPE_CHECKING:
    from .supervisor import Supervisor

log = logging.getLogger(__name__)
proc_log = logging.getLogger("proc.comfyui")

EXIT_POLL_INTERVAL = 0.2  # seconds


#* --- Process Table Scans ---
def protected_pids() -> Set[int]:
    """Returns our own PID and those of all our ancestors. These are never killed or reported."""
    pids = {os.getpid()}
    try:
        pids.update(p.pid for p in psutil.Process().parents())
    except psutil.Error as e:
        log.debug(f"Could not read ancestor processes: {e}")
    return pids

def _cmdline_string(proc: psutil.Process) -> str:
    cmdline = proc.info.get("cmdline") or []
    return " ".join(cmdline) if cmdline else (proc.info.get("name") or "")

def find_app_pid(pattern: str, excluded: Optional[Iterable[int]] = None) -> Optional[int]:
    """
    Finds the first process (lowest PID) whose command line matches a pattern.

    :param pattern: Case-insensitive regular expression for the joined command line.
    :param excluded: PIDs that must never be returned.
    :return: The matching PID, or None.
    """
    regex = re.compile(pattern, re.IGNORECASE)
    skip = set(excluded) if excluded is not None else protected_pids()
    matches = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            if proc.pid in skip:
                continue
            if regex.search(_cmdline_string(proc)):
                matches.append(proc.pid)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return min(matches) if matches else None

def find_interpreter_processes(interpreter: str, min_rss_kb: Optional[int] = None,
                               excluded: Optional[Iterable[int]] = None) -> List[psutil.Process]:
    """
    Lists processes whose name or command line mentions the interpreter.

    :param interpreter: Substring looked for (case-insensitive), e.g. 'python'.
    :param min_rss_kb: If given, only processes with a larger resident set size (KiB).
    :param excluded: PIDs to leave out, defaults to `protected_pids()`.
    :return: Matching processes in ascending PID order.
    """
    needle = interpreter.lower()
    skip = set(excluded) if excluded is not None else protected_pids()
    found = []
    for proc in psutil.process_iter(["pid", "name", "cmdline", "memory_info"]):
        try:
            if proc.pid in skip:
                continue
            name = (proc.info.get("name") or "").lower()
            if needle not in name and needle not in _cmdline_string(proc).lower():
                continue
            if min_rss_kb is not None:
                memory = proc.info.get("memory_info")
                if memory is None or memory.rss / 1024 <= min_rss_kb:
                    continue
            found.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return sorted(found, key=lambda p: p.pid)

async def resolve_real_pid(supervisor: "Supervisor") -> Optional[int]:
    """Scans the process table for the managed application without blocking the event loop."""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, find_app_pid, supervisor.settings.APP_PROCESS_PATTERN)
    except psutil.Error as e:
        log.warning(f"Process table scan failed: {e}")
        return None


#* --- Process Creation ---
async def spawn_start_script(script: Path, cwd: Optional[Path] = None) -> asyncio.subprocess.Process:
    """
    Runs the startup script with bash, capturing stdout and stderr.

    A missing or broken script is not an error here: bash reports it on
    stderr and exits, which the exit watcher records.

    :raises OSError: If bash itself could not be started.
    """
    return await asyncio.create_subprocess_exec(
        "bash", str(script),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd and cwd.is_dir() else None,
        start_new_session=True,
    )

async def _read_stream(stream: Optional[asyncio.StreamReader], line_handler: Callable[[str], None]) -> None:
    """Reads a subprocess pipe line by line until EOF."""
    if stream is None:
        return
    try:
        while True:
            line_bytes = await stream.readline()
            if not line_bytes:
                break
            line = line_bytes.decode("utf-8", errors="replace").rstrip()
            if line:
                line_handler(line)
    except (OSError, ValueError) as e:
        log.debug(f"Pipe reader for comfyui exited: {e}")

def handle_stdout_line(supervisor: "Supervisor", line: str) -> None:
    """Records a stdout line and picks up the PID announcement if present."""
    supervisor.session_log.record(f"[ComfyUI] {line}", logger=proc_log)
    match = supervisor.pid_announce_re.search(line)
    if match:
        pid = int(match.group(1))
        supervisor.identity.set(pid, datetime.now())
        supervisor.session_log.record_key("comfyui.logs.captured_pid", {"pid": pid})

def handle_stderr_line(supervisor: "Supervisor", line: str) -> None:
    supervisor.session_log.record(f"[ComfyUI-Error] {line}", is_error=True, logger=proc_log)

def exit_details(returncode: Optional[int]) -> Tuple[Optional[int], Optional[str]]:
    """Splits an asyncio return code into (exit code, signal name)."""
    if returncode is None:
        return None, None
    if returncode < 0:
        try:
            return None, signal.Signals(-returncode).name
        except ValueError:
            return None, str(-returncode)
    return returncode, None

async def wait_for_exit(process: asyncio.subprocess.Process, poll_interval: float = EXIT_POLL_INTERVAL) -> int:
    """
    Waits until the script process itself has exited.

    The return code is set once the script is reaped, even while a child it
    left running in the background still holds the output pipes open.
    """
    while process.returncode is None:
        await asyncio.sleep(poll_interval)
    return process.returncode

async def watch_process(supervisor: "Supervisor", process: asyncio.subprocess.Process) -> None:
    """
    Consumes the script's output and reacts to its exit.

    On exit the handle is dropped and, if the application is no longer
    reachable, the cached identity is cleared. Output from children the
    script left behind keeps being recorded until they close the pipes.
    """
    readers = asyncio.gather(
        _read_stream(process.stdout, lambda line: handle_stdout_line(supervisor, line)),
        _read_stream(process.stderr, lambda line: handle_stderr_line(supervisor, line)),
    )
    try:
        returncode = await wait_for_exit(process)
        # Output the script wrote before exiting is still in the pipes.
        await asyncio.wait({readers}, timeout=EXIT_POLL_INTERVAL)
        code, signal_name = exit_details(returncode)
        supervisor.session_log.record_key("comfyui.logs.process_exited", {"code": code, "signal": signal_name})

        if supervisor.process is process:
            supervisor.process = None
        if not await supervisor.is_running():
            supervisor.identity.clear()
        await readers
    finally:
        readers.cancel()

def launch_process(supervisor: "Supervisor", process: asyncio.subprocess.Process) -> None:
    """Tracks a freshly spawned script process and starts watching it."""
    supervisor.process = process
    task = asyncio.get_running_loop().create_task(watch_process(supervisor, process))
    supervisor.background_tasks.add(task)
    task.add_done_callback(supervisor.background_tasks.discard)

def kill_script(supervisor: "Supervisor") -> None:
    """Kills the startup script process if it is still alive."""
    process = supervisor.process
    if process is None or process.returncode is not None:
        return
    try:
        process.kill()
        supervisor.session_log.record_key("comfyui.logs.script_killed", {"pid": process.pid})
    except ProcessLookupError:
        pass


#* --- Startup Polling ---
async def wait_until_reachable(supervisor: "Supervisor") -> bool:
    """
    Polls the liveness prober until the application answers or retries run out.

    :return: True once reachable, False after START_MAX_RETRIES attempts.
    """
    settings = supervisor.settings
    max_retries = int(settings.START_MAX_RETRIES)
    for retry in range(1, max_retries + 1):
        await asyncio.sleep(settings.START_POLL_INTERVAL)
        if await supervisor.is_running():
            return True
        supervisor.session_log.record_key(
            "comfyui.logs.waiting_startup", {"retry": retry, "maxRetries": max_retries}
        )
    return False
