"""
Stops the managed application with escalating kill strategies.

The sequence is a small state machine:

    PROBING -> KILL_GENERIC -> SETTLE -> REPROBE -> KILL_FORCE -> SETTLE -> REPROBE -> STOPPED | FAILED

`next_phase` is the pure transition function; `terminate` drives it and
performs the side effect belonging to each phase.
"""
import asyncio
import logging
import psutil
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from src.log.recorder import LogRecorder
from src.log.render import translate
from src.local.supervisor import process_utils
from src.local.supervisor.errors import StopFailed
from src.local.supervisor.state import StopResult

if TYPE_CHECKING:
    from .supervisor import Supervisor

log = logging.getLogger(__name__)


class StopPhase(Enum):
    PROBING = "probing"
    KILL_GENERIC = "kill_generic"
    SETTLE_GENERIC = "settle_generic"
    REPROBE_GENERIC = "reprobe_generic"
    KILL_FORCE = "kill_force"
    SETTLE_FORCE = "settle_force"
    REPROBE_FORCE = "reprobe_force"
    ALREADY_STOPPED = "already_stopped"
    STOPPED = "stopped"
    STOPPED_FORCED = "stopped_forced"
    FAILED = "failed"


TERMINAL_PHASES = {StopPhase.ALREADY_STOPPED, StopPhase.STOPPED, StopPhase.STOPPED_FORCED, StopPhase.FAILED}

RESULT_KEYS = {
    StopPhase.ALREADY_STOPPED: "comfyui.stop.already_stopped",
    StopPhase.STOPPED: "comfyui.stop.stopped",
    StopPhase.STOPPED_FORCED: "comfyui.stop.stopped_forced",
}


def next_phase(phase: StopPhase, reachable: Optional[bool] = None) -> StopPhase:
    """
    Computes the phase following `phase`.

    :param phase: The phase that just ran.
    :param reachable: Result of the liveness probe, only meaningful for probing phases.
    :return: The next phase.
    """
    if phase is StopPhase.PROBING:
        return StopPhase.KILL_GENERIC if reachable else StopPhase.ALREADY_STOPPED
    if phase is StopPhase.KILL_GENERIC:
        return StopPhase.SETTLE_GENERIC
    if phase is StopPhase.SETTLE_GENERIC:
        return StopPhase.REPROBE_GENERIC
    if phase is StopPhase.REPROBE_GENERIC:
        return StopPhase.KILL_FORCE if reachable else StopPhase.STOPPED
    if phase is StopPhase.KILL_FORCE:
        return StopPhase.SETTLE_FORCE
    if phase is StopPhase.SETTLE_FORCE:
        return StopPhase.REPROBE_FORCE
    if phase is StopPhase.REPROBE_FORCE:
        return StopPhase.FAILED if reachable else StopPhase.STOPPED_FORCED
    return phase


#* --- Kill Passes ---
def _kill_all(processes: List[psutil.Process], recorder: LogRecorder) -> int:
    """Sends SIGKILL to each process. Failures are logged and skipped."""
    killed = 0
    for proc in processes:
        try:
            proc.kill()
            killed += 1
            recorder.record_key("comfyui.stop.killed", {"pid": proc.pid})
        except psutil.NoSuchProcess:
            log.debug(f"Process {proc.pid} no longer exists, skipping kill.")
        except psutil.Error as e:
            recorder.record_key("comfyui.stop.kill_failed", {"pid": proc.pid, "message": str(e)}, is_error=True)
    return killed

async def _scan(recorder: LogRecorder, interpreter: str, min_rss_kb: Optional[int] = None) -> List[psutil.Process]:
    """Runs the process table scan in the executor. A failed scan yields no processes."""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(
            None, process_utils.find_interpreter_processes, interpreter, min_rss_kb
        )
    except psutil.Error as e:
        recorder.record_key("comfyui.stop.scan_failed", {"message": str(e)}, is_error=True)
        return []

async def force_kill(supervisor: "Supervisor", recorder: LogRecorder) -> int:
    """Kills every process whose name or command line mentions the interpreter."""
    processes = await _scan(recorder, supervisor.settings.INTERPRETER_NAME)
    return _kill_all(processes, recorder)

async def generic_kill(supervisor: "Supervisor", recorder: LogRecorder) -> int:
    """
    Kills large interpreter processes, the likely ComfyUI instances.

    Falls back to `force_kill` when none is found.
    """
    settings = supervisor.settings
    candidates = await _scan(recorder, settings.INTERPRETER_NAME, int(settings.LARGE_PROCESS_RSS_KB))
    if not candidates:
        recorder.record_key("comfyui.stop.fallback")
        return await force_kill(supervisor, recorder)

    recorder.record_key("comfyui.stop.candidates", {"pids": ", ".join(str(p.pid) for p in candidates)})
    return _kill_all(candidates, recorder)


#* --- Driver ---
async def terminate(supervisor: "Supervisor", recorder: LogRecorder, language: Optional[str] = None) -> StopResult:
    """
    Runs the termination sequence until the application is unreachable or every strategy failed.

    :param supervisor: The Supervisor instance.
    :param recorder: The log stream progress is written to.
    :param language: Language of the returned message, defaults to the recorder's.
    :return: A StopResult when the application is down.
    :raises StopFailed: If it is still reachable after the force kill.
    """
    settings = supervisor.settings
    language = language or recorder.default_language
    phase = StopPhase.PROBING

    while phase not in TERMINAL_PHASES:
        reachable = None
        if phase in (StopPhase.PROBING, StopPhase.REPROBE_GENERIC, StopPhase.REPROBE_FORCE):
            reachable = await supervisor.is_running()
        elif phase is StopPhase.KILL_GENERIC:
            await generic_kill(supervisor, recorder)
        elif phase is StopPhase.SETTLE_GENERIC:
            await asyncio.sleep(settings.STOP_SETTLE_SECONDS)
        elif phase is StopPhase.KILL_FORCE:
            recorder.record_key("comfyui.stop.escalating")
            await force_kill(supervisor, recorder)
        elif phase is StopPhase.SETTLE_FORCE:
            await asyncio.sleep(settings.FORCE_KILL_SETTLE_SECONDS)

        new_phase = next_phase(phase, reachable)
        log.debug(f"Termination: {phase.value} -> {new_phase.value}")
        phase = new_phase

    if phase is StopPhase.FAILED:
        recorder.record_key("comfyui.stop.failed", is_error=True)
        raise StopFailed(translate("comfyui.stop.failed", language), logs=recorder.render(language))

    supervisor.identity.clear()
    key = RESULT_KEYS[phase]
    recorder.record_key(key)
    return StopResult(message=translate(key, language), forced=phase is StopPhase.STOPPED_FORCED)
