import psutil
import pytest

from src.local.supervisor.errors import StopFailed
from src.local.supervisor.shutdown import StopPhase, next_phase
from tests.conftest import FakeProcess


@pytest.mark.parametrize("phase, reachable, expected", [
    (StopPhase.PROBING, False, StopPhase.ALREADY_STOPPED),
    (StopPhase.PROBING, True, StopPhase.KILL_GENERIC),
    (StopPhase.KILL_GENERIC, None, StopPhase.SETTLE_GENERIC),
    (StopPhase.SETTLE_GENERIC, None, StopPhase.REPROBE_GENERIC),
    (StopPhase.REPROBE_GENERIC, False, StopPhase.STOPPED),
    (StopPhase.REPROBE_GENERIC, True, StopPhase.KILL_FORCE),
    (StopPhase.KILL_FORCE, None, StopPhase.SETTLE_FORCE),
    (StopPhase.SETTLE_FORCE, None, StopPhase.REPROBE_FORCE),
    (StopPhase.REPROBE_FORCE, False, StopPhase.STOPPED_FORCED),
    (StopPhase.REPROBE_FORCE, True, StopPhase.FAILED),
    (StopPhase.FAILED, True, StopPhase.FAILED),
])
def test_transitions(phase, reachable, expected):
    assert next_phase(phase, reachable) is expected


async def test_stop_when_not_running_succeeds_and_clears_identity(supervisor, prober, process_table):
    prober.script(False)
    supervisor.identity.set(12)

    result = await supervisor.stop("en")

    assert result.message == "ComfyUI is already stopped"
    assert supervisor.identity.pid is None
    assert process_table["scans"] == []


async def test_stop_twice_succeeds_both_times(supervisor, prober, process_table):
    big = FakeProcess(501)
    process_table["large"] = [big]
    prober.script(True, False)

    first = await supervisor.stop("en")
    second = await supervisor.stop("en")

    assert first.message == "ComfyUI stopped successfully"
    assert second.message == "ComfyUI is already stopped"
    assert big.killed


async def test_generic_kill_continues_past_a_failed_kill(supervisor, prober, process_table):
    stubborn = FakeProcess(600, error=psutil.AccessDenied(600))
    victim = FakeProcess(601)
    process_table["large"] = [stubborn, victim]
    prober.script(True, False)

    await supervisor.stop("en")

    logs = supervisor.get_logs("en")
    assert victim.killed
    assert any("ERROR: Failed to terminate process 600" in line for line in logs)
    assert any("Terminated process 601" in line for line in logs)


async def test_no_large_process_falls_back_to_force_kill(supervisor, prober, process_table):
    small = FakeProcess(700)
    process_table["large"] = []
    process_table["interpreter"] = [small]
    prober.script(True, False)

    result = await supervisor.stop("en")

    assert small.killed
    assert result.forced is False
    assert process_table["scans"] == [100000, None]
    assert any("using fallback force kill" in line for line in supervisor.get_logs("en"))


async def test_escalates_to_force_kill(supervisor, prober, process_table):
    process_table["large"] = [FakeProcess(801)]
    process_table["interpreter"] = [FakeProcess(802)]
    prober.script(True, True, False)
    supervisor.identity.set(801)

    result = await supervisor.stop("en")

    assert result.forced is True
    assert result.message == "ComfyUI stopped successfully (forced)"
    assert supervisor.identity.pid is None
    assert process_table["interpreter"][0].killed


async def test_stop_fails_when_still_reachable(supervisor, prober, process_table):
    process_table["large"] = [FakeProcess(900)]
    prober.script(True)
    supervisor.identity.set(900)

    with pytest.raises(StopFailed) as exc_info:
        await supervisor.stop("en")

    assert exc_info.value.message == "Unable to stop ComfyUI, even after forced termination"
    assert any("forcing termination" in line for line in exc_info.value.logs)
    assert supervisor.identity.pid == 900


def test_protected_pids_include_ourselves_and_our_parent():
    import os

    from src.local.supervisor.process_utils import protected_pids

    pids = protected_pids()

    assert os.getpid() in pids
    assert os.getppid() in pids
