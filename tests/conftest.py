"""
Shared fixtures for the launcher tests.

Every test gets its own settings pointing into `tmp_path`, zero timing knobs,
and a scripted liveness prober. Process-table scans and recovery commands are
replaced with fakes so no test can kill or spawn anything it did not create.
"""
import asyncio
from pathlib import Path
from typing import List

import pytest

from src.local.config import MergedSettings
from src.local.supervisor import Supervisor, process_utils, reset


class FakeProber:
    """Returns scripted liveness results in order, then keeps repeating the last one."""

    def __init__(self, *results: bool) -> None:
        self.results: List[bool] = list(results) or [False]
        self.calls = 0

    async def __call__(self) -> bool:
        index = min(self.calls, len(self.results) - 1)
        self.calls += 1
        return self.results[index]

    def script(self, *results: bool) -> None:
        self.results = list(results)
        self.calls = 0


class FakeProcess:
    """Stands in for a psutil.Process in kill passes."""

    def __init__(self, pid: int, error: Exception = None) -> None:
        self.pid = pid
        self.error = error
        self.killed = False

    def kill(self) -> None:
        if self.error is not None:
            raise self.error
        self.killed = True


@pytest.fixture
def settings(tmp_path: Path) -> MergedSettings:
    s = MergedSettings(overrides_path=tmp_path / "overrides.json")
    s.COMFYUI_PATH = tmp_path / "ComfyUI"
    s.DATA_DIR = tmp_path / "data"
    s.CACHE_DIR = tmp_path / "cache"
    s.LOGS_DIR = tmp_path / "logs"
    s.RESET_LOG_PATH = tmp_path / "logs" / "comfyui-reset.log"
    s.START_SCRIPT = tmp_path / "entrypoint.sh"
    s.UPGRADE_SCRIPT = tmp_path / "up-version-cp.sh"
    s.SCRIPTS_SOURCE_DIR = tmp_path / "runner-scripts"
    s.SCRIPTS_TARGET_DIR = tmp_path / "runner-scripts-target"
    s.START_POLL_INTERVAL = 0
    s.START_MAX_RETRIES = 3
    s.STOP_SETTLE_SECONDS = 0
    s.FORCE_KILL_SETTLE_SECONDS = 0
    s.DEFAULT_LANGUAGE = "zh"
    s.COMFYUI_PATH.mkdir()
    return s


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber(False)


@pytest.fixture(autouse=True)
def process_table(monkeypatch):
    """
    Replaces process-table scans. Tests add FakeProcess objects to
    `process_table["interpreter"]` or set `process_table["app_pid"]`.
    """
    table = {"interpreter": [], "large": None, "app_pid": None, "scans": []}

    def find_interpreter_processes(interpreter, min_rss_kb=None, excluded=None):
        table["scans"].append(min_rss_kb)
        if min_rss_kb is not None and table["large"] is not None:
            return list(table["large"])
        return list(table["interpreter"])

    def find_app_pid(pattern, excluded=None):
        return table["app_pid"]

    monkeypatch.setattr(process_utils, "find_interpreter_processes", find_interpreter_processes)
    monkeypatch.setattr(process_utils, "find_app_pid", find_app_pid)
    return table


@pytest.fixture(autouse=True)
def recovery_commands(monkeypatch):
    """Records recovery commands instead of running them."""
    calls = []

    async def run_command(*args):
        calls.append(args)
        return "ok"

    monkeypatch.setattr(reset, "run_command", run_command)
    return calls


@pytest.fixture
async def supervisor(settings, prober):
    sup = Supervisor(settings, prober=prober)
    yield sup
    if sup.background_tasks:
        await asyncio.wait(list(sup.background_tasks), timeout=5)
    await sup.close()


def write_script(path: Path, body: str) -> Path:
    path.write_text(f"#!/bin/bash\n{body}\n", encoding="utf-8")
    return path
