import re
import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from src.local.config import effective_settings
from src.log.recorder import LogRecorder, PersistentLogRecorder
from src.log.render import translate
from src.local.supervisor import process_utils, reset, shutdown, startup
from src.local.supervisor.errors import AlreadyRunning, LaunchFailed, StartTimeout
from src.local.supervisor.liveness import Prober, make_prober
from src.local.supervisor.state import AppIdentity, ResetRequest, ResetResult, StartResult, StopResult
from src.local.supervisor.versions import VersionInspector, format_uptime, get_gpu_mode

log = logging.getLogger(__name__)


class Supervisor:
    """
    Owns the managed ComfyUI process and everything known about it.

    One instance exists per server process. It holds the startup script
    handle, the cached application identity and the session and reset logs,
    and exposes the start, stop, reset and status operations.
    """

    def __init__(self, settings: Any = None, prober: Optional[Prober] = None) -> None:
        """
        :param settings: A settings object, defaults to `effective_settings`.
        :param prober: Coroutine function returning True when ComfyUI accepts connections.
        """
        self.settings = settings or effective_settings
        s = self.settings

        self.is_running: Prober = prober or make_prober(s.COMFYUI_HOST, s.COMFYUI_PORT, s.LIVENESS_TIMEOUT)
        self.identity = AppIdentity()
        self.process: Optional[asyncio.subprocess.Process] = None
        self.background_tasks: Set[asyncio.Task] = set()
        self.pid_announce_re = re.compile(s.PID_ANNOUNCE_PATTERN, re.IGNORECASE)

        self.session_log = LogRecorder(
            capacity=int(s.MAX_LOG_ENTRIES), name="session", default_language=s.DEFAULT_LANGUAGE
        )
        self.reset_log = PersistentLogRecorder(
            Path(s.RESET_LOG_PATH), capacity=int(s.MAX_LOG_ENTRIES), name="reset",
            default_language=s.DEFAULT_LANGUAGE,
        )
        self.versions = VersionInspector(Path(s.COMFYUI_PATH), s.CLI_ARGS_ENV, s.VERSION_CACHE_TIMEOUT)

    def _language(self, language: Optional[str]) -> str:
        return language or self.settings.DEFAULT_LANGUAGE

    async def initialize(self) -> None:
        """Adopts an already running instance and removes duplicated disabled plugins."""
        await startup.initialize_supervision(self)

    async def close(self) -> None:
        """Stops watching the startup script. ComfyUI itself is left running."""
        for task in list(self.background_tasks):
            task.cancel()
        if self.background_tasks:
            await asyncio.gather(*self.background_tasks, return_exceptions=True)

    #* --- Start ---
    async def start(self, language: Optional[str] = None) -> StartResult:
        """
        Starts ComfyUI through its startup script and waits until it accepts connections.

        :param language: Language of the returned message and logs.
        :return: The StartResult with the real PID, when known.
        :raises AlreadyRunning: If ComfyUI was already reachable. Nothing is spawned.
        :raises LaunchFailed: If bash could not be spawned for the startup script.
        :raises StartTimeout: If ComfyUI never became reachable.
        """
        lang = self._language(language)
        session = self.session_log
        session.clear()
        session.record_key("comfyui.logs.request_start")

        if await self.is_running():
            session.record_key("comfyui.logs.already_running")
            raise AlreadyRunning(translate("comfyui.logs.already_running", lang),
                                 pid=self.identity.pid, logs=session.render(lang))

        script = Path(self.settings.START_SCRIPT)
        session.record_key("comfyui.logs.attempting_start")
        session.record_key("comfyui.logs.executing_command", {"script": str(script)})
        try:
            process = await process_utils.spawn_start_script(script, Path(self.settings.COMFYUI_PATH))
        except OSError as e:
            session.record_key("comfyui.logs.process_error", {"message": str(e)}, is_error=True)
            raise LaunchFailed(translate("comfyui.logs.process_error", lang, {"message": str(e)}),
                               logs=session.render(lang)) from e
        process_utils.launch_process(self, process)

        if not await process_utils.wait_until_reachable(self):
            session.record_key("comfyui.logs.start_timeout", is_error=True)
            process_utils.kill_script(self)
            self.identity.clear()
            raise StartTimeout(translate("comfyui.logs.start_timeout", lang), logs=session.render(lang))

        if self.identity.pid is None:
            pid = await process_utils.resolve_real_pid(self)
            if pid is not None:
                self.identity.set(pid)
                session.record_key("comfyui.logs.found_pid", {"pid": pid})
        if self.identity.start_time is None:
            self.identity.start_time = datetime.now()

        session.record_key("comfyui.logs.start_succeeded")
        self.versions.invalidate()
        return StartResult(pid=self.identity.pid, message=translate("comfyui.logs.start_succeeded", lang),
                           logs=session.render(lang))

    #* --- Stop & Reset ---
    async def stop(self, language: Optional[str] = None) -> StopResult:
        """
        Stops ComfyUI, escalating to a force kill when needed.

        :raises StopFailed: If ComfyUI is still reachable afterwards.
        """
        self.session_log.record_key("comfyui.stop.request")
        return await shutdown.terminate(self, self.session_log, self._language(language))

    async def reset(self, request: ResetRequest) -> ResetResult:
        """
        Wipes the ComfyUI directory (see `reset.reset`).

        :raises ResetAborted: If ComfyUI could not be stopped first.
        :raises ResetFailed: On an unexpected error.
        """
        result = await reset.reset(self, request)
        self.versions.invalidate()
        return result

    #* --- Read-only Views ---
    async def get_status(self, language: Optional[str] = None) -> Dict[str, Any]:
        lang = self._language(language)
        running = await self.is_running()
        versions = await self.versions.get_versions()
        start_time = self.identity.start_time
        return {
            "running": running,
            "pid": self.identity.pid,
            "uptime": format_uptime(start_time, lang) if start_time else None,
            "versions": {
                "comfyui": versions.get("comfyui") or "unknown",
                "frontend": versions.get("frontend") or "unknown",
                "app": self.settings.APP_VERSION,
            },
            "gpuMode": get_gpu_mode(self.settings.GPU_MODE_ENV),
        }

    def get_logs(self, language: Optional[str] = None) -> List[str]:
        """The session log rendered in `language`."""
        return self.session_log.render(self._language(language))

    def get_reset_logs(self, language: Optional[str] = None) -> Dict[str, Any]:
        """The reset log rendered in `language`, rehydrated from disk after a restart."""
        lang = self._language(language)
        logs = self.reset_log.render(lang)
        if not logs:
            return {"success": True, "message": translate("comfyui.reset.no_logs", lang), "logs": []}
        return {
            "success": True,
            "message": translate("comfyui.reset.logs_retrieved", lang, {"count": len(logs)}),
            "logs": logs,
        }
