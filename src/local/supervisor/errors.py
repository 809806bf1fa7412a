"""
Exceptions raised by the supervisor.

Every error carries a human-readable `message` and the log trail (`logs`)
that was recorded up to the failure, so callers can show both.
"""
from typing import List, Optional


class SupervisorError(Exception):
    """Base class for all supervisor failures."""

    def __init__(self, message: str, logs: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.logs: List[str] = list(logs or [])


class AlreadyRunning(SupervisorError):
    """The managed application was already reachable when a start was requested."""

    def __init__(self, message: str, pid: Optional[int] = None, logs: Optional[List[str]] = None) -> None:
        super().__init__(message, logs)
        self.pid = pid


class LaunchFailed(SupervisorError):
    """The startup script could not be spawned."""


class StartTimeout(SupervisorError):
    """The application never became reachable within the allowed number of probes."""


class StopFailed(SupervisorError):
    """The application was still reachable after every kill strategy."""


class ResetAborted(StopFailed):
    """A reset was abandoned because the application could not be stopped. Nothing was deleted."""


class ResetFailed(SupervisorError):
    """A reset failed for an unexpected reason."""


class RecoveryFailed(SupervisorError):
    """One of the post-reset recovery commands failed."""
