"""
Plain data types shared by the supervisor modules.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional


@dataclass
class AppIdentity:
    """
    Best-effort cache of the managed application's real PID and start time.

    The PID may belong to a grandchild of the startup script, so it is
    discovered out-of-band and may go stale without notice.
    """
    pid: Optional[int] = None
    start_time: Optional[datetime] = None

    def set(self, pid: Optional[int], start_time: Optional[datetime] = None) -> None:
        self.pid = pid
        if start_time is not None:
            self.start_time = start_time

    def clear(self) -> None:
        self.pid = None
        self.start_time = None


class ResetMode(str, Enum):
    NORMAL = "normal"
    HARD = "hard"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ResetMode":
        """Maps a request value to a mode. Anything other than 'hard' is NORMAL."""
        if isinstance(value, cls):
            return value
        if value and str(value).strip().lower() == cls.HARD.value:
            return cls.HARD
        return cls.NORMAL


@dataclass(frozen=True)
class ResetRequest:
    language: str
    mode: ResetMode = ResetMode.NORMAL


@dataclass(frozen=True)
class StartResult:
    pid: Optional[int]
    message: str
    logs: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class StopResult:
    message: str
    forced: bool = False


@dataclass(frozen=True)
class ResetResult:
    message: str
    logs: List[str] = field(default_factory=list)


class WipeStatus(str, Enum):
    DELETED = "deleted"
    PRESERVED = "preserved"
    FAILED = "failed"


@dataclass(frozen=True)
class WipeOutcome:
    """What happened to one top-level entry during a directory wipe."""
    path: Path
    status: WipeStatus
    reason: Optional[str] = None
    is_dir: bool = False
