"""
Logging module for the application.
This module provides the system logging setup and the localized, in-memory
log recorders that back the session and reset logs.
"""

from .setup import setup_logging
from .recorder import LogRecorder, PersistentLogRecorder

__all__ = ["setup_logging", "LogRecorder", "PersistentLogRecorder"]
