"""
In-memory, size-bounded log buffers with deferred localization.

Entries keep a translation key plus its parameters instead of pre-rendered
text, so the same entries can be rendered in any display language on read.
"""
import logging
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from src.log.entries import LiteralEntry, LogEntry, TemplatedEntry, parse_line, serialize_entry, utc_timestamp
from src.log.render import render, translate

log = logging.getLogger(__name__)


class LogRecorder:
    """
    An append-only, bounded log buffer. Once `capacity` is reached the oldest
    entry is evicted for every new one.
    """

    def __init__(self, capacity: int = 10000, name: str = "session", default_language: str = "zh") -> None:
        """
        :param capacity: Maximum number of entries kept in memory.
        :param name: Stream name, used for the system logger name.
        :param default_language: Language of the raw text mirrored to the system log.
        """
        self.capacity = capacity
        self.name = name
        self.default_language = default_language
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)
        self._system_log = logging.getLogger(f"{__name__}.{name}")

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, message: str, is_error: bool = False,
               translation_key: Optional[str] = None,
               params: Optional[Dict[str, Any]] = None,
               logger: Optional[logging.Logger] = None) -> LogEntry:
        """
        Appends an entry and mirrors the raw message to the system log.

        :param message: Raw message text (default-language rendering).
        :param is_error: Whether the entry has error severity.
        :param translation_key: Optional key used to localize the entry on read.
        :param params: Optional parameters for the key's template.
        :param logger: Logger the raw message is mirrored to, defaults to the recorder's own.
        :return: The stored entry.
        """
        timestamp = utc_timestamp()
        if translation_key:
            entry: LogEntry = TemplatedEntry(
                timestamp=timestamp,
                key=translation_key,
                params=dict(params) if params else None,
                text=message,
                is_error=is_error,
            )
        else:
            entry = LiteralEntry(timestamp=timestamp, text=message, is_error=is_error)

        self._entries.append(entry)
        (logger or self._system_log).log(logging.ERROR if is_error else logging.INFO, message)
        return entry

    def record_key(self, key: str, params: Optional[Dict[str, Any]] = None, is_error: bool = False) -> LogEntry:
        """Records a translation key, using its default-language rendering as the raw message."""
        message = translate(key, self.default_language, params)
        return self.record(message, is_error=is_error, translation_key=key, params=params)

    def entries(self) -> List[LogEntry]:
        """Returns a snapshot of the stored entries, oldest first."""
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def render(self, language: str) -> List[str]:
        """Renders all stored entries for a display language."""
        return render(self.entries(), language)


class PersistentLogRecorder(LogRecorder):
    """
    A LogRecorder mirrored to an append-only text file, one line per entry.

    The file survives restarts: when the in-memory buffer is empty, the
    entries are rehydrated from it on read. Clearing truncates the file.
    """

    def __init__(self, file_path: Path, capacity: int = 10000, name: str = "reset",
                 default_language: str = "zh") -> None:
        super().__init__(capacity=capacity, name=name, default_language=default_language)
        self.file_path = Path(file_path)

    def record(self, message: str, is_error: bool = False,
               translation_key: Optional[str] = None,
               params: Optional[Dict[str, Any]] = None,
               logger: Optional[logging.Logger] = None) -> LogEntry:
        entry = super().record(message, is_error, translation_key, params, logger)
        self._append_to_file(entry)
        return entry

    def clear(self) -> None:
        """Clears the in-memory buffer and truncates (does not delete) the file."""
        super().clear()
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            self.file_path.write_text("", encoding="utf-8")
        except OSError as e:
            log.error(f"Failed to clear log file '{self.file_path}': {e}")

    def entries(self) -> List[LogEntry]:
        if not self._entries:
            self._rehydrate()
        return super().entries()

    def _append_to_file(self, entry: LogEntry) -> None:
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            with self.file_path.open("a", encoding="utf-8") as f:
                f.write(serialize_entry(entry) + "\n")
        except OSError as e:
            log.error(f"Failed to write log file '{self.file_path}': {e}")

    def _rehydrate(self) -> None:
        """Loads entries back from the file after a restart."""
        if not self.file_path.exists():
            return
        try:
            lines = self.file_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            log.error(f"Failed to read log file '{self.file_path}': {e}")
            return
        for line in lines:
            if line.strip():
                self._entries.append(parse_line(line))
        if self._entries:
            log.debug(f"Rehydrated {len(self._entries)} entries from '{self.file_path}'.")
