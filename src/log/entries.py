"""
Log entry types and their one-line text form.

An entry is either literal text or a translation key plus parameters that is
rendered at read time in whatever language the reader asks for.
"""
import re
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

TRANSLATION_KEY_RE = re.compile(r"^[a-z0-9_]+(?:\.[a-z0-9_]+)+$")
LINE_RE = re.compile(r"^\[(.*?)\]\s*(ERROR:\s*)?(.*)$")
PERSISTED_KEY_RE = re.compile(r"^([a-z0-9_]+(?:\.[a-z0-9_]+)+)(?:\s+(\{.*\}))?$")


def is_translation_key(message: str) -> bool:
    """True for a dotted lowercase identifier without spaces (e.g. 'comfyui.reset.started')."""
    return bool(message) and bool(TRANSLATION_KEY_RE.match(message))


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T10:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class LiteralEntry:
    """A log entry holding already-final text."""
    timestamp: str
    text: str
    is_error: bool = False


@dataclass(frozen=True)
class TemplatedEntry:
    """
    A log entry rendered at read time from a translation key.

    `text` is the raw message given at record time. It is what the system log
    received and is used to recover parameters when none were stored.
    """
    timestamp: str
    key: str
    params: Optional[Dict[str, Any]] = None
    text: str = ""
    is_error: bool = False


LogEntry = Union[LiteralEntry, TemplatedEntry]


def serialize_entry(entry: LogEntry) -> str:
    """
    Formats an entry as one plain-text line.

    Templated entries are written as their key, followed by their parameters
    as compact JSON when they have any.
    """
    prefix = "ERROR: " if entry.is_error else ""
    if isinstance(entry, TemplatedEntry):
        body = entry.key
        if entry.params:
            body += " " + json.dumps(entry.params, ensure_ascii=False, separators=(",", ":"), default=str)
    else:
        body = entry.text
    body = body.replace("\r", " ").replace("\n", " ")
    return f"[{entry.timestamp}] {prefix}{body}"


def parse_line(line: str) -> LogEntry:
    """Parses a line written by `serialize_entry` back into an entry."""
    match = LINE_RE.match(line)
    if not match:
        return LiteralEntry(timestamp="", text=line)

    timestamp, is_error, body = match.group(1), bool(match.group(2)), match.group(3)
    keyed = PERSISTED_KEY_RE.match(body)
    if keyed:
        params = None
        if keyed.group(2):
            try:
                params = json.loads(keyed.group(2))
            except json.JSONDecodeError:
                return LiteralEntry(timestamp=timestamp, text=body, is_error=is_error)
        return TemplatedEntry(timestamp=timestamp, key=keyed.group(1), params=params, is_error=is_error)
    return LiteralEntry(timestamp=timestamp, text=body, is_error=is_error)
