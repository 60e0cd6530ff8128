"""
Event stream sources.

A source yields typed events lazily, in order, exactly once. Restarting means
opening a new source over the same input.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from salvo.core.events import BattleEnd, Event, EventDecodeError, UnknownEvent, decode_event

logger = logging.getLogger(__name__)


class EventSource(ABC):
    """Lazy, finite, ordered sequence of events."""

    @abstractmethod
    def next(self) -> Event | None:
        """Return the next event, or None once the stream is exhausted."""

    def __iter__(self) -> Iterator[Event]:
        while True:
            event = self.next()
            if event is None:
                return
            yield event


class IterableEventSource(EventSource):
    """Wraps an in-memory sequence (or any iterable) of events."""

    def __init__(self, events: Iterable[Event]):
        self._iter = iter(events)

    def next(self) -> Event | None:
        return next(self._iter, None)


def _fallback_timestamp(record: Any) -> float:
    if not isinstance(record, dict):
        return 0.0
    try:
        return float(record.get("timestamp", 0.0) or 0.0)
    except (TypeError, ValueError):
        return 0.0


def _decode_line(line: bytes | str, path: Path, line_no: int) -> Event | None:
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning(f"{path.name}:{line_no}: invalid UTF-8 ({e.reason}), skipping")
            return UnknownEvent(timestamp=0.0, tag="invalid_utf8", malformed=True)
    line = line.strip()
    if not line:
        return None
    record: Any = None
    try:
        record = json.loads(line)
        return decode_event(record)
    except json.JSONDecodeError as e:
        logger.warning(f"{path.name}:{line_no}: invalid JSON ({e.msg}), skipping")
        return UnknownEvent(timestamp=0.0, tag="invalid_json", malformed=True)
    except EventDecodeError as e:
        logger.warning(f"{path.name}:{line_no}: {e}")
        is_object = isinstance(record, dict)
        return UnknownEvent(
            timestamp=_fallback_timestamp(record),
            tag=str(record.get("kind", "")) if is_object else "invalid_record",
            payload=record if is_object else {},
            malformed=True,
        )


class JsonLinesEventSource(EventSource):
    """
    Reads a decoded event log written as JSON lines.

    Malformed lines are logged and surfaced as malformed ``UnknownEvent``s so
    that reconstruction counts them instead of aborting.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Event log not found: {self.path}")
        self._file = None
        self._line_no = 0

    def next(self) -> Event | None:
        if self._file is None:
            self._file = open(self.path, "rb")
        for line in self._file:
            self._line_no += 1
            event = _decode_line(line, self.path, self._line_no)
            if event is not None:
                return event
        self.close()
        return None

    def close(self) -> None:
        if self._file is not None and not self._file.closed:
            self._file.close()

    def __enter__(self) -> JsonLinesEventSource:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class TailingEventSource(EventSource):
    """
    Follows a JSON-lines event log that is still being written.

    Stops when ``cancel`` is set, after a ``battle_end`` record has been read,
    or when no new data arrives for ``idle_timeout`` seconds.
    """

    def __init__(
        self,
        path: Path | str,
        cancel: threading.Event | None = None,
        poll_interval: float = 0.25,
        idle_timeout: float | None = 30.0,
    ):
        self.path = Path(path)
        self.cancel = cancel or threading.Event()
        self.poll_interval = poll_interval
        self.idle_timeout = idle_timeout
        self._offset = 0
        self._buffer = b""
        self._line_no = 0
        self._pending: list[Event] = []
        self._done = False

    def stop(self) -> None:
        self.cancel.set()

    def _read_available(self) -> bool:
        """Read whatever complete lines are available; True if any were read."""
        if not self.path.exists():
            return False
        with open(self.path, "rb") as f:
            f.seek(self._offset)
            chunk = f.read()
            self._offset = f.tell()
        if not chunk:
            return False
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        for line in lines:
            self._line_no += 1
            event = _decode_line(line, self.path, self._line_no)
            if event is not None:
                self._pending.append(event)
        return bool(lines)

    def next(self) -> Event | None:
        if self._pending:
            return self._take()
        if self._done:
            # Pick up records flushed right after battle_end (late results)
            if not self.cancel.is_set() and self._read_available() and self._pending:
                return self._take()
            return None

        idle_since = time.monotonic()
        while not self.cancel.is_set():
            if self._read_available() and self._pending:
                return self._take()
            if self.idle_timeout is not None and time.monotonic() - idle_since > self.idle_timeout:
                logger.info(f"No new events in {self.path.name} for {self.idle_timeout}s, stopping")
                break
            self.cancel.wait(self.poll_interval)

        self._done = True
        return None

    def _take(self) -> Event:
        event = self._pending.pop(0)
        if isinstance(event, BattleEnd):
            self._done = True
        return event
