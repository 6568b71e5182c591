# events.py
"""
Progress events emitted by the runner.

Events are purely observational: the runner behaves the same whichever
sink is attached, including none. Sinks may be called from worker threads
when a script has concurrent groups.
"""
from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol, Union


@dataclass(frozen=True)
class LogLine:
    line: str
    is_error: bool = False


@dataclass(frozen=True)
class CommandStarted:
    command: str


@dataclass(frozen=True)
class CommandFinished:
    command: str
    exit_code: Optional[int]  # None when no process exit status exists


Event = Union[LogLine, CommandStarted, CommandFinished]


class EventSink(Protocol):
    def emit(self, event: Event) -> None:
        ...


class NullSink:
    """Drops every event."""

    def emit(self, event: Event) -> None:
        pass


class RecordingSink:
    """Keeps every event in order. Handy in tests."""

    def __init__(self):
        self.events: List[Event] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, kind: type) -> List[Event]:
        with self._lock:
            return [e for e in self.events if isinstance(e, kind)]

    @property
    def started_commands(self) -> List[str]:
        return [e.command for e in self.of_type(CommandStarted)]


class QueueSink:
    """
    Puts events on a queue for a renderer running on another thread.

    `close()` enqueues None so the consumer knows the run is over.
    """

    def __init__(self, maxsize: int = 0):
        self.queue: "queue.Queue[Optional[Event]]" = queue.Queue(maxsize=maxsize)

    def emit(self, event: Event) -> None:
        self.queue.put(event)

    def close(self) -> None:
        self.queue.put(None)

    def drain(self) -> List[Event]:
        """Everything queued so far, without blocking."""
        out: List[Event] = []
        while True:
            try:
                item = self.queue.get_nowait()
            except queue.Empty:
                return out
            if item is not None:
                out.append(item)


class Emitter:
    """Thin helper the runner uses to talk to a sink."""

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink: EventSink = sink if sink is not None else NullSink()

    def log(self, line: str, is_error: bool = False) -> None:
        self.sink.emit(LogLine(line=line, is_error=is_error))

    def lines(self, text: str, is_error: bool = False) -> None:
        for line in text.splitlines():
            self.log(line, is_error=is_error)

    def started(self, command: str) -> None:
        self.sink.emit(CommandStarted(command=command))

    def finished(self, command: str, exit_code: Optional[int]) -> None:
        self.sink.emit(CommandFinished(command=command, exit_code=exit_code))
