"""
Event delivery for job progress notifications.

Sinks receive JobEvents synchronously and must not block: emission happens on
the orchestrator's event loop between step awaits. The EventBus fans events
out to subscribers in emission order, keeping a bounded history so recent
streams can be replayed. Subscriber failures are logged and never reach the emitter.

JobEventStream stamps events for one job: it owns the per-job sequence
counter, so every event of a job is totally ordered by `seq`.

Usage:
    bus = EventBus()
    bus.subscribe(lambda event: print(event.describe()))

    stream = JobEventStream(job.id, bus)
    stream.emit(EventType.STEP_STARTED, step_id="analyze", attempt=1)
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from typing import Any, Optional

from chakravarti.schemas import EventType, JobEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[JobEvent], None]

DEFAULT_MAX_HISTORY = 10_000


class EventSink(ABC):
    """Receives job events. emit() is fire-and-forget."""

    @abstractmethod
    def emit(self, event: JobEvent) -> None:
        pass


class NullEventSink(EventSink):
    """Discards every event."""

    def emit(self, event: JobEvent) -> None:
        return None


class CollectingEventSink(EventSink):
    """Keeps every event in a list (for tests and post-run inspection)."""

    def __init__(self) -> None:
        self.events: list[JobEvent] = []

    def emit(self, event: JobEvent) -> None:
        self.events.append(event)

    def of_type(self, *types: EventType) -> list[JobEvent]:
        return [e for e in self.events if e.type in types]

    def clear(self) -> None:
        self.events.clear()


class LoggingEventSink(EventSink):
    """Writes events to the `chakravarti.events` logger."""

    def __init__(self, level: int = logging.INFO, log: Optional[logging.Logger] = None):
        self._level = level
        self._log = log or logger

    def emit(self, event: JobEvent) -> None:
        level = self._level
        if event.type == EventType.STEP_FAILED:
            level = max(level, logging.WARNING)
        self._log.log(
            level,
            "[%s #%d] %s",
            event.job_id,
            event.seq,
            event.describe(),
            extra={"event": event.type.value, "metadata": event.to_dict()},
        )


class EventBus(EventSink):
    """
    Fan-out sink with replayable history.

    Appends are serialized with a lock so emissions from several jobs (or
    threads) never interleave within the history or a subscriber's view.
    Each subscriber sees each event at most once. History keeps the latest
    `max_history` events; older ones are dropped.
    """

    def __init__(self, keep_history: bool = True, max_history: int = DEFAULT_MAX_HISTORY):
        if max_history < 1:
            raise ValueError("max_history must be >= 1")
        self._lock = threading.RLock()
        self._subscribers: list[Subscriber] = []
        self._history: deque[JobEvent] = deque(maxlen=max_history)
        self._keep_history = keep_history

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a subscriber.

        Returns:
            A function that removes the subscriber
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def subscribe_queue(self, queue: "asyncio.Queue[JobEvent]") -> Callable[[], None]:
        """Deliver events into an asyncio.Queue (dropped when the queue is full)."""
        return self.subscribe(queue.put_nowait)

    def emit(self, event: JobEvent) -> None:
        with self._lock:
            if self._keep_history:
                self._history.append(event)
            subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(event)
                except Exception:
                    logger.exception("Event subscriber failed on %s #%d", event.type.value, event.seq)

    def history(self, job_id: Optional[str] = None) -> list[JobEvent]:
        """Events emitted so far, optionally for a single job."""
        with self._lock:
            if job_id is None:
                return list(self._history)
            return [e for e in self._history if e.job_id == job_id]

    def replay(self, callback: Subscriber, job_id: Optional[str] = None) -> int:
        """Feed recorded history to a callback. Returns the number of events replayed."""
        events = self.history(job_id)
        for event in events:
            callback(event)
        return len(events)


class JobEventStream:
    """
    Stamps and emits events for a single job.

    Owns the job's sequence counter; seq starts at 1 and increases by one per
    event.
    """

    def __init__(self, job_id: str, sink: Optional[EventSink] = None):
        self.job_id = job_id
        self._sink = sink or NullEventSink()
        self._seq = 0

    @property
    def last_seq(self) -> int:
        return self._seq

    def emit(self, event_type: EventType, **payload: Any) -> JobEvent:
        self._seq += 1
        event = JobEvent(
            type=event_type,
            job_id=self.job_id,
            seq=self._seq,
            payload={k: v for k, v in payload.items() if v is not None},
        )
        try:
            self._sink.emit(event)
        except Exception:
            logger.exception("Event sink failed on %s #%d", event_type.value, event.seq)
        return event
