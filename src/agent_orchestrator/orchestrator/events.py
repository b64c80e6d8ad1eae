"""Lifecycle event fan-out to observers.

``publish`` only enqueues. Every observer has its own queue and delivery
thread, so a slow or failing observer never blocks a transition or another
observer. A failing observer is retried up to ``max_delivery_attempts``.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from agent_orchestrator.orchestrator.models import TaskEvent

logger = logging.getLogger(__name__)

Observer = Callable[[TaskEvent], None]

_STOP = object()


@dataclass(slots=True)
class NotifierStats:
    """Delivery counters."""

    published: int = 0
    delivered: int = 0
    redelivered: int = 0
    dropped: int = 0


class _Subscription:
    """One observer with its own delivery queue and thread."""

    def __init__(self, notifier: EventNotifier, observer: Observer, *, name: str) -> None:
        self.observer = observer
        self.queue: queue.Queue[object] = queue.Queue()
        self._notifier = notifier
        self.thread = threading.Thread(target=self._loop, daemon=True, name=name)
        self.thread.start()

    def _loop(self) -> None:
        while True:
            item = self.queue.get()
            if item is _STOP:
                return
            if isinstance(item, threading.Event):
                item.set()
            elif isinstance(item, TaskEvent):
                self._notifier._deliver_to(self.observer, item)


class EventNotifier:
    """At-least-once, fire-and-forget event publisher."""

    def __init__(self, *, max_delivery_attempts: int = 3, name: str = "event-notifier") -> None:
        if max_delivery_attempts < 1:
            raise ValueError("max_delivery_attempts must be >= 1")
        self.max_delivery_attempts = max_delivery_attempts
        self.name = name
        self.stats = NotifierStats()
        self._subscriptions: dict[int, _Subscription] = {}
        self._next_token = 0
        self._lock = threading.Lock()
        self._closed = False

    def subscribe(self, observer: Observer) -> int:
        """Register an observer; returns a token for ``unsubscribe``."""

        with self._lock:
            if self._closed:
                raise RuntimeError("Cannot subscribe to a closed notifier.")
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(
                self,
                observer,
                name=f"{self.name}-{token}",
            )
            return token

    def unsubscribe(self, token: int) -> None:
        """Stop delivering to an observer once its queued events are handled."""

        with self._lock:
            subscription = self._subscriptions.pop(token, None)
        if subscription is not None:
            subscription.queue.put(_STOP)

    def publish(self, event: TaskEvent) -> None:
        """Enqueue an event for every observer; never raises on observer failure."""

        with self._lock:
            if self._closed:
                logger.warning(
                    "Notifier closed; event %s for task %s not published",
                    event.event_type.value,
                    event.task_id,
                )
                return
            self.stats.published += 1
            for subscription in self._subscriptions.values():
                subscription.queue.put(event)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every observer has handled every published event.

        Returns ``False`` on timeout, and at once when the notifier is closed.
        """

        with self._lock:
            if self._closed:
                return False
            markers = []
            for subscription in self._subscriptions.values():
                marker = threading.Event()
                subscription.queue.put(marker)
                markers.append(marker)
        deadline = None if timeout is None else time.monotonic() + timeout
        for marker in markers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not marker.wait(timeout=remaining):
                return False
        return True

    def close(self, timeout: float = 5.0) -> None:
        """Deliver what is queued, then stop every delivery thread."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        deadline = time.monotonic() + timeout
        for subscription in subscriptions:
            subscription.queue.put(_STOP)
        for subscription in subscriptions:
            subscription.thread.join(timeout=max(0.0, deadline - time.monotonic()))

    def __enter__(self) -> EventNotifier:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _deliver_to(self, observer: Observer, event: TaskEvent) -> None:
        for attempt in range(1, self.max_delivery_attempts + 1):
            try:
                observer(event)
            except Exception:
                if attempt >= self.max_delivery_attempts:
                    logger.exception(
                        "Observer %r gave up on %s for task %s after %d attempts",
                        observer,
                        event.event_type.value,
                        event.task_id,
                        attempt,
                    )
                    with self._lock:
                        self.stats.dropped += 1
                    return
                logger.warning(
                    "Observer %r failed on %s for task %s (attempt %d), redelivering",
                    observer,
                    event.event_type.value,
                    event.task_id,
                    attempt,
                )
                with self._lock:
                    self.stats.redelivered += 1
                continue
            with self._lock:
                self.stats.delivered += 1
            return


class RecordingObserver:
    """Observer that keeps every event it receives, in order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[TaskEvent] = []

    def __call__(self, event: TaskEvent) -> None:
        with self._lock:
            self.events.append(event)

    def event_types_for(self, task_id: str) -> list[str]:
        with self._lock:
            return [event.event_type.value for event in self.events if event.task_id == task_id]
