from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Callable

from docsweep.domain.models.progress import (
    EVENT_COMPLETED,
    EVENT_PROGRESS,
    EVENT_STARTED,
    BatchProgress,
    ProgressEvent,
)

logger = logging.getLogger(__name__)


class ProgressSubscription:
    """One observer's mailbox on a channel.

    The mailbox holds at most one undelivered event; a newer event replaces an
    older one, so a slow observer sees coalesced snapshots and the producer
    never waits. With a callback, delivery happens on a daemon thread owned by
    the subscription. Without one, the observer pulls with ``get``.
    """

    def __init__(
        self,
        channel_name: str,
        callback: Callable[[ProgressEvent], None] | None = None,
    ) -> None:
        self.channel_name = channel_name
        self._callback = callback
        self._cond = threading.Condition()
        self._pending: ProgressEvent | None = None
        self._completed: ProgressEvent | None = None
        self._closed = False
        self._worker: threading.Thread | None = None
        if callback is not None:
            self._worker = threading.Thread(
                target=self._deliver_loop,
                daemon=True,
                name=f"progress-{channel_name}",
            )
            self._worker.start()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def offer(self, event: ProgressEvent) -> None:
        with self._cond:
            if self._closed:
                return
            self._pending = event
            if self._callback is None and event.type == EVENT_COMPLETED:
                self._completed = event
            self._cond.notify_all()

    def get(self, timeout: float | None = None) -> ProgressEvent | None:
        """Take the latest undelivered event, waiting up to ``timeout`` seconds; None on timeout or close."""
        with self._cond:
            self._cond.wait_for(lambda: self._pending is not None or self._closed, timeout)
            event = self._pending
            self._pending = None
            return event

    def wait_until_completed(self, timeout: float | None = None) -> ProgressEvent | None:
        with self._cond:
            self._cond.wait_for(lambda: self._completed is not None or self._closed, timeout)
            return self._completed

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        worker = self._worker
        if worker is not None and worker is not threading.current_thread() and worker.is_alive():
            worker.join(timeout=2.0)

    def _deliver_loop(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._pending is not None or self._closed)
                event = self._pending
                self._pending = None
                if event is None:
                    return
            try:
                self._callback(event)
            except Exception:
                logger.exception("Progress observer failed on channel %s", self.channel_name)
            if event.type == EVENT_COMPLETED:
                with self._cond:
                    self._completed = event
                    self._cond.notify_all()


class ProgressChannel:
    """Named fan-out of batch progress events without history or backpressure."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._subscriptions: list[ProgressSubscription] = []

    def subscribe(
        self,
        callback: Callable[[ProgressEvent], None] | None = None,
    ) -> ProgressSubscription:
        subscription = ProgressSubscription(self.name, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: ProgressSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        subscription.close()

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            targets = list(self._subscriptions)
        for subscription in targets:
            subscription.offer(event)

    def emit(self, event_type: str, progress: BatchProgress) -> ProgressEvent:
        # Observers get a copy; the producer keeps mutating its own progress.
        event = ProgressEvent(type=event_type, channel=self.name, progress=replace(progress))
        self.publish(event)
        return event


class BatchProgressTracker:
    """Running counters, percent and ETA for one batch, published to an optional channel."""

    def __init__(
        self,
        channel: ProgressChannel | None,
        total: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.channel = channel
        self.progress = BatchProgress(total=total)
        self._clock = clock
        self._elapsed_seconds = 0.0
        self._item_started_at: float | None = None

    def start(self) -> None:
        self._emit(EVENT_STARTED)

    def begin_item(self, item_id: str) -> None:
        self.progress.current_item_id = item_id
        self._item_started_at = self._clock()
        self._emit(EVENT_PROGRESS)

    def end_item(self, *, succeeded: bool) -> None:
        if self._item_started_at is not None:
            self._elapsed_seconds += max(0.0, self._clock() - self._item_started_at)
            self._item_started_at = None
        if succeeded:
            self.progress.processed += 1
        else:
            self.progress.failed += 1
        self._recompute()
        self._emit(EVENT_PROGRESS)

    def skip_item(self) -> None:
        # The item vanished or was claimed elsewhere after the snapshot.
        self.progress.total = max(self.progress.attempted, self.progress.total - 1)
        self._recompute()

    def finish(self) -> BatchProgress:
        self.progress.current_item_id = None
        self.progress.progress_percent = 100
        self.progress.estimated_remaining_seconds = 0.0
        self._emit(EVENT_COMPLETED)
        return replace(self.progress)

    def _recompute(self) -> None:
        attempted = self.progress.attempted
        total = self.progress.total
        if total <= 0:
            self.progress.progress_percent = 100
            self.progress.estimated_remaining_seconds = 0.0
            return
        percent = int(round(100 * attempted / total))
        self.progress.progress_percent = max(self.progress.progress_percent, min(100, percent))
        remaining = max(0, total - attempted)
        mean_seconds = self._elapsed_seconds / attempted if attempted else 0.0
        self.progress.estimated_remaining_seconds = mean_seconds * remaining

    def _emit(self, event_type: str) -> None:
        if self.channel is not None:
            self.channel.emit(event_type, self.progress)
