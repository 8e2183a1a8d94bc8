from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from docsweep.core.errors import AlreadyRunningError


class BatchGuard:
    """Allows one batch run at a time; a second caller is rejected, not queued."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: str | None = None

    @property
    def active_batch(self) -> str | None:
        return self._active

    def is_running(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, batch_name: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise AlreadyRunningError(
                f"Cannot start {batch_name}: a {self._active or 'batch'} run is already in progress."
            )
        self._active = batch_name
        try:
            yield
        finally:
            self._active = None
            self._lock.release()
