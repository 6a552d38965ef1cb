"""
Debounced journal writer.

Bursts of journal mutations coalesce into a single save after a quiet
period. Scheduling a new flush always cancels the previous timer, so at
most one write is ever pending.
"""

import logging
import threading
from typing import Any, Callable, Optional


def _thread_timer(delay: float, callback: Callable[[], None]) -> Any:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class DebouncedWriter:
    """Pending flag + one scheduled flush + explicit force-flush."""

    def __init__(
        self,
        flush_fn: Callable[[], None],
        delay: float = 2.0,
        scheduler: Callable[[float, Callable[[], None]], Any] = _thread_timer,
        lock: Optional[threading.RLock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._flush_fn = flush_fn
        self.delay = delay
        self._scheduler = scheduler
        self.logger = logger or logging.getLogger(__name__)
        # Shared with the owner so timer flushes and mutations never interleave
        self._lock = lock or threading.RLock()
        self._handle = None
        self.pending = False
        self.suspended = False

    def schedule(self) -> None:
        """Mark state dirty and (re)start the quiet-period timer."""
        with self._lock:
            self.pending = True
            if self.suspended:
                return
            self._cancel_timer()
            self._handle = self._scheduler(self.delay, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _on_timer(self) -> None:
        with self._lock:
            self._handle = None
            if not self.pending or self.suspended:
                return
            try:
                self.flush()
            except Exception as exc:
                # Timer threads have no caller to propagate to; stay pending
                self.logger.error(f"Auto-save failed: {exc}")

    def flush(self) -> bool:
        """Write now if anything is pending. Returns True when a write happened."""
        with self._lock:
            self._cancel_timer()
            if not self.pending:
                return False
            self._flush_fn()
            self.pending = False
            return True

    def suspend(self) -> None:
        with self._lock:
            self.suspended = True
            self._cancel_timer()

    def resume(self, flush: bool = True) -> None:
        with self._lock:
            self.suspended = False
            if flush:
                self.flush()
            elif self.pending:
                self._handle = self._scheduler(self.delay, self._on_timer)

    def mark_clean(self) -> None:
        """Forget pending state after an out-of-band save."""
        with self._lock:
            self._cancel_timer()
            self.pending = False

    def cancel(self) -> None:
        """Drop the scheduled flush without writing."""
        with self._lock:
            self._cancel_timer()
