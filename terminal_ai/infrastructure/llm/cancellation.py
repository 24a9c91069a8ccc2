"""
Cancellation token for a dispatch.

A token can be cancelled from another thread, from a SIGINT handler running on
the dispatching thread itself, or by a deadline. The orchestrator checks it
before each attempt, sleeps on it between retries, and registers open
responses so cancel() can close them.

All state sits behind one RLock, so cancel() may re-enter while the
interrupted code holds the lock. Callbacks are drained one at a time and each
runs exactly once.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import suppress
from typing import Callable, List, Optional

from terminal_ai.providers.exceptions import DispatchCancelled

logger = logging.getLogger(__name__)


class CancelToken:
    def __init__(self, timeout: Optional[float] = None) -> None:
        self._lock = threading.RLock()
        self._cond = threading.Condition(self._lock)
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._timer: Optional[threading.Timer] = None
        if timeout is not None:
            # Fires cancel() at the deadline so blocked reads get their connection closed
            self._timer = threading.Timer(max(0.0, timeout), self.cancel)
            self._timer.daemon = True
            self._timer.start()

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel()
            return True
        return False

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._cond.notify_all()
        self._drain()

    def dispose(self) -> None:
        """Stop the deadline timer without cancelling."""
        if self._timer is not None:
            self._timer.cancel()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register callback to run on cancel(). Runs immediately if already cancelled.
        Returns a function that unregisters it.
        """
        with self._lock:
            self._callbacks.append(callback)
        if self._cancelled:
            self._drain()

        def _unregister() -> None:
            with self._lock, suppress(ValueError):
                self._callbacks.remove(callback)

        return _unregister

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds; returns True early if cancelled."""
        if seconds > 0:
            with self._cond:
                self._cond.wait_for(lambda: self._cancelled, timeout=seconds)
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise DispatchCancelled("dispatch cancelled")

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._callbacks:
                    return
                cb = self._callbacks.pop(0)
            try:
                cb()
            except Exception as e:  # noqa: BLE001
                logger.debug(f"Cancel callback failed: {e}")
