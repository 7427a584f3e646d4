"""query_guard.py
~~~~~~~~~~~~~~~~~
Single-flight guard: at most one fetch cycle runs at a time.

Policy is *drop-latest-if-busy*: a trigger arriving while a cycle is in
flight is discarded, never queued.

Usage
-----
>>> guard = QueryGuard()
>>> with guard.slot() as acquired:
...     if acquired:
...         ...  # run the fetch cycle

``try_enter()`` / ``exit()`` are the bare form for callers that never live
across :meth:`QueryGuard.reset`.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Iterator

LOG = logging.getLogger("query_guard")


class QueryGuard:
    def __init__(self, lock: threading.Lock | None = None) -> None:
        self._lock = lock or threading.Lock()
        self._held = False
        # Bumped by reset(); a holder from an older epoch must not release
        # a slot taken after the reset.
        self._epoch = 0

    @property
    def busy(self) -> bool:
        return self._held

    def _enter(self) -> int | None:
        with self._lock:
            if self._held:
                return None
            self._held = True
            return self._epoch

    def _release(self, epoch: int) -> None:
        with self._lock:
            if epoch == self._epoch:
                self._held = False

    def try_enter(self) -> bool:
        """Non-blocking acquire. ``False`` immediately when already held."""
        return self._enter() is not None

    def exit(self) -> None:
        """
        Release the slot taken by a successful :meth:`try_enter`.

        Not epoch-aware: a holder that acquired before :meth:`reset` and
        exits after a new holder took the slot frees that new slot. Code
        that may outlive a reset must use :meth:`slot` instead. Once the
        slot was reset and not retaken, a stale ``exit()`` raises
        ``RuntimeError``.
        """
        with self._lock:
            if not self._held:
                raise RuntimeError("QueryGuard.exit() called without a held slot")
            self._held = False

    @contextlib.contextmanager
    def slot(self) -> Iterator[bool]:
        """Scoped acquire; the slot is released on every exit path."""
        epoch = self._enter()
        if epoch is None:
            LOG.debug("[guard] query in flight, trigger dropped")
            yield False
            return
        try:
            yield True
        finally:
            self._release(epoch)

    def reset(self) -> None:
        """Free the slot for a new session; holders from :meth:`slot` are fenced off."""
        with self._lock:
            self._held = False
            self._epoch += 1


__all__ = ["QueryGuard"]
