"""Debounced restoration.

Rendering changes arrive in bursts (a streamed reply re-renders the same
message many times).  Restoration is idempotent, so only the last pass of
a burst matters: every trigger cancels the pending pass and schedules a
new one after a quiet period.
"""

from __future__ import annotations
import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_DELAY = 0.3  # seconds


class RestoreDebouncer:
    """Coalesces triggers into one callback run per quiet period.

    Must be used from within a running event loop.  The callback may be a
    plain function or a coroutine function; a run that is still awaiting
    when a newer trigger fires is cancelled.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[None] | None],
        delay: float = DEFAULT_DELAY,
    ) -> None:
        self.callback = callback
        self.delay = delay
        self.runs = 0
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        """Schedule a run after the quiet period, superseding any earlier one."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _fire(self) -> None:
        self._handle = None
        self.runs += 1
        result = self.callback()
        if inspect.isawaitable(result):
            self._task = asyncio.ensure_future(result)
            self._task.add_done_callback(_log_failure)


def _log_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.debug("superseded restoration pass cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("restoration pass failed: %s", exc)
