"""Periodic refresh driver running on the asyncio event loop."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from quota_sentinel.core import SchedulerError, SchedulerState

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Union[Awaitable[Any], Any]]
IntervalProvider = Callable[[], float]


class RefreshScheduler:
    """Invokes a callback every ``interval`` seconds, never overlapping.

    A single timer task sleeps for the interval, runs the callback to
    completion, then arms the next sleep. The interval is re-read before
    every arming; a value ``<= 0`` leaves the scheduler idle. Errors raised
    by the callback are logged and the loop continues.

    ``start``/``stop`` called while a tick is running do not interrupt it:
    the running tick re-arms with the newest callback, or not at all after
    ``stop``.

    Parameters
    ----------
    interval : float | Callable[[], float]
        Seconds between the end of one tick and the start of the next, or a
        callable returning it.
    """

    def __init__(self, interval: float | IntervalProvider) -> None:
        if callable(interval):
            self._interval: IntervalProvider = interval
        else:
            fixed = float(interval)
            self._interval = lambda: fixed
        self._callback: RefreshCallback | None = None
        self._task: asyncio.Task | None = None
        self._in_callback = False
        self.last_error: BaseException | None = None

    # --- State ---

    @property
    def state(self) -> SchedulerState:
        if self._task is not None and not self._task.done():
            return SchedulerState.SCHEDULED
        return SchedulerState.IDLE

    @property
    def is_running(self) -> bool:
        return self.state == SchedulerState.SCHEDULED

    @property
    def callback(self) -> RefreshCallback | None:
        return self._callback

    def current_interval(self) -> float:
        return float(self._interval())

    # --- Control ---

    def start(self, callback: RefreshCallback) -> None:
        """Install ``callback`` and arm the timer with the current interval.

        Must be called from within a running event loop.
        """
        self._callback = callback
        if self._in_callback:
            return
        self._cancel_timer()
        self._arm()

    def restart(self) -> None:
        """Re-arm with the current callback, picking up a changed interval."""
        if self._callback is None:
            return
        self.start(self._callback)

    def stop(self) -> None:
        """Cancel any pending tick. Idempotent; safe before ``start``."""
        self._callback = None
        if not self._in_callback:
            self._cancel_timer()
        logger.debug("Scheduler stopped")

    async def close(self) -> None:
        """Stop and wait for a tick that is already running to finish."""
        task = self._task
        self.stop()
        if task is not None and not task.done() and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def trigger(self) -> bool:
        """Run the callback once now, outside the timer.

        Returns ``True`` on success. A failure is logged, stored in
        ``last_error``, and reported as ``False``.
        """
        callback = self._callback
        if callback is None:
            logger.debug("Trigger ignored, no callback installed")
            return False
        try:
            await self._invoke(callback)
        except Exception as e:
            self.last_error = e
            logger.exception("Manual refresh failed")
            return False
        self.last_error = None
        return True

    # --- Internals ---

    def _arm(self) -> None:
        if self._callback is None:
            return
        interval = self.current_interval()
        if interval <= 0:
            logger.info("Auto refresh disabled (interval %s)", interval)
            self._task = None
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise SchedulerError(
                "RefreshScheduler.start() requires a running event loop",
                context={"interval": interval},
            ) from e
        self._task = loop.create_task(self._tick(interval))
        logger.debug("Next refresh in %.1fs", interval)

    def _cancel_timer(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _tick(self, interval: float) -> None:
        await asyncio.sleep(interval)
        callback = self._callback
        if callback is None:
            return
        self._in_callback = True
        try:
            await self._invoke(callback)
            self.last_error = None
        except Exception as e:
            self.last_error = e
            logger.exception("Scheduled refresh failed")
        finally:
            self._in_callback = False
        if self._task is asyncio.current_task():
            self._arm()

    @staticmethod
    async def _invoke(callback: RefreshCallback) -> None:
        result = callback()
        if inspect.isawaitable(result):
            await result
