import asyncio
import inspect
import random
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from inspector_client.errors import (
    ReportFailedError,
    ReportFetchError,
    ReportWaitCancelledError,
    ReportWaitTimeoutError,
)
from inspector_client.models import BackoffFunc, Report, ReportStatus, ReportWaitOptions

T = TypeVar("T")

ReportFetcher = Callable[[int], Awaitable[Report]]


def linear_backoff(step: float, max_interval: Optional[float] = None) -> BackoffFunc:
    """Grow the interval by ``step`` seconds after every attempt."""

    def backoff(attempt: int, interval: float) -> float:
        nxt = interval + step
        return min(nxt, max_interval) if max_interval is not None else nxt

    return backoff


def exponential_backoff(
    factor: float = 2.0, max_interval: float = 32.0, jitter: bool = False
) -> BackoffFunc:
    """Multiply the interval by ``factor`` up to ``max_interval``, with optional jitter"""

    def backoff(attempt: int, interval: float) -> float:
        delay = min(interval * factor, max_interval)

        # Add random jitter between 0-20% of the delay
        if jitter:
            delay *= 1 + 0.2 * random.random()
        return delay

    return backoff


class _Aborted(Exception):
    def __init__(self, cancelled: bool):
        self.cancelled = cancelled


class ReportWaiter:
    """Polls a report until it is READY or ERROR.

    ``sleep`` and ``clock`` are injectable so the polling loop can be driven
    without real time passing. Waiting is bounded by the options' timeout and
    by an optional ``asyncio.Event`` that the caller sets to cancel.

    ``clock`` and ``sleep`` must share one time base. The time left on the
    deadline, as read from ``clock``, is also the real-time bound applied to
    each fetch, progress callback and sleep.
    """

    def __init__(
        self,
        fetch_report: ReportFetcher,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._fetch_report = fetch_report
        self._sleep = sleep
        self._clock = clock
        self.logger = logger

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    def _remaining(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return deadline - self._now()

    async def _bounded(
        self,
        aw: Awaitable[T],
        deadline: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> T:
        """Await ``aw`` unless the deadline passes or ``cancel_event`` is set first."""
        task = asyncio.ensure_future(aw)
        waiters = {task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        remaining = self._remaining(deadline)
        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=max(remaining, 0) if remaining is not None else None,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            pending = [waiter for waiter in waiters if not waiter.done()]
            for waiter in pending:
                waiter.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if task in done:
            return task.result()
        raise _Aborted(cancelled=cancel_task is not None and cancel_task in done)

    def _check(self, deadline: Optional[float], cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise _Aborted(cancelled=True)
        remaining = self._remaining(deadline)
        if remaining is not None and remaining <= 0:
            raise _Aborted(cancelled=False)

    async def _notify_progress(
        self,
        options: ReportWaitOptions,
        report: Report,
        deadline: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        if options.on_progress is None:
            return
        try:
            result = options.on_progress(report)
            if inspect.isawaitable(result):
                await self._bounded(result, deadline, cancel_event)
        except _Aborted:
            raise
        except Exception:
            self.logger.opt(exception=True).warning(
                f"Progress callback failed for report {report.id}, continuing"
            )

    async def wait(
        self,
        report_id: int,
        options: Optional[ReportWaitOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Report:
        """Poll ``report_id`` until it reaches a terminal status"""
        options = (options or ReportWaitOptions()).with_defaults()
        timeout = options.deadline_seconds
        deadline = self._now() + timeout if timeout is not None else None

        interval = options.interval
        attempt = 1
        while True:
            try:
                self._check(deadline, cancel_event)
                try:
                    report = await self._bounded(
                        self._fetch_report(report_id), deadline, cancel_event
                    )
                except _Aborted:
                    raise
                except Exception as e:
                    self.logger.error(f"Error polling report {report_id}: {e}")
                    raise ReportFetchError(report_id, attempt) from e

                self.logger.debug(
                    f"Report {report_id} attempt {attempt}: status {report.status}"
                )
                if report.status == ReportStatus.READY:
                    self.logger.info(f"Report {report_id} is ready after {attempt} attempt(s)")
                    return report
                if report.status == ReportStatus.ERROR:
                    self.logger.warning(f"Report {report_id} finished with status ERROR")
                    raise ReportFailedError(report_id, report.status)

                await self._notify_progress(options, report, deadline, cancel_event)

                await self._wait_before_retry(interval, deadline, cancel_event)

                if options.backoff is not None:
                    interval = options.backoff(attempt, interval)
                attempt += 1
            except _Aborted as aborted:
                if aborted.cancelled:
                    self.logger.info(f"Waiting for report {report_id} cancelled")
                    raise ReportWaitCancelledError(report_id, attempt) from None
                self.logger.warning(f"Waiting for report {report_id} timed out")
                raise ReportWaitTimeoutError(report_id, attempt, timeout) from None

    async def _wait_before_retry(
        self,
        interval: float,
        deadline: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        if interval <= 0:
            # still yield so a non-positive interval cannot starve the loop
            await self._sleep(0)
            return

        self._check(deadline, cancel_event)
        remaining = self._remaining(deadline)
        delay = min(interval, remaining) if remaining is not None else interval
        self.logger.debug(f"Report still pending, waiting {delay:.2f}s before next attempt")
        await self._bounded(self._sleep(delay), deadline, cancel_event)
