import asyncio
import time

import pytest
from inspector_client.errors import (
    FetchError,
    ReportFailedError,
    ReportFetchError,
    ReportWaitCancelledError,
    ReportWaitTimeoutError,
    TerminalJobError,
    WaitAbortedError,
)
from inspector_client.models import Report, ReportStatus, ReportWaitOptions
from inspector_client.waiter import ReportWaiter, exponential_backoff, linear_backoff

NOT_READY = ReportStatus.NOT_READY.value
READY = ReportStatus.READY.value
ERROR = ReportStatus.ERROR.value


class FakeReports:
    """Returns reports with the given statuses in order, repeating the last one."""

    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.calls = 0

    async def __call__(self, report_id):
        status = self.statuses[min(self.calls, len(self.statuses) - 1)]
        self.calls += 1
        return Report(id=report_id, status=status, json=[{"count": self.calls}])


class FakeClock:
    """Virtual time: sleeping only advances ``now``."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_waiter(fetch, clock):
    return ReportWaiter(fetch, sleep=clock.sleep, clock=clock)


@pytest.mark.asyncio
async def test_returns_ready_report_after_two_suspensions(clock):
    """Interval=2s, Timeout=60s, [NOT_READY, NOT_READY, READY]."""
    fetch = FakeReports(NOT_READY, NOT_READY, READY)
    progress = []

    report = await make_waiter(fetch, clock).wait(
        42,
        ReportWaitOptions(interval=2.0, timeout=60.0, on_progress=progress.append),
    )

    assert report.status == READY
    assert report.id == 42
    assert report.json_data == [{"count": 3}]
    assert clock.sleeps == [2.0, 2.0]
    assert fetch.calls == 3
    assert [r.status for r in progress] == [NOT_READY, NOT_READY]
    assert [r.json_data for r in progress] == [[{"count": 1}], [{"count": 2}]]


@pytest.mark.asyncio
async def test_ready_on_first_attempt_never_sleeps(clock):
    fetch = FakeReports(READY)
    progress = []

    report = await make_waiter(fetch, clock).wait(
        1, ReportWaitOptions(on_progress=progress.append)
    )

    assert report.is_ready
    assert clock.sleeps == []
    assert progress == []


@pytest.mark.asyncio
async def test_error_status_raises_and_returns_no_report(clock):
    fetch = FakeReports(NOT_READY, ERROR, READY)
    progress = []

    with pytest.raises(ReportFailedError) as exc_info:
        await make_waiter(fetch, clock).wait(
            7, ReportWaitOptions(on_progress=progress.append)
        )

    assert isinstance(exc_info.value, TerminalJobError)
    assert exc_info.value.report_id == 7
    assert exc_info.value.status == ERROR
    assert "7" in str(exc_info.value)
    assert fetch.calls == 2
    assert len(progress) == 1


@pytest.mark.asyncio
async def test_deadline_shorter_than_poll_sequence_times_out(clock):
    fetch = FakeReports(NOT_READY, NOT_READY, NOT_READY, NOT_READY, READY)

    with pytest.raises(ReportWaitTimeoutError) as exc_info:
        await make_waiter(fetch, clock).wait(
            3, ReportWaitOptions(interval=2.0, timeout=5.0)
        )

    assert isinstance(exc_info.value, TimeoutError)
    assert isinstance(exc_info.value, WaitAbortedError)
    assert not isinstance(exc_info.value, FetchError)
    assert fetch.calls == 3
    # the last suspension is cut to the remaining time, never past the deadline
    assert clock.sleeps == [2.0, 2.0, 1.0]
    assert clock.now == 5.0


@pytest.mark.asyncio
async def test_backoff_recomputes_interval_after_each_attempt(clock):
    fetch = FakeReports(NOT_READY, NOT_READY, NOT_READY, READY)
    calls = []

    def double(attempt, interval):
        calls.append((attempt, interval))
        return interval * 2

    await make_waiter(fetch, clock).wait(
        1, ReportWaitOptions(interval=1.0, timeout=0, backoff=double)
    )

    assert clock.sleeps == [1.0, 2.0, 4.0]
    assert calls == [(1, 1.0), (2, 2.0), (3, 4.0)]


@pytest.mark.asyncio
async def test_progress_callback_errors_do_not_abort_polling(clock):
    fetch = FakeReports(NOT_READY, NOT_READY, READY)
    seen = []

    def broken(report):
        seen.append(report.status)
        raise RuntimeError("callback bug")

    report = await make_waiter(fetch, clock).wait(
        1, ReportWaitOptions(on_progress=broken)
    )

    assert report.is_ready
    assert seen == [NOT_READY, NOT_READY]


@pytest.mark.asyncio
async def test_async_progress_callback_is_awaited(clock):
    fetch = FakeReports(NOT_READY, READY)
    seen = []

    async def on_progress(report):
        await asyncio.sleep(0)
        seen.append(report.status)

    await make_waiter(fetch, clock).wait(1, ReportWaitOptions(on_progress=on_progress))

    assert seen == [NOT_READY]


@pytest.mark.asyncio
async def test_fetch_error_is_wrapped_with_attempt_and_not_retried(clock):
    calls = 0

    async def fetch(report_id):
        nonlocal calls
        calls += 1
        if calls == 2:
            raise ConnectionError("connection reset")
        return Report(id=report_id, status=NOT_READY)

    with pytest.raises(ReportFetchError) as exc_info:
        await make_waiter(fetch, clock).wait(9, ReportWaitOptions(interval=1.0))

    assert exc_info.value.report_id == 9
    assert exc_info.value.attempt == 2
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert calls == 2


@pytest.mark.asyncio
async def test_unknown_status_is_not_terminal(clock):
    fetch = FakeReports("PROCESSING", READY)

    report = await make_waiter(fetch, clock).wait(1)

    assert report.is_ready
    assert clock.sleeps == [2.0]


@pytest.mark.asyncio
async def test_zero_interval_and_timeout_fall_back_to_defaults(clock):
    fetch = FakeReports(*([NOT_READY] * 40), READY)

    with pytest.raises(ReportWaitTimeoutError) as exc_info:
        await make_waiter(fetch, clock).wait(1, ReportWaitOptions(interval=0, timeout=0))

    assert exc_info.value.timeout == 60.0
    assert set(clock.sleeps) == {2.0}
    assert clock.now == 60.0


@pytest.mark.asyncio
@pytest.mark.parametrize("timeout", [None, -1.0])
async def test_non_positive_timeout_waits_without_deadline(clock, timeout):
    fetch = FakeReports(*([NOT_READY] * 100), READY)

    report = await make_waiter(fetch, clock).wait(
        1, ReportWaitOptions(interval=5.0, timeout=timeout)
    )

    assert report.is_ready
    assert fetch.calls == 101
    assert clock.now == 500.0


@pytest.mark.asyncio
async def test_negative_interval_polls_immediately_but_yields(clock):
    fetch = FakeReports(NOT_READY, NOT_READY, READY)

    report = await make_waiter(fetch, clock).wait(
        1, ReportWaitOptions(interval=-1.0, timeout=10.0)
    )

    assert report.is_ready
    assert clock.sleeps == [0, 0]


@pytest.mark.asyncio
async def test_negative_interval_still_honors_cancellation(clock):
    cancel = asyncio.Event()
    fetch = FakeReports(NOT_READY)
    seen = []

    def on_progress(report):
        seen.append(report)
        if len(seen) == 3:
            cancel.set()

    with pytest.raises(ReportWaitCancelledError):
        await make_waiter(fetch, clock).wait(
            1,
            ReportWaitOptions(interval=-1.0, timeout=None, on_progress=on_progress),
            cancel_event=cancel,
        )

    assert fetch.calls == 3


@pytest.mark.asyncio
async def test_cancel_event_set_before_first_fetch(clock):
    cancel = asyncio.Event()
    cancel.set()
    fetch = FakeReports(READY)

    with pytest.raises(ReportWaitCancelledError) as exc_info:
        await make_waiter(fetch, clock).wait(1, cancel_event=cancel)

    assert exc_info.value.attempt == 1
    assert not isinstance(exc_info.value, TimeoutError)
    assert fetch.calls == 0


@pytest.mark.asyncio
async def test_cancel_event_interrupts_suspension():
    cancel = asyncio.Event()
    fetch = FakeReports(NOT_READY)
    waiter = ReportWaiter(fetch)
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    started = time.monotonic()
    with pytest.raises(ReportWaitCancelledError):
        await waiter.wait(1, ReportWaitOptions(interval=10.0, timeout=30.0), cancel)

    assert time.monotonic() - started < 5.0
    assert fetch.calls == 1


@pytest.mark.asyncio
async def test_deadline_interrupts_real_sleep():
    fetch = FakeReports(NOT_READY)
    waiter = ReportWaiter(fetch)

    started = time.monotonic()
    with pytest.raises(ReportWaitTimeoutError):
        await waiter.wait(1, ReportWaitOptions(interval=10.0, timeout=0.1))

    assert time.monotonic() - started < 5.0


@pytest.mark.asyncio
async def test_deadline_bounds_a_hanging_fetch():
    async def hanging_fetch(report_id):
        await asyncio.sleep(10)
        return Report(id=report_id, status=READY)

    waiter = ReportWaiter(hanging_fetch)

    with pytest.raises(ReportWaitTimeoutError):
        await waiter.wait(1, ReportWaitOptions(interval=1.0, timeout=0.1))


@pytest.mark.asyncio
async def test_task_cancellation_propagates():
    waiter = ReportWaiter(FakeReports(NOT_READY))
    task = asyncio.ensure_future(
        waiter.wait(1, ReportWaitOptions(interval=10.0, timeout=None))
    )
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_deadline_bounds_a_hanging_progress_callback():
    async def stuck_callback(report):
        await asyncio.sleep(10)

    waiter = ReportWaiter(FakeReports(NOT_READY))

    started = time.monotonic()
    with pytest.raises(ReportWaitTimeoutError):
        await waiter.wait(
            1, ReportWaitOptions(interval=0.01, timeout=0.1, on_progress=stuck_callback)
        )

    assert time.monotonic() - started < 5.0


@pytest.mark.asyncio
async def test_cancel_event_interrupts_a_hanging_progress_callback():
    cancel = asyncio.Event()
    entered = []

    async def stuck_callback(report):
        entered.append(report.id)
        await asyncio.sleep(10)

    waiter = ReportWaiter(FakeReports(NOT_READY))
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    started = time.monotonic()
    with pytest.raises(ReportWaitCancelledError):
        await waiter.wait(
            1,
            ReportWaitOptions(interval=0.01, timeout=None, on_progress=stuck_callback),
            cancel,
        )

    assert time.monotonic() - started < 5.0
    assert entered == [1]


@pytest.mark.asyncio
async def test_injected_clock_remaining_time_bounds_a_hanging_fetch(clock):
    async def hanging_fetch(report_id):
        await asyncio.sleep(10)
        return Report(id=report_id, status=READY)

    started = time.monotonic()
    with pytest.raises(ReportWaitTimeoutError):
        await make_waiter(hanging_fetch, clock).wait(
            1, ReportWaitOptions(interval=1.0, timeout=0.1)
        )

    assert time.monotonic() - started < 5.0


@pytest.mark.asyncio
async def test_abandoned_fetch_is_cleaned_up_before_returning():
    cleaned = []

    async def fetch_with_cleanup(report_id):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            await asyncio.sleep(0)
            cleaned.append(report_id)
            raise RuntimeError("connection torn down")
        return Report(id=report_id, status=READY)

    waiter = ReportWaiter(fetch_with_cleanup)

    with pytest.raises(ReportWaitTimeoutError):
        await waiter.wait(5, ReportWaitOptions(interval=1.0, timeout=0.1))

    assert cleaned == [5]


def test_wait_options_are_immutable():
    options = ReportWaitOptions()
    with pytest.raises(Exception):
        options.interval = 5.0


def test_linear_backoff():
    backoff = linear_backoff(1.5, max_interval=4.0)
    assert backoff(1, 2.0) == 3.5
    assert backoff(2, 3.5) == 4.0
    assert linear_backoff(1.0)(1, 10.0) == 11.0


def test_exponential_backoff():
    backoff = exponential_backoff(factor=3.0, max_interval=8.0)
    assert backoff(1, 1.0) == 3.0
    assert backoff(2, 3.0) == 8.0


def test_exponential_backoff_jitter_stays_within_twenty_percent():
    backoff = exponential_backoff(factor=2.0, max_interval=32.0, jitter=True)
    for attempt in range(1, 20):
        delay = backoff(attempt, 1.0)
        assert 2.0 <= delay <= 2.4
