import asyncio

import pytest

from veriguard.errors import PolicyRejected, ScanTimedOut, TransientFailure
from veriguard.fingerprint import fingerprint
from veriguard.models import AnalysisCounts, PendingSubmission, ReputationReport, ResourceKind
from veriguard.scanner import TERMINAL_STATES, ReputationScanner, ScanJob, ScanState


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_report(resource_id="res", kind=ResourceKind.FILE, **counts):
    return ReputationReport(
        resource_id=resource_id,
        kind=kind,
        counts=AnalysisCounts(**counts),
        reference_link=f"https://www.virustotal.com/gui/file/{resource_id}",
    )


class FakeStore:
    """In-memory stand-in for the VirusTotal client."""

    def __init__(self, *, existing=None, complete_after=None, submit_error=None, poll_error=None):
        self.existing = existing
        self.complete_after = complete_after
        self.submit_error = submit_error
        self.poll_error = poll_error
        self.lookups = []
        self.submissions = []
        self.polls = 0

    async def lookup(self, resource, kind):
        self.lookups.append((resource, kind))
        return self.existing

    async def submit_file(self, content, filename, resource_id):
        return self._submit(resource_id, ResourceKind.FILE)

    async def submit_url(self, url):
        return self._submit(url, ResourceKind.URL)

    def _submit(self, resource_id, kind):
        if self.submit_error:
            raise self.submit_error
        self.submissions.append(resource_id)
        return PendingSubmission(submission_id=f"an-{len(self.submissions)}", resource_id=resource_id, kind=kind, started_at=0.0)

    async def fetch_analysis(self, pending):
        self.polls += 1
        if self.poll_error:
            raise self.poll_error
        if self.complete_after is not None and self.polls >= self.complete_after:
            return make_report(pending.resource_id, pending.kind, malicious=7, harmless=60)
        return make_report(pending.resource_id, pending.kind)


def make_scanner(store, clock, **kwargs):
    return ReputationScanner(store, clock=clock, sleep=clock.sleep, **kwargs)


@pytest.mark.asyncio
async def test_found_resource_is_never_submitted():
    clock = FakeClock()
    existing = make_report("abc", malicious=1, harmless=10)
    store = FakeStore(existing=existing)

    report = await make_scanner(store, clock).scan_file(b"hello", "hello.txt")

    assert report is existing
    assert store.lookups == [(fingerprint(b"hello"), ResourceKind.FILE)]
    assert store.submissions == []
    assert store.polls == 0


@pytest.mark.asyncio
async def test_unknown_file_is_submitted_and_polled_until_complete():
    clock = FakeClock()
    store = FakeStore(complete_after=3)

    report = await make_scanner(store, clock, max_wait=300, poll_interval=10).scan_file(b"new", "new.bin")

    assert store.submissions == [fingerprint(b"new")]
    assert store.polls == 3
    assert clock.sleeps == [10, 10]
    assert report.counts.malicious == 7
    assert report.counts.total == 67


@pytest.mark.asyncio
async def test_polling_times_out_at_budget():
    clock = FakeClock()
    store = FakeStore()
    job = ScanJob(store, max_wait=300, poll_interval=10, clock=clock, sleep=clock.sleep)
    await job.submit_url("https://news.example.com/story")
    started = clock.now

    with pytest.raises(ScanTimedOut) as excinfo:
        await job.wait()

    assert store.polls == 30
    assert job.polls == 30
    assert job.state is ScanState.TIMED_OUT
    assert clock.now - started == 300
    assert excinfo.value.polls == 30
    assert job.history == [ScanState.IDLE, ScanState.SUBMITTED, ScanState.POLLING, ScanState.TIMED_OUT]


@pytest.mark.asyncio
async def test_last_sleep_is_trimmed_to_remaining_budget():
    clock = FakeClock()
    store = FakeStore()
    job = ScanJob(store, max_wait=25, poll_interval=10, clock=clock, sleep=clock.sleep)
    await job.submit_file(b"x", "x.bin", "res")
    started = clock.now

    with pytest.raises(ScanTimedOut):
        await job.wait()

    assert clock.now - started == 25
    assert clock.sleeps == [10, 10, 5]
    assert store.polls == 3


class SlowStore(FakeStore):
    """Each poll costs time on the shared clock."""

    def __init__(self, clock, poll_cost):
        super().__init__()
        self.clock = clock
        self.poll_cost = poll_cost

    async def fetch_analysis(self, pending):
        self.clock.now += self.poll_cost
        return await super().fetch_analysis(pending)


@pytest.mark.asyncio
async def test_slow_polls_do_not_overrun_budget():
    clock = FakeClock()
    job = ScanJob(SlowStore(clock, poll_cost=3), max_wait=30, poll_interval=10, clock=clock, sleep=clock.sleep)
    await job.submit_url("https://news.example.com/story")
    started = clock.now

    with pytest.raises(ScanTimedOut):
        await job.wait()

    # polls finish at +3, +16 and +29, leaving one second for the last sleep
    assert clock.sleeps == [10, 10, 1]
    assert clock.now - started == 30
    assert job.state is ScanState.TIMED_OUT


@pytest.mark.asyncio
async def test_budget_is_measured_on_job_clock():
    clock = FakeClock()
    clock.now = 5_000_000.0
    store = FakeStore()
    job = ScanJob(store, max_wait=30, poll_interval=10, clock=clock, sleep=clock.sleep)
    pending = await job.submit_file(b"x", "x.bin", "res")

    assert pending.started_at == 5_000_000.0
    with pytest.raises(ScanTimedOut):
        await job.wait()
    assert store.polls == 3


@pytest.mark.asyncio
async def test_submission_failure_goes_straight_to_failed():
    clock = FakeClock()
    store = FakeStore(submit_error=TransientFailure("quota exceeded", status_code=429))
    scanner = make_scanner(store, clock)

    with pytest.raises(TransientFailure):
        await scanner.scan_url("https://news.example.com/story")
    assert store.polls == 0

    job = scanner.new_job()
    with pytest.raises(TransientFailure):
        await job.submit_url("https://news.example.com/story")
    assert job.state is ScanState.FAILED
    assert isinstance(job.error, TransientFailure)


@pytest.mark.asyncio
async def test_poll_error_fails_without_retry():
    clock = FakeClock()
    store = FakeStore(poll_error=TransientFailure("bad gateway", status_code=502))
    job = ScanJob(store, clock=clock, sleep=clock.sleep)
    await job.submit_file(b"x", "x.bin", "res")

    with pytest.raises(TransientFailure):
        await job.wait()
    assert store.polls == 1
    assert job.state is ScanState.FAILED
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_wait_requires_submission():
    job = ScanJob(FakeStore())
    with pytest.raises(RuntimeError):
        await job.wait()


def test_invalid_budget_rejected():
    with pytest.raises(ValueError):
        ScanJob(FakeStore(), max_wait=0)


@pytest.mark.asyncio
async def test_policy_runs_before_lookup():
    clock = FakeClock()
    store = FakeStore()
    with pytest.raises(PolicyRejected):
        await make_scanner(store, clock).scan_url("http://10.0.0.5/")
    assert store.lookups == []


@pytest.mark.asyncio
async def test_cancellation_between_polls_stops_polling():
    store = FakeStore()
    job = ScanJob(store, max_wait=300, poll_interval=0.01)
    await job.submit_file(b"x", "x.bin", "res")

    task = asyncio.create_task(job.wait())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    polls_at_cancel = store.polls
    await asyncio.sleep(0.05)
    assert store.polls == polls_at_cancel
    assert job.state is ScanState.FAILED
    assert job.state in TERMINAL_STATES
    assert isinstance(job.error, asyncio.CancelledError)
