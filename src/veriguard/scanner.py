"""Check-before-submit scanning against the reputation store.

A ``ScanJob`` drives one logical submission through
``IDLE -> SUBMITTED -> POLLING -> COMPLETE | TIMED_OUT | FAILED``.
Clock and sleep are injectable so the wait budget can be exercised
without real delays.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from .config import get_settings
from .errors import ScanTimedOut, VeriGuardError
from .fingerprint import fingerprint
from .models import PendingSubmission, ReputationReport, ResourceKind
from .url_policy import ensure_url_allowed
from .virustotal import VirusTotalClient

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class ScanState(str, Enum):
    IDLE = "IDLE"
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    COMPLETE = "COMPLETE"
    TIMED_OUT = "TIMED_OUT"
    FAILED = "FAILED"


TERMINAL_STATES = frozenset({ScanState.COMPLETE, ScanState.TIMED_OUT, ScanState.FAILED})


@dataclass
class ScanJob:
    client: VirusTotalClient
    max_wait: float = 300.0
    poll_interval: float = 10.0
    clock: Clock = time.monotonic
    sleep: Sleep = asyncio.sleep
    state: ScanState = ScanState.IDLE
    pending: PendingSubmission | None = None
    report: ReputationReport | None = None
    error: BaseException | None = None
    polls: int = 0
    history: list[ScanState] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.max_wait <= 0 or self.poll_interval <= 0:
            raise ValueError("max_wait and poll_interval must be positive")
        self.history.append(self.state)

    async def submit_file(self, content: bytes, filename: str, resource_id: str) -> PendingSubmission:
        return await self._submit(self.client.submit_file(content, filename, resource_id))

    async def submit_url(self, url: str) -> PendingSubmission:
        return await self._submit(self.client.submit_url(url))

    async def wait(self) -> ReputationReport:
        if self.state is not ScanState.SUBMITTED or self.pending is None:
            raise RuntimeError(f"Cannot poll from state {self.state.value}")
        pending = self.pending
        self._transition(ScanState.POLLING)
        try:
            return await self._poll(pending)
        except asyncio.CancelledError as exc:
            self._fail(exc)
            raise

    async def _poll(self, pending: PendingSubmission) -> ReputationReport:
        while self.clock() - pending.started_at < self.max_wait:
            self.polls += 1
            try:
                report = await self.client.fetch_analysis(pending)
            except VeriGuardError as exc:
                self._fail(exc)
                raise
            if report.counts.total > 0:
                self.report = report
                self._transition(ScanState.COMPLETE)
                logger.info(
                    "Analysis %s complete after %d polls: %d/%d malicious",
                    pending.submission_id,
                    self.polls,
                    report.counts.malicious,
                    report.counts.total,
                )
                return report
            remaining = self.max_wait - (self.clock() - pending.started_at)
            if remaining <= 0:
                break
            await self.sleep(min(self.poll_interval, remaining))
        waited = self.clock() - pending.started_at
        self._transition(ScanState.TIMED_OUT)
        logger.warning("Analysis %s timed out after %.0fs", pending.submission_id, waited)
        error = ScanTimedOut(pending.submission_id, waited, self.polls)
        self.error = error
        raise error

    async def _submit(self, call: Awaitable[PendingSubmission]) -> PendingSubmission:
        if self.state is not ScanState.IDLE:
            raise RuntimeError(f"Cannot submit from state {self.state.value}")
        try:
            pending = await call
        except VeriGuardError as exc:
            self._fail(exc)
            raise
        # The wait budget is measured on this job's clock.
        self.pending = pending.model_copy(update={"started_at": self.clock()})
        self._transition(ScanState.SUBMITTED)
        return self.pending

    def _fail(self, exc: BaseException) -> None:
        self.error = exc
        self._transition(ScanState.FAILED)
        logger.error("Scan failed in state %s: %s", self.history[-2].value, exc)

    def _transition(self, state: ScanState) -> None:
        self.state = state
        self.history.append(state)


class ReputationScanner:
    """Look up a resource and only submit it when the store has not seen it."""

    def __init__(
        self,
        client: VirusTotalClient,
        *,
        max_wait: float | None = None,
        poll_interval: float | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self.client = client
        self.max_wait = max_wait if max_wait is not None else settings.scan_max_wait
        self.poll_interval = poll_interval if poll_interval is not None else settings.scan_poll_interval
        self._clock = clock
        self._sleep = sleep

    def new_job(self) -> ScanJob:
        return ScanJob(
            self.client,
            max_wait=self.max_wait,
            poll_interval=self.poll_interval,
            clock=self._clock,
            sleep=self._sleep,
        )

    async def lookup(self, resource: str, kind: ResourceKind) -> ReputationReport | None:
        return await self.client.lookup(resource, kind)

    async def scan_file(self, content: bytes, filename: str) -> ReputationReport:
        digest = fingerprint(content)
        existing = await self.client.lookup(digest, ResourceKind.FILE)
        if existing is not None:
            logger.info("Reusing existing report for file %s", digest)
            return existing
        job = self.new_job()
        await job.submit_file(content, filename, digest)
        return await job.wait()

    async def scan_url(self, url: str) -> ReputationReport:
        ensure_url_allowed(url)
        existing = await self.client.lookup(url, ResourceKind.URL)
        if existing is not None:
            logger.info("Reusing existing report for %s", url)
            return existing
        job = self.new_job()
        await job.submit_url(url)
        return await job.wait()
