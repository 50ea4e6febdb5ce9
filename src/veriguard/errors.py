"""Failure taxonomy shared by the lookup, scan and reasoning layers."""

from __future__ import annotations


class VeriGuardError(Exception):
    """Base class for failures surfaced to callers."""


class InputReadError(VeriGuardError):
    """Artifact bytes could not be read."""


class PolicyRejected(VeriGuardError):
    """A URL was refused by the local scanning policy."""

    def __init__(self, reason: str, url: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.url = url


class CredentialsMissing(VeriGuardError):
    """An external service was called without a configured API key."""

    def __init__(self, service: str) -> None:
        super().__init__(f"{service} API key is missing")
        self.service = service


class TransientFailure(VeriGuardError):
    """Network or service error talking to an upstream API."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReasoningUnavailable(TransientFailure):
    """The reasoning model call failed."""


class ScanTimedOut(VeriGuardError):
    """Polling for an analysis exhausted its wait budget."""

    def __init__(self, submission_id: str, waited: float, polls: int) -> None:
        super().__init__(
            f"Analysis {submission_id} did not complete within {waited:.0f}s "
            f"({polls} polls) - please check back later"
        )
        self.submission_id = submission_id
        self.waited = waited
        self.polls = polls


class MalformedUpstreamResponse(VeriGuardError):
    """Reasoning output could not be decoded; absorbed by the normalizer."""
