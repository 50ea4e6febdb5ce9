from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx

from .config import get_settings
from .errors import CredentialsMissing, TransientFailure
from .models import (
    AnalysisCounts,
    EngineFinding,
    PendingSubmission,
    ReputationReport,
    ResourceKind,
)
from .url_policy import ensure_url_allowed, url_identifier

logger = logging.getLogger(__name__)

_COLLECTIONS = {ResourceKind.FILE: "files", ResourceKind.URL: "urls"}
_GUI_SEGMENTS = {ResourceKind.FILE: "file", ResourceKind.URL: "url"}


class VirusTotalClient:
    """Read/submit access to the VirusTotal v3 API.

    ``lookup`` returns ``None`` when the store has never seen the resource;
    every other upstream failure is raised as ``TransientFailure``.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        gui_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.virustotal_api_key
        self._base_url = (base_url or settings.virustotal_base_url).rstrip("/")
        self._gui_url = (gui_url or settings.virustotal_gui_url).rstrip("/")
        self._timeout = timeout or settings.http_timeout
        self._transport = transport
        self._clock = clock

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def lookup(self, resource: str, kind: ResourceKind) -> ReputationReport | None:
        if kind is ResourceKind.URL:
            ensure_url_allowed(resource)
            resource_id = url_identifier(resource)
        else:
            resource_id = resource.lower()
        path = f"/{_COLLECTIONS[kind]}/{resource_id}"
        payload = await self._request("GET", path, allow_missing=True)
        if payload is None:
            logger.info("VirusTotal has no %s report for %s", kind.value, resource_id)
            return None
        data = payload.get("data") or {}
        attributes = data.get("attributes") or {}
        report_id = data.get("id") or resource_id
        return ReputationReport(
            resource_id=report_id,
            kind=kind,
            scan_timestamp=_epoch(attributes.get("last_analysis_date")),
            counts=AnalysisCounts.from_stats(attributes.get("last_analysis_stats")),
            per_engine_findings=_findings(attributes.get("last_analysis_results")),
            reference_link=self.report_link(report_id, kind),
        )

    async def submit_file(self, content: bytes, filename: str, resource_id: str) -> PendingSubmission:
        files = {"file": (filename or "upload.bin", content)}
        payload = await self._request("POST", "/files", files=files)
        return self._pending(payload, resource_id, ResourceKind.FILE)

    async def submit_url(self, url: str) -> PendingSubmission:
        ensure_url_allowed(url)
        payload = await self._request("POST", "/urls", data={"url": url})
        return self._pending(payload, url_identifier(url), ResourceKind.URL)

    async def fetch_analysis(self, pending: PendingSubmission) -> ReputationReport:
        payload = await self._request("GET", f"/analyses/{pending.submission_id}")
        data = (payload or {}).get("data") or {}
        attributes = data.get("attributes") or {}
        return ReputationReport(
            resource_id=pending.resource_id,
            kind=pending.kind,
            scan_timestamp=_epoch(attributes.get("date")),
            counts=AnalysisCounts.from_stats(attributes.get("stats")),
            per_engine_findings=_findings(attributes.get("results")),
            reference_link=self.report_link(pending.resource_id, pending.kind),
        )

    def report_link(self, resource_id: str, kind: ResourceKind) -> str:
        return f"{self._gui_url}/{_GUI_SEGMENTS[kind]}/{resource_id}"

    def _pending(self, payload: dict[str, Any] | None, resource_id: str, kind: ResourceKind) -> PendingSubmission:
        submission_id = ((payload or {}).get("data") or {}).get("id")
        if not submission_id:
            raise TransientFailure("VirusTotal submission returned no analysis id")
        logger.info("Submitted %s %s as analysis %s", kind.value, resource_id, submission_id)
        return PendingSubmission(
            submission_id=submission_id,
            resource_id=resource_id,
            kind=kind,
            started_at=self._clock(),
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        if not self._api_key:
            raise CredentialsMissing("VirusTotal")
        headers = {"x-apikey": self._api_key, "Accept": "application/json"}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.request(method, f"{self._base_url}{path}", headers=headers, **kwargs)
            except httpx.HTTPError as exc:
                logger.error("VirusTotal %s %s failed: %s", method, path, exc)
                raise TransientFailure(f"VirusTotal request failed: {exc}") from exc
        if response.status_code == 404 and allow_missing:
            return None
        if response.is_error:
            logger.error("VirusTotal %s %s returned %s", method, path, response.status_code)
            raise TransientFailure(
                f"VirusTotal {method} {path} failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientFailure("VirusTotal returned a non-JSON body", status_code=response.status_code) from exc
        return payload if isinstance(payload, dict) else {}


def _epoch(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _findings(results: Any) -> dict[str, EngineFinding]:
    if not isinstance(results, dict):
        return {}
    findings: dict[str, EngineFinding] = {}
    for engine, entry in results.items():
        if not isinstance(entry, dict):
            continue
        category = entry.get("category") or ""
        if "detected" in entry:
            detected = bool(entry["detected"])
        else:
            detected = category in ("malicious", "suspicious")
        findings[engine] = EngineFinding(detected=detected, label=entry.get("result") or category)
    return findings
