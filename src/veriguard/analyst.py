from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .config import Settings, get_settings
from .context import (
    MEDIA_SCHEMA,
    THREAT_SCHEMA,
    build_email_prompt,
    build_fact_check_prompt,
    build_file_prompt,
    build_media_prompt,
    build_url_prompt,
    reputation_block,
)
from .errors import CredentialsMissing, TransientFailure
from .factcheck import FactCheckRegistry
from .fingerprint import fingerprint
from .models import (
    FactCheckOutcome,
    MediaAuthenticityOutcome,
    ReputationReport,
    ResourceKind,
    ThreatAssessmentOutcome,
    UrlValidation,
)
from .normalizer import (
    apply_escalation_policy,
    normalize_fact_check_text,
    normalize_media_json,
    normalize_threat_json,
    normalize_threat_text,
)
from .reasoning import GeminiClient, MediaPart, ReasoningClient
from .scanner import ReputationScanner
from .url_policy import ensure_url_allowed, validate_url_for_scanning
from .virustotal import VirusTotalClient

logger = logging.getLogger(__name__)


@dataclass
class SecurityAnalyst:
    """Runs each request through lookup, context building, reasoning and normalization."""

    reasoning: ReasoningClient
    scanner: ReputationScanner
    registry: FactCheckRegistry
    settings: Settings = field(default_factory=get_settings)

    @property
    def threshold(self) -> int:
        return self.settings.malicious_escalation_threshold

    def validate_url(self, url: str) -> UrlValidation:
        return validate_url_for_scanning(url)

    async def check_fact(self, statement: str) -> FactCheckOutcome:
        registry = await self.registry.search(statement)
        prompt = build_fact_check_prompt(statement, registry.context)
        result = await self.reasoning.generate(prompt, use_search=True)
        outcome = normalize_fact_check_text(
            result.text,
            registry_sources=registry.sources,
            citations=result.citations,
        )
        logger.info("Fact check verdict %s with %d sources", outcome.verdict.value, len(outcome.sources))
        return outcome

    async def analyze_email(self, text: str) -> ThreatAssessmentOutcome:
        result = await self.reasoning.generate(build_email_prompt(text), response_schema=THREAT_SCHEMA)
        return normalize_threat_json(result.text)

    async def analyze_url(self, url: str, *, deep_scan: bool = True) -> ThreatAssessmentOutcome:
        ensure_url_allowed(url)
        if deep_scan:
            report = await self.scanner.scan_url(url)
            available = True
        else:
            report, available = await self._quick_lookup(url, ResourceKind.URL)
        prompt = build_url_prompt(url, reputation_block(report, available=available, threshold=self.threshold))
        result = await self.reasoning.generate(prompt, use_search=True)
        return self._finish_threat(result.text, report)

    async def analyze_file(
        self,
        content: bytes,
        filename: str,
        mime_type: str | None = None,
        *,
        deep_scan: bool = True,
    ) -> ThreatAssessmentOutcome:
        if deep_scan:
            report = await self.scanner.scan_file(content, filename)
            available = True
        else:
            report, available = await self._quick_lookup(fingerprint(content), ResourceKind.FILE)
        reputation = reputation_block(report, available=available, threshold=self.threshold)
        prompt = build_file_prompt(filename, len(content), mime_type, reputation)
        result = await self.reasoning.generate(prompt)
        return self._finish_threat(result.text, report)

    async def analyze_media(self, content: bytes, mime_type: str) -> MediaAuthenticityOutcome:
        result = await self.reasoning.generate(
            build_media_prompt(),
            response_schema=MEDIA_SCHEMA,
            media=MediaPart(data=content, mime_type=mime_type),
        )
        return normalize_media_json(result.text)

    async def _quick_lookup(self, resource: str, kind: ResourceKind) -> tuple[ReputationReport | None, bool]:
        try:
            return await self.scanner.lookup(resource, kind), True
        except (CredentialsMissing, TransientFailure) as exc:
            logger.warning("Reputation lookup unavailable, continuing without it: %s", exc)
            return None, False

    def _finish_threat(self, text: str, report: ReputationReport | None) -> ThreatAssessmentOutcome:
        counts = report.counts if report else None
        outcome = normalize_threat_text(
            text,
            counts=counts,
            report_link=report.reference_link if report else None,
        )
        if self.settings.enforce_verdict_escalation:
            outcome = apply_escalation_policy(outcome, counts, self.threshold)
        logger.info("Threat verdict %s (score %d)", outcome.verdict.value, outcome.score)
        return outcome


def build_analyst() -> SecurityAnalyst:
    return SecurityAnalyst(
        reasoning=GeminiClient(),
        scanner=ReputationScanner(VirusTotalClient()),
        registry=FactCheckRegistry(),
    )
