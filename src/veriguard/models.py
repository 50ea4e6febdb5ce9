from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ResourceKind(str, Enum):
    FILE = "FILE"
    URL = "URL"


class FactVerdict(str, Enum):
    TRUE = "TRUE"
    FALSE = "FALSE"
    UNCERTAIN = "UNCERTAIN"


class ThreatVerdict(str, Enum):
    SAFE = "SAFE"
    SUSPICIOUS = "SUSPICIOUS"
    MALICIOUS = "MALICIOUS"


class MediaVerdict(str, Enum):
    LIKELY_REAL = "LIKELY_REAL"
    LIKELY_FAKE = "LIKELY_FAKE"
    UNCERTAIN = "UNCERTAIN"


class AnalysisCounts(BaseModel):
    """Engine outcome tallies; all four categories are always present."""

    model_config = ConfigDict(frozen=True)

    malicious: int = Field(0, ge=0)
    suspicious: int = Field(0, ge=0)
    harmless: int = Field(0, ge=0)
    undetected: int = Field(0, ge=0)

    @classmethod
    def from_stats(cls, stats: Any) -> "AnalysisCounts":
        if not isinstance(stats, dict):
            return cls()
        values = {}
        for key in ("malicious", "suspicious", "harmless", "undetected"):
            raw = stats.get(key)
            try:
                values[key] = max(0, int(raw or 0))
            except (TypeError, ValueError):
                values[key] = 0
        return cls(**values)

    @property
    def total(self) -> int:
        return self.malicious + self.suspicious + self.harmless + self.undetected

    @property
    def malicious_ratio(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.malicious / self.total * 100


class EngineFinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    detected: bool = False
    label: str = ""


class ReputationReport(BaseModel):
    """A reputation-store verdict for one file or URL."""

    model_config = ConfigDict(frozen=True)

    resource_id: str
    kind: ResourceKind
    scan_timestamp: datetime | None = None
    counts: AnalysisCounts = Field(default_factory=AnalysisCounts)
    per_engine_findings: dict[str, EngineFinding] = Field(default_factory=dict)
    reference_link: str

    @property
    def detections(self) -> dict[str, EngineFinding]:
        return {name: finding for name, finding in self.per_engine_findings.items() if finding.detected}


class PendingSubmission(BaseModel):
    model_config = ConfigDict(frozen=True)

    submission_id: str
    resource_id: str
    kind: ResourceKind
    started_at: float


class UrlValidation(BaseModel):
    valid: bool
    reason: str | None = None


class GroundingSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    uri: str


class FactCheckRecord(BaseModel):
    claim: str
    publisher: str
    rating: str
    url: str | None = None
    title: str | None = None


class GenerationResult(BaseModel):
    text: str = ""
    citations: list[GroundingSource] = Field(default_factory=list)


class FactCheckOutcome(BaseModel):
    verdict: FactVerdict = FactVerdict.UNCERTAIN
    explanation: str
    sources: list[GroundingSource] = Field(default_factory=list)


class ThreatAssessmentOutcome(BaseModel):
    # Not clamped: the model is only instructed to stay within 0-100.
    score: int = 50
    verdict: ThreatVerdict = ThreatVerdict.SUSPICIOUS
    narrative: str
    actions: list[str] = Field(default_factory=list)
    reputation_counts: AnalysisCounts | None = None
    report_link: str | None = None

    @property
    def display_score(self) -> int:
        return max(0, min(100, self.score))


class MediaAuthenticityOutcome(BaseModel):
    verdict: MediaVerdict = MediaVerdict.UNCERTAIN
    confidence: int = 0
    narrative: str
    visual_findings: list[str] = Field(default_factory=list)
    audio_findings: list[str] = Field(default_factory=list)
