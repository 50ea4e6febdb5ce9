"""Turn reasoning-model output into fixed result shapes.

Two decoders are provided. The JSON decoder handles responses produced
against a response schema; the text decoder handles the header-delimited
plain text requested when search grounding is on. Neither raises on bad
input: every field falls back to its documented default.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Any, TypeVar

from .errors import MalformedUpstreamResponse
from .models import (
    AnalysisCounts,
    FactCheckOutcome,
    FactVerdict,
    GroundingSource,
    MediaAuthenticityOutcome,
    MediaVerdict,
    ThreatAssessmentOutcome,
    ThreatVerdict,
)

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 50
DEFAULT_CONFIDENCE = 0
DEFAULT_ACTIONS = ("Proceed with caution.",)
THREAT_UNAVAILABLE = "### Analysis Unavailable\nCould not process the text."
MEDIA_UNAVAILABLE = "Could not process media details."
FACT_UNAVAILABLE = "No explanation was provided."

_SCORE_RE = re.compile(r"(?:\*\*)?Score(?:\*\*)?:(?:\*\*)?\s*(\d+)", re.IGNORECASE)
_NARRATIVE_HEADER_RE = re.compile(
    r"^[ \t]*(?:\*\*)?(?:Analysis|Explanation)(?:\*\*)?:(?:\*\*)?", re.IGNORECASE | re.MULTILINE
)
_ACTIONS_HEADER_RE = re.compile(r"^[ \t]*(?:\*\*)?Recommendations(?:\*\*)?:(?:\*\*)?", re.IGNORECASE | re.MULTILINE)
_BULLET_RE = re.compile(r"^(?:[-*•]|\d+\.)\s*")
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

E = TypeVar("E", bound=Enum)


def _verdict_pattern(enum: type[Enum]) -> re.Pattern[str]:
    tokens = "|".join(sorted((member.value for member in enum), key=len, reverse=True))
    return re.compile(rf"(?:\*\*)?Verdict(?:\*\*)?:(?:\*\*)?\s*\[?\s*({tokens})\b", re.IGNORECASE)


_VERDICT_PATTERNS = {enum: _verdict_pattern(enum) for enum in (FactVerdict, ThreatVerdict, MediaVerdict)}


# Shared field coercion ------------------------------------------------

def _coerce_enum(value: Any, enum: type[E], default: E) -> E:
    if isinstance(value, str):
        try:
            return enum(value.strip().upper())
        except ValueError:
            pass
    return default


def _coerce_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if not isinstance(value, (int, float)):
        return default
    # NaN, inf and overflowing literals all decode from JSON
    if isinstance(value, float) and not math.isfinite(value):
        return default
    return int(round(value))


def _coerce_text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _coerce_lines(value: Any, default: Sequence[str] = ()) -> list[str]:
    if not isinstance(value, list):
        return list(default)
    lines = [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return lines or list(default)


def _decode_object(text: str) -> dict[str, Any]:
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    try:
        payload = json.loads(cleaned)
    except ValueError as exc:
        raise MalformedUpstreamResponse(f"Response is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedUpstreamResponse(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def load_json_object(text: str) -> dict[str, Any]:
    """Decode a JSON object, treating anything unusable as ``{}``."""
    try:
        return _decode_object(text)
    except MalformedUpstreamResponse as exc:
        logger.warning("Falling back to defaults: %s", exc)
        return {}


# Mode A: schema-constrained JSON ---------------------------------------

def normalize_threat_json(
    text: str,
    *,
    counts: AnalysisCounts | None = None,
    report_link: str | None = None,
) -> ThreatAssessmentOutcome:
    payload = load_json_object(text)
    return ThreatAssessmentOutcome(
        score=_coerce_int(payload.get("score"), DEFAULT_SCORE),
        verdict=_coerce_enum(payload.get("verdict"), ThreatVerdict, ThreatVerdict.SUSPICIOUS),
        narrative=_coerce_text(payload.get("analysis"), THREAT_UNAVAILABLE),
        actions=_coerce_lines(payload.get("recommendations"), DEFAULT_ACTIONS),
        reputation_counts=counts,
        report_link=report_link,
    )


def normalize_media_json(text: str) -> MediaAuthenticityOutcome:
    payload = load_json_object(text)
    return MediaAuthenticityOutcome(
        verdict=_coerce_enum(payload.get("verdict"), MediaVerdict, MediaVerdict.UNCERTAIN),
        confidence=_coerce_int(payload.get("confidence"), DEFAULT_CONFIDENCE),
        narrative=_coerce_text(payload.get("technicalDetails"), MEDIA_UNAVAILABLE),
        visual_findings=_coerce_lines(payload.get("visualArtifacts")),
        audio_findings=_coerce_lines(payload.get("audioArtifacts")),
    )


# Mode B: header-delimited text ----------------------------------------

def extract_verdict(text: str, enum: type[E], default: E) -> E:
    pattern = _VERDICT_PATTERNS.get(enum) or _verdict_pattern(enum)
    match = pattern.search(text or "")
    if not match:
        return default
    return _coerce_enum(match.group(1), enum, default)


def extract_score(text: str, default: int = DEFAULT_SCORE) -> int:
    match = _SCORE_RE.search(text or "")
    return int(match.group(1)) if match else default


def extract_narrative(text: str, default: str) -> str:
    text = text or ""
    header = _NARRATIVE_HEADER_RE.search(text)
    if header is None:
        return text.strip() or default
    end = _ACTIONS_HEADER_RE.search(text, header.end())
    body = text[header.end() : end.start() if end else len(text)]
    return body.strip() or default


def extract_actions(text: str, default: Sequence[str] = DEFAULT_ACTIONS) -> list[str]:
    header = _ACTIONS_HEADER_RE.search(text or "")
    if header is None:
        return list(default)
    actions = []
    for line in text[header.end() :].splitlines():
        item = _BULLET_RE.sub("", line.strip()).strip()
        if item:
            actions.append(item)
    return actions or list(default)


def normalize_threat_text(
    text: str,
    *,
    counts: AnalysisCounts | None = None,
    report_link: str | None = None,
) -> ThreatAssessmentOutcome:
    return ThreatAssessmentOutcome(
        score=extract_score(text),
        verdict=extract_verdict(text, ThreatVerdict, ThreatVerdict.SUSPICIOUS),
        narrative=extract_narrative(text, THREAT_UNAVAILABLE),
        actions=extract_actions(text),
        reputation_counts=counts,
        report_link=report_link,
    )


def normalize_fact_check_text(
    text: str,
    *,
    registry_sources: Iterable[GroundingSource] = (),
    citations: Iterable[GroundingSource] = (),
) -> FactCheckOutcome:
    return FactCheckOutcome(
        verdict=extract_verdict(text, FactVerdict, FactVerdict.UNCERTAIN),
        explanation=extract_narrative(text, FACT_UNAVAILABLE),
        sources=merge_sources(registry_sources, citations),
    )


def merge_sources(*groups: Iterable[GroundingSource]) -> list[GroundingSource]:
    """Concatenate source lists, keeping the first entry seen for each URI."""
    seen: set[str] = set()
    merged: list[GroundingSource] = []
    for group in groups:
        for source in group:
            if not source.uri or source.uri in seen:
                continue
            seen.add(source.uri)
            merged.append(source)
    return merged


def apply_escalation_policy(
    outcome: ThreatAssessmentOutcome,
    counts: AnalysisCounts | None,
    threshold: int = 5,
) -> ThreatAssessmentOutcome:
    """Raise the verdict to the floor implied by malicious detections."""
    if counts is None or counts.malicious <= 0:
        return outcome
    floor = ThreatVerdict.MALICIOUS if counts.malicious > threshold else ThreatVerdict.SUSPICIOUS
    order = [ThreatVerdict.SAFE, ThreatVerdict.SUSPICIOUS, ThreatVerdict.MALICIOUS]
    if order.index(outcome.verdict) >= order.index(floor):
        return outcome
    logger.info("Escalating verdict %s -> %s (%d malicious)", outcome.verdict.value, floor.value, counts.malicious)
    return outcome.model_copy(update={"verdict": floor})
