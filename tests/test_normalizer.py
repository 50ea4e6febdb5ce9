import pytest

from veriguard.models import (
    AnalysisCounts,
    FactVerdict,
    GroundingSource,
    MediaVerdict,
    ThreatAssessmentOutcome,
    ThreatVerdict,
)
from veriguard.normalizer import (
    DEFAULT_ACTIONS,
    MEDIA_UNAVAILABLE,
    THREAT_UNAVAILABLE,
    apply_escalation_policy,
    extract_actions,
    load_json_object,
    merge_sources,
    normalize_fact_check_text,
    normalize_media_json,
    normalize_threat_json,
    normalize_threat_text,
)


def test_threat_text_with_all_sections():
    text = (
        "Verdict: MALICIOUS\nScore: 12\nAnalysis:\n### Executive Summary\nBad file\n"
        "Recommendations:\n- Delete it\n- Scan system"
    )
    outcome = normalize_threat_text(text)
    assert outcome.verdict is ThreatVerdict.MALICIOUS
    assert outcome.score == 12
    assert outcome.narrative == "### Executive Summary\nBad file"
    assert outcome.actions == ["Delete it", "Scan system"]


def test_threat_text_defaults_when_sections_missing():
    outcome = normalize_threat_text("The model rambled without following the format.")
    assert outcome.verdict is ThreatVerdict.SUSPICIOUS
    assert outcome.score == 50
    assert outcome.narrative == "The model rambled without following the format."
    assert outcome.actions == list(DEFAULT_ACTIONS)


def test_threat_text_empty_response_uses_unavailable_message():
    outcome = normalize_threat_text("")
    assert outcome.narrative == THREAT_UNAVAILABLE
    assert outcome.actions == ["Proceed with caution."]


def test_threat_text_is_case_insensitive_and_keeps_subheadings():
    text = (
        "score: 88\nverdict: safe\n\nanalysis:\n### Executive Summary\nLooks fine.\n\n"
        "### Security Recommendations context\nNothing notable.\n"
        "RECOMMENDATIONS:\n1. Keep software updated\n* Stay alert\n\n-   Report oddities\n"
    )
    outcome = normalize_threat_text(text)
    assert outcome.verdict is ThreatVerdict.SAFE
    assert outcome.score == 88
    assert outcome.narrative.startswith("### Executive Summary")
    assert "Nothing notable." in outcome.narrative
    assert outcome.actions == ["Keep software updated", "Stay alert", "Report oddities"]


def test_score_is_not_clamped():
    outcome = normalize_threat_text("Score: 150\nVerdict: SAFE")
    assert outcome.score == 150
    assert outcome.display_score == 100


def test_unknown_verdict_token_falls_back():
    outcome = normalize_threat_text("Verdict: DANGEROUS\nScore: 5")
    assert outcome.verdict is ThreatVerdict.SUSPICIOUS


def test_empty_recommendations_block_uses_default():
    assert extract_actions("Analysis:\nok\nRecommendations:\n\n   \n") == ["Proceed with caution."]


def test_threat_json_empty_object_defaults():
    outcome = normalize_threat_json("{}")
    assert outcome.score == 50
    assert outcome.verdict is ThreatVerdict.SUSPICIOUS
    assert outcome.narrative == THREAT_UNAVAILABLE
    assert outcome.actions == ["Proceed with caution."]


@pytest.mark.parametrize("raw", ["not json at all", "[1, 2, 3]", "", "null"])
def test_threat_json_malformed_input_defaults(raw):
    outcome = normalize_threat_json(raw)
    assert outcome.score == 50
    assert outcome.verdict is ThreatVerdict.SUSPICIOUS
    assert outcome.narrative == THREAT_UNAVAILABLE


def test_threat_json_reads_fields_and_coerces_types():
    raw = '```json\n{"score": "12.6", "verdict": "malicious", "analysis": "### Executive Summary\\nPhish", "recommendations": ["Do not click", "", 7]}\n```'
    outcome = normalize_threat_json(raw)
    assert outcome.score == 13
    assert outcome.verdict is ThreatVerdict.MALICIOUS
    assert outcome.narrative == "### Executive Summary\nPhish"
    assert outcome.actions == ["Do not click"]


def test_threat_json_rejects_boolean_score():
    assert normalize_threat_json('{"score": true}').score == 50


@pytest.mark.parametrize(
    "raw",
    ['{"score": NaN}', '{"score": 1e999}', '{"score": "inf"}', '{"score": -Infinity}'],
)
def test_threat_json_non_finite_score_defaults(raw):
    outcome = normalize_threat_json(raw)
    assert outcome.score == 50
    assert outcome.verdict is ThreatVerdict.SUSPICIOUS


def test_media_json_non_finite_confidence_defaults():
    assert normalize_media_json('{"verdict": "LIKELY_FAKE", "confidence": Infinity}').confidence == 0
    assert normalize_media_json('{"confidence": "nan"}').confidence == 0


def test_threat_text_reads_bold_labels():
    text = (
        "**Verdict:** MALICIOUS\n**Score:** 12\n**Analysis:**\n### Executive Summary\nCredential phish\n"
        "**Recommendations:**\n- Report it"
    )
    outcome = normalize_threat_text(text)
    assert outcome.verdict is ThreatVerdict.MALICIOUS
    assert outcome.score == 12
    assert outcome.narrative == "### Executive Summary\nCredential phish"
    assert outcome.actions == ["Report it"]


def test_fact_check_text_reads_bold_verdict():
    outcome = normalize_fact_check_text("**Verdict**: TRUE\n**Explanation:**\nConfirmed by officials.")
    assert outcome.verdict is FactVerdict.TRUE
    assert outcome.explanation == "Confirmed by officials."


def test_load_json_object_never_raises():
    assert load_json_object("{broken") == {}
    assert load_json_object('{"a": 1}') == {"a": 1}


def test_media_json_defaults():
    outcome = normalize_media_json("{}")
    assert outcome.verdict is MediaVerdict.UNCERTAIN
    assert outcome.confidence == 0
    assert outcome.narrative == MEDIA_UNAVAILABLE
    assert outcome.visual_findings == []
    assert outcome.audio_findings == []


def test_media_json_fields():
    raw = (
        '{"verdict": "LIKELY_FAKE", "confidence": 91, "technicalDetails": "Warped background",'
        ' "visualArtifacts": ["asymmetric ears"], "audioArtifacts": ["robotic tone"]}'
    )
    outcome = normalize_media_json(raw)
    assert outcome.verdict is MediaVerdict.LIKELY_FAKE
    assert outcome.confidence == 91
    assert outcome.narrative == "Warped background"
    assert outcome.visual_findings == ["asymmetric ears"]
    assert outcome.audio_findings == ["robotic tone"]


def test_fact_check_text_parsing_and_source_merge():
    text = "Verdict: FALSE\nExplanation:\n**Overview**\nThe claim is fabricated.\n"
    registry = [GroundingSource(title="[Fact Check] Snopes: Claim", uri="https://snopes.com/a")]
    citations = [
        GroundingSource(title="Snopes copy", uri="https://snopes.com/a"),
        GroundingSource(title="Reuters", uri="https://reuters.com/b"),
        GroundingSource(title="Reuters again", uri="https://reuters.com/b"),
    ]
    outcome = normalize_fact_check_text(text, registry_sources=registry, citations=citations)
    assert outcome.verdict is FactVerdict.FALSE
    assert outcome.explanation == "**Overview**\nThe claim is fabricated."
    assert [source.uri for source in outcome.sources] == ["https://snopes.com/a", "https://reuters.com/b"]
    assert outcome.sources[0].title == "[Fact Check] Snopes: Claim"
    assert outcome.sources[1].title == "Reuters"


def test_fact_check_without_verdict_is_uncertain():
    outcome = normalize_fact_check_text("I could not determine anything.")
    assert outcome.verdict is FactVerdict.UNCERTAIN
    assert outcome.explanation == "I could not determine anything."


def test_merge_sources_keeps_first_title_for_shared_uri():
    first = [GroundingSource(title="Original", uri="https://a.example/x")]
    second = [
        GroundingSource(title="Duplicate", uri="https://a.example/x"),
        GroundingSource(title="Other", uri="https://b.example/y"),
    ]
    merged = merge_sources(first, second)
    assert [source.uri for source in merged] == ["https://a.example/x", "https://b.example/y"]
    assert [source.uri for source in merged].count("https://a.example/x") == 1
    assert merged[0].title == "Original"


def _outcome(verdict):
    return ThreatAssessmentOutcome(verdict=verdict, narrative="n")


def test_escalation_policy_floors():
    few = AnalysisCounts(malicious=2, harmless=60)
    many = AnalysisCounts(malicious=6, harmless=60)
    assert apply_escalation_policy(_outcome(ThreatVerdict.SAFE), few).verdict is ThreatVerdict.SUSPICIOUS
    assert apply_escalation_policy(_outcome(ThreatVerdict.SAFE), many).verdict is ThreatVerdict.MALICIOUS
    assert apply_escalation_policy(_outcome(ThreatVerdict.SUSPICIOUS), many).verdict is ThreatVerdict.MALICIOUS
    assert apply_escalation_policy(_outcome(ThreatVerdict.MALICIOUS), few).verdict is ThreatVerdict.MALICIOUS
    assert apply_escalation_policy(_outcome(ThreatVerdict.SAFE), AnalysisCounts(harmless=70)).verdict is ThreatVerdict.SAFE
    assert apply_escalation_policy(_outcome(ThreatVerdict.SAFE), None).verdict is ThreatVerdict.SAFE
