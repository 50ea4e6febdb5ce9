"""Prompt assembly for the reasoning model.

The section headers requested here (``Verdict:``, ``Score:``,
``Analysis:``, ``Explanation:``, ``Recommendations:``) are the ones the
text normalizer looks for; change both together.
"""

from __future__ import annotations

from .models import ReputationReport, ThreatVerdict

THREAT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "score": {"type": "NUMBER", "description": "Safety score 0-100 where 100 is perfectly safe"},
        "verdict": {"type": "STRING", "enum": [verdict.value for verdict in ThreatVerdict]},
        "analysis": {"type": "STRING", "description": "Markdown formatted detailed analysis with ### headers"},
        "recommendations": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
}

MEDIA_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "verdict": {"type": "STRING", "enum": ["LIKELY_REAL", "LIKELY_FAKE", "UNCERTAIN"]},
        "confidence": {"type": "NUMBER", "description": "Confidence score 0-100"},
        "technicalDetails": {"type": "STRING"},
        "visualArtifacts": {"type": "ARRAY", "items": {"type": "STRING"}},
        "audioArtifacts": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
}

REPUTATION_NOT_FOUND = """### VIRUSTOTAL THREAT INTELLIGENCE:
- Status: Not found in database.
- Implication: This is a new or unknown file/URL. Proceed with caution and rely on heuristic analysis.
"""

REPUTATION_UNAVAILABLE = (
    "VIRUSTOTAL REPORT: Unavailable (API key missing or error). "
    "Rely on your internal knowledge and heuristic analysis.\n"
)

THREAT_OUTPUT_FORMAT = """Output Format (Plain Text):
Score: [0-100] (100 = Safe, 0 = Malicious)
Verdict: [SAFE / SUSPICIOUS / MALICIOUS]

Analysis:
### Executive Summary
[Concise summary of the threat level and {subject}]

### Key Risk Factors
- [Risk factor 1 with specific details]
- [Risk factor 2 with specific details]

### Technical Analysis
[Explain the VirusTotal findings, specific threats detected, attack vectors and reputation issues.]

Recommendations:
- [Action 1 - Specific and actionable]
- [Action 2]
- [Action 3]
"""


def render_reputation_context(report: ReputationReport, threshold: int = 5) -> str:
    counts = report.counts
    scanned = report.scan_timestamp.isoformat() if report.scan_timestamp else "Unknown"
    lines = [
        "### VIRUSTOTAL THREAT INTELLIGENCE REPORT:",
        f"- **Scan Date**: {scanned}",
        f"- **Total Engines**: {counts.total}",
        f"- **Malicious Detections**: {counts.malicious} ({counts.malicious_ratio:.1f}%)",
        f"- **Suspicious Detections**: {counts.suspicious}",
        f"- **Harmless Detections**: {counts.harmless}",
        f"- **Undetected**: {counts.undetected}",
        f"- **Full Report**: {report.reference_link}",
        "",
    ]
    if counts.malicious > 0 or counts.suspicious > 0:
        lines.append("### SPECIFIC THREAT DETECTIONS:")
        for engine, finding in report.detections.items():
            lines.append(f"- **{engine}**: {finding.label or 'flagged'}")
        lines.append("")
    lines.extend(
        [
            "**CRITICAL ANALYSIS INSTRUCTIONS**:",
            "- If malicious detections > 0, verdict MUST be SUSPICIOUS or MALICIOUS",
            f"- If malicious detections > {threshold}, verdict MUST be MALICIOUS",
            "- Consider the specific threat names and attack vectors in your analysis",
            "- Provide context about what the detected threats typically do",
        ]
    )
    return "\n".join(lines) + "\n"


def reputation_block(report: ReputationReport | None, *, available: bool = True, threshold: int = 5) -> str:
    if not available:
        return REPUTATION_UNAVAILABLE
    if report is None:
        return REPUTATION_NOT_FOUND
    return render_reputation_context(report, threshold)


def build_fact_check_prompt(statement: str, registry_context: str = "") -> str:
    evidence = ""
    if registry_context:
        evidence = f"CONSIDER THESE EXISTING FACT CHECKS AS STRONG EVIDENCE:\n{registry_context}\n"
    return f"""Verify this claim: "{statement}".

{evidence}Use Google Search to find recent and relevant information.
Determine if it is True, False, or Uncertain/Context Missing.

IMPORTANT: You must output the response in this exact plain text format:
Verdict: [TRUE / FALSE / UNCERTAIN]
Explanation:
**Overview**
[Provide a concise summary of the claim and the verification status.]

**Evidence Analysis**
[Detail the evidence found, citing specific details from search results. Discuss any conflicting reports.]

**Context & Nuance**
[Explain the context, origin of the claim, or why it might be misleading.]

**Conclusion**
[Final wrap-up sentence.]
"""


def build_url_prompt(url: str, reputation: str) -> str:
    return f"""Analyze this URL security report and provide a comprehensive assessment.

Target URL: "{url}"

{reputation}
Using the VirusTotal threat intelligence above, Google Search results, and your security knowledge, provide a detailed security analysis.

{THREAT_OUTPUT_FORMAT.format(subject="website characteristics")}"""


def build_file_prompt(filename: str, size: int, mime_type: str | None, reputation: str) -> str:
    return f"""Analyze this file security report and provide a comprehensive assessment.

File Information:
- Name: {filename}
- Size: {size / 1024:.2f} KB
- Type: {mime_type or "Unknown"}

{reputation}
Based on the VirusTotal threat intelligence above and your security knowledge, provide a detailed security analysis.

{THREAT_OUTPUT_FORMAT.format(subject="file characteristics")}"""


def build_email_prompt(text: str) -> str:
    return f"""Analyze the following email text for indicators of phishing, fraud, or scams.
Input Text: "{text}"

Provide the response in JSON.
For the "analysis" field, use Markdown formatting, strictly adhering to these headers:
### Executive Summary
...
### Key Red Flags
...
### Intent Analysis
...

For "recommendations", provide a list of clear actions."""


def build_media_prompt() -> str:
    return """Analyze this media file for signs of deepfake manipulation, AI generation, or synthetic content.

If it is an IMAGE:
Look for visual artifacts like warped backgrounds, asymmetrical eyes/glasses/ears, unnatural skin textures (too smooth), inconsistent lighting/shadows, or strange hands/fingers.

If it is AUDIO/VIDEO:
Look for:
1. Unnatural blinking or facial movements.
2. Lip-sync discrepancies.
3. Lighting inconsistencies or artifacts (blurring around edges).
4. Audio artifacts (robotic tones, lack of breathing).

Return a JSON assessment."""
