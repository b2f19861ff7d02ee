from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from ...ai.client import AiError, call_json
from ...observability.logging import get_logger
from ...settings import settings

log = get_logger("ai_match_scoring")


class MatchAnalysis(BaseModel):
    score: int = Field(ge=0, le=100)
    reasoning: str = "AI analysis completed"
    strengths: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    recommendation: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, v: Any) -> int:
        try:
            n = round(float(v))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, int(n)))


_SYSTEM = (
    "You are an expert recruiter analyzing how well a student matches a campus "
    "opportunity. Reply with one JSON object only."
)


def _listing(values: Any, empty: str) -> str:
    items = [str(v).strip() for v in (values or []) if str(v or "").strip()]
    return ", ".join(items) if items else empty


def _prompt(*, job: dict[str, Any], profile: dict[str, Any], proposal: str | None) -> str:
    return "\n".join(
        [
            "JOB DETAILS:",
            f"Title: {job.get('title') or ''}",
            f"Description: {job.get('description') or ''}",
            f"Requirements: {job.get('requirements') or 'Not specified'}",
            f"Required Skills/Tags: {_listing(job.get('tags'), 'None listed')}",
            "",
            "APPLICANT DETAILS:",
            f"Skills: {_listing(profile.get('skills'), 'None listed')}",
            f"Interests: {_listing(profile.get('interests'), 'None listed')}",
            f"Application Proposal: {proposal or 'No proposal provided'}",
            "",
            "Score 0-100 (90+ excellent, 75-89 very good, 60-74 good, 40-59 moderate, below 40 poor).",
            'Return: {"score": <0-100>, "reasoning": "<2-3 sentences>", "strengths": [..], '
            '"gaps": [..], "recommendation": "<brief hiring recommendation>"}',
        ]
    )


def analyze_match(
    *,
    job: dict[str, Any],
    profile: dict[str, Any],
    proposal: str | None = None,
) -> MatchAnalysis | None:
    """
    AI match analysis, or None when AI is not configured or the call fails.

    Callers fall back to the rules-based scorer on None.
    """
    if not settings.openai_api_key:
        return None
    try:
        parsed, _meta = call_json(
            purpose="match_scoring",
            response_model=MatchAnalysis,
            messages=[
                {"role": "system", "content": _SYSTEM},
                {"role": "user", "content": _prompt(job=job, profile=profile, proposal=proposal)},
            ],
        )
    except AiError as e:
        log.warning("ai_match_analysis_failed", job_id=job.get("jobId"), error=str(e))
        return None
    return parsed
