from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable


def normalize_terms(values: Any) -> set[str]:
    """
    Trimmed, lowercased, non-empty terms.

    Anything that is not a list/tuple/set of strings counts as no terms, so a
    malformed profile or job never breaks scoring.
    """
    if not isinstance(values, (list, tuple, set, frozenset)):
        return set()
    out: set[str] = set()
    for v in values:
        if not isinstance(v, str):
            continue
        s = v.strip().lower()
        if s:
            out.add(s)
    return out


def score(skills: Any, interests: Any, tags: Any) -> int:
    """
    Share of job tags covered by the applicant's skills and interests, 0..100.

    Pure and deterministic; order and duplicates in the inputs do not matter.
    """
    wanted = normalize_terms(tags)
    if not wanted:
        return 0
    have = normalize_terms(skills) | normalize_terms(interests)
    overlap = len(wanted & have)
    pct = (Decimal(100) * overlap / Decimal(len(wanted))).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(pct)))


def score_profile_for_job(profile: dict[str, Any] | None, job: dict[str, Any] | None) -> int:
    p = profile or {}
    return score(p.get("skills"), p.get("interests"), (job or {}).get("tags"))


def rank_jobs(profile: dict[str, Any] | None, jobs: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Jobs with a `matchScore` attached, best match first, newest first on ties."""
    scored = [{**j, "matchScore": score_profile_for_job(profile, j)} for j in jobs]
    scored.sort(key=lambda j: str(j.get("createdAt") or ""), reverse=True)
    scored.sort(key=lambda j: int(j["matchScore"]), reverse=True)
    return scored
