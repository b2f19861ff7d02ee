from __future__ import annotations

from typing import Any

from ...settings import settings


def normalize_groups(value: Any) -> list[str]:
    """Cognito groups as a de-duplicated list of trimmed strings."""
    if isinstance(value, str):
        groups_in: list[Any] = [value] if value.strip() else []
    elif isinstance(value, (list, tuple)):
        groups_in = list(value)
    else:
        groups_in = []

    out: list[str] = []
    for g in groups_in:
        s = str(g or "").strip()
        if s and s not in out:
            out.append(s)
    return out


def is_admin(groups: Any) -> bool:
    want = str(settings.admin_group_name or "Admin").strip().lower()
    return any(g.lower() == want for g in normalize_groups(groups))
