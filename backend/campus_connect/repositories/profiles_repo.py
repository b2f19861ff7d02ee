from __future__ import annotations

from typing import Any, Iterable

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbConflict
from ..db.dynamodb.expressions import update_kwargs
from ..db.dynamodb.table import get_main_table
from ..modules.matching.match_scorer import normalize_terms
from ..shared.clock import new_id, now_iso


def profile_key(profile_id: str) -> dict[str, str]:
    pid = str(profile_id or "").strip()
    if not pid:
        raise ValueError("profile_id is required")
    return {"pk": f"PROFILE#{pid}", "sk": "PROFILE"}


def identity_key(identity_sub: str) -> dict[str, str]:
    sub = str(identity_sub or "").strip()
    if not sub:
        raise ValueError("identity_sub is required")
    return {"pk": f"IDENTITY#{sub}", "sk": "PROFILE"}


def tag_index_key(*, tag: str, profile_id: str) -> dict[str, str]:
    return {"pk": f"TAG#{tag}", "sk": f"PROFILE#{profile_id}"}


def normalize_profile_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    obj = dict(item)
    for k in ("pk", "sk", "gsi1pk", "gsi1sk", "entityType", "identitySub"):
        obj.pop(k, None)
    obj["skills"] = list(item.get("skills") or [])
    obj["interests"] = list(item.get("interests") or [])
    obj["canSeek"] = bool(item.get("canSeek", True))
    obj["canFind"] = bool(item.get("canFind", True))
    return obj


def get_profile_item(profile_id: str) -> dict[str, Any] | None:
    return get_main_table().get_item(key=profile_key(profile_id))


def get_profile(profile_id: str) -> dict[str, Any] | None:
    return normalize_profile_for_api(get_profile_item(profile_id))


def get_profile_id_for_identity(identity_sub: str) -> str | None:
    link = get_main_table().get_item(key=identity_key(identity_sub))
    pid = str((link or {}).get("profileId") or "").strip()
    return pid or None


def ensure_profile_for_identity(
    *,
    identity_sub: str,
    email: str | None,
    full_name: str | None = None,
) -> dict[str, Any]:
    """
    Resolve (or create, on first login) the Profile linked to an identity.

    The identity link and the Profile are created in one transaction, so two
    concurrent first requests from the same user end up with one Profile.
    """
    t = get_main_table()

    existing = get_profile_id_for_identity(identity_sub)
    if existing:
        item = get_profile_item(existing)
        if item:
            return normalize_profile_for_api(item) or {}

    pid = new_id("prf")
    now = now_iso()
    em = str(email or "").strip().lower() or None
    profile_item: dict[str, Any] = {
        **profile_key(pid),
        "entityType": "Profile",
        "profileId": pid,
        "identitySub": str(identity_sub).strip(),
        "email": em,
        "fullName": str(full_name or "").strip() or (em.split("@")[0] if em else None),
        "canSeek": True,
        "canFind": True,
        "skills": [],
        "interests": [],
        "createdAt": now,
        "updatedAt": now,
    }
    profile_item = {k: v for k, v in profile_item.items() if v is not None}
    link_item: dict[str, Any] = {
        **identity_key(identity_sub),
        "entityType": "IdentityLink",
        "profileId": pid,
        "createdAt": now,
    }

    try:
        t.transact_write(
            puts=[
                t.tx_put(item=link_item, condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)"),
                t.tx_put(item=profile_item, condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)"),
            ]
        )
        return normalize_profile_for_api(profile_item) or {}
    except DdbConflict:
        # Another first request won the race; use its profile.
        winner = get_profile_id_for_identity(identity_sub)
        return (get_profile(winner) if winner else None) or {}


def update_profile(
    *,
    profile_id: str,
    full_name: str | None = None,
    skills: Iterable[str] | None = None,
    interests: Iterable[str] | None = None,
    can_seek: bool | None = None,
    can_find: bool | None = None,
) -> dict[str, Any] | None:
    """Self-service edit. Skills and interests are stored trimmed and de-duplicated."""
    before = get_profile_item(profile_id)
    if not before:
        return None

    fields: dict[str, Any] = {"updatedAt": now_iso()}
    if full_name is not None:
        fields["fullName"] = str(full_name).strip()
    if skills is not None:
        fields["skills"] = _clean_list(skills)
    if interests is not None:
        fields["interests"] = _clean_list(interests)
    if can_seek is not None:
        fields["canSeek"] = bool(can_seek)
    if can_find is not None:
        fields["canFind"] = bool(can_find)

    updated = get_main_table().update_item(key=profile_key(profile_id), **update_kwargs(set_fields=fields))
    if skills is not None or interests is not None:
        sync_tag_index(profile_id=profile_id, before=before, after=updated or {})
    return normalize_profile_for_api(updated)


def _clean_list(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for v in values or []:
        s = str(v or "").strip()
        if s and s.lower() not in seen:
            out.append(s)
            seen.add(s.lower())
    return out


def profile_terms(profile: dict[str, Any] | None) -> set[str]:
    p = profile or {}
    return normalize_terms(p.get("skills")) | normalize_terms(p.get("interests"))


def sync_tag_index(*, profile_id: str, before: dict[str, Any], after: dict[str, Any]) -> None:
    """
    Maintain TAG#{term} -> profile items used for new-job match alerts.

    Derived data: idempotent puts/deletes, rebuilt on every skills/interests edit.
    """
    t = get_main_table()
    old = profile_terms(before)
    new = profile_terms(after)
    now = now_iso()
    for term in sorted(new - old):
        t.put_item(
            item={
                **tag_index_key(tag=term, profile_id=profile_id),
                "entityType": "ProfileTagIndex",
                "profileId": profile_id,
                "tag": term,
                "createdAt": now,
            }
        )
    for term in sorted(old - new):
        t.delete_item(key=tag_index_key(tag=term, profile_id=profile_id))


def list_profile_ids_for_tags(*, tags: Iterable[str], limit: int = 100, exclude: Iterable[str] = ()) -> list[str]:
    """Profiles whose skills or interests contain any of `tags` (normalized), capped at `limit`."""
    t = get_main_table()
    skip = {str(x) for x in exclude if x}
    lim = max(0, int(limit or 0))
    out: list[str] = []
    seen: set[str] = set()
    for tag in sorted(normalize_terms(list(tags or []))):
        if len(out) >= lim:
            break
        for it in t.query_all(key_condition_expression=Key("pk").eq(f"TAG#{tag}"), scan_index_forward=True):
            pid = str(it.get("profileId") or "").strip()
            if not pid or pid in skip or pid in seen:
                continue
            seen.add(pid)
            out.append(pid)
            if len(out) >= lim:
                break
    return out


def get_profiles(profile_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    for pid in {str(p) for p in profile_ids if p}:
        p = get_profile(pid)
        if p:
            out[pid] = p
    return out


def display_name(profile: dict[str, Any] | None) -> str:
    p = profile or {}
    return str(p.get("fullName") or "").strip() or str(p.get("email") or "").strip() or "A CampusConnect user"

