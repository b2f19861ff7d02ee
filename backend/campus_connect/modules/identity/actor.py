from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request

from ...observability.logging import bind_actor
from ...repositories import profiles_repo
from .roles import is_admin


@dataclass(frozen=True, slots=True)
class Actor:
    """
    The authenticated caller as seen by lifecycle operations.

    Capability comes from the identity provider (admin group membership); the
    client-side "active role" toggle never reaches this object.
    """

    profile_id: str
    identity_sub: str
    email: str | None = None
    is_admin: bool = False
    display_name: str | None = None


def current_actor(request: Request) -> Actor:
    """FastAPI dependency: resolve (or create on first login) the caller's Profile."""
    user = getattr(request.state, "user", None)
    if user is None or not getattr(user, "sub", None):
        raise HTTPException(status_code=401, detail="Unauthorized")

    profile = profiles_repo.ensure_profile_for_identity(
        identity_sub=str(user.sub),
        email=getattr(user, "email", None),
        full_name=getattr(user, "name", None),
    )
    pid = str(profile.get("profileId") or "").strip()
    if not pid:
        raise HTTPException(status_code=503, detail="Profile unavailable")

    actor = Actor(
        profile_id=pid,
        identity_sub=str(user.sub),
        email=profile.get("email") or getattr(user, "email", None),
        is_admin=is_admin(getattr(user, "groups", None)),
        display_name=profiles_repo.display_name(profile),
    )
    bind_actor(profile_id=actor.profile_id, is_admin=actor.is_admin)
    return actor
