from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..modules.identity.actor import Actor, current_actor
from ..repositories import profiles_repo

router = APIRouter(tags=["profile"])


class UpdateProfileRequest(BaseModel):
    fullName: str | None = Field(default=None, max_length=200)
    skills: list[str] | None = Field(default=None, max_length=100)
    interests: list[str] | None = Field(default=None, max_length=100)
    canSeek: bool | None = None
    canFind: bool | None = None


@router.get("/me")
def get_me(actor: Actor = Depends(current_actor)):
    return {"profile": profiles_repo.get_profile(actor.profile_id), "isAdmin": actor.is_admin}


@router.patch("/me")
def update_me(body: UpdateProfileRequest, actor: Actor = Depends(current_actor)):
    updated = profiles_repo.update_profile(
        profile_id=actor.profile_id,
        full_name=body.fullName,
        skills=body.skills,
        interests=body.interests,
        can_seek=body.canSeek,
        can_find=body.canFind,
    )
    return {"profile": updated, "isAdmin": actor.is_admin}
