from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..modules.identity.actor import Actor, current_actor
from ..modules.jobs import job_lifecycle

router = APIRouter(tags=["admin"])


class ModerateRequest(BaseModel):
    decision: Literal["APPROVE", "REJECT"]
    reason: str | None = Field(default=None, max_length=2000)


@router.get("/jobs")
def moderation_queue(status: str | None = "PENDING", actor: Actor = Depends(current_actor)):
    return job_lifecycle.list_admin_queue(actor=actor, status=status)


@router.post("/jobs/{jobId}/moderate")
def moderate_job(jobId: str, body: ModerateRequest, actor: Actor = Depends(current_actor)):
    job = job_lifecycle.moderate(job_id=jobId, actor=actor, decision=body.decision, reason=body.reason)
    return {"job": job}
