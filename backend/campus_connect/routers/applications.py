from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..modules.applications import application_lifecycle
from ..modules.identity.actor import Actor, current_actor

router = APIRouter(tags=["applications"])


class ApplyRequest(BaseModel):
    proposal: str = Field(..., min_length=50, max_length=5000)
    resumeRef: str | None = Field(default=None, max_length=1000)


class StatusRequest(BaseModel):
    status: Literal["PENDING", "SHORTLISTED", "ACCEPTED", "REJECTED"]


@router.post("/jobs/{jobId}/apply", status_code=201)
def apply_to_job(jobId: str, body: ApplyRequest, actor: Actor = Depends(current_actor)):
    app = application_lifecycle.apply(job_id=jobId, actor=actor, proposal=body.proposal, resume_ref=body.resumeRef)
    return {"application": app}


@router.get("/jobs/{jobId}/applications")
def list_job_applications(jobId: str, status: str | None = None, actor: Actor = Depends(current_actor)):
    return application_lifecycle.list_for_job(job_id=jobId, actor=actor, status=status)


@router.get("/my-applications")
def list_my_applications(actor: Actor = Depends(current_actor)):
    apps = application_lifecycle.list_mine(actor=actor)
    return {"applications": apps, "count": len(apps)}


@router.get("/applications/{applicationId}")
def get_application(applicationId: str, actor: Actor = Depends(current_actor)):
    return {"application": application_lifecycle.get_application_for_viewer(application_id=applicationId, actor=actor)}


@router.patch("/applications/{applicationId}/status")
def set_application_status(applicationId: str, body: StatusRequest, actor: Actor = Depends(current_actor)):
    app = application_lifecycle.set_status(application_id=applicationId, actor=actor, new_status=body.status)
    return {"application": app}


@router.post("/applications/{applicationId}/match-score")
def recalculate_match_score(applicationId: str, actor: Actor = Depends(current_actor)):
    app = application_lifecycle.recalculate_score(application_id=applicationId, actor=actor)
    return {"application": app, "matchScore": app.get("matchScore"), "analysis": app.get("matchAnalysis")}
