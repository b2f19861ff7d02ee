from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from ..modules.identity.actor import Actor, current_actor
from ..modules.jobs import job_lifecycle

router = APIRouter(tags=["jobs"])

JobType = Literal["ACADEMIC_PROJECT", "STARTUP_COLLABORATION", "PART_TIME_JOB", "COMPETITION_HACKATHON"]


class JobContent(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=10_000)
    tags: list[str] | None = Field(default=None, max_length=30)
    type: JobType | None = None
    requirements: str | None = Field(default=None, max_length=5_000)
    duration: str | None = Field(default=None, max_length=200)
    compensation: str | None = Field(default=None, max_length=200)
    location: str | None = Field(default=None, max_length=200)
    teamSize: int | None = Field(default=None, ge=1, le=1000)


class CreateJobRequest(JobContent):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=10_000)
    isDraft: bool = False


class ToggleRequest(BaseModel):
    value: bool = True


@router.get("")
def list_jobs(
    search: str | None = None,
    type: str | None = None,
    rank: str | None = None,
    actor: Actor = Depends(current_actor),
):
    jobs = job_lifecycle.list_open_jobs(actor=actor, search=search, job_type=type, rank=rank)
    return {"jobs": jobs, "count": len(jobs)}


@router.post("", status_code=201)
def create_job(body: CreateJobRequest, actor: Actor = Depends(current_actor)):
    content = body.model_dump(exclude={"isDraft"}, exclude_none=True)
    return {"job": job_lifecycle.create_job(actor=actor, content=content, is_draft=body.isDraft)}


@router.get("/mine")
def list_my_jobs(actor: Actor = Depends(current_actor)):
    jobs = job_lifecycle.list_my_jobs(actor=actor)
    return {"jobs": jobs, "count": len(jobs)}


@router.get("/{jobId}")
def get_job(jobId: str, actor: Actor = Depends(current_actor)):
    return {"job": job_lifecycle.get_job_for_viewer(job_id=jobId, actor=actor)}


@router.put("/{jobId}")
def update_job(jobId: str, body: JobContent, actor: Actor = Depends(current_actor)):
    patch = body.model_dump(exclude_none=True)
    return {"job": job_lifecycle.update_job_content(job_id=jobId, actor=actor, patch=patch)}


@router.delete("/{jobId}", status_code=204)
def delete_job(jobId: str, actor: Actor = Depends(current_actor)):
    job_lifecycle.delete_job(job_id=jobId, actor=actor)
    return Response(status_code=204)


@router.post("/{jobId}/submit")
def submit_job(jobId: str, actor: Actor = Depends(current_actor)):
    return {"job": job_lifecycle.submit(job_id=jobId, actor=actor)}


@router.post("/{jobId}/publish")
def publish_job(jobId: str, body: ToggleRequest | None = None, actor: Actor = Depends(current_actor)):
    value = True if body is None else body.value
    return {"job": job_lifecycle.set_published(job_id=jobId, actor=actor, value=value)}


@router.post("/{jobId}/fill")
def fill_job(jobId: str, body: ToggleRequest | None = None, actor: Actor = Depends(current_actor)):
    value = True if body is None else body.value
    return {"job": job_lifecycle.set_filled(job_id=jobId, actor=actor, value=value)}
