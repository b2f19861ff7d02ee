from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..modules.call_requests import call_request_lifecycle
from ..modules.identity.actor import Actor, current_actor

router = APIRouter(tags=["call-requests"])


class CreateCallRequest(BaseModel):
    jobId: str = Field(..., min_length=1)
    receiverId: str = Field(..., min_length=1)
    applicationId: str | None = None
    requestedTime: str | None = Field(default=None, max_length=100)
    message: str | None = Field(default=None, max_length=2000)


class AcceptCallRequest(BaseModel):
    scheduledTime: str | None = Field(default=None, max_length=100)


class RejectCallRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


@router.post("", status_code=201)
def create_call_request(body: CreateCallRequest, actor: Actor = Depends(current_actor)):
    cr = call_request_lifecycle.request(
        actor=actor,
        job_id=body.jobId,
        receiver_id=body.receiverId,
        application_id=body.applicationId,
        requested_time=body.requestedTime,
        message=body.message,
    )
    return {"callRequest": cr}


@router.get("")
def list_call_requests(role: str | None = "all", status: str | None = None, actor: Actor = Depends(current_actor)):
    items = call_request_lifecycle.list_for_actor(actor=actor, role=role, status=status)
    return {"callRequests": items, "count": len(items)}


@router.get("/{callRequestId}")
def get_call_request(callRequestId: str, actor: Actor = Depends(current_actor)):
    return {"callRequest": call_request_lifecycle.get_for_viewer(call_request_id=callRequestId, actor=actor)}


@router.post("/{callRequestId}/accept")
def accept_call_request(
    callRequestId: str, body: AcceptCallRequest | None = None, actor: Actor = Depends(current_actor)
):
    cr = call_request_lifecycle.accept(
        call_request_id=callRequestId, actor=actor, scheduled_time=body.scheduledTime if body else None
    )
    return {"callRequest": cr}


@router.post("/{callRequestId}/reject")
def reject_call_request(
    callRequestId: str, body: RejectCallRequest | None = None, actor: Actor = Depends(current_actor)
):
    cr = call_request_lifecycle.reject(call_request_id=callRequestId, actor=actor, reason=body.reason if body else None)
    return {"callRequest": cr}


@router.post("/{callRequestId}/cancel")
def cancel_call_request(callRequestId: str, actor: Actor = Depends(current_actor)):
    return {"callRequest": call_request_lifecycle.cancel(call_request_id=callRequestId, actor=actor)}


@router.post("/{callRequestId}/complete")
def complete_call_request(callRequestId: str, actor: Actor = Depends(current_actor)):
    return {"callRequest": call_request_lifecycle.complete(call_request_id=callRequestId, actor=actor)}


@router.post("/{callRequestId}/token")
def join_call(callRequestId: str, actor: Actor = Depends(current_actor)):
    return call_request_lifecycle.join(call_request_id=callRequestId, actor=actor)
