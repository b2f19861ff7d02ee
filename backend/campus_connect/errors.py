from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class LifecycleError(Exception):
    """Base error for lifecycle operations.

    Expected, user-facing outcomes. `problem_details.lifecycle_problem` renders
    them; `code` is what clients branch on.
    """

    message: str
    entity: str | None = None
    entity_id: str | None = None
    retryable: bool = False
    cause: Exception | None = None

    status_code = 500
    code = "lifecycle_error"
    title = "Lifecycle Error"

    def __str__(self) -> str:
        return self.message

    def to_extensions(self) -> dict[str, object]:
        out: dict[str, object] = {
            "code": self.code,
            "entity": self.entity,
            "entityId": self.entity_id,
            "retryable": bool(self.retryable),
        }
        return {k: v for k, v in out.items() if v is not None}


@dataclass(slots=True)
class Forbidden(LifecycleError):
    status_code = 403
    code = "forbidden"
    title = "Forbidden"


@dataclass(slots=True)
class NotFound(LifecycleError):
    status_code = 404
    code = "not_found"
    title = "Not Found"


@dataclass(slots=True)
class InvalidTransition(LifecycleError):
    status_code = 409
    code = "invalid_transition"
    title = "Invalid Transition"


@dataclass(slots=True)
class DuplicateRequest(LifecycleError):
    status_code = 409
    code = "duplicate_request"
    title = "Duplicate Request"


@dataclass(slots=True)
class ServiceUnavailable(LifecycleError):
    retryable: bool = True

    status_code = 503
    code = "service_unavailable"
    title = "Service Unavailable"


@dataclass(slots=True)
class InvalidInput(LifecycleError):
    status_code = 400
    code = "invalid_input"
    title = "Bad Request"
