"""
RFC 7807 problem+json rendering for every error the API returns.

Body members: type, title, status, detail, instance, requestId, optional
`errors` (422) and an `extensions` object. Lifecycle failures put
`code`, `entity`, `entityId` and `retryable` under `extensions` so clients can
branch on `extensions.code` instead of parsing titles.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .db.dynamodb.errors import DdbConflict, DdbError, DdbThrottled, DdbUnavailable, DdbValidation
from .errors import LifecycleError
from .observability.logging import get_logger
from .settings import get_settings

PROBLEM_JSON = "application/problem+json"

log = get_logger("problem_details")


def _title_for(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def problem_payload(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": "about:blank",
        "title": title or _title_for(status_code),
        "status": status_code,
        "instance": request.url.path,
    }
    if detail:
        payload["detail"] = str(detail)
    rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
    if rid:
        payload["requestId"] = str(rid)
    if errors:
        payload["errors"] = errors
    if extensions:
        payload["extensions"] = extensions
    return payload


def problem_response(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> ORJSONResponse:
    status_code = int(status_code)
    # 503 stays descriptive: callers are expected to retry it.
    if status_code >= 500 and status_code != 503 and get_settings().is_production:
        detail = None
    return ORJSONResponse(
        status_code=status_code,
        content=problem_payload(
            request=request,
            status_code=status_code,
            title=title,
            detail=detail,
            errors=errors,
            extensions=extensions,
        ),
        media_type=PROBLEM_JSON,
        headers=headers,
    )


def lifecycle_problem(request: Request, exc: LifecycleError) -> ORJSONResponse:
    if exc.status_code >= 500:
        log.warning(
            "lifecycle_unavailable",
            code=exc.code,
            entity=exc.entity,
            entity_id=exc.entity_id,
            cause=str(exc.cause) if exc.cause else None,
        )
    return problem_response(
        request=request,
        status_code=exc.status_code,
        title=exc.title,
        detail=exc.message,
        extensions=exc.to_extensions(),
        headers={"Retry-After": "1"} if exc.retryable else None,
    )


_STORAGE_STATUS: tuple[tuple[type[DdbError], int], ...] = (
    (DdbValidation, 400),
    (DdbConflict, 409),
    (DdbThrottled, 503),
    (DdbUnavailable, 503),
)


def storage_problem(request: Request, exc: DdbError) -> ORJSONResponse:
    """Storage errors that escaped the lifecycle layer (reads, listings)."""
    status_code = next((code for cls, code in _STORAGE_STATUS if isinstance(exc, cls)), 500)
    log.warning(
        "storage_error_escaped",
        operation=exc.operation,
        table=exc.table_name,
        aws_request_id=exc.aws_request_id,
        error=str(exc),
    )
    extensions = {
        "code": "storage_error",
        "operation": exc.operation,
        "retryable": status_code == 503,
    }
    return problem_response(
        request=request,
        status_code=status_code,
        detail=exc.message,
        extensions={k: v for k, v in extensions.items() if v is not None},
        headers={"Retry-After": "1"} if status_code == 503 else None,
    )


def http_problem(request: Request, exc: StarletteHTTPException) -> ORJSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else None
    if exc.status_code == 404 and detail in (None, "Not Found"):
        detail = "Route not found"
    return problem_response(
        request=request,
        status_code=exc.status_code,
        detail=detail,
        headers=getattr(exc, "headers", None),
    )


def validation_problem(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    errors = [
        {
            "path": ".".join(str(part) for part in (e.get("loc") or ()) if part != "body"),
            "message": e.get("msg", "Invalid value"),
            "type": e.get("type"),
        }
        for e in exc.errors()
    ]
    return problem_response(
        request=request,
        status_code=422,
        title="Validation Failed",
        detail="Request validation failed",
        errors=errors,
    )


def unhandled_problem(request: Request, exc: Exception) -> ORJSONResponse:
    user = getattr(request.state, "user", None)
    log.exception(
        "unhandled_exception",
        http_method=request.method,
        path=request.url.path,
        user_sub=getattr(user, "sub", None),
    )
    return problem_response(request=request, status_code=500, detail=str(exc) or None)


def install_problem_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LifecycleError, lifecycle_problem)  # type: ignore[arg-type]
    app.add_exception_handler(DdbError, storage_problem)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_problem)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_problem)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_problem)
