from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from .middleware.auth import AuthMiddleware
from .middleware.request_context import REQUEST_ID_HEADER, RequestContextMiddleware
from .observability.logging import configure_logging, get_logger
from .observability.otel import configure_otel, instrument_app
from .problem_details import install_problem_handlers
from .routers.admin import router as admin_router
from .routers.applications import router as applications_router
from .routers.call_requests import router as call_requests_router
from .routers.health import router as health_router
from .routers.jobs import router as jobs_router
from .routers.notifications import router as notifications_router
from .routers.profile import router as profile_router
from .settings import settings

API_ROUTERS = (
    (profile_router, "/api/profile"),
    (jobs_router, "/api/jobs"),
    (admin_router, "/api/admin"),
    (applications_router, "/api"),
    (call_requests_router, "/api/call-requests"),
    (notifications_router, "/api/notifications"),
)


def create_app() -> FastAPI:
    configure_logging(level=settings.log_level, fmt=settings.log_format)
    configure_otel(settings)

    app = FastAPI(
        title="CampusConnect Lifecycle Backend",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        redirect_slashes=False,
    )
    get_logger("startup").info("app_starting", settings=settings.to_log_safe_dict())

    # Last added is outermost: request context > CORS > auth.
    app.add_middleware(AuthMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=settings.cors_origin_regex or None,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
        max_age=3000,
    )
    app.add_middleware(RequestContextMiddleware, quiet_paths={"/"})

    install_problem_handlers(app)

    app.include_router(health_router)
    for router, prefix in API_ROUTERS:
        app.include_router(router, prefix=prefix)

    instrument_app(app, settings)
    return app


app = create_app()
