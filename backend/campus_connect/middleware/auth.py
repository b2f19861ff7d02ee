from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth.cognito import CognitoAuthError, VerifiedUser, verify_bearer_token
from ..observability.logging import get_logger
from ..problem_details import problem_response

PUBLIC_PATHS = frozenset({"/", "/docs", "/openapi.json"})

log = get_logger("auth_middleware")


def requires_auth(request: Request) -> bool:
    # Preflight is answered by CORSMiddleware; only /api/* is protected.
    if request.method.upper() == "OPTIONS":
        return False
    path = request.url.path
    return path.startswith("/api/") and path not in PUBLIC_PATHS


def bearer_token(request: Request) -> str:
    scheme, _, token = str(request.headers.get("authorization") or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise CognitoAuthError("Unauthorized")
    return token.strip()


def authenticate(request: Request) -> VerifiedUser:
    return verify_bearer_token(bearer_token(request))


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Puts the verified Cognito user on `request.state.user` for /api/* routes.

    Sits inside CORSMiddleware so 401s still carry CORS headers. Profile
    resolution happens later, in the `current_actor` dependency.
    """

    async def dispatch(self, request: Request, call_next):
        if not requires_auth(request):
            return await call_next(request)
        try:
            request.state.user = authenticate(request)
        except CognitoAuthError as e:
            status_code = int(e.status_code or 401)
            if status_code >= 500:
                log.error("auth_unavailable", status_code=status_code, path=request.url.path, error=str(e))
            else:
                log.info("auth_denied", path=request.url.path, reason=str(e))
            return problem_response(
                request=request,
                status_code=status_code,
                title="Unauthorized" if status_code == 401 else None,
                detail=str(e),
                extensions={"code": "unauthenticated" if status_code == 401 else "identity_unavailable"},
            )
        return await call_next(request)
