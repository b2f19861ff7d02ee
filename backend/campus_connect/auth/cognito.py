from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx
from cachetools import TTLCache
from jose import ExpiredSignatureError, JWTError, jwt

from ..modules.identity.roles import normalize_groups
from ..settings import settings


class CognitoAuthError(Exception):
    def __init__(self, message: str, *, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class VerifiedUser:
    sub: str
    username: str
    email: str | None
    groups: list[str] = field(default_factory=list)
    name: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)


_JWKS_CACHE: TTLCache[str, dict[str, Any]] = TTLCache(maxsize=4, ttl=60 * 60)


def _issuer() -> str:
    if not settings.cognito_user_pool_id:
        raise CognitoAuthError("COGNITO_USER_POOL_ID is not set", status_code=500)
    region = settings.cognito_region or settings.aws_region
    return f"https://cognito-idp.{region}.amazonaws.com/{settings.cognito_user_pool_id}"


def _jwks_url() -> str:
    return f"{_issuer()}/.well-known/jwks.json"


def _get_jwks() -> dict[str, Any]:
    url = _jwks_url()
    cached = _JWKS_CACHE.get(url)
    if cached:
        return cached

    try:
        with httpx.Client(timeout=10.0) as client:
            resp = client.get(url)
            resp.raise_for_status()
            jwks = resp.json()
    except httpx.HTTPError as e:
        raise CognitoAuthError("Identity provider unavailable", status_code=503) from e

    _JWKS_CACHE[url] = jwks
    return jwks


def verify_bearer_token(token: str) -> VerifiedUser:
    if not token:
        raise CognitoAuthError("missing token")
    if not settings.cognito_client_id:
        raise CognitoAuthError("COGNITO_CLIENT_ID is not set", status_code=500)

    jwks = _get_jwks()
    issuer = _issuer()

    try:
        # Access tokens carry `client_id` instead of `aud`; audience is checked below.
        claims = jwt.decode(
            token,
            jwks,
            algorithms=["RS256"],
            issuer=issuer,
            options={"verify_aud": False, "verify_iss": True, "verify_exp": True},
        )
    except ExpiredSignatureError as e:
        raise CognitoAuthError("token expired") from e
    except JWTError as e:
        raise CognitoAuthError("invalid token") from e

    token_use = claims.get("token_use")
    if token_use not in ("id", "access"):
        raise CognitoAuthError("invalid token_use")
    audience = claims.get("aud") if token_use == "id" else claims.get("client_id")
    if audience != settings.cognito_client_id:
        raise CognitoAuthError("token was issued for another client")

    sub = str(claims.get("sub") or "")
    if not sub:
        raise CognitoAuthError("missing sub")

    email = claims.get("email")
    if email is not None:
        email = str(email)

    username = (
        str(claims.get("preferred_username") or "").strip()
        or str(claims.get("cognito:username") or "").strip()
        or (email or "")
    )
    name = str(claims.get("name") or "").strip() or None

    return VerifiedUser(
        sub=sub,
        username=username,
        email=email,
        groups=normalize_groups(claims.get("cognito:groups")),
        name=name,
        claims=claims,
    )
