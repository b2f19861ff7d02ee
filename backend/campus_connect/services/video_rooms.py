from __future__ import annotations

import time
import uuid
from typing import Any

import httpx
from jose import JWTError, jwt

from ..observability.logging import get_logger
from ..settings import settings

log = get_logger("video_rooms")


class VideoServiceUnavailable(RuntimeError):
    """Room allocation or token issuance failed; the caller may retry."""


def _require_config() -> tuple[str, str, str]:
    access_key = str(settings.hms_app_access_key or "").strip()
    secret = str(settings.hms_app_secret or "").strip()
    template_id = str(settings.hms_template_id or "").strip()
    if not (access_key and secret and template_id):
        raise VideoServiceUnavailable("video service is not configured")
    return access_key, secret, template_id


def _sign(claims: dict[str, Any], *, secret: str, ttl_seconds: int) -> tuple[str, int]:
    now = int(time.time())
    exp = now + max(60, int(ttl_seconds))
    payload = {**claims, "version": 2, "iat": now, "nbf": now, "exp": exp, "jti": str(uuid.uuid4())}
    return jwt.encode(payload, secret, algorithm="HS256"), exp


def management_token() -> str:
    access_key, secret, _ = _require_config()
    token, _exp = _sign({"access_key": access_key, "type": "management"}, secret=secret, ttl_seconds=300)
    return token


def room_name(*, job_id: str, requester_id: str) -> str:
    return f"interview-{str(job_id)[:8]}-{str(requester_id)[:8]}-{int(time.time() * 1000)}"


def allocate_room(*, name: str, description: str | None = None) -> str:
    """Create a room and return its id."""
    _, _, template_id = _require_config()
    url = f"{str(settings.hms_api_base).rstrip('/')}/rooms"
    body: dict[str, Any] = {"name": name, "template_id": template_id}
    if description:
        body["description"] = description[:500]
    try:
        with httpx.Client(timeout=10.0) as client:
            r = client.post(url, json=body, headers={"Authorization": f"Bearer {management_token()}"})
            r.raise_for_status()
            data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        log.warning("video_room_allocate_failed", room_name=name, error=str(e) or e.__class__.__name__)
        raise VideoServiceUnavailable("could not create video room") from e

    room_id = str((data or {}).get("id") or "").strip() if isinstance(data, dict) else ""
    if not room_id:
        raise VideoServiceUnavailable("video provider returned no room id")
    log.info("video_room_allocated", room_id=room_id, room_name=name)
    return room_id


def issue_token(*, room_id: str, user_id: str, role: str) -> dict[str, Any]:
    """Short-lived app token for joining `room_id` as `role` (host/guest)."""
    rid = str(room_id or "").strip()
    if not rid:
        raise VideoServiceUnavailable("room id missing")
    access_key, secret, _ = _require_config()
    try:
        token, exp = _sign(
            {"access_key": access_key, "type": "app", "room_id": rid, "user_id": str(user_id), "role": role},
            secret=secret,
            ttl_seconds=int(settings.hms_token_ttl_seconds or 86400),
        )
    except JWTError as e:
        log.warning("video_token_issue_failed", room_id=rid, error=str(e) or e.__class__.__name__)
        raise VideoServiceUnavailable("could not issue video token") from e
    return {"token": token, "roomId": rid, "role": role, "expiresAt": exp}
