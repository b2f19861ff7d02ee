from __future__ import annotations

from functools import lru_cache
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..db.dynamodb.client import botocore_config
from ..observability.logging import get_logger
from ..settings import settings
from .email_templates import UnknownTemplate, render

log = get_logger("email_ses")


@lru_cache(maxsize=1)
def _sesv2_client():
    # Bounded: one attempt, short timeouts. Failed sends are retried by the
    # outbox worker, never inside the request.
    t = max(1, int(settings.email_send_timeout_seconds or 5))
    return boto3.client(
        "sesv2",
        region_name=settings.aws_region,
        config=botocore_config(connect_timeout=t, read_timeout=t, max_attempts=1),
    )


def send_email(*, recipient: str, template_kind: str, template_data: dict[str, Any]) -> dict[str, Any]:
    """
    Render and send one transactional email.

    Returns {"ok": True, "messageId": ...} or {"ok": False, "error": ...}.
    Never raises.
    """
    to_ = str(recipient or "").strip()
    if not settings.email_enabled:
        return {"ok": False, "error": "email_disabled", "skipped": True}
    frm = str(settings.email_sender or "").strip()
    if not to_ or not frm:
        return {"ok": False, "error": "missing_to_or_from", "skipped": True}

    try:
        msg = render(template_kind, template_data)
    except UnknownTemplate:
        return {"ok": False, "error": f"unknown_template:{template_kind}", "skipped": True}

    try:
        resp = _sesv2_client().send_email(
            FromEmailAddress=frm,
            Destination={"ToAddresses": [to_]},
            Content={
                "Simple": {
                    "Subject": {"Data": msg.subject, "Charset": "UTF-8"},
                    "Body": {
                        "Text": {"Data": msg.text, "Charset": "UTF-8"},
                        "Html": {"Data": msg.html, "Charset": "UTF-8"},
                    },
                }
            },
        )
    except (BotoCoreError, ClientError) as e:
        log.warning("ses_send_failed", template_kind=template_kind, error=str(e) or e.__class__.__name__)
        return {"ok": False, "error": str(e) or e.__class__.__name__}

    msg_id = (resp or {}).get("MessageId") if isinstance(resp, dict) else None
    return {"ok": True, "messageId": msg_id}
