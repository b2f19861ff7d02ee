from __future__ import annotations

import httpx
import pytest
from botocore.exceptions import ClientError
from jose import jwt

from campus_connect.services import email_ses, email_templates, video_rooms
from campus_connect.settings import settings


def test_templates_escape_user_content_and_link_to_frontend(monkeypatch):
    monkeypatch.setattr(settings, "frontend_base_url", "https://campus.example")
    msg = email_templates.render(
        "JOB_REJECTED",
        {"jobTitle": "<b>Lab</b>", "reason": "needs <details>", "recipientName": "Kim", "link": "/drafts"},
    )
    assert "<b>Lab</b>" in msg.subject
    assert "&lt;b&gt;Lab&lt;/b&gt;" in msg.html
    assert "needs &lt;details&gt;" in msg.html
    assert "https://campus.example/drafts" in msg.html
    assert "Edit Your Job: https://campus.example/drafts" in msg.text


def test_unknown_template_raises():
    with pytest.raises(email_templates.UnknownTemplate):
        email_templates.render("NEWSLETTER", {})


def test_send_email_skips_when_not_configured(monkeypatch):
    monkeypatch.setattr(settings, "email_enabled", True)
    monkeypatch.setattr(settings, "email_sender", None)
    res = email_ses.send_email(recipient="a@campus.test", template_kind="JOB_FILLED", template_data={})
    assert res == {"ok": False, "error": "missing_to_or_from", "skipped": True}


def test_send_email_reports_ses_errors(monkeypatch):
    monkeypatch.setattr(settings, "email_enabled", True)
    monkeypatch.setattr(settings, "email_sender", "no-reply@campus.example")

    class _Ses:
        def send_email(self, **_):
            raise ClientError({"Error": {"Code": "Throttling", "Message": "Rate exceeded"}}, "SendEmail")

    monkeypatch.setattr(email_ses, "_sesv2_client", lambda: _Ses())
    res = email_ses.send_email(recipient="a@campus.test", template_kind="JOB_FILLED", template_data={"jobTitle": "X"})
    assert res["ok"] is False
    assert "Rate exceeded" in res["error"]
    assert not res.get("skipped")


@pytest.fixture
def video_config(monkeypatch):
    monkeypatch.setattr(settings, "hms_app_access_key", "ak_test")
    monkeypatch.setattr(settings, "hms_app_secret", "s3cret-for-tests")
    monkeypatch.setattr(settings, "hms_template_id", "tmpl_1")
    monkeypatch.setattr(settings, "hms_api_base", "https://video.example/v2")


def _mock_client(monkeypatch, handler):
    real_client = httpx.Client
    monkeypatch.setattr(
        video_rooms.httpx, "Client", lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw)
    )


def test_issue_token_claims(video_config):
    tok = video_rooms.issue_token(room_id="room_9", user_id="prf_1", role="host")
    claims = jwt.decode(tok["token"], "s3cret-for-tests", algorithms=["HS256"])
    assert claims["room_id"] == "room_9"
    assert claims["user_id"] == "prf_1"
    assert claims["role"] == "host"
    assert claims["type"] == "app"
    assert claims["exp"] == tok["expiresAt"]


def test_allocate_room_posts_to_provider(video_config, monkeypatch):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization", "")
        return httpx.Response(200, json={"id": "room_abc"})

    _mock_client(monkeypatch, handler)
    assert video_rooms.allocate_room(name="interview-1") == "room_abc"
    assert seen["url"] == "https://video.example/v2/rooms"
    assert seen["auth"].startswith("Bearer ")


def test_allocate_room_failure_is_unavailable(video_config, monkeypatch):
    _mock_client(monkeypatch, lambda request: httpx.Response(502, json={"error": "bad gateway"}))
    with pytest.raises(video_rooms.VideoServiceUnavailable):
        video_rooms.allocate_room(name="interview-1")


def test_video_not_configured(monkeypatch):
    monkeypatch.setattr(settings, "hms_app_secret", None)
    with pytest.raises(video_rooms.VideoServiceUnavailable):
        video_rooms.issue_token(room_id="room_1", user_id="prf_1", role="guest")
