from __future__ import annotations

import copy
import re
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure `backend/` is on sys.path so `import campus_connect.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from campus_connect.db.dynamodb.errors import DdbConflict, DdbInternal  # noqa: E402
from campus_connect.db.dynamodb.table import MAX_TRANSACT_ITEMS, Page  # noqa: E402

_INDEX_KEYS = {None: ("pk", "sk"), "GSI1": ("gsi1pk", "gsi1sk"), "GSI2": ("gsi2pk", "gsi2sk")}
_CLAUSE_RE = re.compile(r"\b(SET|REMOVE|ADD)\b")


class FakeTable:
    """
    In-memory stand-in for DynamoTable.

    Understands the expression grammar the repositories emit (SET/REMOVE/ADD,
    attribute_exists/attribute_not_exists, `=`, `IN`, `AND`) and applies
    transactions all-or-nothing with per-item cancellation reasons.
    """

    def __init__(self):
        # Keyed by (pk, sk)
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.transact_calls: list[list[tuple[str, dict[str, Any]]]] = []
        # Return an exception to make the next matching transaction fail.
        self.fail_transact: Callable[[list[tuple[str, dict[str, Any]]]], Exception | None] | None = None

    # --- helpers ---

    @staticmethod
    def _k(key: dict[str, Any]) -> tuple[str, str]:
        return str(key.get("pk") or ""), str(key.get("sk") or "")

    @staticmethod
    def _name(token: str, names: dict[str, str] | None) -> str:
        token = token.strip()
        return (names or {}).get(token, token)

    @staticmethod
    def _value(token: str, values: dict[str, Any] | None) -> Any:
        return (values or {})[token.strip()]

    def _check(
        self,
        item: dict[str, Any] | None,
        condition: str | None,
        names: dict[str, str] | None,
        values: dict[str, Any] | None,
    ) -> bool:
        if not condition:
            return True
        for term in condition.split(" AND "):
            term = term.strip()
            m = re.fullmatch(r"attribute_exists\((.+)\)", term)
            if m:
                if item is None or self._name(m.group(1), names) not in item:
                    return False
                continue
            m = re.fullmatch(r"attribute_not_exists\((.+)\)", term)
            if m:
                if item is not None and self._name(m.group(1), names) in item:
                    return False
                continue
            m = re.fullmatch(r"(\S+) = (\S+)", term)
            if m:
                if item is None or item.get(self._name(m.group(1), names)) != self._value(m.group(2), values):
                    return False
                continue
            raise AssertionError(f"FakeTable cannot parse condition term: {term!r}")
        return True

    def _apply_update(
        self,
        item: dict[str, Any],
        expression: str,
        names: dict[str, str] | None,
        values: dict[str, Any] | None,
    ) -> dict[str, Any]:
        out = copy.deepcopy(item)
        parts = _CLAUSE_RE.split(expression)
        for i in range(1, len(parts), 2):
            kind, body = parts[i], parts[i + 1].strip()
            for piece in [p.strip() for p in body.split(",") if p.strip()]:
                if kind == "SET":
                    left, right = piece.split("=", 1)
                    out[self._name(left, names)] = copy.deepcopy(self._value(right, values))
                elif kind == "REMOVE":
                    out.pop(self._name(piece, names), None)
                else:
                    attr, val = piece.split()
                    attr = self._name(attr, names)
                    out[attr] = int(out.get(attr) or 0) + int(self._value(val, values))
        return out

    # --- basic operations ---

    def get_item(self, *, key: dict[str, Any], consistent_read: bool = True) -> dict[str, Any] | None:
        it = self.items.get(self._k(key))
        return copy.deepcopy(it) if it is not None else None

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        k = self._k(item)
        if not self._check(self.items.get(k), condition_expression, expression_attribute_names, expression_attribute_values):
            raise DdbConflict(message="Conditional check failed", operation="PutItem", table_name="Fake", key=dict(zip(("pk", "sk"), k)))
        self.items[k] = copy.deepcopy(item)
        return {}

    def delete_item(
        self,
        *,
        key: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        k = self._k(key)
        if not self._check(self.items.get(k), condition_expression, expression_attribute_names, expression_attribute_values):
            raise DdbConflict(message="Conditional check failed", operation="DeleteItem", table_name="Fake", key=key)
        self.items.pop(k, None)
        return {}

    def update_item(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any] | None,
        condition_expression: str | None = None,
        return_values: str = "ALL_NEW",
    ) -> dict[str, Any] | None:
        k = self._k(key)
        current = self.items.get(k)
        if not self._check(current, condition_expression, expression_attribute_names, expression_attribute_values):
            raise DdbConflict(message="Conditional check failed", operation="UpdateItem", table_name="Fake", key=key)
        base = current if current is not None else {"pk": k[0], "sk": k[1]}
        updated = self._apply_update(base, update_expression, expression_attribute_names, expression_attribute_values)
        self.items[k] = updated
        return copy.deepcopy(updated)

    # --- queries ---

    def _matching(self, key_condition_expression: Any, index_name: str | None, scan_index_forward: bool) -> list[dict[str, Any]]:
        expr = key_condition_expression.get_expression()
        attr = expr["values"][0].name
        want = expr["values"][1]
        _, sort_attr = _INDEX_KEYS[index_name]
        found = [copy.deepcopy(it) for it in self.items.values() if it.get(attr) == want]
        found.sort(key=lambda it: str(it.get(sort_attr) or ""), reverse=not scan_index_forward)
        return found

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        limit: int = 50,
        scan_index_forward: bool = False,
        filter_expression: Any | None = None,
        start_key: dict[str, Any] | None = None,
    ) -> Page:
        found = self._matching(key_condition_expression, index_name, scan_index_forward)
        return Page(items=found[: max(1, int(limit or 50))], last_key=None)

    def query_all(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        scan_index_forward: bool = False,
        filter_expression: Any | None = None,
        page_size: int = 200,
        max_items: int | None = None,
    ):
        found = self._matching(key_condition_expression, index_name, scan_index_forward)
        return iter(found if max_items is None else found[:max_items])

    # --- transactions ---

    def transact_write(self, *, puts=(), deletes=(), updates=(), retry_policy=None) -> dict[str, Any]:
        ops: list[tuple[str, dict[str, Any]]] = [
            *[("Update", u) for u in updates],
            *[("Put", p) for p in puts],
            *[("Delete", d) for d in deletes],
        ]
        if not ops:
            return {"ok": True}
        if len(ops) > MAX_TRANSACT_ITEMS:
            raise DdbInternal(message=f"Transaction too large ({len(ops)} items)", operation="TransactWriteItems")
        self.transact_calls.append(ops)
        if self.fail_transact is not None:
            injected = self.fail_transact(ops)
            if injected is not None:
                raise injected

        reasons: list[str] = []
        for kind, op in ops:
            key = op.get("Item") if kind == "Put" else op.get("Key")
            ok = self._check(
                self.items.get(self._k(key or {})),
                op.get("ConditionExpression"),
                op.get("ExpressionAttributeNames"),
                op.get("ExpressionAttributeValues"),
            )
            reasons.append("None" if ok else "ConditionalCheckFailed")
        if "ConditionalCheckFailed" in reasons:
            raise DdbConflict(message="Transaction cancelled", operation="TransactWriteItems", reasons=reasons)

        for kind, op in ops:
            if kind == "Put":
                self.items[self._k(op["Item"])] = copy.deepcopy(op["Item"])
            elif kind == "Delete":
                self.items.pop(self._k(op["Key"]), None)
            else:
                k = self._k(op["Key"])
                base = self.items.get(k) or {"pk": k[0], "sk": k[1]}
                self.items[k] = self._apply_update(
                    base,
                    op["UpdateExpression"],
                    op.get("ExpressionAttributeNames"),
                    op.get("ExpressionAttributeValues"),
                )
        return {"ok": True}

    def tx_put(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return {
            "Item": copy.deepcopy(item),
            "ConditionExpression": condition_expression,
            "ExpressionAttributeNames": expression_attribute_names,
            "ExpressionAttributeValues": expression_attribute_values,
        }

    def tx_delete(
        self,
        *,
        key: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return {
            "Key": dict(key),
            "ConditionExpression": condition_expression,
            "ExpressionAttributeNames": expression_attribute_names,
            "ExpressionAttributeValues": expression_attribute_values,
        }

    def tx_update(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any] | None,
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        return {
            "Key": dict(key),
            "UpdateExpression": update_expression,
            "ConditionExpression": condition_expression,
            "ExpressionAttributeNames": expression_attribute_names,
            "ExpressionAttributeValues": expression_attribute_values,
        }

    # --- test conveniences ---

    def all_of(self, entity_type: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(it) for it in self.items.values() if it.get("entityType") == entity_type]

    def notifications_for(self, recipient_id: str, type: str | None = None) -> list[dict[str, Any]]:
        return [
            n
            for n in self.all_of("Notification")
            if n.get("recipientId") == recipient_id and (type is None or n.get("type") == type)
        ]


@pytest.fixture
def fake_table(monkeypatch):
    t = FakeTable()
    import campus_connect.modules.notifications.dispatcher as dispatcher
    import campus_connect.repositories.applications_repo as applications_repo
    import campus_connect.repositories.call_requests_repo as call_requests_repo
    import campus_connect.repositories.jobs_repo as jobs_repo
    import campus_connect.repositories.notifications_repo as notifications_repo
    import campus_connect.repositories.outbox_repo as outbox_repo
    import campus_connect.repositories.profiles_repo as profiles_repo

    for mod in (
        dispatcher,
        applications_repo,
        call_requests_repo,
        jobs_repo,
        notifications_repo,
        outbox_repo,
        profiles_repo,
    ):
        monkeypatch.setattr(mod, "get_main_table", lambda: t)
    return t


@pytest.fixture
def sent_emails(monkeypatch):
    """Records every email the dispatcher sends; sends succeed."""
    from campus_connect.services import email_ses

    sent: list[dict[str, Any]] = []

    def _send(*, recipient: str, template_kind: str, template_data: dict[str, Any]) -> dict[str, Any]:
        sent.append({"recipient": recipient, "kind": template_kind, "data": dict(template_data)})
        return {"ok": True, "messageId": f"msg-{len(sent)}"}

    monkeypatch.setattr(email_ses, "send_email", _send)
    return sent


@pytest.fixture
def video(monkeypatch):
    """Video collaborator double; flip `fail_allocate` / `fail_token` to simulate outages."""
    from campus_connect.services import video_rooms

    class _Video:
        def __init__(self):
            self.rooms: list[str] = []
            self.tokens: list[dict[str, Any]] = []
            self.fail_allocate = False
            self.fail_token = False

        def allocate_room(self, *, name: str, description: str | None = None) -> str:
            if self.fail_allocate:
                raise video_rooms.VideoServiceUnavailable("provider down")
            room_id = f"room-{len(self.rooms) + 1}"
            self.rooms.append(room_id)
            return room_id

        def issue_token(self, *, room_id: str, user_id: str, role: str) -> dict[str, Any]:
            if self.fail_token:
                raise video_rooms.VideoServiceUnavailable("provider down")
            tok = {"token": f"tok-{user_id}", "roomId": room_id, "role": role, "expiresAt": 0}
            self.tokens.append(tok)
            return tok

    v = _Video()
    monkeypatch.setattr(video_rooms, "allocate_room", v.allocate_room)
    monkeypatch.setattr(video_rooms, "issue_token", v.issue_token)
    return v


@pytest.fixture
def make_actor(fake_table):
    """Create a profile (as on first login) and return the Actor for it."""
    from campus_connect.modules.identity.actor import Actor
    from campus_connect.repositories import profiles_repo

    def _make(
        name: str,
        *,
        admin: bool = False,
        skills: list[str] | None = None,
        interests: list[str] | None = None,
    ) -> Actor:
        p = profiles_repo.ensure_profile_for_identity(
            identity_sub=f"sub-{name}", email=f"{name}@campus.test", full_name=name.title()
        )
        if skills is not None or interests is not None:
            profiles_repo.update_profile(profile_id=p["profileId"], skills=skills, interests=interests)
        return Actor(
            profile_id=p["profileId"],
            identity_sub=f"sub-{name}",
            email=p.get("email"),
            is_admin=admin,
            display_name=name.title(),
        )

    return _make


@pytest.fixture
def published_job(make_actor, sent_emails):
    """Factory: a job created by `owner`, approved by an admin and published."""
    from campus_connect.modules.jobs import job_lifecycle

    admin = make_actor("moderator", admin=True)

    def _make(owner, *, title: str = "ML research assistant", tags: list[str] | None = None) -> dict[str, Any]:
        job = job_lifecycle.create_job(
            actor=owner,
            content={
                "title": title,
                "description": "Help build a recommendation model for campus events.",
                "tags": tags if tags is not None else ["python", "machine learning"],
                "type": "ACADEMIC_PROJECT",
            },
        )
        return job_lifecycle.moderate(job_id=job["jobId"], actor=admin, decision="APPROVE")

    return _make


@pytest.fixture(autouse=True)
def _offline_settings(monkeypatch):
    """Tests never reach OpenAI or SES, whatever the environment says."""
    from campus_connect.settings import settings

    monkeypatch.setattr(settings, "openai_api_key", None)
    monkeypatch.setattr(settings, "email_enabled", False)
