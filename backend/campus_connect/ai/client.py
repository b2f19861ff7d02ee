from __future__ import annotations

import json
import re
import threading
import time
from dataclasses import dataclass
from typing import TypeVar

import openai
from openai import OpenAI
from pydantic import BaseModel, ValidationError

from ..observability.logging import get_logger
from ..settings import settings

log = get_logger("ai")

T = TypeVar("T", bound=BaseModel)

_RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504})


class AiError(RuntimeError):
    pass


class AiNotConfigured(AiError):
    pass


class AiUpstreamError(AiError):
    pass


class AiParseError(AiError):
    pass


@dataclass(frozen=True)
class AiMeta:
    purpose: str
    model: str
    attempts: int


class _Circuit:
    """
    Process-wide breaker for the model provider.

    Five retryable failures within a minute open it for 15 seconds; while open,
    callers fail fast and fall back to rule-based scoring.
    """

    def __init__(self, *, threshold: int = 5, window_s: float = 60.0, cooldown_s: float = 15.0):
        self._threshold = threshold
        self._window_s = window_s
        self._cooldown_s = cooldown_s
        self._failures: list[float] = []
        self._open_until = 0.0
        self._lock = threading.Lock()

    def check(self) -> None:
        if time.monotonic() < self._open_until:
            raise AiUpstreamError("ai_temporarily_unavailable")

    def success(self) -> None:
        with self._lock:
            self._failures.clear()
            self._open_until = 0.0

    def failure(self) -> None:
        now = time.monotonic()
        with self._lock:
            self._failures = [t for t in self._failures if now - t <= self._window_s] + [now]
            if len(self._failures) >= self._threshold:
                self._open_until = now + self._cooldown_s
                log.warning("ai_circuit_opened", cooldown_s=self._cooldown_s)


_circuit = _Circuit()


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError)):
        return True
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code in _RETRYABLE_STATUS
    return False


def _client(*, timeout_s: int) -> OpenAI:
    if not settings.openai_api_key:
        raise AiNotConfigured("OPENAI_API_KEY not configured")
    # Retries happen in call_json, not in the SDK.
    return OpenAI(api_key=settings.openai_api_key, max_retries=0, timeout=max(5, int(timeout_s)))


def _parse(response_model: type[T], text: str) -> T:
    raw = (text or "").strip()
    # JSON mode usually returns a bare object; some models still wrap it in prose.
    match = re.search(r"\{[\s\S]*\}", raw)
    for candidate in dict.fromkeys([raw, match.group(0) if match else ""]):
        if not candidate:
            continue
        try:
            return response_model.model_validate(json.loads(candidate))
        except (json.JSONDecodeError, ValidationError):
            continue
    raise AiParseError("no_valid_json_object_in_output")


def call_json(
    *,
    purpose: str,
    response_model: type[T],
    messages: list[dict[str, str]],
    max_tokens: int = 800,
    temperature: float = 0.3,
    retries: int = 2,
    timeout_s: int = 30,
) -> tuple[T, AiMeta]:
    """Chat completion in JSON-object mode, validated into `response_model`."""
    _circuit.check()
    client = _client(timeout_s=timeout_s)
    model = str(settings.openai_model or "gpt-4o-mini").strip()
    cap = int(settings.openai_max_output_tokens_cap or max_tokens)

    last_err: Exception | None = None
    for attempt in range(1, max(1, retries) + 1):
        try:
            resp = client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=min(int(max_tokens), cap),
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            last_err = e
            retryable = _is_retryable(e)
            if retryable:
                _circuit.failure()
            log.warning("ai_call_failed", purpose=purpose, model=model, attempt=attempt, retryable=retryable, error=str(e))
            if not retryable:
                break
            time.sleep(min(2.0, 0.4 * attempt))
            continue

        text = resp.choices[0].message.content if resp.choices else ""
        try:
            parsed = _parse(response_model, text or "")
        except AiParseError as e:
            last_err = e
            log.warning("ai_json_parse_failed", purpose=purpose, model=model, attempt=attempt)
            continue

        _circuit.success()
        log.info("ai_call_ok", purpose=purpose, model=model, attempts=attempt)
        return parsed, AiMeta(purpose=purpose, model=model, attempts=attempt)

    if isinstance(last_err, AiParseError):
        raise last_err
    raise AiUpstreamError(str(last_err) if last_err else "ai_call_failed")
