from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    DdbConflict,
    DdbError,
    DdbInternal,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 6
    base_delay_s: float = 0.05
    max_delay_s: float = 1.5


_RETRYABLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
    # Returned directly by TransactWriteItems under contention.
    "TransactionConflictException",
    "TransactionInProgressException",
}

# Per-item cancellation reasons that are worth retrying.
_TRANSACTION_RETRYABLE_REASONS = {
    "TransactionConflict",
    "ThrottlingError",
    "ProvisionedThroughputExceeded",
}


# error code -> (error class, message, retryable)
_CLIENT_ERRORS: dict[str, tuple[type[DdbError], str, bool]] = {
    "ValidationException": (DdbValidation, "DynamoDB request validation failed", False),
    "ParamValidationError": (DdbValidation, "DynamoDB request validation failed", False),
    "AccessDeniedException": (DdbUnavailable, "DynamoDB table unavailable", False),
    "UnrecognizedClientException": (DdbUnavailable, "DynamoDB table unavailable", False),
    "ResourceNotFoundException": (DdbUnavailable, "DynamoDB table unavailable", False),
    **{code: (DdbThrottled, "DynamoDB request throttled or unavailable", True) for code in _RETRYABLE_CODES},
}


def _sleep_backoff(policy: RetryPolicy, attempt: int) -> None:
    # Full jitter.
    ceiling = min(policy.max_delay_s, policy.base_delay_s * (2 ** max(0, attempt - 1)))
    time.sleep(random.uniform(0, ceiling))


def _from_transaction(exc: ClientError, ctx: dict[str, Any]) -> DdbError:
    reasons = [str((r or {}).get("Code") or "None") for r in (exc.response.get("CancellationReasons") or [])]
    if "ConditionalCheckFailed" in reasons:
        return DdbConflict(message="DynamoDB transaction condition failed", reasons=reasons, **ctx)
    if _TRANSACTION_RETRYABLE_REASONS.intersection(reasons):
        return DdbThrottled(message="DynamoDB transaction conflict", retryable=True, **ctx)
    return DdbInternal(message=f"DynamoDB transaction cancelled ({', '.join(reasons) or 'no reasons'})", **ctx)


def _map_botocore_error(
    *,
    operation: str,
    table_name: str | None,
    key: dict[str, Any] | None,
    exc: ClientError | BotoCoreError,
) -> DdbError:
    ctx: dict[str, Any] = {"operation": operation, "table_name": table_name, "key": key, "cause": exc}

    if isinstance(exc, ClientError):
        code = str(exc.response.get("Error", {}).get("Code") or "")
        ctx["aws_request_id"] = exc.response.get("ResponseMetadata", {}).get("RequestId")
        if code == "ConditionalCheckFailedException":
            return DdbConflict(message="DynamoDB conditional check failed", **ctx)
        if code == "TransactionCanceledException":
            return _from_transaction(exc, ctx)
        cls, message, retryable = _CLIENT_ERRORS.get(
            code, (DdbInternal, f"DynamoDB request failed ({code or 'ClientError'})", False)
        )
        return cls(message=message, retryable=retryable, **ctx)

    # BotoCoreError: connection resets and read timeouts.
    return DdbUnavailable(message="DynamoDB client error", retryable=True, **ctx)


def ddb_call(
    operation: str,
    fn: Callable[[], T],
    *,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> T:
    """Run one DynamoDB call, retrying only transient failures.

    Conditional-check failures are never retried here: they carry lifecycle
    meaning and the caller decides what to do.
    """
    policy = retry_policy or RetryPolicy()

    attempts = max(1, int(policy.max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except (ClientError, BotoCoreError) as e:
            mapped = _map_botocore_error(operation=operation, table_name=table_name, key=key, exc=e)
            if not mapped.retryable or attempt >= attempts:
                raise mapped from e
            _sleep_backoff(policy, attempt)

    raise DdbInternal(message="DynamoDB request failed", operation=operation, table_name=table_name, key=key)
