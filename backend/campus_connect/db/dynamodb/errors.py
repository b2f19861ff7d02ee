from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class DdbError(Exception):
    """Base error for DynamoDB operations.

    Raised by `ddb_call`; rendered by `problem_details.storage_problem` unless a
    repository or lifecycle function translates it first.
    """

    message: str
    operation: str | None = None
    table_name: str | None = None
    key: dict[str, Any] | None = None
    aws_request_id: str | None = None
    retryable: bool = False
    cause: Exception | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class DdbConflict(DdbError):
    """A condition expression failed.

    For TransactWriteItems, `reasons` holds one cancellation code per transact
    item, in request order ("None" for items that passed).
    """

    reasons: list[str] = field(default_factory=list)

    def failed_indexes(self) -> list[int]:
        return [i for i, r in enumerate(self.reasons) if r == "ConditionalCheckFailed"]


@dataclass(slots=True)
class DdbValidation(DdbError):
    pass


@dataclass(slots=True)
class DdbThrottled(DdbError):
    pass


@dataclass(slots=True)
class DdbUnavailable(DdbError):
    pass


@dataclass(slots=True)
class DdbInternal(DdbError):
    pass
