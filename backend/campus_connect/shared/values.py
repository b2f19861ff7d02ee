from __future__ import annotations

from decimal import Decimal
from typing import Any


def to_plain(v: Any) -> Any:
    """boto3 resource reads every number back as Decimal; API payloads want ints."""
    if isinstance(v, Decimal):
        return int(v) if v == v.to_integral_value() else float(v)
    if isinstance(v, list):
        return [to_plain(x) for x in v]
    if isinstance(v, set):
        return sorted(to_plain(x) for x in v)
    if isinstance(v, dict):
        return {k: to_plain(x) for k, x in v.items()}
    return v
