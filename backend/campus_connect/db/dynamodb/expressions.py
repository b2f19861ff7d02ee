from __future__ import annotations

from typing import Any, Iterable, Mapping


def update_kwargs(
    *,
    set_fields: Mapping[str, Any] | None = None,
    remove_fields: Iterable[str] = (),
    add_fields: Mapping[str, int] | None = None,
    expect: Mapping[str, Any] | None = None,
    must_exist: bool = True,
) -> dict[str, Any]:
    """
    Build UpdateItem / tx_update keyword arguments.

    Every attribute name goes through a `#placeholder` (status, type, location
    and friends are DynamoDB reserved words). `expect` adds equality guards,
    which is how lifecycle transitions make the state check and the write a
    single atomic step.
    """
    names: dict[str, str] = {}
    values: dict[str, Any] = {}

    def _name(attr: str) -> str:
        ph = f"#n{len(names)}"
        names[ph] = attr
        return ph

    def _value(v: Any) -> str:
        ph = f":v{len(values)}"
        values[ph] = v
        return ph

    clauses: list[str] = []
    sets = [f"{_name(k)} = {_value(v)}" for k, v in (set_fields or {}).items()]
    if sets:
        clauses.append("SET " + ", ".join(sets))
    removes = [_name(k) for k in remove_fields]
    if removes:
        clauses.append("REMOVE " + ", ".join(removes))
    adds = [f"{_name(k)} {_value(int(v))}" for k, v in (add_fields or {}).items()]
    if adds:
        clauses.append("ADD " + ", ".join(adds))
    if not clauses:
        raise ValueError("update has no clauses")

    out: dict[str, Any] = {
        "update_expression": " ".join(clauses),
        "expression_attribute_names": names,
        "expression_attribute_values": values or None,
    }
    cond = _condition(expect=expect, must_exist=must_exist, name=_name, value=_value)
    if cond:
        out["condition_expression"] = cond
    return out


def condition_kwargs(
    *,
    expect: Mapping[str, Any] | None = None,
    must_exist: bool = True,
) -> dict[str, Any]:
    """ConditionExpression kwargs for tx_delete / delete_item guards."""
    names: dict[str, str] = {}
    values: dict[str, Any] = {}

    def _name(attr: str) -> str:
        ph = f"#c{len(names)}"
        names[ph] = attr
        return ph

    def _value(v: Any) -> str:
        ph = f":c{len(values)}"
        values[ph] = v
        return ph

    cond = _condition(expect=expect, must_exist=must_exist, name=_name, value=_value)
    out: dict[str, Any] = {}
    if cond:
        out["condition_expression"] = cond
    if names:
        out["expression_attribute_names"] = names
    if values:
        out["expression_attribute_values"] = values
    return out


def _condition(*, expect, must_exist, name, value) -> str | None:
    parts: list[str] = []
    if must_exist:
        parts.append("attribute_exists(pk)")
    for k, v in (expect or {}).items():
        parts.append(f"{name(k)} = {value(v)}")
    return " AND ".join(parts) if parts else None
