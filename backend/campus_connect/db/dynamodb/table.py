from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Iterator

from boto3.dynamodb.types import TypeSerializer

from ...settings import settings
from .client import dynamodb_client, dynamodb_resource
from .errors import DdbInternal
from .retry import RetryPolicy, ddb_call

# DynamoDB hard limit on items per TransactWriteItems call.
MAX_TRANSACT_ITEMS = 100

# Lifecycle transactions contend on hot items (a job being filled while people
# apply); they get more attempts than single-item writes.
TRANSACT_RETRY = RetryPolicy(max_attempts=8, base_delay_s=0.08, max_delay_s=2.0)

_serializer = TypeSerializer()


def _wire(values: dict[str, Any]) -> dict[str, Any]:
    # Low-level client shape ({"S": ...}, {"N": ...}) for transact items.
    return {k: _serializer.serialize(v) for k, v in values.items()}


def _conditioned(
    base: dict[str, Any],
    *,
    condition_expression: str | None,
    expression_attribute_names: dict[str, str] | None,
    expression_attribute_values: dict[str, Any] | None,
    wire: bool = False,
) -> dict[str, Any]:
    out = dict(base)
    if condition_expression:
        out["ConditionExpression"] = condition_expression
    if expression_attribute_names:
        out["ExpressionAttributeNames"] = dict(expression_attribute_names)
    if expression_attribute_values:
        out["ExpressionAttributeValues"] = (
            _wire(expression_attribute_values) if wire else dict(expression_attribute_values)
        )
    return out


@dataclass(slots=True)
class Page:
    items: list[dict[str, Any]]
    last_key: dict[str, Any] | None


class DynamoTable:
    """
    The single CampusConnect table.

    Item reads and writes go through the boto3 resource (native Python values);
    TransactWriteItems goes through the low-level client, so `tx_*` builders
    return wire-shaped dicts. Every call is wrapped in `ddb_call` for error
    mapping and transient retries.
    """

    def __init__(self, *, table_name: str):
        self.table_name = str(table_name)
        self._table = dynamodb_resource().Table(self.table_name)
        self._client = dynamodb_client()

    def _call(self, operation: str, fn, *, key: dict[str, Any] | None = None, retry_policy: RetryPolicy | None = None):
        return ddb_call(operation, fn, table_name=self.table_name, key=key, retry_policy=retry_policy)

    def get_item(self, *, key: dict[str, Any], consistent_read: bool = True) -> dict[str, Any] | None:
        # Lifecycle decisions read-then-condition; strongly consistent reads keep
        # the conflict loop short.
        resp = self._call("GetItem", lambda: self._table.get_item(Key=key, ConsistentRead=consistent_read), key=key)
        return resp.get("Item")

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        kwargs = _conditioned(
            {"Item": item},
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
        )
        return self._call("PutItem", lambda: self._table.put_item(**kwargs))

    def delete_item(
        self,
        *,
        key: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        kwargs = _conditioned(
            {"Key": key},
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
        )
        return self._call("DeleteItem", lambda: self._table.delete_item(**kwargs), key=key)

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
        kwargs = _conditioned(
            {"Key": key, "UpdateExpression": update_expression, "ReturnValues": return_values},
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
        )
        resp = self._call("UpdateItem", lambda: self._table.update_item(**kwargs), key=key)
        return resp.get("Attributes")

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
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": key_condition_expression,
            "ScanIndexForward": scan_index_forward,
            "Limit": max(1, min(500, int(limit or 50))),
        }
        if index_name:
            kwargs["IndexName"] = index_name
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        if start_key:
            kwargs["ExclusiveStartKey"] = start_key

        resp = self._call("Query", lambda: self._table.query(**kwargs))
        return Page(items=list(resp.get("Items") or []), last_key=resp.get("LastEvaluatedKey") or None)

    def query_all(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        scan_index_forward: bool = False,
        filter_expression: Any | None = None,
        page_size: int = 200,
        max_items: int | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Every matching item, following LastEvaluatedKey until exhausted or `max_items`."""
        start_key: dict[str, Any] | None = None
        yielded = 0
        while True:
            page = self.query_page(
                key_condition_expression=key_condition_expression,
                index_name=index_name,
                limit=page_size,
                scan_index_forward=scan_index_forward,
                filter_expression=filter_expression,
                start_key=start_key,
            )
            for item in page.items:
                yield item
                yielded += 1
                if max_items is not None and yielded >= max_items:
                    return
            start_key = page.last_key
            if not start_key:
                return

    def transact_write(
        self,
        *,
        puts: Iterable[dict[str, Any]] = (),
        deletes: Iterable[dict[str, Any]] = (),
        updates: Iterable[dict[str, Any]] = (),
        retry_policy: RetryPolicy | None = None,
    ) -> dict[str, Any]:
        """
        All-or-nothing write of `tx_*`-built items.

        Request order is updates, puts, deletes; a DdbConflict's `reasons`
        follow that order.
        """
        items = (
            [{"Update": u} for u in updates]
            + [{"Put": p} for p in puts]
            + [{"Delete": d} for d in deletes]
        )
        if not items:
            return {"ok": True}
        if len(items) > MAX_TRANSACT_ITEMS:
            raise DdbInternal(
                message=f"Transaction too large ({len(items)} items)",
                operation="TransactWriteItems",
                table_name=self.table_name,
            )
        return self._call(
            "TransactWriteItems",
            lambda: self._client.transact_write_items(TransactItems=items),
            retry_policy=retry_policy or TRANSACT_RETRY,
        )

    def tx_put(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return _conditioned(
            {"TableName": self.table_name, "Item": _wire(item)},
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
            wire=True,
        )

    def tx_delete(
        self,
        *,
        key: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return _conditioned(
            {"TableName": self.table_name, "Key": _wire(key)},
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
            wire=True,
        )

    def tx_update(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any] | None,
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        return _conditioned(
            {"TableName": self.table_name, "Key": _wire(key), "UpdateExpression": update_expression},
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
            wire=True,
        )


@lru_cache(maxsize=4)
def _table_for(table_name: str) -> DynamoTable:
    return DynamoTable(table_name=table_name)


def get_main_table() -> DynamoTable:
    if not settings.ddb_table_name:
        raise DdbInternal(message="DDB_TABLE_NAME is not set", operation="Config")
    return _table_for(settings.ddb_table_name)
