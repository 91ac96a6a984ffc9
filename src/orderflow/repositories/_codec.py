"""
Row conversion shared by the SQL order repositories.

The orders table keeps scalar columns for the fields queries filter on
and a JSON document for the owned child records. Journeys and logs live
in their own tables.
"""

from typing import Any

from orderflow.domain.models import Order, OrderJourney, OrderLog
from orderflow.serialization import json_dumps, json_loads


def encode_order_data(order: Order) -> str:
    """Serialize the owned child records stored in ``orders.data``."""
    return json_dumps(
        order.model_dump(
            mode="json",
            include={"items", "payment", "stocks", "loyalty"},
        )
    )


def decode_json(value: Any) -> Any:
    """Accept a JSON column value as either text or an already decoded object."""
    if value is None:
        return None
    if isinstance(value, (str, bytes)):
        return json_loads(value)
    return value


def build_order(
    row: dict[str, Any],
    journeys: list[OrderJourney],
    logs: list[OrderLog],
) -> Order:
    """
    Rebuild an Order from an ``orders`` row and its audit rows.

    ``row`` needs order_id, state, version, total_amount, data, created_at
    and updated_at; pydantic converts the column values.
    """
    data = decode_json(row["data"]) or {}
    return Order.model_validate(
        {
            "order_id": row["order_id"],
            "state": row["state"],
            "version": row["version"],
            "total_amount": row["total_amount"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "items": data.get("items", []),
            "payment": data.get("payment"),
            "stocks": data.get("stocks", []),
            "loyalty": data.get("loyalty", []),
            "journeys": journeys,
            "logs": logs,
        }
    )


def build_journey(row: dict[str, Any]) -> OrderJourney:
    return OrderJourney.model_validate(
        {
            "sequence": row["sequence"],
            "from_state": row["from_state"],
            "to_state": row["to_state"],
            "reference_id": row["reference_id"],
            "actor": row["actor"],
            "occurred_at": row["occurred_at"],
        }
    )


def build_log(row: dict[str, Any]) -> OrderLog:
    return OrderLog.model_validate(
        {
            "sequence": row["sequence"],
            "action": row["action"],
            "result": row["result"],
            "correlation_id": row["correlation_id"],
            "detail": decode_json(row["detail"]) or {},
            "occurred_at": row["occurred_at"],
        }
    )
