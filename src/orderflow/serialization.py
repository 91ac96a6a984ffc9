"""
JSON serialization utilities for orderflow types.

Handles the types that show up in stored outcomes and checkpoint payloads
but are not natively JSON-serializable: UUIDs, datetimes, Decimals and enums.

Example:
    >>> from orderflow.serialization import json_dumps, json_loads
    >>> from uuid import uuid4
    >>>
    >>> json_str = json_dumps({"order_id": uuid4()})
    >>> parsed = json_loads(json_str)
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class OrderflowJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles UUID, datetime, Decimal and Enum objects.

    - UUID: string representation
    - datetime: ISO 8601 string
    - Decimal: string, so amounts keep their exact precision
    - Enum: the member value
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """Serialize object to JSON string using OrderflowJSONEncoder."""
    return json.dumps(obj, cls=OrderflowJSONEncoder)


def json_loads(s: str) -> Any:
    """
    Deserialize JSON string to Python object.

    UUID, datetime and Decimal strings are NOT converted back; callers
    validate the result through their pydantic models.
    """
    return json.loads(s)


__all__ = [
    "OrderflowJSONEncoder",
    "json_dumps",
    "json_loads",
]
