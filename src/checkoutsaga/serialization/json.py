"""
JSON serialization utilities for checkoutsaga types.

Order state and event payloads are mostly produced with pydantic's
``model_dump(mode="json")``, but records assembled by hand (store rows,
dead-letter entries) can still contain UUIDs, datetimes and enums.

Example:
    >>> from checkoutsaga.serialization import json_dumps, json_loads
    >>> from uuid import uuid4
    >>>
    >>> data = {"order_id": uuid4()}
    >>> parsed = json_loads(json_dumps(data))
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class CheckoutJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles UUID, datetime and Enum values.

    - UUID objects: converted to their string representation
    - datetime objects: converted to ISO 8601 strings
    - Enum members: converted to their value
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """
    Serialize object to JSON string with UUID, datetime and Enum support.

    Args:
        obj: Object to serialize

    Returns:
        JSON string representation
    """
    return json.dumps(obj, cls=CheckoutJSONEncoder, sort_keys=True)


def json_loads(s: str) -> Any:
    """
    Deserialize JSON string to Python object.

    UUID and datetime strings are NOT converted back; pydantic validation
    on the receiving model takes care of that.
    """
    return json.loads(s)


__all__ = [
    "CheckoutJSONEncoder",
    "json_dumps",
    "json_loads",
]
