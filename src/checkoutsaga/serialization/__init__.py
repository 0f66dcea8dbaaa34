"""
Serialization utilities for checkoutsaga.

Example:
    >>> from checkoutsaga.serialization import json_dumps
    >>> from uuid import uuid4
    >>>
    >>> json_str = json_dumps({"id": uuid4()})
"""

from checkoutsaga.serialization.json import (
    CheckoutJSONEncoder,
    json_dumps,
    json_loads,
)

__all__ = [
    "CheckoutJSONEncoder",
    "json_dumps",
    "json_loads",
]
