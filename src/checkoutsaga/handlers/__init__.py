"""Handler normalisation utilities."""

from checkoutsaga.handlers.adapter import AsyncHandlerFunc, HandlerAdapter, get_handler_name

__all__ = [
    "AsyncHandlerFunc",
    "HandlerAdapter",
    "get_handler_name",
]
