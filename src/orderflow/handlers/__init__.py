"""Event handler utilities."""

from orderflow.handlers.adapter import HandlerAdapter, get_handler_name
from orderflow.handlers.decorators import discover_handlers, get_handled_event_type, handles

__all__ = [
    "HandlerAdapter",
    "discover_handlers",
    "get_handled_event_type",
    "get_handler_name",
    "handles",
]
