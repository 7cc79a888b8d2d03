"""Event bus for distributing committed domain events."""

from orderflow.bus.interface import EventBus, EventHandlerFunc
from orderflow.bus.memory import InMemoryEventBus

__all__ = [
    "EventBus",
    "EventHandlerFunc",
    "InMemoryEventBus",
]
