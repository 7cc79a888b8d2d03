"""Wraps bus subscribers so dispatch can always ``await adapter.handle(event)``."""

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from orderflow.events.base import DomainEvent

AsyncHandlerFunc = Callable[[DomainEvent], Awaitable[None]]


def get_handler_name(handler: Any) -> str:
    """``Owner.method`` for bound methods, the function or class name otherwise."""
    owner = getattr(handler, "__self__", None)
    name = getattr(handler, "__name__", None)
    if owner is not None and name is not None:
        return f"{type(owner).__name__}.{name}"
    return str(name) if name is not None else type(handler).__name__


def _as_coroutine_function(handler: Any) -> AsyncHandlerFunc:
    target = getattr(handler, "handle", handler)
    if not callable(target):
        raise TypeError(f"Handler must have a handle() method or be callable, got {type(handler)}")
    if inspect.iscoroutinefunction(target):
        return target  # type: ignore[no-any-return]

    async def call(event: DomainEvent) -> None:
        result = target(event)
        if inspect.isawaitable(result):
            await result

    return call


class HandlerAdapter:
    """
    One subscriber, sync or async, object or callable.

    Adapters compare equal to the handler they wrap so the bus can find a
    subscription again from the object the caller still holds.
    """

    def __init__(self, handler: Any) -> None:
        self.original = handler
        self.name = get_handler_name(handler)
        self._call = _as_coroutine_function(handler)

    async def handle(self, event: DomainEvent) -> None:
        await self._call(event)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, HandlerAdapter):
            other = other.original
        return self.original is other

    def __hash__(self) -> int:
        return id(self.original)

    def __repr__(self) -> str:
        return f"HandlerAdapter({self.name})"
