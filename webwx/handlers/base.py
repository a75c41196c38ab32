"""
Base abstraction for message handlers.

A Handler reacts to one ParsedMessage. Handlers registered for the same
message type run independently of each other.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from webwx.bus.events import ParsedMessage

if TYPE_CHECKING:
    from webwx.session.manager import Session


HandlerFunc = Callable[["Session", ParsedMessage, asyncio.Event], Awaitable[Any]]


class Handler(ABC):
    """
    Abstract message handler.

    ``cancel`` is set when the session shuts down; long-running handlers
    should watch it and return early.
    """

    name: str = "handler"

    @abstractmethod
    async def handle(
        self,
        session: "Session",
        msg: ParsedMessage,
        cancel: asyncio.Event,
    ) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class FunctionHandler(Handler):
    """Adapter turning a plain coroutine function into a Handler."""

    def __init__(self, func: HandlerFunc, name: Optional[str] = None):
        self.func = func
        self.name = name or getattr(func, "__name__", "handler")

    async def handle(
        self,
        session: "Session",
        msg: ParsedMessage,
        cancel: asyncio.Event,
    ) -> None:
        await self.func(session, msg, cancel)


def as_handler(handler: Handler | HandlerFunc, name: Optional[str] = None) -> Handler:
    if isinstance(handler, Handler):
        return handler
    if not callable(handler):
        raise TypeError(f"handler must be a Handler or a coroutine function, got {handler!r}")
    return FunctionHandler(handler, name=name)
