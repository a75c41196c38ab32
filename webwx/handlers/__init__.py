"""Message handlers."""

from webwx.handlers.base import FunctionHandler, Handler
from webwx.handlers.registry import HandlerRegistry

__all__ = ["FunctionHandler", "Handler", "HandlerRegistry"]
