"""
Handler registry.

Maps a message type to the ordered handlers interested in it.
"""

from __future__ import annotations

import threading
from typing import Optional

from loguru import logger

from webwx.handlers.base import Handler, HandlerFunc, as_handler


class HandlerRegistry:
    """
    Registry of message handlers keyed by message type.

    Registration swaps in a new tuple under a lock; lookups read whatever
    tuple is current and never see a partial update.
    """

    def __init__(self) -> None:
        self._handlers: dict[int, tuple[Handler, ...]] = {}
        self._lock = threading.Lock()

    # =========================
    # Registration
    # =========================

    def register(
        self,
        msg_type: int,
        handler: Handler | HandlerFunc,
        name: Optional[str] = None,
    ) -> Handler:
        """Append a handler for ``msg_type``; registration order is run order."""
        h = as_handler(handler, name=name)
        with self._lock:
            self._handlers[msg_type] = self._handlers.get(msg_type, ()) + (h,)
        logger.debug("Handler registered | type={} handler={}", msg_type, h.name)
        return h

    def unregister(self, msg_type: int, name: str) -> int:
        """Remove handlers named ``name`` from ``msg_type``; returns how many."""
        with self._lock:
            current = self._handlers.get(msg_type, ())
            kept = tuple(h for h in current if h.name != name)
            if kept:
                self._handlers[msg_type] = kept
            else:
                self._handlers.pop(msg_type, None)
        return len(current) - len(kept)

    # =========================
    # Lookup
    # =========================

    def lookup(self, msg_type: int) -> tuple[Handler, ...]:
        """Handlers for ``msg_type``; empty when none are registered."""
        return self._handlers.get(msg_type, ())

    # =========================
    # Introspection
    # =========================

    @property
    def msg_types(self) -> list[int]:
        with self._lock:
            return list(self._handlers.keys())

    def __len__(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._handlers.values())

    def __contains__(self, msg_type: int) -> bool:
        return msg_type in self._handlers
