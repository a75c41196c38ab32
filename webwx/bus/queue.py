"""
Channels between the sync loop (producer) and the session orchestrator.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from webwx.bus.events import RawMessageBatch


@dataclass(frozen=True, slots=True)
class Termination:
    """
    Final word of the sync loop.

    ``error is None`` means a clean stop (logged out elsewhere).
    """

    error: Optional[BaseException] = None

    @property
    def clean(self) -> bool:
        return self.error is None


class SyncChannel:
    """
    Producer → orchestrator plumbing.

    Architecture:
        SyncLoop -> batches (bounded) -> orchestrator -> Dispatcher
        SyncLoop -> done (single slot) -> orchestrator

    A full ``batches`` queue blocks the producer, which also delays the
    next long-poll check.
    """

    def __init__(self, batch_size: int = 1000):
        self.batches: asyncio.Queue[RawMessageBatch] = asyncio.Queue(maxsize=batch_size)
        self.done: asyncio.Queue[Termination] = asyncio.Queue(maxsize=1)

    # ---------------------------------------------------------------------
    # Producer side
    # ---------------------------------------------------------------------

    async def publish(self, batch: RawMessageBatch) -> None:
        """Hand a batch to the consumer side, waiting while the queue is full."""
        await self.batches.put(batch)

    def terminate(self, error: Optional[BaseException] = None) -> None:
        """Signal termination. Only the first signal is kept."""
        try:
            self.done.put_nowait(Termination(error))
        except asyncio.QueueFull:
            logger.warning("Termination already signaled, dropping | err={}", error)

    # ---------------------------------------------------------------------
    # Consumer side
    # ---------------------------------------------------------------------

    async def next_batch(self) -> RawMessageBatch:
        return await self.batches.get()

    async def wait_done(self) -> Termination:
        return await self.done.get()

    def drain_nowait(self) -> list[RawMessageBatch]:
        """Take every batch already queued without waiting."""
        batches = []
        while not self.batches.empty():
            batches.append(self.batches.get_nowait())
        return batches

    # ---------------------------------------------------------------------
    # Metrics
    # ---------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return self.batches.qsize()
