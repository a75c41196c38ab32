"""
Batch consumer.

Flow:
    RawMessageBatch -> decode -> analyze each element -> lookup handlers
    -> one task per handler (bounded by a semaphore)

A bad element or a type without handlers only skips that element.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from webwx.bus.events import (
    GROUP_MARKER,
    MENTION_SEPARATOR,
    MSG_TEXT,
    SPEAKER_DELIMITER,
    ParsedMessage,
    RawMessageBatch,
)
from webwx.exceptions import MessageDecodeError
from webwx.handlers.base import Handler
from webwx.handlers.registry import HandlerRegistry


# =============================================================================
# Wire schema
# =============================================================================

class _SyncBatch(BaseModel):
    model_config = ConfigDict(extra="ignore")

    add_msg_count: int = Field(0, alias="AddMsgCount")
    add_msg_list: list[Any] = Field(default_factory=list, alias="AddMsgList")


class _WireMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    msg_id: StrictStr = Field(alias="MsgId")
    content: StrictStr = Field(alias="Content")
    from_user: StrictStr = Field(alias="FromUserName")
    to_user: StrictStr = Field(alias="ToUserName")
    msg_type: StrictInt = Field(alias="MsgType")


def _decode_error(e: ValidationError) -> MessageDecodeError:
    first = e.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
    return MessageDecodeError(field, first.get("msg", "invalid"))


def decode_batch(payload: bytes | str) -> _SyncBatch:
    try:
        return _SyncBatch.model_validate_json(payload)
    except ValidationError as e:
        raise _decode_error(e) from e


# =============================================================================
# Message analysis
# =============================================================================

def analyze_message(element: Any, self_user: str) -> ParsedMessage:
    """
    Turn one AddMsgList element into a ParsedMessage.

    Group conversations carry the speaker as a ``speaker:<br/>`` prefix;
    without it the bot itself is the speaker. Text that opens with
    ``@name\\u2005`` has the mention split off when it is unambiguous.

    Raises:
        MessageDecodeError: missing or wrong-typed field.
    """
    try:
        wire = _WireMessage.model_validate(element)
    except ValidationError as e:
        raise _decode_error(e) from e

    msg = ParsedMessage(
        msg_id=wire.msg_id,
        msg_type=wire.msg_type,
        from_user=wire.from_user,
        to_user=wire.to_user,
        origin_content=wire.content,
        outgoing=wire.from_user == self_user,
    )

    if GROUP_MARKER in msg.from_user or GROUP_MARKER in msg.to_user:
        msg.is_group = True
        parts = msg.origin_content.split(SPEAKER_DELIMITER, 1)
        if len(parts) > 1:
            msg.who, msg.content = parts
        else:
            msg.who = self_user
            msg.content = msg.origin_content
    else:
        msg.who = msg.from_user
        msg.content = msg.origin_content

    if msg.msg_type == MSG_TEXT and len(msg.content) > 1 and msg.content.startswith("@"):
        parts = msg.content.split(MENTION_SEPARATOR)
        if len(parts) == 2:
            msg.at = parts[0] + MENTION_SEPARATOR
            msg.content = parts[1]

    return msg


# =============================================================================
# Dispatcher
# =============================================================================

class Dispatcher:
    """
    Fans parsed messages out to registered handlers.

    Guarantees:
        - Messages of a batch are analyzed in delivery order
        - One handler failure does NOT affect others
        - At most ``max_concurrency`` handler invocations in flight
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        self_user: str,
        session: Any = None,
        max_concurrency: int = 64,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        self.registry = registry
        self.self_user = self_user
        self.session = session

        self._slots = asyncio.Semaphore(max_concurrency)
        self._closed = False
        self._cancel = asyncio.Event()
        self._consumers: set[asyncio.Task] = set()
        self._handler_tasks: set[asyncio.Task] = set()

        self.dispatched = 0

    # ------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel

    @property
    def in_flight(self) -> int:
        return len(self._consumers) + len(self._handler_tasks)

    def submit(self, batch: RawMessageBatch) -> Optional[asyncio.Task]:
        """Consume ``batch`` in its own task. Ignored after shutdown."""
        if self._closed:
            logger.warning("Dispatcher is shutting down, batch dropped | bytes={}", len(batch))
            return None

        task = asyncio.create_task(self.consume(batch), name="webwx-consume")
        self._consumers.add(task)
        task.add_done_callback(self._consumers.discard)
        return task

    async def consume(self, batch: RawMessageBatch) -> None:
        logger.debug(
            "Consuming batch | bytes={} waited={:.3f}s",
            len(batch), batch.age_s(),
        )
        try:
            data = decode_batch(batch.payload)
        except MessageDecodeError as e:
            logger.warning("Undecodable batch skipped | {}", e)
            return

        if data.add_msg_count < 1:
            return

        for element in data.add_msg_list:
            try:
                msg = analyze_message(element, self.self_user)
            except MessageDecodeError as e:
                logger.warning("Malformed message skipped | {}", e)
                continue

            handlers = self.registry.lookup(msg.msg_type)
            if not handlers:
                logger.warning("No handler for message type {} | id={}", msg.msg_type, msg.msg_id)
                continue

            for handler in handlers:
                await self._spawn(handler, msg)

    # ------------------------------------------------------------
    # Handler execution
    # ------------------------------------------------------------

    async def _spawn(self, handler: Handler, msg: ParsedMessage) -> None:
        await self._slots.acquire()
        task = asyncio.create_task(self._run(handler, msg), name=f"webwx-handler-{handler.name}")
        self._handler_tasks.add(task)
        task.add_done_callback(self._on_handler_done)
        self.dispatched += 1

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        self._slots.release()

    async def _run(self, handler: Handler, msg: ParsedMessage) -> None:
        try:
            await handler.handle(self.session, msg, self._cancel)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Handler failed | handler={} msg={}", handler.name, msg.msg_id)

    async def join(self) -> None:
        """Wait until every submitted batch and handler has finished."""
        while self._consumers or self._handler_tasks:
            await asyncio.gather(
                *(self._consumers | self._handler_tasks), return_exceptions=True
            )

    # ------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------

    async def shutdown(self, timeout: float = 10.0) -> None:
        """
        Stop taking batches, let accepted ones finish spawning, then signal
        handlers and wait. Everything still running when ``timeout``
        seconds have passed is cancelled.

        Order:
            1. refuse new submits
            2. wait for consumer tasks (accepted batches reach their handlers)
            3. set the cancel event
            4. wait for handler tasks, cancel the rest
        """
        self._closed = True

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        if self._consumers:
            logger.info("Waiting for {} accepted batch(es)", len(self._consumers))
            await asyncio.wait(set(self._consumers), timeout=timeout)

        self._cancel.set()

        pending = self._consumers | self._handler_tasks
        if not pending:
            return

        logger.info("Draining {} in-flight task(s), timeout={}s", len(pending), timeout)
        _, still_running = await asyncio.wait(pending, timeout=max(0.0, deadline - loop.time()))

        if still_running:
            logger.warning("Cancelling {} task(s) after drain timeout", len(still_running))
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
