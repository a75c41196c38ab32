"""
Long-poll producer.

Each iteration issues one synccheck and reacts to (retcode, selector):

    retcode  selector   action
    0        2          fetch batch, publish it
    0        0 / 7      nothing new
    0        other      terminate: session down
    1101     -          terminate cleanly: logged out elsewhere
    1205     -          terminate: api blocked
    other    -          terminate: unknown retcode

Transport failures of the check or the fetch are logged and the loop
goes on.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

from loguru import logger

from webwx.api.base import BaseWebApi, SessionContext, SyncCheck
from webwx.bus.events import RawMessageBatch
from webwx.bus.queue import SyncChannel
from webwx.exceptions import (
    ApiBlockedError,
    SessionDownError,
    UnknownRetcodeError,
    WebWxError,
)
from webwx.session.state import SyncKeyState


RET_OK = 0
RET_LOGGED_OUT = 1101
RET_BLOCKED = 1205

SEL_NEW_MESSAGE = 2
SEL_IDLE = frozenset({0, 7})


class SyncAction(str, Enum):
    FETCH = "fetch"
    IDLE = "idle"
    SESSION_DOWN = "session_down"
    LOGGED_OUT = "logged_out"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"

    @property
    def terminal(self) -> bool:
        return self not in (SyncAction.FETCH, SyncAction.IDLE)


def decide(retcode: int, selector: int) -> SyncAction:
    """Map a synccheck answer to the loop's next action."""
    if retcode == RET_OK:
        if selector == SEL_NEW_MESSAGE:
            return SyncAction.FETCH
        if selector in SEL_IDLE:
            return SyncAction.IDLE
        return SyncAction.SESSION_DOWN
    if retcode == RET_LOGGED_OUT:
        return SyncAction.LOGGED_OUT
    if retcode == RET_BLOCKED:
        return SyncAction.BLOCKED
    return SyncAction.UNKNOWN


def termination_error(action: SyncAction, check: SyncCheck) -> Optional[WebWxError]:
    """Error carried by the termination signal, None for a clean stop."""
    if action is SyncAction.LOGGED_OUT:
        return None
    if action is SyncAction.SESSION_DOWN:
        return SessionDownError(check.selector)
    if action is SyncAction.BLOCKED:
        return ApiBlockedError(check.retcode)
    return UnknownRetcodeError(check.retcode)


class SyncLoop:
    """
    Owns the sync cursor; only snapshots of it leave this object.
    """

    def __init__(
        self,
        api: BaseWebApi,
        ctx: SessionContext,
        sync_key: SyncKeyState,
        channel: SyncChannel,
        retry_delay_s: float = 1.0,
    ):
        self.api = api
        self.ctx = ctx
        self.channel = channel
        self.retry_delay_s = retry_delay_s

        self._sync_key = sync_key
        self.fetches = 0

    @property
    def sync_key(self) -> SyncKeyState:
        return self._sync_key

    # ------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------

    async def run(self) -> None:
        """Run until a terminal answer; signals the channel exactly once."""
        logger.info("Entering synccheck loop | host={}", self.ctx.config.sync_host)

        try:
            while True:
                try:
                    check = await self.api.sync_check(self.ctx, self._sync_key)
                except WebWxError as e:
                    logger.error("synccheck failed | {}", e)
                    await asyncio.sleep(self.retry_delay_s)
                    continue

                action = decide(check.retcode, check.selector)
                logger.debug(
                    "synccheck | ret={} sel={} action={}",
                    check.retcode, check.selector, action.value,
                )

                if action is SyncAction.FETCH:
                    await self._fetch()
                    continue
                if action is SyncAction.IDLE:
                    continue

                error = termination_error(action, check)
                if error is None:
                    logger.info("Logged out elsewhere, leaving synccheck loop")
                else:
                    logger.error("Leaving synccheck loop | {}", error)
                self.channel.terminate(error)
                return

        except asyncio.CancelledError:
            logger.info("synccheck loop cancelled")
            raise
        except Exception as e:
            logger.exception("synccheck loop crashed")
            self.channel.terminate(e)

    async def _fetch(self) -> None:
        try:
            result = await self.api.sync(self.ctx, self._sync_key)
        except WebWxError as e:
            logger.error("webwxsync failed | {}", e)
            return

        # cursor swap happens before the next check is issued
        self._sync_key = result.sync_key
        self.fetches += 1

        await self.channel.publish(RawMessageBatch(result.payload))
