"""
QR-code login flow.

States:
    waiting → confirmed    redirect URL received
    waiting → expired      window.code=408
    waiting → waiting      no definitive code, or a transient poll error

There is no retry cap while waiting; wrap ``await_scan_confirmation`` in
``asyncio.wait_for`` when a deadline is needed.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

from loguru import logger

from webwx.api.base import BaseWebApi
from webwx.config.schema import SessionConfig, Shard
from webwx.exceptions import LoginError, QRExpiredError, WebWxError


EXPIRED_CODE = 408
SCANNED_CODE = 201
EXPIRED_MARKER = "window.code=408"

DEFAULT_POLL_INTERVAL_S = 3.0


class LoginState(str, Enum):
    WAITING = "waiting"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    ERROR = "error"


class LoginFlow:
    """
    Drives the QR handshake for one SessionConfig.
    """

    def __init__(
        self,
        api: BaseWebApi,
        config: SessionConfig,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ):
        self.api = api
        self.config = config
        self.poll_interval_s = poll_interval_s

        self.state: LoginState = LoginState.WAITING
        self.uuid: Optional[str] = None

    # ------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------

    async def begin_login(self) -> str:
        """Request a fresh QR token; returns the uuid."""
        self.uuid = await self.api.jslogin(self.config)
        self.state = LoginState.WAITING
        logger.info("QR login started | uuid={} url={}", self.uuid, self.qr_url)
        return self.uuid

    @property
    def qr_url(self) -> str:
        if not self.uuid:
            raise RuntimeError("begin_login() has not been called")
        return self.config.qr_url(self.uuid)

    async def await_scan_confirmation(self, uuid: Optional[str] = None) -> str:
        """
        Poll every ``poll_interval_s`` until the scan is confirmed.

        Returns:
            The redirect URL.

        Raises:
            QRExpiredError: the code expired (408).
        """
        uuid = uuid or self.uuid
        if not uuid:
            raise RuntimeError("no QR uuid to wait on")

        while True:
            await asyncio.sleep(self.poll_interval_s)

            try:
                poll = await self.api.poll_login(self.config, uuid, "0")
            except WebWxError as e:
                logger.error("QR poll failed | {}", e)
                if EXPIRED_MARKER in str(e):
                    self.state = LoginState.EXPIRED
                    raise QRExpiredError(str(e)) from e
                continue

            if poll.redirect_url:
                self.state = LoginState.CONFIRMED
                logger.success("QR login confirmed")
                return poll.redirect_url

            if poll.code == EXPIRED_CODE:
                self.state = LoginState.EXPIRED
                raise QRExpiredError(f"{EXPIRED_MARKER}, uuid {uuid}")

            if poll.code == SCANNED_CODE:
                logger.info("QR scanned, waiting for confirmation")
            else:
                logger.debug("QR not scanned yet | code={}", poll.code)

    async def login(self) -> Shard:
        """
        Wait for confirmation and switch the config to the redirect's shard.
        """
        redirect_url = await self.await_scan_confirmation()
        try:
            shard = self.config.apply_redirect(redirect_url)
        except ValueError as e:
            self.state = LoginState.ERROR
            raise LoginError(str(e)) from e
        logger.info(
            "Shard selected | cgi={} sync={}", shard.cgi_domain, shard.sync_host
        )
        return shard
