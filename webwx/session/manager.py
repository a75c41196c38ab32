"""
Session orchestration.

Lifecycle:
    create()           → QR token + presentation
    login_and_serve()  → scan wait → login page → init → status notify
                         → contacts → serve
    serve()            → SyncLoop producer + Dispatcher consumers until the
                         loop signals termination

Outbound calls (send_*, revoke, logout) raise to their caller and never
touch the long-poll loop.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from loguru import logger

from webwx.api.base import BaseWebApi, SessionContext, check_base_response
from webwx.bus.events import ParsedMessage
from webwx.bus.queue import SyncChannel, Termination
from webwx.config.schema import Config, QrMode
from webwx.contacts.manager import ContactManager
from webwx.exceptions import ApiError
from webwx.handlers.registry import HandlerRegistry
from webwx.qr import print_terminal, save_image
from webwx.session.dispatcher import Dispatcher
from webwx.session.login import LoginFlow
from webwx.session.state import SelfIdentity, SyncKeyState
from webwx.session.sync import SyncLoop
from webwx.utils.helpers import safe_filename


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class Session:
    """
    One logged-in bot account.

    The Config is passed in by the caller and threaded through every
    collaborator; nothing here reads a global default.
    """

    def __init__(
        self,
        config: Config,
        api: Optional[BaseWebApi] = None,
        registry: Optional[HandlerRegistry] = None,
    ):
        if api is None:
            from webwx.api.http import HttpWebApi
            api = HttpWebApi(config.session, config.http)

        self.config = config
        self.api = api
        self.registry = registry or HandlerRegistry()
        self.ctx = SessionContext(config=config.session)

        self.login_flow = LoginFlow(api, config.session, config.runtime.qr_poll_interval_s)

        self.me: Optional[SelfIdentity] = None
        self.contacts: Optional[ContactManager] = None
        self.qr_path: Optional[Path] = None

        self.sync_loop: Optional[SyncLoop] = None
        self.dispatcher: Optional[Dispatcher] = None

    # ------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------

    @classmethod
    async def create(
        cls,
        config: Config,
        api: Optional[BaseWebApi] = None,
        registry: Optional[HandlerRegistry] = None,
        qr_mode: Optional[QrMode] = None,
    ) -> "Session":
        """Build a session and present its login QR code."""
        session = cls(config, api=api, registry=registry)
        uuid = await session.login_flow.begin_login()

        mode = qr_mode or config.runtime.qr_mode
        if mode == "terminal":
            print_terminal(session.qr_url)
        elif mode == "file":
            data = await session.api.qrcode(config.session, uuid)
            session.qr_path = save_image(data, config.qr_path, uuid)

        return session

    @property
    def qr_url(self) -> str:
        return self.login_flow.qr_url

    # ------------------------------------------------------------
    # Login
    # ------------------------------------------------------------

    async def login_and_serve(self, use_cache: bool = False) -> None:
        """
        Log in (unless ``use_cache``) and block in the message loop.

        Returns normally on a logout from another device; raises on every
        other termination.
        """
        if not use_cache:
            await self.login_flow.login()
            page = await self.api.new_login_page(self.ctx.config, self.ctx.config.redirect_url)
            self.ctx.credentials = page.credentials
            self.ctx.ticket = page.ticket

        sync_key = await self.start()
        await self.serve(sync_key)

    async def start(self) -> SyncKeyState:
        """Session init, status notify and contact list; returns the first cursor."""
        data = await self.api.init(self.ctx)

        sync_key = SyncKeyState.from_payload(data.get("SyncKey") or {})
        self.me = SelfIdentity.from_payload(data)
        logger.info("Logged in as {} ({})", self.me.nick_name, self.me.user_name)

        ret = await self.api.status_notify(self.ctx, self.me)
        if ret != 0:
            raise ApiError("webwxstatusnotify", ret)

        self.contacts = ContactManager.from_payload(await self.api.get_contact(self.ctx))
        self.contacts.add_from_identity(self.me)
        logger.success("Session started | contacts={}", len(self.contacts))

        return sync_key

    # ------------------------------------------------------------
    # Serve
    # ------------------------------------------------------------

    async def serve(self, sync_key: SyncKeyState) -> None:
        """
        Run producer and consumers until the sync loop terminates.

        Each batch is consumed in its own task; on termination in-flight
        work gets ``drain_timeout_s`` to finish before it is cancelled.
        """
        if self.me is None:
            raise RuntimeError("serve() requires a started session")

        runtime = self.config.runtime
        channel = SyncChannel(runtime.batch_queue_size)

        self.sync_loop = SyncLoop(
            self.api, self.ctx, sync_key, channel, retry_delay_s=runtime.sync_retry_delay_s
        )
        self.dispatcher = Dispatcher(
            self.registry,
            self.me.user_name,
            session=self,
            max_concurrency=runtime.max_concurrent_handlers,
        )

        producer = asyncio.create_task(self.sync_loop.run(), name="webwx-synccheck")
        done_wait = asyncio.create_task(channel.wait_done(), name="webwx-done")
        batch_wait: Optional[asyncio.Task] = None
        termination: Optional[Termination] = None

        try:
            while termination is None:
                if batch_wait is None:
                    batch_wait = asyncio.create_task(channel.next_batch(), name="webwx-batch")

                finished, _ = await asyncio.wait(
                    {batch_wait, done_wait}, return_when=asyncio.FIRST_COMPLETED
                )

                if batch_wait in finished:
                    self.dispatcher.submit(batch_wait.result())
                    batch_wait = None

                if done_wait in finished:
                    termination = done_wait.result()

            # batches published before the signal are still delivered
            for batch in channel.drain_nowait():
                self.dispatcher.submit(batch)
        finally:
            await _cancel(batch_wait)
            await _cancel(done_wait)
            await _cancel(producer)
            if channel.pending:
                logger.warning("Dropping {} undispatched batch(es)", channel.pending)
            await self.dispatcher.shutdown(runtime.drain_timeout_s)

        if termination.error is not None:
            raise termination.error
        logger.info("Session ended cleanly")

    # ------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------

    async def send_text(self, text: str, from_user: str, to_user: str) -> tuple[str, str]:
        """Send a text message; returns (MsgID, LocalID)."""
        body = await self.api.send_msg(self.ctx, from_user, to_user, text)
        check_base_response("webwxsendmsg", body)
        return str(body.get("MsgID", "")), str(body.get("LocalID", ""))

    async def reply(self, msg: ParsedMessage, text: str) -> tuple[str, str]:
        """Answer ``msg`` in the conversation it came from."""
        if self.me is None:
            raise RuntimeError("reply() requires a started session")
        return await self.send_text(text, self.me.user_name, msg.chat_id)

    async def send_image(self, path: str | Path, from_user: str, to_user: str) -> None:
        path = Path(path)
        data = await asyncio.to_thread(path.read_bytes)
        await self.send_image_bytes(data, path.name, from_user, to_user)

    async def send_image_bytes(
        self, data: bytes, filename: str, from_user: str, to_user: str
    ) -> None:
        media_id = await self.api.upload_media(self.ctx, filename, data, from_user, to_user)
        body = await self.api.send_msg_img(self.ctx, from_user, to_user, media_id)
        check_base_response("webwxsendmsgimg", body)

    async def send_emoticon(self, path: str | Path, from_user: str, to_user: str) -> None:
        path = Path(path)
        data = await asyncio.to_thread(path.read_bytes)
        await self._send_emoticon(data, path.name, from_user, to_user)

    async def send_emoticon_bytes(self, data: bytes, from_user: str, to_user: str) -> None:
        await self._send_emoticon(data, safe_filename(from_user) + ".gif", from_user, to_user)

    async def _send_emoticon(
        self, data: bytes, filename: str, from_user: str, to_user: str
    ) -> None:
        media_id = await self.api.upload_media(self.ctx, filename, data, from_user, to_user)
        body = await self.api.send_emoticon(self.ctx, from_user, to_user, media_id)
        check_base_response("webwxsendemoticon", body)

    async def get_image(self, msg_id: str) -> bytes:
        return await self.api.get_msg_img(self.ctx, msg_id)

    async def revoke(self, client_msg_id: str, svr_msg_id: str, to_user: str) -> None:
        body = await self.api.revoke_msg(self.ctx, client_msg_id, svr_msg_id, to_user)
        check_base_response("webwxrevokemsg", body)

    async def logout(self) -> None:
        await self.api.logout(self.ctx)
        logger.info("Logged out")

    async def close(self) -> None:
        await self.api.close()
