"""
httpx implementation of the backend collaborators.

Every call is a thin request/parse wrapper: no retries, no state beyond
the shared connection pool.
"""

from __future__ import annotations

import hashlib
import json
import mimetypes
import re
from typing import Any, Optional

import httpx
from loguru import logger

from webwx.api.base import (
    BaseWebApi,
    LoginPage,
    LoginPoll,
    SessionContext,
    SyncCheck,
    SyncResult,
    check_base_response,
)
from webwx.config.schema import HttpConfig, SessionConfig
from webwx.exceptions import LoginError, TransportError
from webwx.session.state import Credentials, LoginTicket, SelfIdentity, SyncKeyState
from webwx.utils.helpers import now_ms, truncate


# =============================================================================
# Response patterns
# =============================================================================

_QRLOGIN_RE = re.compile(r'window\.QRLogin\.code = (\d+); window\.QRLogin\.uuid = "(\S+?)";')
_LOGIN_CODE_RE = re.compile(r"window\.code=(\d+);")
_REDIRECT_RE = re.compile(r'window\.redirect_uri="(\S+?)";')
_SYNCCHECK_RE = re.compile(r'window\.synccheck=\{retcode:"(\d+)",selector:"(\d+)"\}')

JSON_HEADERS = {"Content-Type": "application/json; charset=UTF-8"}


def parse_login_poll(body: str) -> LoginPoll:
    """Extract ``window.code`` and ``window.redirect_uri`` from a poll body."""
    code_m = _LOGIN_CODE_RE.search(body)
    redirect_m = _REDIRECT_RE.search(body)
    return LoginPoll(
        code=int(code_m.group(1)) if code_m else None,
        redirect_url=redirect_m.group(1) if redirect_m else None,
        raw=body,
    )


def parse_sync_check(body: str) -> SyncCheck:
    m = _SYNCCHECK_RE.search(body)
    if not m:
        raise TransportError(f"unexpected synccheck body: {truncate(body, 200)}")
    return SyncCheck(retcode=int(m.group(1)), selector=int(m.group(2)))


def _dumps(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


# =============================================================================
# Client
# =============================================================================

class HttpWebApi(BaseWebApi):
    """
    Backend calls over a shared ``httpx.AsyncClient``.

    Authentication travels in an explicit ``Cookie`` header built from the
    session's Credentials.
    """

    def __init__(
        self,
        session: SessionConfig,
        http: Optional[HttpConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.http = http or HttpConfig()
        self._client = httpx.AsyncClient(
            headers={"User-Agent": session.user_agent},
            timeout=self.http.timeout_s,
            follow_redirects=True,
            proxy=self.http.proxy,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        ctx: Optional[SessionContext] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if ctx is not None and ctx.credentials.cookies:
            headers["Cookie"] = ctx.credentials.header()

        try:
            resp = await self._client.request(method, url, headers=headers, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        logger.debug("HTTP {} {} -> {}", method, url, resp.status_code)
        return resp

    async def _json(
        self, method: str, url: str, *, ctx: Optional[SessionContext] = None, **kwargs: Any
    ) -> dict[str, Any]:
        resp = await self._request(method, url, ctx=ctx, **kwargs)
        try:
            data = json.loads(resp.content)
        except ValueError as e:
            raise TransportError(f"invalid JSON from {url}: {e}") from e
        if not isinstance(data, dict):
            raise TransportError(f"expected JSON object from {url}")
        return data

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def jslogin(self, config: SessionConfig) -> str:
        resp = await self._request(
            "GET",
            f"{config.login_url}/jslogin",
            params={
                "appid": config.app_id,
                "redirect_uri": "https://wx.qq.com/cgi-bin/mmwebwx-bin/webwxnewloginpage",
                "fun": "new",
                "lang": config.lang,
                "_": now_ms(),
            },
        )
        m = _QRLOGIN_RE.search(resp.text)
        if not m or m.group(1) != "200":
            raise LoginError(f"jslogin failed: {truncate(resp.text, 200)}")
        return m.group(2)

    async def qrcode(self, config: SessionConfig, uuid: str) -> bytes:
        resp = await self._request("GET", f"{config.login_url}/qrcode/{uuid}")
        return resp.content

    async def poll_login(self, config: SessionConfig, uuid: str, tip: str = "0") -> LoginPoll:
        resp = await self._request(
            "GET",
            f"{config.login_url}/cgi-bin/mmwebwx-bin/login",
            params={"tip": tip, "uuid": uuid, "_": now_ms()},
            timeout=self.http.long_poll_timeout_s,
        )
        return parse_login_poll(resp.text)

    async def new_login_page(self, config: SessionConfig, redirect_url: str) -> LoginPage:
        resp = await self._request("GET", redirect_url + "&fun=new&version=v2")
        ticket = LoginTicket.from_xml(resp.text)
        cookies = {name: value for name, value in resp.cookies.items()}
        # the explicit Credentials are the only cookie source from here on
        self._client.cookies.clear()
        return LoginPage(credentials=Credentials(cookies), ticket=ticket)

    # ------------------------------------------------------------------
    # Session start
    # ------------------------------------------------------------------

    async def init(self, ctx: SessionContext) -> dict[str, Any]:
        data = await self._json(
            "POST",
            f"{ctx.config.cgi_url}/webwxinit",
            ctx=ctx,
            params={"pass_ticket": ctx.ticket.pass_ticket, "skey": ctx.ticket.skey, "r": now_ms()},
            content=_dumps({"BaseRequest": ctx.ticket.base_request(ctx.config.device_id)}),
            headers=JSON_HEADERS,
        )
        check_base_response("webwxinit", data)
        return data

    async def status_notify(self, ctx: SessionContext, me: SelfIdentity) -> int:
        data = await self._json(
            "POST",
            f"{ctx.config.cgi_url}/webwxstatusnotify",
            ctx=ctx,
            params={"pass_ticket": ctx.ticket.pass_ticket},
            content=_dumps({
                "BaseRequest": ctx.ticket.base_request(ctx.config.device_id),
                "Code": 3,
                "FromUserName": me.user_name,
                "ToUserName": me.user_name,
                "ClientMsgId": now_ms(),
            }),
            headers=JSON_HEADERS,
        )
        base = data.get("BaseResponse") or {}
        try:
            return int(base.get("Ret", -1))
        except (TypeError, ValueError) as e:
            raise TransportError(f"webwxstatusnotify Ret is not an int: {base!r}") from e

    async def get_contact(self, ctx: SessionContext) -> dict[str, Any]:
        return await self._json(
            "GET",
            f"{ctx.config.cgi_url}/webwxgetcontact",
            ctx=ctx,
            params={"pass_ticket": ctx.ticket.pass_ticket, "skey": ctx.ticket.skey, "r": now_ms()},
        )

    # ------------------------------------------------------------------
    # Long poll
    # ------------------------------------------------------------------

    async def sync_check(self, ctx: SessionContext, sync_key: SyncKeyState) -> SyncCheck:
        ts = now_ms()
        resp = await self._request(
            "GET",
            f"https://{ctx.config.sync_host}/cgi-bin/mmwebwx-bin/synccheck",
            ctx=ctx,
            params={
                "r": ts,
                "skey": ctx.ticket.skey,
                "sid": ctx.ticket.wxsid,
                "uin": ctx.ticket.wxuin,
                "deviceid": ctx.config.device_id,
                "synckey": sync_key.to_query(),
                "_": ts,
            },
            timeout=self.http.long_poll_timeout_s,
        )
        return parse_sync_check(resp.text)

    async def sync(self, ctx: SessionContext, sync_key: SyncKeyState) -> SyncResult:
        resp = await self._request(
            "POST",
            f"{ctx.config.cgi_url}/webwxsync",
            ctx=ctx,
            params={
                "sid": ctx.ticket.wxsid,
                "skey": ctx.ticket.skey,
                "pass_ticket": ctx.ticket.pass_ticket,
            },
            content=_dumps({
                "BaseRequest": ctx.ticket.base_request(ctx.config.device_id),
                "SyncKey": sync_key.to_payload(),
                "rr": ~(now_ms() // 1000),
            }),
            headers=JSON_HEADERS,
        )
        try:
            data = json.loads(resp.content)
        except ValueError as e:
            raise TransportError(f"invalid webwxsync JSON: {e}") from e
        if not isinstance(data, dict):
            raise TransportError("expected JSON object from webwxsync")

        check_base_response("webwxsync", data)
        return SyncResult(payload=resp.content, sync_key=SyncKeyState.from_payload(data.get("SyncKey") or {}))

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    def _msg_body(self, ctx: SessionContext, msg: dict[str, Any]) -> bytes:
        local_id = str(now_ms())
        return _dumps({
            "BaseRequest": ctx.ticket.base_request(ctx.config.device_id),
            "Msg": {**msg, "LocalID": local_id, "ClientMsgId": local_id},
            "Scene": 0,
        })

    async def send_msg(
        self, ctx: SessionContext, from_user: str, to_user: str, content: str
    ) -> dict[str, Any]:
        return await self._json(
            "POST",
            f"{ctx.config.cgi_url}/webwxsendmsg",
            ctx=ctx,
            params={"pass_ticket": ctx.ticket.pass_ticket},
            content=self._msg_body(ctx, {
                "Type": 1,
                "Content": content,
                "FromUserName": from_user,
                "ToUserName": to_user,
            }),
            headers=JSON_HEADERS,
        )

    async def upload_media(
        self, ctx: SessionContext, filename: str, data: bytes, from_user: str, to_user: str
    ) -> str:
        mime = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        request = {
            "UploadType": 2,
            "BaseRequest": ctx.ticket.base_request(ctx.config.device_id),
            "ClientMediaId": now_ms(),
            "TotalLen": len(data),
            "StartPos": 0,
            "DataLen": len(data),
            "MediaType": 4,
            "FromUserName": from_user,
            "ToUserName": to_user,
            "FileMd5": hashlib.md5(data).hexdigest(),
        }
        body = await self._json(
            "POST",
            ctx.config.upload_url,
            ctx=ctx,
            data={
                "id": "WU_FILE_0",
                "name": filename,
                "type": mime,
                "size": str(len(data)),
                "mediatype": "pic" if mime.startswith("image/") else "doc",
                "uploadmediarequest": json.dumps(request, ensure_ascii=False),
                "webwx_data_ticket": ctx.credentials.get("webwx_data_ticket"),
                "pass_ticket": ctx.ticket.pass_ticket,
            },
            files={"filename": (filename, data, mime)},
        )
        check_base_response("webwxuploadmedia", body)
        media_id = body.get("MediaId")
        if not isinstance(media_id, str) or not media_id:
            raise TransportError("webwxuploadmedia returned no MediaId")
        return media_id

    async def send_msg_img(
        self, ctx: SessionContext, from_user: str, to_user: str, media_id: str
    ) -> dict[str, Any]:
        return await self._json(
            "POST",
            f"{ctx.config.cgi_url}/webwxsendmsgimg",
            ctx=ctx,
            params={"fun": "async", "f": "json", "pass_ticket": ctx.ticket.pass_ticket},
            content=self._msg_body(ctx, {
                "Type": 3,
                "MediaId": media_id,
                "FromUserName": from_user,
                "ToUserName": to_user,
            }),
            headers=JSON_HEADERS,
        )

    async def send_emoticon(
        self, ctx: SessionContext, from_user: str, to_user: str, media_id: str
    ) -> dict[str, Any]:
        return await self._json(
            "POST",
            f"{ctx.config.cgi_url}/webwxsendemoticon",
            ctx=ctx,
            params={"fun": "sys", "lang": ctx.config.lang, "pass_ticket": ctx.ticket.pass_ticket},
            content=self._msg_body(ctx, {
                "Type": 47,
                "EmojiFlag": 2,
                "MediaId": media_id,
                "FromUserName": from_user,
                "ToUserName": to_user,
            }),
            headers=JSON_HEADERS,
        )

    async def get_msg_img(self, ctx: SessionContext, msg_id: str) -> bytes:
        resp = await self._request(
            "GET",
            f"{ctx.config.cgi_url}/webwxgetmsgimg",
            ctx=ctx,
            params={"MsgID": msg_id, "skey": ctx.ticket.skey},
        )
        return resp.content

    async def revoke_msg(
        self, ctx: SessionContext, client_msg_id: str, svr_msg_id: str, to_user: str
    ) -> dict[str, Any]:
        return await self._json(
            "POST",
            f"{ctx.config.cgi_url}/webwxrevokemsg",
            ctx=ctx,
            params={"pass_ticket": ctx.ticket.pass_ticket},
            content=_dumps({
                "BaseRequest": ctx.ticket.base_request(ctx.config.device_id),
                "ClientMsgId": client_msg_id,
                "SvrMsgId": svr_msg_id,
                "ToUserName": to_user,
            }),
            headers=JSON_HEADERS,
        )

    async def logout(self, ctx: SessionContext) -> None:
        await self._request(
            "POST",
            f"{ctx.config.cgi_url}/webwxlogout",
            ctx=ctx,
            params={"redirect": 1, "type": 1, "skey": ctx.ticket.skey},
            data={"sid": ctx.ticket.wxsid, "uin": ctx.ticket.wxuin},
        )
