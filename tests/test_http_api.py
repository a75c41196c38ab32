from __future__ import annotations

import json

import httpx
import pytest

from fakes import OK, make_key, make_msg
from webwx.api.base import SessionContext, check_base_response
from webwx.api.http import HttpWebApi, parse_login_poll, parse_sync_check
from webwx.bus.queue import SyncChannel
from webwx.config.schema import SessionConfig
from webwx.exceptions import ApiError, LoginError, TransportError
from webwx.session.state import Credentials, LoginTicket, SelfIdentity
from webwx.session.sync import SyncLoop

LOGIN_PAGE = (
    "<error><ret>0</ret><message></message><skey>@crypt_1</skey>"
    "<wxsid>sid1</wxsid><wxuin>42</wxuin><pass_ticket>pt%2B1</pass_ticket>"
    "<isgrayscale>1</isgrayscale></error>"
)


def make_api(handler) -> tuple[HttpWebApi, SessionContext]:
    session = SessionConfig(device_id="e000000000000001")
    api = HttpWebApi(session, transport=httpx.MockTransport(handler))
    ctx = SessionContext(
        config=session,
        credentials=Credentials({"wxuin": "42", "webwx_data_ticket": "dt"}),
        ticket=LoginTicket(skey="@crypt_1", wxsid="sid1", wxuin="42", pass_ticket="pt"),
    )
    return api, ctx


# ---------------------------------------------------------------------------
# Body parsers
# ---------------------------------------------------------------------------

def test_parse_login_poll() -> None:
    waiting = parse_login_poll("window.code=408;")
    confirmed = parse_login_poll(
        'window.code=200;\nwindow.redirect_uri="https://wx.qq.com/cgi-bin/mmwebwx-bin/webwxnewloginpage?ticket=A&uuid=B";'
    )

    assert waiting.code == 408
    assert waiting.redirect_url is None
    assert confirmed.code == 200
    assert confirmed.redirect_url.startswith("https://wx.qq.com/")


def test_parse_sync_check() -> None:
    check = parse_sync_check('window.synccheck={retcode:"0",selector:"2"}')

    assert (check.retcode, check.selector) == (0, 2)

    with pytest.raises(TransportError):
        parse_sync_check("<html></html>")


@pytest.mark.parametrize(
    "body",
    [
        {"BaseResponse": {"Ret": 1101, "ErrMsg": "logged out"}},
        {"BaseResponse": {"Ret": "x"}},
        {},
    ],
)
def test_check_base_response_rejects(body: dict) -> None:
    with pytest.raises(ApiError):
        check_base_response("webwxsendmsg", body)


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_jslogin_extracts_uuid() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/jslogin"
        assert request.url.params["appid"] == "wx782c26e4c19acffb"
        return httpx.Response(200, text='window.QRLogin.code = 200; window.QRLogin.uuid = "Qb8k_ab==";')

    api, _ = make_api(handler)
    try:
        assert await api.jslogin(SessionConfig()) == "Qb8k_ab=="
    finally:
        await api.close()


@pytest.mark.asyncio
async def test_jslogin_failure() -> None:
    api, _ = make_api(lambda request: httpx.Response(200, text="window.QRLogin.code = 400;"))
    try:
        with pytest.raises(LoginError):
            await api.jslogin(SessionConfig())
    finally:
        await api.close()


@pytest.mark.asyncio
async def test_new_login_page_collects_ticket_and_cookies() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["fun"] == "new"
        return httpx.Response(
            200,
            text=LOGIN_PAGE,
            headers=[
                ("Set-Cookie", "wxuin=42; Path=/"),
                ("Set-Cookie", "webwx_data_ticket=dt9; Path=/"),
            ],
        )

    api, _ = make_api(handler)
    try:
        page = await api.new_login_page(
            SessionConfig(), "https://wx.qq.com/cgi-bin/mmwebwx-bin/webwxnewloginpage?ticket=A"
        )
    finally:
        await api.close()

    assert page.ticket.skey == "@crypt_1"
    assert page.ticket.pass_ticket == "pt%2B1"
    assert page.credentials.get("webwx_data_ticket") == "dt9"
    assert page.credentials.get("wxuin") == "42"


@pytest.mark.asyncio
async def test_new_login_page_error_ret() -> None:
    body = "<error><ret>1203</ret><message>too many logins</message></error>"
    api, _ = make_api(lambda request: httpx.Response(200, text=body))
    try:
        with pytest.raises(LoginError, match="1203"):
            await api.new_login_page(SessionConfig(), "https://wx.qq.com/x?ticket=A")
    finally:
        await api.close()


@pytest.mark.asyncio
async def test_sync_check_sends_cursor_and_cookies() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text='window.synccheck={retcode:"1101",selector:"0"}')

    api, ctx = make_api(handler)
    try:
        check = await api.sync_check(ctx, make_key(100, 200))
    finally:
        await api.close()

    request = seen[0]
    assert request.url.host == "webpush.wx2.qq.com"
    assert request.url.params["synckey"] == "1_100|2_200"
    assert request.url.params["deviceid"] == "e000000000000001"
    assert "webwx_data_ticket=dt" in request.headers["Cookie"]
    assert (check.retcode, check.selector) == (1101, 0)


@pytest.mark.asyncio
async def test_sync_returns_body_and_next_cursor() -> None:
    body = json.dumps({
        **OK,
        "AddMsgCount": 1,
        "AddMsgList": [make_msg()],
        "SyncKey": make_key(5, 6).to_payload(),
    }).encode()
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, content=body)

    api, ctx = make_api(handler)
    try:
        result = await api.sync(ctx, make_key(1, 2))
    finally:
        await api.close()

    assert result.payload == body
    assert result.sync_key == make_key(5, 6)
    assert sent[0]["SyncKey"] == make_key(1, 2).to_payload()
    assert sent[0]["BaseRequest"]["Sid"] == "sid1"


@pytest.mark.asyncio
async def test_sync_non_zero_ret() -> None:
    body = {"BaseResponse": {"Ret": 1100, "ErrMsg": ""}}
    api, ctx = make_api(lambda request: httpx.Response(200, json=body))
    try:
        with pytest.raises(ApiError) as exc:
            await api.sync(ctx, make_key(1))
    finally:
        await api.close()

    assert exc.value.ret == 1100


@pytest.mark.asyncio
async def test_http_status_becomes_transport_error() -> None:
    api, ctx = make_api(lambda request: httpx.Response(502, text="bad gateway"))
    try:
        with pytest.raises(TransportError):
            await api.init(ctx)
    finally:
        await api.close()


@pytest.mark.asyncio
async def test_status_notify_returns_ret() -> None:
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"BaseResponse": {"Ret": 3, "ErrMsg": ""}})

    api, ctx = make_api(handler)
    try:
        ret = await api.status_notify(ctx, SelfIdentity("@me", "bot"))
    finally:
        await api.close()

    assert ret == 3
    assert sent[0]["FromUserName"] == sent[0]["ToUserName"] == "@me"


@pytest.mark.asyncio
async def test_send_msg_body() -> None:
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/webwxsendmsg")
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={**OK, "MsgID": "m", "LocalID": "l"})

    api, ctx = make_api(handler)
    try:
        body = await api.send_msg(ctx, "@me", "@alice", "hi")
    finally:
        await api.close()

    msg = sent[0]["Msg"]
    assert body["MsgID"] == "m"
    assert (msg["Type"], msg["Content"], msg["ToUserName"]) == (1, "hi", "@alice")
    assert msg["LocalID"] == msg["ClientMsgId"]


@pytest.mark.asyncio
async def test_upload_media_returns_media_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        return httpx.Response(200, json={**OK, "MediaId": "@media"})

    api, ctx = make_api(handler)
    try:
        assert await api.upload_media(ctx, "cat.gif", b"GIF89a", "@me", "@alice") == "@media"
    finally:
        await api.close()


@pytest.mark.asyncio
async def test_upload_media_without_id() -> None:
    api, ctx = make_api(lambda request: httpx.Response(200, json=OK))
    try:
        with pytest.raises(TransportError):
            await api.upload_media(ctx, "cat.png", b"\x89PNG", "@me", "@alice")
    finally:
        await api.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"[]", b"null", b"1", b'{"BaseResponse": {"Ret": 0}, "SyncKey": [1]}'])
async def test_sync_non_object_body_is_transport_error(body: bytes) -> None:
    api, ctx = make_api(lambda request: httpx.Response(200, content=body))
    try:
        with pytest.raises(TransportError):
            await api.sync(ctx, make_key(1))
    finally:
        await api.close()


@pytest.mark.asyncio
async def test_loop_survives_non_object_sync_body() -> None:
    checks = iter([
        'window.synccheck={retcode:"0",selector:"2"}',
        'window.synccheck={retcode:"1101",selector:"0"}',
    ])
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/synccheck"):
            calls.append("check")
            return httpx.Response(200, text=next(checks))
        calls.append("sync")
        return httpx.Response(200, content=b"[]")

    api, ctx = make_api(handler)
    channel = SyncChannel()
    loop = SyncLoop(api, ctx, make_key(1), channel, retry_delay_s=0)
    try:
        await loop.run()
    finally:
        await api.close()

    assert calls == ["check", "sync", "check"]
    assert (await channel.wait_done()).clean
    assert loop.sync_key == make_key(1)
    assert channel.pending == 0
