from __future__ import annotations

import asyncio

import pytest

from fakes import FakeApi, make_key, make_msg, sync_result
from webwx.api.base import LoginPoll, SyncCheck
from webwx.bus.events import MSG_TEXT, RawMessageBatch
from webwx.bus.queue import SyncChannel
from webwx.exceptions import ApiBlockedError, ApiError, QRExpiredError, SessionDownError
from webwx.handlers.registry import HandlerRegistry
from webwx.session.dispatcher import analyze_message
from webwx.session.manager import Session

REDIRECT = "https://wx.qq.com/cgi-bin/mmwebwx-bin/webwxnewloginpage?ticket=T&uuid=U&scan=1"


def confirmed() -> list:
    return [LoginPoll(code=201), LoginPoll(code=200, redirect_url=REDIRECT)]


async def make_session(config, api: FakeApi, registry: HandlerRegistry | None = None) -> Session:
    return await Session.create(config, api=api, registry=registry)


@pytest.mark.asyncio
async def test_login_and_serve_until_logged_out(config) -> None:
    received: list = []

    async def on_text(session, msg, cancel):
        received.append((msg.who, msg.content))

    registry = HandlerRegistry()
    registry.register(MSG_TEXT, on_text)
    api = FakeApi(
        polls=confirmed(),
        checks=[SyncCheck(0, 0), SyncCheck(0, 2), SyncCheck(0, 2)],
        syncs=[
            sync_result(make_msg(content="one", msg_id="1"), key=make_key(2)),
            sync_result(make_msg(content="two", msg_id="2"), key=make_key(3)),
        ],
    )
    session = await make_session(config, api, registry)

    await session.login_and_serve()

    assert sorted(received) == [("@alice", "one"), ("@alice", "two")]
    assert session.me.user_name == "@me"
    assert session.ctx.ticket.skey == "@crypt"
    assert session.ctx.credentials.get("wxuin") == "42"
    assert config.session.sync_host == "webpush.wx.qq.com"
    assert api.check_keys[0] == make_key(1)
    assert session.sync_loop.sync_key == make_key(3)


@pytest.mark.asyncio
async def test_contacts_include_self(config) -> None:
    session = await make_session(config, FakeApi(polls=confirmed()))

    await session.login_and_serve()

    assert session.contacts.get("@alice").display_name == "Alice"
    assert session.contacts.get("@me").nick_name == "bot"
    assert len(session.contacts) == 2


@pytest.mark.asyncio
async def test_blocked_account_raises(config) -> None:
    api = FakeApi(polls=confirmed(), checks=[SyncCheck(1205, 0)])
    session = await make_session(config, api)

    with pytest.raises(ApiBlockedError):
        await session.login_and_serve()


@pytest.mark.asyncio
async def test_session_down_raises_after_delivering_earlier_batch(config) -> None:
    received: list = []

    async def on_text(session, msg, cancel):
        received.append(msg.msg_id)

    registry = HandlerRegistry()
    registry.register(MSG_TEXT, on_text)
    api = FakeApi(
        polls=confirmed(),
        checks=[SyncCheck(0, 2), SyncCheck(0, 3)],
        syncs=[sync_result(make_msg(msg_id="x"), key=make_key(2))],
    )
    session = await make_session(config, api, registry)

    with pytest.raises(SessionDownError):
        await session.login_and_serve()

    assert received == ["x"]


@pytest.mark.asyncio
async def test_expired_qr_stops_before_session_start(config) -> None:
    api = FakeApi(polls=[LoginPoll(code=408)])
    session = await make_session(config, api)

    with pytest.raises(QRExpiredError):
        await session.login_and_serve()

    assert session.me is None
    assert api.check_keys == []


@pytest.mark.asyncio
async def test_status_notify_failure_is_fatal(config) -> None:
    api = FakeApi(polls=confirmed())
    api.notify_ret = 1100
    session = await make_session(config, api)

    with pytest.raises(ApiError) as exc:
        await session.login_and_serve()

    assert exc.value.op == "webwxstatusnotify"
    assert api.check_keys == []


@pytest.mark.asyncio
async def test_shutdown_cancels_stuck_handlers(config) -> None:
    config.runtime.drain_timeout_s = 0.05
    cancel_seen: list[bool] = []

    async def stuck(session, msg, cancel):
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancel_seen.append(cancel.is_set())
            raise

    registry = HandlerRegistry()
    registry.register(MSG_TEXT, stuck)
    api = FakeApi(
        polls=confirmed(),
        checks=[SyncCheck(0, 2)],
        syncs=[sync_result(make_msg(), key=make_key(2))],
    )
    session = await make_session(config, api, registry)

    await session.login_and_serve()

    assert cancel_seen == [True]
    assert session.dispatcher.in_flight == 0


@pytest.mark.asyncio
async def test_serve_requires_started_session(config) -> None:
    session = await make_session(config, FakeApi())

    with pytest.raises(RuntimeError):
        await session.serve(make_key(1))


@pytest.mark.asyncio
async def test_qr_image_saved_in_file_mode(config, tmp_path) -> None:
    config.runtime.qr_dir = str(tmp_path / "qr")

    session = await Session.create(config, api=FakeApi(), qr_mode="file")

    assert session.qr_path == tmp_path / "qr" / "uuid-1.jpg"
    assert session.qr_path.read_bytes() == b"\xff\xd8jpeg"
    assert session.qr_url.endswith("/l/uuid-1")


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_send_text_returns_ids(config) -> None:
    api = FakeApi()
    session = await make_session(config, api)

    assert await session.send_text("hi", "@me", "@alice") == ("m1", "l1")
    assert api.sent == [("text", "@me", "@alice", "hi")]


@pytest.mark.asyncio
async def test_send_text_rejected(config) -> None:
    api = FakeApi()
    api.send_response = {"BaseResponse": {"Ret": 1201, "ErrMsg": "rate limited"}}
    session = await make_session(config, api)

    with pytest.raises(ApiError) as exc:
        await session.send_text("hi", "@me", "@alice")

    assert exc.value.ret == 1201
    assert exc.value.err_msg == "rate limited"


@pytest.mark.asyncio
async def test_reply_goes_to_group(config) -> None:
    api = FakeApi(polls=confirmed())
    session = await make_session(config, api)
    await session.login_and_serve()

    msg = analyze_message(make_msg(content="bob:<br/>hey", from_user="@@room"), "@me")
    await session.reply(msg, "hello all")

    assert api.sent[-1] == ("text", "@me", "@@room", "hello all")


@pytest.mark.asyncio
async def test_send_emoticon_bytes_uploads_gif(config) -> None:
    api = FakeApi()
    session = await make_session(config, api)

    await session.send_emoticon_bytes(b"GIF89a", "@me", "@alice")

    assert api.sent == [
        ("upload", "@me.gif", "@me", "@alice"),
        ("emoticon", "@me", "@alice", "media-1"),
    ]


@pytest.mark.asyncio
async def test_send_image_reads_file(config, tmp_path) -> None:
    api = FakeApi()
    session = await make_session(config, api)
    path = tmp_path / "photo.jpg"
    path.write_bytes(b"\xff\xd8")

    await session.send_image(path, "@me", "@alice")

    assert api.sent == [
        ("upload", "photo.jpg", "@me", "@alice"),
        ("img", "@me", "@alice", "media-1"),
    ]


@pytest.mark.asyncio
async def test_close_closes_api(config) -> None:
    api = FakeApi()
    session = await make_session(config, api)

    await session.close()

    assert api.closed


def test_channel_drain_takes_everything_queued() -> None:
    channel = SyncChannel()
    channel.batches.put_nowait(RawMessageBatch(b"a"))
    channel.batches.put_nowait(RawMessageBatch(b"b"))

    assert [b.payload for b in channel.drain_nowait()] == [b"a", b"b"]
    assert channel.pending == 0


@pytest.mark.asyncio
async def test_last_batch_before_logout_is_delivered(config) -> None:
    received: list[str] = []

    async def on_text(session, msg, cancel):
        received.append(msg.msg_id)

    registry = HandlerRegistry()
    registry.register(MSG_TEXT, on_text)
    api = FakeApi(
        polls=confirmed(),
        checks=[SyncCheck(0, 2)],
        syncs=[sync_result(make_msg(msg_id="last"), key=make_key(2))],
    )
    session = await make_session(config, api, registry)

    await session.login_and_serve()

    assert received == ["last"]
    assert session.dispatcher.dispatched == 1


@pytest.mark.asyncio
async def test_reply_to_own_direct_message_goes_to_peer(config) -> None:
    api = FakeApi(polls=confirmed())
    session = await make_session(config, api)
    await session.login_and_serve()

    msg = analyze_message(make_msg(content="note to alice", from_user="@me", to_user="@alice"), "@me")
    await session.reply(msg, "ok")

    assert api.sent[-1] == ("text", "@me", "@alice", "ok")
