"""
Backend collaborator interface.

The session core never touches sockets; it calls these operations and
interprets their results.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from webwx.config.schema import SessionConfig
from webwx.exceptions import ApiError
from webwx.session.state import Credentials, LoginTicket, SelfIdentity, SyncKeyState


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class LoginPoll:
    """
    One answer of the QR login poll endpoint.

    ``code`` is the ``window.code`` value, None when the body carries none.
    """
    code: Optional[int] = None
    redirect_url: Optional[str] = None
    raw: str = ""


@dataclass(slots=True)
class LoginPage:
    credentials: Credentials
    ticket: LoginTicket


@dataclass(slots=True)
class SyncCheck:
    retcode: int
    selector: int


@dataclass(slots=True)
class SyncResult:
    """webwxsync answer: the raw body plus the cursor it carries."""
    payload: bytes
    sync_key: SyncKeyState


@dataclass(slots=True)
class SessionContext:
    """Everything an authenticated call needs besides its own arguments."""
    config: SessionConfig
    credentials: Credentials = field(default_factory=Credentials)
    ticket: LoginTicket = field(default_factory=LoginTicket)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def check_base_response(op: str, body: Mapping[str, Any]) -> None:
    """Raise ApiError when ``BaseResponse.Ret`` is non-zero."""
    base = body.get("BaseResponse")
    if not isinstance(base, Mapping):
        raise ApiError(op, -1, "missing BaseResponse")
    try:
        ret = int(base.get("Ret", -1))
    except (TypeError, ValueError):
        ret = -1
    if ret != 0:
        raise ApiError(op, ret, str(base.get("ErrMsg", "")))


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class BaseWebApi(ABC):
    """
    Abstract backend.

    Implementations raise ``TransportError`` for network/decode failures
    and return parsed JSON bodies for the send-style calls.
    """

    # ----------------------------- login

    @abstractmethod
    async def jslogin(self, config: SessionConfig) -> str:
        """Request a fresh QR uuid."""

    @abstractmethod
    async def qrcode(self, config: SessionConfig, uuid: str) -> bytes:
        """QR image for ``uuid``."""

    @abstractmethod
    async def poll_login(self, config: SessionConfig, uuid: str, tip: str = "0") -> LoginPoll:
        """Ask whether the QR code has been scanned and confirmed."""

    @abstractmethod
    async def new_login_page(self, config: SessionConfig, redirect_url: str) -> LoginPage:
        """Follow the redirect, returning cookies and the login ticket."""

    # ----------------------------- session start

    @abstractmethod
    async def init(self, ctx: SessionContext) -> dict[str, Any]:
        """webwxinit JSON (SyncKey, User, ...)."""

    @abstractmethod
    async def status_notify(self, ctx: SessionContext, me: SelfIdentity) -> int:
        """Returns BaseResponse.Ret."""

    @abstractmethod
    async def get_contact(self, ctx: SessionContext) -> dict[str, Any]:
        """Contact list JSON."""

    # ----------------------------- long poll

    @abstractmethod
    async def sync_check(self, ctx: SessionContext, sync_key: SyncKeyState) -> SyncCheck:
        """Long-poll check against ``ctx.config.sync_host``."""

    @abstractmethod
    async def sync(self, ctx: SessionContext, sync_key: SyncKeyState) -> SyncResult:
        """Fetch pending messages and the next cursor."""

    # ----------------------------- messaging

    @abstractmethod
    async def send_msg(
        self, ctx: SessionContext, from_user: str, to_user: str, content: str
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def upload_media(
        self, ctx: SessionContext, filename: str, data: bytes, from_user: str, to_user: str
    ) -> str:
        """Upload and return the MediaId."""

    @abstractmethod
    async def send_msg_img(
        self, ctx: SessionContext, from_user: str, to_user: str, media_id: str
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def send_emoticon(
        self, ctx: SessionContext, from_user: str, to_user: str, media_id: str
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def get_msg_img(self, ctx: SessionContext, msg_id: str) -> bytes:
        ...

    @abstractmethod
    async def revoke_msg(
        self, ctx: SessionContext, client_msg_id: str, svr_msg_id: str, to_user: str
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def logout(self, ctx: SessionContext) -> None:
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
