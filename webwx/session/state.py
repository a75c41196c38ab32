"""
Session state primitives.

- SyncKeyState: long-poll cursor, immutable, replaced wholesale
- Credentials: cookie set attached to authenticated calls
- LoginTicket: skey / sid / uin / pass_ticket from the login page
- SelfIdentity: the bot's own account
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping
from xml.etree import ElementTree

from webwx.exceptions import LoginError, TransportError


# ===========================
# Sync key
# ===========================

@dataclass(frozen=True, slots=True)
class SyncKeyState:
    """
    Ordered (key, value) cursor returned by init and every sync.

    Frozen: a new instance is built for each backend answer and the old
    one is dropped, never edited in place.
    """

    pairs: tuple[tuple[int, int], ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SyncKeyState":
        """
        Build from a ``SyncKey`` JSON object:

            {"Count": 2, "List": [{"Key": 1, "Val": 100}, ...]}
        """
        if not isinstance(payload, Mapping):
            raise TransportError("SyncKey is not an object")
        items = payload.get("List")
        if not isinstance(items, list):
            raise TransportError("SyncKey.List missing or not a list")

        pairs = []
        for item in items:
            try:
                pairs.append((int(item["Key"]), int(item["Val"])))
            except (KeyError, TypeError, ValueError) as e:
                raise TransportError(f"malformed SyncKey item {item!r}") from e
        return cls(tuple(pairs))

    def to_payload(self) -> dict[str, Any]:
        """JSON form expected by webwxsync."""
        return {
            "Count": len(self.pairs),
            "List": [{"Key": k, "Val": v} for k, v in self.pairs],
        }

    def to_query(self) -> str:
        """Query form expected by synccheck: ``1_100|2_200``."""
        return "|".join(f"{k}_{v}" for k, v in self.pairs)

    def __len__(self) -> int:
        return len(self.pairs)


# ===========================
# Credentials
# ===========================

@dataclass(frozen=True, slots=True)
class Credentials:
    """Cookies obtained by the login page, opaque to the session core."""

    cookies: Mapping[str, str] = field(default_factory=dict)

    def get(self, name: str, default: str = "") -> str:
        return self.cookies.get(name, default)

    def header(self) -> str:
        """Value of the ``Cookie`` request header."""
        return "; ".join(f"{k}={v}" for k, v in self.cookies.items())


# ===========================
# Login ticket
# ===========================

@dataclass(frozen=True, slots=True)
class LoginTicket:
    skey: str = ""
    wxsid: str = ""
    wxuin: str = ""
    pass_ticket: str = ""

    @classmethod
    def from_xml(cls, body: str) -> "LoginTicket":
        """
        Parse the login page body:

            <error><ret>0</ret><skey>..</skey><wxsid>..</wxsid>
            <wxuin>..</wxuin><pass_ticket>..</pass_ticket></error>
        """
        try:
            root = ElementTree.fromstring(body)
        except ElementTree.ParseError as e:
            raise LoginError(f"login page is not XML: {e}") from e

        ret = (root.findtext("ret") or "").strip()
        if ret != "0":
            message = root.findtext("message") or ""
            raise LoginError(f"login page ret={ret or '?'} message={message}")

        return cls(
            skey=root.findtext("skey") or "",
            wxsid=root.findtext("wxsid") or "",
            wxuin=root.findtext("wxuin") or "",
            pass_ticket=root.findtext("pass_ticket") or "",
        )

    def base_request(self, device_id: str) -> dict[str, Any]:
        """``BaseRequest`` object sent with every JSON call."""
        return {
            "Uin": self.wxuin,
            "Sid": self.wxsid,
            "Skey": self.skey,
            "DeviceID": device_id,
        }


# ===========================
# Identity
# ===========================

@dataclass(frozen=True, slots=True)
class SelfIdentity:
    user_name: str
    nick_name: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SelfIdentity":
        user = payload.get("User")
        if not isinstance(user, Mapping) or not isinstance(user.get("UserName"), str):
            raise TransportError("init response carries no User.UserName")
        return cls(user_name=user["UserName"], nick_name=str(user.get("NickName") or ""))
