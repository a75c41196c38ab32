"""
Contact bookkeeping.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional

from loguru import logger

from webwx.bus.events import GROUP_MARKER
from webwx.session.state import SelfIdentity


@dataclass(frozen=True, slots=True)
class Contact:
    user_name: str
    nick_name: str = ""
    remark_name: str = ""

    @property
    def is_group(self) -> bool:
        return self.user_name.startswith(GROUP_MARKER)

    @property
    def display_name(self) -> str:
        return self.remark_name or self.nick_name or self.user_name


class ContactManager:
    """In-memory contact list keyed by user name."""

    def __init__(self) -> None:
        self._contacts: dict[str, Contact] = {}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ContactManager":
        """Build from a webwxgetcontact body (``MemberList``)."""
        cm = cls()
        members = payload.get("MemberList") or []
        skipped = 0
        for m in members:
            if not isinstance(m, Mapping) or not isinstance(m.get("UserName"), str):
                skipped += 1
                continue
            cm.add(Contact(
                user_name=m["UserName"],
                nick_name=str(m.get("NickName") or ""),
                remark_name=str(m.get("RemarkName") or ""),
            ))
        if skipped:
            logger.warning("Skipped {} malformed contact(s)", skipped)
        return cm

    def add(self, contact: Contact) -> None:
        self._contacts[contact.user_name] = contact

    def add_from_identity(self, me: SelfIdentity) -> None:
        self.add(Contact(user_name=me.user_name, nick_name=me.nick_name))

    def get(self, user_name: str) -> Optional[Contact]:
        return self._contacts.get(user_name)

    def find_by_nick_name(self, nick_name: str) -> list[Contact]:
        return [c for c in self._contacts.values() if c.nick_name == nick_name]

    def groups(self) -> list[Contact]:
        return [c for c in self._contacts.values() if c.is_group]

    def __len__(self) -> int:
        return len(self._contacts)

    def __iter__(self) -> Iterator[Contact]:
        return iter(self._contacts.values())
