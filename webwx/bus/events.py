"""
Event types flowing from the sync loop to handlers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Final, Optional


# ---------------------------------------------------------------------
# Message types
# ---------------------------------------------------------------------

MSG_TEXT: Final = 1
MSG_IMG: Final = 3
MSG_VOICE: Final = 34
MSG_FV: Final = 37             # friend verification request
MSG_PF: Final = 40             # possible friend
MSG_SCC: Final = 42            # shared contact card
MSG_VIDEO: Final = 43
MSG_EMOTION: Final = 47
MSG_LOCATION: Final = 48
MSG_LINK: Final = 49
MSG_VOIP: Final = 50
MSG_INIT: Final = 51
MSG_VOIPNOTIFY: Final = 52
MSG_VOIPINVITE: Final = 53
MSG_SHORT_VIDEO: Final = 62
MSG_SYSNOTICE: Final = 9999
MSG_SYS: Final = 10000
MSG_WITHDRAW: Final = 10002

GROUP_MARKER: Final = "@@"
SPEAKER_DELIMITER: Final = ":<br/>"
MENTION_SEPARATOR: Final = "\u2005"


# ---------------------------------------------------------------------
# Raw batch
# ---------------------------------------------------------------------

@dataclass(slots=True)
class RawMessageBatch:
    """
    Undecoded webwxsync body, consumed exactly once by the dispatcher.
    """

    payload: bytes
    received_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __len__(self) -> int:
        return len(self.payload)

    def age_s(self) -> float:
        """Seconds since the batch was fetched."""
        return (datetime.now(timezone.utc) - self.received_at).total_seconds()


# ---------------------------------------------------------------------
# Parsed message
# ---------------------------------------------------------------------

@dataclass(slots=True)
class ParsedMessage:
    """
    One normalized message handed to handlers.
    """

    msg_id: str
    msg_type: int
    from_user: str             # origin sender id
    to_user: str               # destination id
    origin_content: str        # content as delivered

    is_group: bool = False
    who: str = ""              # effective speaker
    content: str = ""          # display content
    at: Optional[str] = None   # "@name " when the message opens with a mention
    outgoing: bool = False     # sent by the bot account itself

    @property
    def chat_id(self) -> str:
        """Conversation a reply should go to."""
        if self.is_group:
            return self.from_user if GROUP_MARKER in self.from_user else self.to_user
        return self.to_user if self.outgoing else self.from_user
