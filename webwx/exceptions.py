"""
Error taxonomy for the webwx session core.
"""

from __future__ import annotations


class WebWxError(Exception):
    """Base error for webwx."""


# ---------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------

class LoginError(WebWxError):
    """QR handshake or login page failure."""


class QRExpiredError(LoginError):
    """The QR code was not confirmed in time (window.code=408)."""


# ---------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------

class TransportError(WebWxError):
    """HTTP or response decoding failure of a single backend call."""


# ---------------------------------------------------------------------
# Loop termination
# ---------------------------------------------------------------------

class SessionTerminatedError(WebWxError):
    """The long-poll loop stopped for a reason the caller must handle."""


class SessionDownError(SessionTerminatedError):
    def __init__(self, selector: int) -> None:
        super().__init__(f"session down, sel {selector}")
        self.selector = selector


class ApiBlockedError(SessionTerminatedError):
    def __init__(self, retcode: int) -> None:
        super().__init__(f"api blocked, ret:{retcode}")
        self.retcode = retcode


class UnknownRetcodeError(SessionTerminatedError):
    def __init__(self, retcode: int) -> None:
        super().__init__(f"unhandled exception ret {retcode}")
        self.retcode = retcode


# ---------------------------------------------------------------------
# Request level
# ---------------------------------------------------------------------

class ApiError(WebWxError):
    """
    The backend answered with a non-zero BaseResponse.Ret.
    """

    def __init__(self, op: str, ret: int, err_msg: str = "") -> None:
        super().__init__(f"{op} Ret={ret}, ErrMsg={err_msg}")
        self.op = op
        self.ret = ret
        self.err_msg = err_msg


class MessageDecodeError(WebWxError):
    """A single message element did not match the expected schema."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"invalid message field {field!r}: {reason}")
        self.field = field
        self.reason = reason
