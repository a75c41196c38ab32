"""
Configuration schema definitions.

Design principles:
    - Explicit structure
    - Predictable defaults
    - Shard fields replaced as one value
    - Environment override support
    - Strong typing + validation
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================
# Shard
# =============================

NEW_POOL_MARKER = "wx2"

NEW_SYNC_HOST = "webpush.wx2.qq.com"
LEGACY_SYNC_HOST = "webpush.wx.qq.com"

CGI_PATH = "/cgi-bin/mmwebwx-bin"


class Shard(BaseModel):
    """
    Backend pool the account was routed to after login.

    Always built by ``Shard.from_redirect`` so the three fields
    describe the same pool.
    """

    model_config = {"frozen": True}

    cgi_domain: str = "https://wx2.qq.com"
    cgi_url: str = "https://wx2.qq.com" + CGI_PATH
    sync_host: str = NEW_SYNC_HOST

    @classmethod
    def from_redirect(cls, redirect_url: str) -> "Shard":
        """
        Derive the shard from the login redirect URL.

        Example:
            https://wx2.qq.com/cgi-bin/...  → webpush.wx2.qq.com
            https://wx.qq.com/cgi-bin/...   → webpush.wx.qq.com
        """
        u = urlparse(redirect_url)
        if not u.scheme or not u.netloc:
            raise ValueError(f"redirect url has no scheme/host: {redirect_url!r}")

        domain = f"{u.scheme}://{u.netloc}"
        sync_host = NEW_SYNC_HOST if NEW_POOL_MARKER in u.netloc else LEGACY_SYNC_HOST
        return cls(cgi_domain=domain, cgi_url=domain + CGI_PATH, sync_host=sync_host)


# =============================
# Session
# =============================

def random_device_id() -> str:
    """Browser-style device id: 'e' + 15 random digits."""
    return "e" + "".join(random.choice("0123456789") for _ in range(15))


class SessionConfig(BaseModel):
    """Endpoints and browser identity of one session."""

    app_id: str = "wx782c26e4c19acffb"
    login_url: str = "https://login.weixin.qq.com"
    lang: str = "zh_CN"
    device_id: str = Field(default_factory=random_device_id)
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_11_3) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/58.0.3029.110 Safari/537.36"
    )
    upload_url: str = "https://file.wx2.qq.com/cgi-bin/mmwebwx-bin/webwxuploadmedia?f=json"

    shard: Shard = Field(default_factory=Shard)
    redirect_url: str = ""

    # -------------------------
    # Shard access
    # -------------------------

    @property
    def cgi_url(self) -> str:
        return self.shard.cgi_url

    @property
    def cgi_domain(self) -> str:
        return self.shard.cgi_domain

    @property
    def sync_host(self) -> str:
        return self.shard.sync_host

    def apply_redirect(self, redirect_url: str) -> Shard:
        """
        Record the login redirect and switch to its shard.

        The shard is computed first and swapped in as a single value.
        """
        shard = Shard.from_redirect(redirect_url)
        self.shard = shard
        self.redirect_url = redirect_url
        return shard

    def qr_url(self, uuid: str) -> str:
        """URL encoded into the QR code the user scans."""
        return f"{self.login_url}/l/{uuid}"


# =============================
# Runtime
# =============================

QrMode = Literal["terminal", "file", "none"]


class RuntimeConfig(BaseModel):
    """Session runtime parameters."""
    batch_queue_size: int = 1000
    max_concurrent_handlers: int = 64
    drain_timeout_s: float = 10.0
    sync_retry_delay_s: float = 1.0
    qr_poll_interval_s: float = 3.0
    qr_mode: QrMode = "terminal"
    qr_dir: str = "~/.webwx/qrcode"


class HttpConfig(BaseModel):
    """HTTP client parameters."""
    timeout_s: float = 30.0
    long_poll_timeout_s: float = 40.0
    proxy: Optional[str] = None


# =============================
# Root Config
# =============================

class Config(BaseSettings):
    """
    Root configuration schema.

    Sources:
        config.json (load_config), WEBWX_* environment, defaults
    """

    model_config = SettingsConfigDict(env_prefix="WEBWX_", env_nested_delimiter="__")

    session: SessionConfig = Field(default_factory=SessionConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)

    @property
    def qr_path(self) -> Path:
        """Expanded QR image directory."""
        return Path(self.runtime.qr_dir).expanduser()
