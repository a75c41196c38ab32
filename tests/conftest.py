from __future__ import annotations

import pytest

from webwx.config.schema import Config


@pytest.fixture
def config() -> Config:
    cfg = Config()
    cfg.runtime.qr_poll_interval_s = 0
    cfg.runtime.sync_retry_delay_s = 0
    cfg.runtime.drain_timeout_s = 1.0
    cfg.runtime.qr_mode = "none"
    return cfg
