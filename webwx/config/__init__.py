"""Configuration schema and loading."""

from webwx.config.loader import get_config_path, load_config, save_config
from webwx.config.schema import Config, SessionConfig, Shard

__all__ = ["Config", "SessionConfig", "Shard", "get_config_path", "load_config", "save_config"]
