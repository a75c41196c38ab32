"""
Configuration loading and persistence utilities.

Design goals:
    - Deterministic loading & fallback
    - Legacy key migration
    - Strict schema validation
    - Stable persistence format (camelCase on disk, snake_case in memory)
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Callable

from loguru import logger
from pydantic import ValidationError

from webwx.config.schema import Config


# =============================
# Paths
# =============================

def get_config_path() -> Path:
    """
    Return default configuration file path.

    Default:
        ~/.webwx/config.json
    """
    return Path.home() / ".webwx" / "config.json"


# =============================
# Load & Save
# =============================

def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from disk or fallback to defaults.

    Flow:
        1. Read raw JSON
        2. Migrate legacy schema
        3. camelCase → snake_case
        4. Pydantic validation
    """
    path = config_path or get_config_path()

    if not path.exists():
        logger.warning("Config file not found, using defaults | path={}", path)
        return Config()

    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)

        migrated = _migrate_config(raw)
        normalized = convert_keys(migrated)

        config = Config.model_validate(normalized)

        logger.success("Config loaded | path={}", path)
        return config

    except json.JSONDecodeError as e:
        logger.error("Invalid JSON in config | path={} err={}", path, e)

    except ValidationError as e:
        logger.error("Config validation failed | path={} err={}", path, e)

    logger.warning("Falling back to default configuration")
    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Persist configuration to disk as camelCase JSON.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump())

    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    logger.success("Config saved | path={}", path)


# =============================
# Migration
# =============================

_LEGACY_SHARD_KEYS = ("syncSrv", "cgiDomain", "cgiUrl")


def _migrate_config(data: dict) -> dict:
    """
    Migrate legacy config schema → latest schema.

    Migration rules:
        - session.syncSrv / cgiDomain / cgiUrl are dropped; the shard is
          only ever derived from the login redirect.
    """
    session = data.get("session") or {}

    for key in _LEGACY_SHARD_KEYS:
        if key in session:
            session.pop(key)
            logger.info("Dropped legacy config key: session.{}", key)

    data["session"] = session
    return data


# =============================
# Key Conversion
# =============================

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _rekey(data: Any, rename: Callable[[str], str]) -> Any:
    if isinstance(data, dict):
        return {rename(k): _rekey(v, rename) for k, v in data.items()}
    if isinstance(data, list):
        return [_rekey(x, rename) for x in data]
    return data


def convert_keys(data: Any) -> Any:
    """On-disk camelCase keys → schema field names."""
    return _rekey(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """Schema field names → on-disk camelCase keys."""
    return _rekey(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    """drainTimeoutS → drain_timeout_s"""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    """sync_retry_delay_s → syncRetryDelayS"""
    first, *rest = name.split("_")
    return first + "".join(part[:1].upper() + part[1:] for part in rest)
