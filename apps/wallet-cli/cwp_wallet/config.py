"""Filesystem locations, timeouts and the user wallet configuration."""

from __future__ import annotations

import json
import logging
import os
import pathlib
import re
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_DIR = pathlib.Path(os.environ.get("CWP_CONFIG_HOME", str(pathlib.Path.home() / ".config" / "wallet")))
CONFIG_FILE = CONFIG_DIR / "config.json"
SESSIONS_DIR = CONFIG_DIR / "sessions"

PROVIDER_PREFIX = "wallet-"
PROBE_TIMEOUT_MS = 3000

OPERATION_TIMEOUTS_MS = {
    "info": PROBE_TIMEOUT_MS,
    "accounts": 10000,
    "sign-message": 120000,
    "sign-typed-data": 120000,
    "sign-transaction": 120000,
    "send-transaction": 180000,
}


class ConfigError(Exception):
    """Environment configuration is invalid."""


def _env_timeout_ms(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    if not re.fullmatch(r"[0-9]+", raw):
        raise ConfigError(f"{name} must be an integer number of milliseconds.")
    value = int(raw)
    if value < 1:
        raise ConfigError(f"{name} must be >= 1.")
    return value


def probe_timeout_ms() -> int:
    return _env_timeout_ms("CWP_PROBE_TIMEOUT_MS", PROBE_TIMEOUT_MS)


def operation_timeout_ms(operation: str) -> int:
    if operation == "info":
        return probe_timeout_ms()
    return _env_timeout_ms("CWP_EXEC_TIMEOUT_MS", OPERATION_TIMEOUTS_MS.get(operation, 10000))


def _string_list(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, str) and item]


def load_wallet_config(path: pathlib.Path | None = None) -> dict[str, Any]:
    """Read the provider preferences file.

    A missing or malformed file yields an empty config. The returned dict
    always carries ``default`` (str or None), ``disabled`` and ``priority``.
    """
    target = path or CONFIG_FILE
    config: dict[str, Any] = {"default": None, "disabled": [], "priority": []}
    try:
        raw = json.loads(target.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return config
    except (OSError, ValueError) as exc:
        logger.debug("ignoring unreadable wallet config %s: %s", target, exc)
        return config
    if not isinstance(raw, dict):
        logger.debug("ignoring wallet config %s: not a JSON object", target)
        return config
    default = raw.get("default")
    if isinstance(default, str) and default:
        config["default"] = default
    config["disabled"] = _string_list(raw.get("disabled"))
    config["priority"] = _string_list(raw.get("priority"))
    return config
