"""
Reading ``config.toml``.

Relay settings live under ``[agentrelay.<section>]`` tables::

    [agentrelay.discord]
    channel_ids = [123456789]

    [agentrelay.relay]
    message_timeout_ms = 45000

Environment variables fill in whatever the file leaves out.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.toml")
CONFIG_PATH_ENV = "AGENT_RELAY_CONFIG"
ROOT_TABLE = "agentrelay"
SECTIONS = frozenset({"discord", "server", "copilot", "oauth", "relay"})


def _resolve(path: str | Path | None) -> Path:
    if path is not None:
        return Path(path)
    return Path(os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def validate(raw: Dict[str, Any], source: Path | str = "<config>") -> Dict[str, Any]:
    """Check the ``[agentrelay]`` layout; unknown sections are reported and kept."""

    root = raw.get(ROOT_TABLE, {})
    if not isinstance(root, dict):
        raise ValueError(f"{source}: [{ROOT_TABLE}] must be a table")

    for name, section in root.items():
        if not isinstance(section, dict):
            raise ValueError(f"{source}: [{ROOT_TABLE}.{name}] must be a table")
        if name not in SECTIONS:
            logger.warning("%s: ignoring unknown section [%s.%s]", source, ROOT_TABLE, name)
    return raw


def load_raw_config(path: str | Path | None = None) -> Dict[str, Any]:
    """
    Load and validate the relay config file.

    The path defaults to ``$AGENT_RELAY_CONFIG`` or ``config.toml``. A missing
    file yields ``{}``; a file that is not valid TOML raises ``ValueError``.
    """
    target = _resolve(path)
    if not target.is_file():
        logger.debug("No config file at %s; using environment only", target)
        return {}

    with target.open("rb") as handle:
        try:
            raw = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"{target}: invalid TOML ({exc})") from exc

    logger.info("Loaded relay settings from %s", target)
    return validate(raw, target)


__all__ = ["load_raw_config", "validate", "DEFAULT_CONFIG_PATH", "CONFIG_PATH_ENV"]
