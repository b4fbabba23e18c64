"""YAML configuration loader.

Loads a single YAML file that layers on top of the CHATRELAY_* env
vars. When no YAML is provided, ``GatewayConfig.from_env()`` is used
as-is.

Example YAML:
    gateway:
      host: 0.0.0.0
      port: 18789
      history_dir: ~/.chatrelay/history
      history_limit: 200
      subscriber_queue_size: 5000

    agents:
      defaults:
        verbose_default: "off"

    sessions:
      main:
        verbose_level: "on"
        thinking_level: low
      ops:
        session_id: 6f1c2e0a-ops
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .config import GatewayConfig
from .errors import ConfigError
from .models import SessionEntry

logger = logging.getLogger(__name__)

_SESSION_FIELDS = ("session_id", "verbose_level", "thinking_level")


@dataclass
class RelayConfig:
    """Complete parsed YAML configuration."""
    gateway: GatewayConfig
    sessions: dict[str, SessionEntry] = field(default_factory=dict)


def _require_mapping(value: Any, path: str, section: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(path, f"section '{section}' must be a mapping")
    return value


def _parse_gateway(raw: dict[str, Any], base: GatewayConfig, path: str) -> GatewayConfig:
    known = {f.name: f for f in fields(GatewayConfig)}
    for key, value in raw.items():
        if key not in known:
            logger.warning("Ignoring unknown gateway key %r in %s", key, path)
            continue
        if key == "history_dir" and isinstance(value, str):
            value = os.path.expanduser(value)
        if key == "verbose_default" and isinstance(value, bool):
            # YAML 1.1 turns bare on/off into booleans.
            value = "on" if value else "off"
        setattr(base, key, value)
    return base


def _parse_sessions(raw: dict[str, Any], path: str) -> dict[str, SessionEntry]:
    sessions: dict[str, SessionEntry] = {}
    for session_key, settings in raw.items():
        settings = _require_mapping(settings, path, f"sessions.{session_key}")
        kwargs: dict[str, Any] = {}
        for key, value in settings.items():
            if key not in _SESSION_FIELDS:
                logger.warning(
                    "Ignoring unknown session key %r for %s in %s",
                    key, session_key, path,
                )
                continue
            if isinstance(value, bool):
                value = "on" if value else "off"
            kwargs[key] = None if value is None else str(value)
        sessions[str(session_key)] = SessionEntry(session_key=str(session_key), **kwargs)
    return sessions


def load_yaml_config(path: str | Path, base: GatewayConfig | None = None) -> RelayConfig:
    """Parse a YAML config file into a ``RelayConfig``.

    ``base`` supplies defaults (normally ``GatewayConfig.from_env()``).
    """
    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise FileNotFoundError(str(config_path))
    text = config_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(str(config_path), f"YAML parse error: {exc}") from exc
    data = _require_mapping(data, str(config_path), "<root>")

    gateway = _parse_gateway(
        _require_mapping(data.get("gateway"), str(config_path), "gateway"),
        base or GatewayConfig(),
        str(config_path),
    )

    agents = _require_mapping(data.get("agents"), str(config_path), "agents")
    defaults = _require_mapping(agents.get("defaults"), str(config_path), "agents.defaults")
    if "verbose_default" in defaults:
        verbose_default = defaults["verbose_default"]
        if isinstance(verbose_default, bool):
            verbose_default = "on" if verbose_default else "off"
        gateway.verbose_default = None if verbose_default is None else str(verbose_default)

    sessions = _parse_sessions(
        _require_mapping(data.get("sessions"), str(config_path), "sessions"),
        str(config_path),
    )
    logger.info(
        "Loaded config %s (sessions=%d, verbose_default=%s)",
        config_path, len(sessions), gateway.verbose_default or "<unset>",
    )
    return RelayConfig(gateway=gateway, sessions=sessions)
