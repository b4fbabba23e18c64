"""Gateway configuration loaded from environment variables.

All settings have sensible defaults. Override via CHATRELAY_* env vars,
or through the ``gateway:`` section of a YAML file (see yaml_config).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class GatewayConfig:
    """Relay gateway configuration."""

    # Listener
    host: str = "127.0.0.1"
    port: int = 0

    # Persisted chat history. None keeps history in memory only.
    history_dir: str | None = None
    # Upper bound for GET /chat/history page size.
    history_limit: int = 200

    # Per-subscriber outbound queue. Deltas are dropped when it is full;
    # anything else disconnects the subscriber.
    subscriber_queue_size: int = 5000
    keepalive_seconds: float = 30.0

    # Fallback for sessions/runs with no explicit verbose level.
    # None behaves as "off".
    verbose_default: str | None = None

    # How long a chat.send idempotency key is remembered.
    dedupe_ttl_seconds: float = 300.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """Load configuration from CHATRELAY_* environment variables."""
        relay_vars = {
            k: v for k, v in os.environ.items() if k.startswith("CHATRELAY_")
        }
        if relay_vars:
            logger.info(
                "GatewayConfig.from_env: CHATRELAY_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(relay_vars.items())),
            )
        else:
            logger.debug("GatewayConfig.from_env: no CHATRELAY_* env vars set, using defaults")

        config = cls(
            host=os.getenv("CHATRELAY_HOST", cls.host),
            port=int(os.getenv("CHATRELAY_PORT", str(cls.port))),
            history_dir=os.getenv("CHATRELAY_HISTORY_DIR") or None,
            history_limit=int(os.getenv(
                "CHATRELAY_HISTORY_LIMIT", str(cls.history_limit)
            )),
            subscriber_queue_size=int(os.getenv(
                "CHATRELAY_QUEUE_SIZE", str(cls.subscriber_queue_size)
            )),
            keepalive_seconds=float(os.getenv(
                "CHATRELAY_KEEPALIVE", str(cls.keepalive_seconds)
            )),
            verbose_default=os.getenv("CHATRELAY_VERBOSE_DEFAULT") or None,
            log_level=os.getenv("CHATRELAY_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "GatewayConfig.from_env: host=%s port=%s history_dir=%s verbose_default=%s",
            config.host, config.port,
            config.history_dir or "<memory>", config.verbose_default or "<unset>",
        )
        return config
