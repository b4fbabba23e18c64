"""chatrelay CLI: main application entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def _configure_server_logging(log_level: str) -> Path:
    """Rotating file log plus stderr, shared format."""
    log_dir = Path.home() / ".chatrelay" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "chatrelay-server.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def discover_config_path(explicit: str | None, cwd: Path | None = None) -> str | None:
    """Explicit path, else ./.chatrelay/chatrelay.yaml, else ./chatrelay.yaml."""
    logger = logging.getLogger(__name__)
    if explicit:
        logger.info(
            "Using explicit config path: %s (exists=%s)",
            explicit, Path(explicit).exists(),
        )
        return explicit
    base = cwd or Path.cwd()
    preferred = base / ".chatrelay" / "chatrelay.yaml"
    legacy = base / "chatrelay.yaml"
    logger.info(
        "Config auto-discovery candidates: %s (exists=%s), %s (exists=%s)",
        preferred, preferred.exists(), legacy, legacy.exists(),
    )
    for candidate in (preferred, legacy):
        if candidate.exists():
            logger.info("Auto-discovered config: %s", candidate)
            return str(candidate)
    logger.info("No config file found (tried %s, %s); using defaults", preferred, legacy)
    return None


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="chatrelay",
        description="chatrelay: streaming agent-run reconciliation for chat clients",
    )
    parser.add_argument(
        "--server", action="store_true",
        help="Start the HTTP+SSE gateway instead of the terminal viewer",
    )
    parser.add_argument(
        "--host", default=None,
        help="Server bind address (default: CHATRELAY_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Server port (0=random available port)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file for gateway, agent defaults and sessions",
    )
    parser.add_argument(
        "--url", default="http://127.0.0.1:18789",
        help="Gateway base URL for the terminal viewer",
    )
    parser.add_argument(
        "--session", default="main",
        help="Session key to open in the terminal viewer",
    )
    args = parser.parse_args()

    if args.server:
        from chatrelay.engine.config import GatewayConfig
        from chatrelay.engine.errors import ConfigError
        from chatrelay.engine.yaml_config import load_yaml_config
        from chatrelay.server.server import GatewayServer

        log_file = _configure_server_logging(os.getenv("CHATRELAY_LOG_LEVEL", "INFO"))
        logger = logging.getLogger(__name__)

        config = GatewayConfig.from_env()
        sessions = None
        config_path = discover_config_path(args.config)
        if config_path:
            try:
                relay_config = load_yaml_config(config_path, base=config)
            except (FileNotFoundError, ConfigError) as exc:
                logger.error("Cannot load config %s: %s", config_path, exc)
                sys.exit(2)
            config = relay_config.gateway
            sessions = relay_config.sessions
        if args.host is not None:
            config.host = args.host
        if args.port is not None:
            config.port = args.port
        logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

        logger.info(
            "Starting chatrelay server mode cwd=%s host=%s port=%s config=%s log=%s",
            Path.cwd(), config.host, config.port, config_path or "<none>", log_file,
        )
        server = GatewayServer(config=config, sessions=sessions)
        asyncio.run(server.start())
        sys.exit(0)

    # TUI mode
    from chatrelay.tui.app import ChatRelayApp

    app = ChatRelayApp(url=args.url, session_key=args.session)
    app.run()


if __name__ == "__main__":
    main()
