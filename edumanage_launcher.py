#!/usr/bin/env python3
"""EduManage Launcher — process entry point for the dashboard server.

Thin wrapper around interfaces/dashboard/server.py that adds:
- Logging setup
- Data directory creation
- Pre-flight checks (warn-only, never block startup)
- Signal handling for graceful shutdown

Run directly:
    python3 edumanage_launcher.py
"""

import logging
import os
import signal
import time
from pathlib import Path

BOOT_START = time.monotonic()

logger = logging.getLogger("edumanage.launcher")


def setup_logging(level: str = "info"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def ensure_data_dirs(config):
    """Create the directory holding the SQLite database."""
    db_path = config.database.db_path
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    logger.info("Data directories verified")


def run_preflight(config):
    """Quick pre-flight checks. Warn on failure, never block startup."""
    db_dir = Path(config.database.db_path).parent
    checks = [
        ("config file", config.path.exists()),
        (f"dir:{db_dir}", db_dir.exists() and os.access(db_dir, os.W_OK)),
        ("ai.api_key", bool(config.ai.api_key)),
        ("whatsapp.api_key", bool(config.whatsapp.api_key and config.whatsapp.business_number)),
        ("whatsapp.verify_token", bool(config.whatsapp.verify_token)),
    ]

    passed = sum(1 for _, ok in checks if ok)
    logger.info("Pre-flight: %d/%d checks passed", passed, len(checks))
    for name, ok in checks:
        if not ok:
            logger.warning("Pre-flight FAILED: %s", name)


def install_signal_handlers():
    """Install SIGTERM/SIGINT handlers for the boot phase.

    uvicorn replaces these with its own while serving and re-raises the
    signal after lifespan shutdown, so they cover pre-flight and the
    final exit.
    """
    def handle_signal(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        raise SystemExit(0)

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)


def main():
    from core.config import get_config

    config = get_config()
    setup_logging(config.server.log_level)
    logger.info("EduManage launcher starting")

    ensure_data_dirs(config)
    run_preflight(config)
    install_signal_handlers()

    import uvicorn
    logger.info(
        "Starting uvicorn on %s:%d (boot %.2fs)",
        config.server.host, config.server.port, time.monotonic() - BOOT_START,
    )
    uvicorn.run(
        "interfaces.dashboard.server:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
        ws_ping_interval=config.websocket.transport_ping_interval,
        access_log=False,
    )


if __name__ == "__main__":
    main()
