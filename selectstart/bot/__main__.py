"""
selectstart.bot.__main__ — Entry point for ``python -m selectstart.bot``
========================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Apply the optional YAML seed file (idempotent).
5. Create the TrackerBot and run it (blocking).

Run with::

    python -m selectstart.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from selectstart.bot.core import TrackerBot
from selectstart.config import load_config
from selectstart.database.engine import create_db_engine, init_db
from selectstart.services.seed import seed_from_yaml

logger = logging.getLogger("selectstart")


def _configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO; the gateway already reports failures
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main() -> None:
    """Bootstrap and run the tracker bot."""

    # 1. Environment variables (secrets).
    load_dotenv()
    _configure_logging()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    ra_username = os.getenv("RA_USERNAME")
    ra_api_key = os.getenv("RA_API_KEY")
    if not ra_username or not ra_api_key:
        logger.critical("RA_USERNAME and RA_API_KEY must be set in .env.")
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config(os.getenv("SELECTSTART_CONFIG", "config.yaml"))
    logger.info("Config loaded — Community: %s", cfg.community_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Subjects, boards and challenges from YAML.
    if cfg.seed_file:
        seed_from_yaml(engine, cfg.seed_file)

    # 5. Bot (blocks until Ctrl+C or SIGTERM).
    bot = TrackerBot(cfg=cfg, engine=engine, ra_username=ra_username, ra_api_key=ra_api_key)
    logger.info("Starting tracker bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
