"""Entrypoint for the Wildberries price tracker bot.

Startup:
- Loads settings (environment / .env), see config.py.
- Loads the tracking registry from TRACKING_FILE. A missing or empty file starts
  an empty registry; a corrupt one stops the process.
- Requires TELEGRAM_BOT_TOKEN.
- Runs the Telegram bot with long polling and the periodic price check.

Run:
  python main.py
"""
from __future__ import annotations

import logging

from bot_main import build_application
from config import Settings, StartupFailure
from fetcher import WildberriesClient
from persistent_state import TrackingStore

logger = logging.getLogger("main")


def main() -> None:  # pragma: no cover
    settings = Settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # httpx logs full request URLs, which contain the bot token
    logging.getLogger("httpx").setLevel(logging.WARNING)

    try:
        store = TrackingStore.load(settings.TRACKING_FILE)
        client = WildberriesClient(
            currency=settings.WB_CURRENCY,
            dest=settings.WB_DEST,
            timeout=settings.FETCH_TIMEOUT,
        )
        app = build_application(settings, store, client)
    except StartupFailure as e:
        logger.critical("Startup failed: %s", e)
        raise SystemExit(str(e)) from e

    logger.info("Starting bot (check interval=%ss, request delay=%ss)", settings.CHECK_INTERVAL, settings.REQUEST_DELAY)
    app.run_polling()


if __name__ == "__main__":  # pragma: no cover
    main()
