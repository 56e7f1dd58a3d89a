"""Runtime configuration.

Values come from environment variables, optionally loaded from a `.env` file
in the working directory.

Environment variables:
- TELEGRAM_BOT_TOKEN (required to run the bot)
- TRACKING_FILE: JSON file holding the subscription registry (default tracking.json)
- CHECK_INTERVAL: seconds between price checks (default 600)
- REQUEST_DELAY: seconds to wait after each product request (default 2)
- FETCH_TIMEOUT: upstream request timeout in seconds (default 10)
- WB_CURRENCY / WB_DEST: Wildberries query parameters (default byn / -8144334)
- LOG_LEVEL (optional)
"""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


class StartupFailure(RuntimeError):
    """Raised when the process cannot start (missing credential, corrupt state)."""


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise StartupFailure(f"{name} must be a number, got {raw!r}") from e


class Settings:
    """Settings read from the environment at construction time."""

    def __init__(self) -> None:
        self.TELEGRAM_BOT_TOKEN: str | None = os.getenv("TELEGRAM_BOT_TOKEN") or None
        self.TRACKING_FILE: Path = Path(os.getenv("TRACKING_FILE", "tracking.json"))

        # Reconciliation loop
        self.CHECK_INTERVAL: float = _get_float("CHECK_INTERVAL", 600)
        self.REQUEST_DELAY: float = _get_float("REQUEST_DELAY", 2)

        # Upstream catalog
        self.FETCH_TIMEOUT: float = _get_float("FETCH_TIMEOUT", 10)
        self.WB_CURRENCY: str = os.getenv("WB_CURRENCY", "byn")
        self.WB_DEST: str = os.getenv("WB_DEST", "-8144334")

        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def currency_label(self) -> str:
        return self.WB_CURRENCY.upper()

    def require_token(self) -> str:
        if not self.TELEGRAM_BOT_TOKEN:
            raise StartupFailure("TELEGRAM_BOT_TOKEN not set")
        return self.TELEGRAM_BOT_TOKEN


__all__ = ["Settings", "StartupFailure"]
