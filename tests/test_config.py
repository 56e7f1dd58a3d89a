"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from config import Settings, StartupFailure


def test_defaults(monkeypatch):
    for name in ("TRACKING_FILE", "CHECK_INTERVAL", "REQUEST_DELAY", "FETCH_TIMEOUT", "WB_CURRENCY"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.TRACKING_FILE == Path("tracking.json")
    assert settings.CHECK_INTERVAL == 600
    assert settings.REQUEST_DELAY == 2
    assert settings.FETCH_TIMEOUT == 10
    assert settings.currency_label == "BYN"


def test_missing_token_is_startup_failure(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "")
    with pytest.raises(StartupFailure, match="TELEGRAM_BOT_TOKEN"):
        Settings().require_token()


def test_token_and_overrides(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("CHECK_INTERVAL", "60")
    monkeypatch.setenv("WB_CURRENCY", "rub")

    settings = Settings()

    assert settings.require_token() == "123:abc"
    assert settings.CHECK_INTERVAL == 60
    assert settings.currency_label == "RUB"


def test_bad_number_is_startup_failure(monkeypatch):
    monkeypatch.setenv("REQUEST_DELAY", "soon")
    with pytest.raises(StartupFailure, match="REQUEST_DELAY"):
        Settings()
