"""Runtime settings loaded from environment variables.

Settings are re-read on every call so tests can monkeypatch the environment
without reloading modules.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_CURRENCY = "PHP"


@dataclass(frozen=True)
class Settings:
    """Process configuration for the refunds service."""

    database_url: str | None
    app_role: str
    log_level: str
    refund_currency: str
    stripe_secret_key: str | None
    stripe_webhook_secret: str | None
    tasks_backend: str


def get_settings() -> Settings:
    """Load settings from the environment."""
    return Settings(
        database_url=os.environ.get("DATABASE_URL") or None,
        app_role=os.environ.get("APP_ROLE", "public"),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        refund_currency=os.environ.get("REFUND_CURRENCY", DEFAULT_CURRENCY).upper(),
        stripe_secret_key=os.environ.get("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET") or None,
        tasks_backend=os.environ.get("TASKS_BACKEND", "inline"),
    )
