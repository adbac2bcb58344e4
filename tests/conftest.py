import os
from datetime import datetime

import pytest

os.environ.setdefault("EXPENSES_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("EXPENSES_TIMEZONE", "UTC")

from config import Settings  # noqa: E402


NOW = datetime(2024, 1, 11, 18, 30)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite:///:memory:",
        timezone="UTC",
        refresh_interval_secs=30.0,
        daily_alert_cents=100_000,
        category_alert_cents=500_000,
        rapid_increase_priority_cents=100_000,
        trend_threshold_pct=10,
        max_alerts=2,
        currency_symbol="₹",
        log_level="DEBUG",
    )
