import logging
import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        refresh_interval_secs: float,
        daily_alert_cents: int,
        category_alert_cents: int,
        rapid_increase_priority_cents: int,
        trend_threshold_pct: int,
        max_alerts: int,
        currency_symbol: str,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.refresh_interval_secs = refresh_interval_secs
        self.daily_alert_cents = daily_alert_cents
        self.category_alert_cents = category_alert_cents
        self.rapid_increase_priority_cents = rapid_increase_priority_cents
        self.trend_threshold_pct = trend_threshold_pct
        self.max_alerts = max_alerts
        self.currency_symbol = currency_symbol
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'expenses.db'}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("EXPENSES_TIMEZONE", "Asia/Kolkata"),
        refresh_interval_secs=float(os.getenv("EXPENSES_REFRESH_INTERVAL_SECS", "30")),
        daily_alert_cents=int(os.getenv("EXPENSES_DAILY_ALERT_CENTS", "100000")),
        category_alert_cents=int(os.getenv("EXPENSES_CATEGORY_ALERT_CENTS", "500000")),
        rapid_increase_priority_cents=int(
            os.getenv("EXPENSES_RAPID_INCREASE_PRIORITY_CENTS", "100000")
        ),
        trend_threshold_pct=int(os.getenv("EXPENSES_TREND_THRESHOLD_PCT", "10")),
        max_alerts=int(os.getenv("EXPENSES_MAX_ALERTS", "2")),
        currency_symbol=os.getenv("EXPENSES_CURRENCY_SYMBOL", "₹"),
        log_level=os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
