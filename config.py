import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path


REVENUE_SOURCES = ("recorded", "estimated")


class Settings:
    def __init__(
        self,
        database_url: str,
        environment: str,
        token_secret: str,
        token_max_age_hours: int,
        revenue_source: str,
        revenue_estimate_multiplier: Decimal,
        report_months: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.environment = environment
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours
        self.revenue_source = revenue_source
        self.revenue_estimate_multiplier = revenue_estimate_multiplier
        self.report_months = report_months
        self.log_level = log_level

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("RUMBA_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "rumba.db"
    database_url = os.getenv("RUMBA_DATABASE_URL", f"sqlite:///{default_db}")
    environment = os.getenv("RUMBA_ENV", "development").lower()
    token_secret = os.getenv(
        "RUMBA_TOKEN_SECRET",
        "3f0c6e1d9b2a47c58e61f2d4a7b9c0e1f3a5d7c9e2b4f6a8c0d2e4f6a8b0c2d4",
    )
    token_max_age_hours = int(os.getenv("RUMBA_TOKEN_MAX_AGE_HOURS", "24"))
    revenue_source = os.getenv("RUMBA_REVENUE_SOURCE", "recorded").lower()
    if revenue_source not in REVENUE_SOURCES:
        raise ValueError(f"Unsupported revenue source: {revenue_source}")
    revenue_estimate_multiplier = Decimal(
        os.getenv("RUMBA_REVENUE_ESTIMATE_MULTIPLIER", "1.5")
    )
    report_months = int(os.getenv("RUMBA_REPORT_MONTHS", "6"))
    log_level = os.getenv("RUMBA_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        environment=environment,
        token_secret=token_secret,
        token_max_age_hours=token_max_age_hours,
        revenue_source=revenue_source,
        revenue_estimate_multiplier=revenue_estimate_multiplier,
        report_months=report_months,
        log_level=log_level,
    )
