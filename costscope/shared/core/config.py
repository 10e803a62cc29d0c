from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import ValidationError, model_validator
from typing import Dict

from costscope.models.findings import Severity, WasteType
from costscope.shared.core.exceptions import ConfigurationError


class Settings(BaseSettings):
    """
    Main configuration for CostScope.
    Uses Pydantic-Settings for environment variable parsing from .env.

    Every detection/forecast threshold lives here so operators can tune
    policy without code changes.
    """
    APP_NAME: str = "CostScope"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # local, development, staging, production
    TESTING: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./costscope.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_ECHO: bool = False

    # Query safety gates
    MAX_QUERY_WINDOW_DAYS: int = 366
    MAX_DETAIL_ROWS: int = 100000
    DEFAULT_CURRENCY: str = "USD"

    # Cost aggregation
    TREND_WINDOW_DAYS: int = 7
    ANOMALY_WINDOW_DAYS: int = 7
    ANOMALY_STD_MULTIPLIER: float = 2.0

    # Usage classification
    USAGE_SAMPLE_WINDOW: int = 24

    # Waste detection
    ZOMBIE_GRACE_DAYS: int = 14
    UNUSED_CPU_THRESHOLD: float = 10.0
    OVERPROVISIONED_THRESHOLD: float = 30.0
    OVERPROVISIONED_MIN_VCPUS: int = 4
    ORPHANED_NETWORK_THRESHOLD: float = 0.0
    # cost_per_hour floor -> severity, checked highest first
    ZOMBIE_SEVERITY_TIERS: Dict[str, float] = {"critical": 1.0, "high": 0.5, "medium": 0.1}
    # monthly savings floor -> severity, checked highest first
    SAVINGS_SEVERITY_TIERS: Dict[str, float] = {"critical": 1000.0, "high": 500.0, "medium": 100.0}
    WASTE_REMEDIATION_FRACTIONS: Dict[str, float] = {
        "zombie": 1.0,
        "orphaned": 1.0,
        "unused": 0.9,
        "overprovisioned": 0.5,
    }
    WASTE_SUMMARY_TOP_N: int = 10

    # Idle tracking
    IDLE_LOOKBACK_SAMPLES: int = 720
    IDLE_MIN_DAYS: int = 7
    IDLE_STOPPED_DAYS: int = 7
    IDLE_CPU_THRESHOLD: float = 5.0
    IDLE_NETWORK_THRESHOLD: float = 1.0
    IDLE_RECOVERY_FRACTION: float = 0.8
    IDLE_TERMINATE_AFTER_DAYS: int = 30
    IDLE_SUMMARY_TOP_N: int = 10
    # Per-type monthly savings at or above this get their own summary line
    IDLE_SAVINGS_CALLOUT: float = 1000.0

    # Forecasting
    FORECAST_TRAILING_MONTHS: int = 3
    FORECAST_MAX_GROWTH: float = 0.25
    FORECAST_DECREASE_RATIO: float = 0.95
    FORECAST_CONFIDENCE_DECAY: float = 0.9
    BUDGET_ALERT_THRESHOLD_PERCENT: int = 80

    @model_validator(mode='after')
    def validate_policy_config(self) -> 'Settings':
        """Reject policy values that would make detection results meaningless."""
        missing = sorted(t.value for t in WasteType if t.value not in self.WASTE_REMEDIATION_FRACTIONS)
        if missing:
            raise ValueError(f"WASTE_REMEDIATION_FRACTIONS is missing waste types: {missing}")
        unknown = sorted(set(self.WASTE_REMEDIATION_FRACTIONS) - {t.value for t in WasteType})
        if unknown:
            raise ValueError(f"WASTE_REMEDIATION_FRACTIONS has unknown waste types: {unknown}")

        for waste_type, fraction in self.WASTE_REMEDIATION_FRACTIONS.items():
            if not 0 <= fraction <= 1:
                raise ValueError(
                    f"WASTE_REMEDIATION_FRACTIONS[{waste_type}] must be within [0, 1], got {fraction}"
                )

        severities = {s.value for s in Severity}
        for name in ("ZOMBIE_SEVERITY_TIERS", "SAVINGS_SEVERITY_TIERS"):
            unknown = sorted(set(getattr(self, name)) - severities)
            if unknown:
                raise ValueError(f"{name} keys must be severities {sorted(severities)}, got {unknown}")

        if not 0 <= self.IDLE_RECOVERY_FRACTION <= 1:
            raise ValueError("IDLE_RECOVERY_FRACTION must be within [0, 1].")

        if not 0 < self.FORECAST_DECREASE_RATIO <= 1:
            raise ValueError("FORECAST_DECREASE_RATIO must be within (0, 1].")

        if not 0 < self.FORECAST_CONFIDENCE_DECAY <= 1:
            raise ValueError("FORECAST_CONFIDENCE_DECAY must be within (0, 1].")

        for name in (
            "UNUSED_CPU_THRESHOLD", "OVERPROVISIONED_THRESHOLD", "ORPHANED_NETWORK_THRESHOLD",
            "IDLE_CPU_THRESHOLD", "IDLE_NETWORK_THRESHOLD", "FORECAST_MAX_GROWTH", "IDLE_SAVINGS_CALLOUT",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative.")

        for name in (
            "USAGE_SAMPLE_WINDOW", "IDLE_LOOKBACK_SAMPLES", "TREND_WINDOW_DAYS",
            "ANOMALY_WINDOW_DAYS", "FORECAST_TRAILING_MONTHS", "MAX_QUERY_WINDOW_DAYS",
            "MAX_DETAIL_ROWS", "WASTE_SUMMARY_TOP_N", "IDLE_SUMMARY_TOP_N",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1.")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings():
    """Returns a singleton instance of the application settings."""
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid CostScope configuration.",
            details={"errors": [err["msg"] for err in e.errors()]}
        ) from e
