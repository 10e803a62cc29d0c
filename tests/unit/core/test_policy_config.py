import pytest
from pydantic import ValidationError

from costscope.shared.core.config import Settings, get_settings
from costscope.shared.core.exceptions import ConfigurationError

FRACTIONS = {"zombie": 1.0, "orphaned": 1.0, "unused": 0.9, "overprovisioned": 0.5}


def test_defaults_match_documented_policy():
    s = Settings()
    assert s.ZOMBIE_GRACE_DAYS == 14
    assert s.UNUSED_CPU_THRESHOLD == 10.0
    assert s.OVERPROVISIONED_THRESHOLD == 30.0
    assert s.USAGE_SAMPLE_WINDOW == 24
    assert s.IDLE_RECOVERY_FRACTION == 0.8
    assert s.FORECAST_TRAILING_MONTHS == 3
    assert s.FORECAST_DECREASE_RATIO == 0.95
    assert s.WASTE_REMEDIATION_FRACTIONS["unused"] == 0.9
    assert s.IDLE_SUMMARY_TOP_N == 10


def test_env_overrides_threshold(monkeypatch):
    monkeypatch.setenv("ZOMBIE_GRACE_DAYS", "30")
    assert Settings().ZOMBIE_GRACE_DAYS == 30


def test_rejects_fraction_above_one():
    with pytest.raises(ValidationError, match=r"WASTE_REMEDIATION_FRACTIONS\[zombie\]"):
        Settings(WASTE_REMEDIATION_FRACTIONS={**FRACTIONS, "zombie": 1.5})


def test_rejects_partial_fraction_override():
    with pytest.raises(ValidationError, match="missing waste types"):
        Settings(WASTE_REMEDIATION_FRACTIONS={"unused": 0.9})


def test_rejects_unknown_waste_type():
    with pytest.raises(ValidationError, match="unknown waste types"):
        Settings(WASTE_REMEDIATION_FRACTIONS={**FRACTIONS, "idle": 0.5})


@pytest.mark.parametrize("name", ["ZOMBIE_SEVERITY_TIERS", "SAVINGS_SEVERITY_TIERS"])
def test_rejects_unknown_severity_tier(name):
    with pytest.raises(ValidationError, match=f"{name} keys must be severities"):
        Settings(**{name: {"urgent": 5.0, "high": 1.0}})


def test_rejects_negative_threshold():
    with pytest.raises(ValidationError, match="IDLE_CPU_THRESHOLD cannot be negative"):
        Settings(IDLE_CPU_THRESHOLD=-1)


def test_rejects_empty_sample_window():
    with pytest.raises(ValidationError, match="USAGE_SAMPLE_WINDOW must be at least 1"):
        Settings(USAGE_SAMPLE_WINDOW=0)


def test_rejects_zero_decrease_ratio():
    with pytest.raises(ValidationError, match="FORECAST_DECREASE_RATIO"):
        Settings(FORECAST_DECREASE_RATIO=0)


def test_get_settings_raises_configuration_error(monkeypatch):
    get_settings.cache_clear()
    monkeypatch.setenv("IDLE_RECOVERY_FRACTION", "2")
    try:
        with pytest.raises(ConfigurationError) as exc:
            get_settings()
        assert exc.value.code == "config_error"
        assert any("IDLE_RECOVERY_FRACTION" in msg for msg in exc.value.details["errors"])
    finally:
        monkeypatch.delenv("IDLE_RECOVERY_FRACTION")
        get_settings.cache_clear()


def test_is_production():
    assert Settings(ENVIRONMENT="production").is_production is True
    assert Settings(ENVIRONMENT="development").is_production is False
