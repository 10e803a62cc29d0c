import pytest
from datetime import date, timedelta
from decimal import Decimal

from costscope.models.findings import AlertStatus, CostTrend
from costscope.modules.optimization import FindingLifecycleService
from costscope.modules.reporting import BudgetForecaster
from costscope.shared.core.exceptions import InvalidQueryError

AS_OF = date(2026, 3, 15)


@pytest.fixture
async def budgeted_account(seed):
    """Budget 1000; 1200 billed on the 1st of each trailing month; 850 so far this month."""
    account = await seed.account(monthly_budget=Decimal("1000.00"))
    for month_start in (date(2025, 12, 1), date(2026, 1, 1), date(2026, 2, 1)):
        await seed.cost(account, month_start, "1200")
    await seed.cost(account, date(2026, 3, 2), "600")
    await seed.cost(account, date(2026, 3, 10), "250", category="storage", service="AmazonS3")
    # After as_of, must not count toward month-to-date
    await seed.cost(account, date(2026, 3, 20), "5000")
    await seed.commit()
    return account


@pytest.mark.asyncio
async def test_forecast_pass_predicts_and_alerts(store, settings, budgeted_account):
    result = await BudgetForecaster(store, settings).forecast(as_of=AS_OF)

    [prediction] = result.predictions
    assert prediction.period_start == date(2026, 4, 1)
    assert prediction.predicted_cost == Decimal("1200.00")
    assert prediction.over_budget is True
    assert prediction.budget_gap == Decimal("200.00")
    assert prediction.trend == CostTrend.STABLE

    [alert] = result.alerts
    assert alert.current_spend == Decimal("850.00")
    assert alert.alert_status == AlertStatus.WARNING
    assert result.summary.accounts_over_budget == 1
    assert result.summary.active_alerts == 1

    stored = await store.list_predictions(budgeted_account.id)
    assert [p.period_start for p in stored] == [date(2026, 4, 1)]


@pytest.mark.asyncio
async def test_predictions_replaced_not_appended(store, settings, budgeted_account):
    forecaster = BudgetForecaster(store, settings)
    await forecaster.forecast(as_of=AS_OF, horizon_months=3)
    await forecaster.forecast(as_of=AS_OF, horizon_months=2)

    stored = await store.list_predictions(budgeted_account.id)
    assert [p.period_start for p in stored] == [date(2026, 4, 1), date(2026, 5, 1)]


@pytest.mark.asyncio
async def test_alert_acknowledgement_is_sticky(store, settings, seed, budgeted_account):
    forecaster = BudgetForecaster(store, settings)
    await forecaster.forecast(as_of=AS_OF)

    await FindingLifecycleService(store).acknowledge_budget_alert(
        budgeted_account.id, date(2026, 3, 1), actor="finance"
    )

    # More spend lands; recompute updates spend but keeps the acknowledgement
    await seed.cost(budgeted_account, date(2026, 3, 16), "200")
    await seed.commit()
    result = await forecaster.forecast(as_of=AS_OF + timedelta(days=1))

    [alert] = result.alerts
    assert alert.acknowledged is True
    assert alert.current_spend == Decimal("1050.00")
    assert alert.alert_status == AlertStatus.EXCEEDED

    stored = await store.get_budget_alert(budgeted_account.id, date(2026, 3, 1))
    assert stored.acknowledged is True
    assert stored.current_spend == Decimal("1050.00")
    assert result.summary.active_alerts == 0


@pytest.mark.asyncio
async def test_account_without_budget(store, settings, seed):
    account = await seed.account(monthly_budget=None)
    await seed.cost(account, date(2026, 2, 10), "300")
    await seed.commit()

    result = await BudgetForecaster(store, settings).forecast(as_of=AS_OF)

    [prediction] = result.predictions
    assert prediction.budget_utilization == Decimal("0")
    assert prediction.over_budget is False
    assert result.alerts == []


@pytest.mark.asyncio
async def test_suspended_accounts_skipped(store, settings, seed):
    await seed.account(status="suspended", monthly_budget=Decimal("10"))
    await seed.commit()
    result = await BudgetForecaster(store, settings).forecast(as_of=AS_OF)
    assert result.predictions == []
    assert result.summary.accounts == 0


@pytest.mark.asyncio
async def test_invalid_horizon(store, settings):
    with pytest.raises(InvalidQueryError) as exc:
        await BudgetForecaster(store, settings).forecast(as_of=AS_OF, horizon_months=0)
    assert exc.value.field == "horizon_months"
