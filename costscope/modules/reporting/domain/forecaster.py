"""
Budget Forecasting

Heuristic next-month projection per account:

    predicted(k) = trailing_average * (1 + clamp(weekly_change, +/-max_growth)) ** k

trailing_average is the mean monthly total over the last N full calendar
months that have data. Confidence is 1 / (1 + coefficient of variation) of
the daily series, decayed for every month further out.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
import numpy as np
import structlog

from costscope.models.cloud import CloudAccount
from costscope.models.findings import AlertStatus, CostTrend
from costscope.modules.optimization.domain.lifecycle import merge_budget_alert
from costscope.modules.reporting.domain.aggregator import CostAggregator, DailySeries, weekly_change_ratio
from costscope.schemas.costs import CostQuery
from costscope.schemas.filters import AccountFilter
from costscope.schemas.forecasts import (
    BudgetAlertState, BudgetAssessment, ForecastResult, ForecastSummary, PredictionState,
)
from costscope.shared.core.config import Settings, get_settings
from costscope.shared.core.exceptions import InvalidQueryError
from costscope.shared.core.money import round_money, round_percent, to_decimal
from costscope.shared.db.base import utcnow
from costscope.shared.db.ports import TimeSeriesStore

logger = structlog.get_logger()

ZERO = Decimal("0")


def month_start(d: date) -> date:
    return d.replace(day=1)


def shift_month(first_of_month: date, months: int) -> date:
    index = first_of_month.year * 12 + first_of_month.month - 1 + months
    return date(index // 12, index % 12 + 1, 1)


def assess_budget(predicted: Decimal, budget: Optional[Decimal]) -> BudgetAssessment:
    """Utilization, over-budget flag and gap. A null or zero budget yields zeros."""
    if budget is None or budget <= 0:
        return BudgetAssessment(budget_amount=budget)
    return BudgetAssessment(
        budget_amount=budget,
        budget_utilization=round_percent(predicted / budget * 100),
        over_budget=predicted > budget,
        budget_gap=round_money(predicted - budget),
    )


def daily_volatility(series: DailySeries) -> Optional[float]:
    """Coefficient of variation of the daily totals; None for empty or all-zero history."""
    values = np.array([float(cost) for _, cost in series], dtype=float)
    if values.size == 0:
        return None
    mean = values.mean()
    if mean <= 0:
        return None
    return float(values.std() / mean)


class BudgetForecaster:
    def __init__(
        self,
        store: TimeSeriesStore,
        settings: Optional[Settings] = None,
        aggregator: Optional[CostAggregator] = None
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.aggregator = aggregator or CostAggregator(store, self.settings)

    def trailing_window(self, as_of: date) -> Tuple[date, date]:
        """The last N full calendar months before as_of's month."""
        current = month_start(as_of)
        return shift_month(current, -self.settings.FORECAST_TRAILING_MONTHS), current - timedelta(days=1)

    def predict(
        self,
        account: CloudAccount,
        series: DailySeries,
        as_of: date,
        horizon_months: int = 1,
        now: Optional[datetime] = None
    ) -> List[PredictionState]:
        """Pure: predictions for months 1..horizon after as_of's month."""
        s = self.settings
        now = now or utcnow()

        monthly: Dict[date, Decimal] = {}
        for day, cost in series:
            key = month_start(day)
            monthly[key] = monthly.get(key, ZERO) + cost
        with_data = [total for total in monthly.values() if total > 0]
        trailing_average = sum(with_data, ZERO) / len(with_data) if with_data else ZERO

        totals = [cost for _, cost in series]
        window = s.TREND_WINDOW_DAYS
        ratio = weekly_change_ratio(totals[-2 * window:], window) or ZERO
        cap = to_decimal(s.FORECAST_MAX_GROWTH)
        growth = max(-cap, min(cap, ratio))
        multiplier = 1 + growth

        volatility = daily_volatility(series)
        base_confidence = 0.0 if volatility is None else 1 / (1 + volatility)
        decrease_floor = trailing_average * to_decimal(s.FORECAST_DECREASE_RATIO)

        factors: Dict[str, Any] = {
            "trailing_average": str(round_money(trailing_average)),
            "months_with_data": len(with_data),
            "weekly_change_percent": str(round_percent(ratio * 100)),
            "growth_multiplier": str(round_percent(multiplier, Decimal("0.0001"))),
            "volatility": None if volatility is None else round(volatility, 4),
        }

        predictions = []
        for k in range(1, horizon_months + 1):
            predicted = trailing_average * multiplier ** k

            if predicted > trailing_average:
                trend = CostTrend.INCREASING
            elif predicted < decrease_floor:
                trend = CostTrend.DECREASING
            else:
                trend = CostTrend.STABLE

            confidence = base_confidence * s.FORECAST_CONFIDENCE_DECAY ** (k - 1)
            rounded = round_money(predicted)
            assessment = assess_budget(rounded, account.monthly_budget)

            predictions.append(PredictionState(
                account_id=account.id,
                period_start=shift_month(month_start(as_of), k),
                predicted_cost=rounded,
                confidence=round(min(max(confidence, 0.0), 1.0), 2),
                trend=trend,
                factors={**factors, "horizon_month": k},
                budget_amount=assessment.budget_amount,
                budget_utilization=assessment.budget_utilization,
                over_budget=assessment.over_budget,
                budget_gap=assessment.budget_gap,
                generated_at=now,
            ))
        return predictions

    def evaluate_alert(
        self,
        account: CloudAccount,
        current_spend: Decimal,
        as_of: date,
        now: Optional[datetime] = None
    ) -> Optional[BudgetAlertState]:
        """Pure: an alert when month-to-date spend reaches the account's threshold."""
        budget = account.monthly_budget
        if budget is None or budget <= 0:
            return None

        threshold = account.alert_threshold_percent or self.settings.BUDGET_ALERT_THRESHOLD_PERCENT
        utilization = current_spend / budget * 100
        if utilization < threshold:
            return None

        now = now or utcnow()
        return BudgetAlertState(
            account_id=account.id,
            period_start=month_start(as_of),
            threshold_percent=threshold,
            current_spend=round_money(current_spend),
            budget_amount=round_money(budget),
            utilization_percent=round_percent(utilization),
            alert_status=AlertStatus.EXCEEDED if utilization >= 100 else AlertStatus.WARNING,
            triggered_at=now,
            updated_at=now,
        )

    async def forecast(
        self,
        filters: Optional[AccountFilter] = None,
        as_of: Optional[date] = None,
        horizon_months: int = 1
    ) -> ForecastResult:
        """
        Runs one forecasting pass.

        Every account's predictions are replaced and its alert (if any) is
        upserted in one unit of work, after all of them have been computed.
        """
        if horizon_months < 1:
            raise InvalidQueryError("horizon_months must be at least 1.", field="horizon_months")

        now = utcnow()
        as_of = as_of or now.date()
        window_start, window_end = self.trailing_window(as_of)
        period_start = month_start(as_of)

        accounts = await self.store.get_accounts(filters)

        plans = []
        for account in accounts:
            history = await self.aggregator.get_daily_totals(CostQuery(
                start_date=window_start, end_date=window_end, account_ids=(account.id,)
            ))
            predictions = self.predict(account, history, as_of, horizon_months, now)

            month_to_date = await self.aggregator.get_period_total(CostQuery(
                start_date=period_start, end_date=as_of, account_ids=(account.id,)
            ))
            alert = self.evaluate_alert(account, month_to_date, as_of, now)
            if alert is not None:
                existing = await self.store.get_budget_alert(account.id, period_start)
                alert = merge_budget_alert(existing, alert)

            plans.append((account.id, predictions, alert))

        async with self.store.unit_of_work():
            for account_id, predictions, alert in plans:
                await self.store.replace_predictions(account_id, predictions)
                if alert is not None:
                    await self.store.upsert_budget_alert(account_id, alert)

        all_predictions = [p for _, preds, _ in plans for p in preds]
        alerts = [a for _, _, a in plans if a is not None]
        summary = self.summarize(all_predictions, alerts)

        logger.info("forecast_complete",
                    as_of=as_of,
                    accounts=len(accounts),
                    over_budget=summary.accounts_over_budget,
                    alerts=len(alerts))

        return ForecastResult(as_of=as_of, predictions=all_predictions, alerts=alerts, summary=summary)

    @staticmethod
    def summarize(predictions: Sequence[PredictionState], alerts: Sequence[BudgetAlertState]) -> ForecastSummary:
        """Rollup over the first predicted month of every account."""
        nearest: Dict[Any, PredictionState] = {}
        for p in predictions:
            if p.account_id not in nearest or p.period_start < nearest[p.account_id].period_start:
                nearest[p.account_id] = p

        by_trend: Dict[str, int] = {}
        for p in nearest.values():
            by_trend[p.trend.value] = by_trend.get(p.trend.value, 0) + 1

        firsts = list(nearest.values())
        return ForecastSummary(
            accounts=len(firsts),
            total_predicted=round_money(sum((p.predicted_cost for p in firsts), ZERO)),
            total_budget=round_money(sum((p.budget_amount or ZERO for p in firsts), ZERO)),
            accounts_over_budget=sum(1 for p in firsts if p.over_budget),
            average_confidence=round(sum(p.confidence for p in firsts) / len(firsts), 2) if firsts else 0.0,
            by_trend=by_trend,
            active_alerts=sum(1 for a in alerts if not a.acknowledged),
        )
