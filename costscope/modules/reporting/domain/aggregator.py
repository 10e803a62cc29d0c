"""
Cost Aggregation

Turns raw daily CostRecord rows into the day x category matrix, ranked
service/category/provider totals with usage, trend, timelines, period
comparison and anomalies.

Rows are accumulated once into mappings keyed by the group key. Sums stay as
unrounded Decimal until the output schema is built.
"""

from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union
import pandas as pd
import structlog

from costscope.models.cloud import CostRecord
from costscope.schemas.costs import (
    CostAnomaly, CostBreakdown, CostQuery, DailyCategoryCost,
    Granularity, GroupedCost, PeriodComparison, TimelinePoint,
)
from costscope.shared.core.config import Settings, get_settings
from costscope.shared.core.exceptions import InvalidQueryError
from costscope.shared.core.money import TENTH, round_money, round_percent, to_decimal
from costscope.shared.db.ports import TimeSeriesStore

logger = structlog.get_logger()

ZERO = Decimal("0")
UNKNOWN_PROVIDER = "unknown"

DailySeries = List[Tuple[date, Decimal]]


def _key(value) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def date_range(start_date: date, end_date: date) -> List[date]:
    return [start_date + timedelta(days=i) for i in range((end_date - start_date).days + 1)]


def build_daily_matrix(
    records: Iterable[CostRecord],
    start_date: date,
    end_date: date
) -> Tuple[List[str], Dict[date, Dict[str, Decimal]]]:
    """
    Sums cost per (date, category). Every date in range is present and every
    category seen anywhere in the records is a column on every date.
    Records outside the range are ignored.
    """
    matrix: Dict[date, Dict[str, Decimal]] = {d: {} for d in date_range(start_date, end_date)}
    categories = set()

    for record in records:
        row = matrix.get(record.record_date)
        if row is None:
            continue
        category = _key(record.category)
        categories.add(category)
        row[category] = row.get(category, ZERO) + to_decimal(record.cost)

    columns = sorted(categories)
    for row in matrix.values():
        for category in columns:
            row.setdefault(category, ZERO)

    return columns, matrix


def provider_of(record: CostRecord) -> str:
    """Provider of the owning account, loaded with the record."""
    account = record.account
    return account.provider if account is not None else UNKNOWN_PROVIDER


def usage_of(record: CostRecord) -> Decimal:
    return to_decimal(record.usage_quantity) if record.usage_quantity is not None else ZERO


def daily_totals(matrix: Dict[date, Dict[str, Decimal]]) -> DailySeries:
    return [(d, sum(row.values(), ZERO)) for d, row in sorted(matrix.items())]


def rank_groups(
    records: Iterable[CostRecord],
    attr: Union[str, Callable[[CostRecord], str]]
) -> List[GroupedCost]:
    """
    Totals per group, cost descending then key ascending.
    `attr` is a record attribute name or a function returning the group key.
    """
    key_of = attr if callable(attr) else (lambda r: getattr(r, attr))
    totals: Dict[str, Decimal] = {}
    usage: Dict[str, Decimal] = {}
    counts: Dict[str, int] = {}
    for record in records:
        key = _key(key_of(record))
        totals[key] = totals.get(key, ZERO) + to_decimal(record.cost)
        usage[key] = usage.get(key, ZERO) + usage_of(record)
        counts[key] = counts.get(key, 0) + 1

    grand_total = sum(totals.values(), ZERO)
    ordered = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))

    return [
        GroupedCost(
            key=key,
            cost=round_money(cost),
            percent=round_percent(cost / grand_total * 100) if grand_total else ZERO,
            count=counts[key],
            usage=usage[key],
        )
        for key, cost in ordered
    ]


def weekly_change_ratio(totals: Sequence[Decimal], window: int = 7) -> Optional[Decimal]:
    """
    (last window - first window) / first window.
    None when the first window sums to 0. Short series overlap.
    """
    if not totals:
        return None
    first = sum(totals[:window], ZERO)
    last = sum(totals[-window:], ZERO)
    if first == 0:
        return None
    return (last - first) / first


def trend_percent(totals: Sequence[Decimal], window: int = 7) -> str:
    ratio = weekly_change_ratio(totals, window)
    if ratio is None:
        return "0"
    pct = round_percent(ratio * 100, TENTH)
    if pct == 0:
        pct = abs(pct)
    return str(pct)


def bucket_timeline(series: DailySeries, granularity: Granularity) -> List[TimelinePoint]:
    """Daily series -> buckets keyed by day, ISO-week Monday, or first of month."""
    if granularity == Granularity.WEEKLY:
        bucket_of = lambda d: d - timedelta(days=d.weekday())  # noqa: E731
    elif granularity == Granularity.MONTHLY:
        bucket_of = lambda d: d.replace(day=1)  # noqa: E731
    else:
        bucket_of = lambda d: d  # noqa: E731

    buckets: Dict[date, Decimal] = {}
    for day, cost in series:
        key = bucket_of(day)
        buckets[key] = buckets.get(key, ZERO) + cost

    return [TimelinePoint(period_start=k, cost=round_money(v)) for k, v in sorted(buckets.items())]


def compare_totals(current: Decimal, previous: Decimal) -> PeriodComparison:
    change = current - previous
    return PeriodComparison(
        current_period=round_money(current),
        previous_period=round_money(previous),
        change_amount=round_money(change),
        change_rate=round_percent(change / previous * 100) if previous else ZERO,
    )


def detect_anomalies(series: DailySeries, window: int = 7, multiplier: float = 2.0) -> List[CostAnomaly]:
    """
    Flags days outside mean +/- multiplier * std of the preceding `window` days.
    Above is a spike (high), below is a drop (medium). Flat history flags nothing.
    """
    if len(series) <= window:
        return []

    df = pd.DataFrame([{"ds": d, "y": float(c)} for d, c in series])
    history = df["y"].shift(1).rolling(window=window)
    df["mean"] = history.mean()
    df["std"] = history.std(ddof=0)

    anomalies = []
    for i in range(window, len(df)):
        mean, std, actual = df["mean"].iloc[i], df["std"].iloc[i], df["y"].iloc[i]
        if pd.isna(std) or std <= 1e-9:
            continue

        if actual > mean + multiplier * std:
            anomaly_type, severity = "spike", "high"
        elif actual < mean - multiplier * std:
            anomaly_type, severity = "drop", "medium"
        else:
            continue

        anomalies.append(CostAnomaly(
            date=series[i][0],
            actual_cost=round_money(series[i][1]),
            expected_cost=round_money(mean),
            deviation=round(abs(actual - mean) / std, 2),
            anomaly_type=anomaly_type,
            severity=severity,
        ))
    return anomalies


class CostAggregator:
    """Centralizes cost aggregation over a CostQuery."""

    def __init__(self, store: TimeSeriesStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    def _check_window(self, query: CostQuery) -> None:
        if query.days > self.settings.MAX_QUERY_WINDOW_DAYS:
            raise InvalidQueryError(
                f"Date range spans {query.days} days; maximum is {self.settings.MAX_QUERY_WINDOW_DAYS}.",
                field="end_date",
                details={"max_window_days": self.settings.MAX_QUERY_WINDOW_DAYS}
            )

    async def _fetch(self, query: CostQuery) -> List[CostRecord]:
        self._check_window(query)
        return await self.store.list_cost_records(query)

    def summarize(self, records: Sequence[CostRecord], query: CostQuery) -> CostBreakdown:
        """Pure: builds the breakdown for already-fetched records."""
        in_range = [r for r in records if query.start_date <= r.record_date <= query.end_date]
        columns, matrix = build_daily_matrix(in_range, query.start_date, query.end_date)
        series = daily_totals(matrix)
        totals = [cost for _, cost in series]

        total = sum(totals, ZERO)
        average = total / len(totals) if totals else ZERO

        currencies = sorted({r.currency for r in in_range if r.currency})
        if len(currencies) > 1:
            logger.warning("mixed_currency_in_range",
                           currencies=currencies,
                           start_date=query.start_date,
                           end_date=query.end_date)
        currency = currencies[0] if len(currencies) == 1 else self.settings.DEFAULT_CURRENCY

        return CostBreakdown(
            start_date=query.start_date,
            end_date=query.end_date,
            currency=currency,
            categories=columns,
            daily=[
                DailyCategoryCost(
                    date=d,
                    by_category={c: round_money(v) for c, v in matrix[d].items()},
                    total=round_money(cost),
                )
                for d, cost in series
            ],
            by_service=rank_groups(in_range, "service"),
            by_category=rank_groups(in_range, "category"),
            by_provider=rank_groups(in_range, provider_of),
            total_cost=round_money(total),
            total_usage=sum((usage_of(r) for r in in_range), ZERO),
            average_daily_cost=round_money(average),
            max_daily_cost=round_money(max(totals) if totals else ZERO),
            min_daily_cost=round_money(min(totals) if totals else ZERO),
            trend_percent=trend_percent(totals, self.settings.TREND_WINDOW_DAYS),
            record_count=len(in_range),
        )

    async def get_breakdown(self, query: CostQuery, include_comparison: bool = False) -> CostBreakdown:
        records = await self._fetch(query)
        breakdown = self.summarize(records, query)

        if include_comparison:
            breakdown.comparison = await self.compare_periods(query, current_records=records)

        logger.info("cost_breakdown_generated",
                    start_date=query.start_date,
                    end_date=query.end_date,
                    records=breakdown.record_count,
                    total=breakdown.total_cost)
        return breakdown

    async def get_daily_totals(self, query: CostQuery) -> DailySeries:
        """Zero-filled, unrounded daily totals. Input for forecasting."""
        records = await self._fetch(query)
        _, matrix = build_daily_matrix(records, query.start_date, query.end_date)
        return daily_totals(matrix)

    async def get_period_total(self, query: CostQuery) -> Decimal:
        """Unrounded total over the query window."""
        return sum((cost for _, cost in await self.get_daily_totals(query)), ZERO)

    async def get_timeline(self, query: CostQuery, granularity: Granularity | str = Granularity.DAILY) -> List[TimelinePoint]:
        try:
            granularity = Granularity(granularity)
        except ValueError as e:
            raise InvalidQueryError(
                f"Unsupported granularity '{granularity}'.",
                field="granularity",
                details={"allowed": [g.value for g in Granularity]}
            ) from e
        return bucket_timeline(await self.get_daily_totals(query), granularity)

    async def compare_periods(
        self,
        query: CostQuery,
        current_records: Optional[Sequence[CostRecord]] = None
    ) -> PeriodComparison:
        """Current window vs. the equally long window right before it."""
        previous_end = query.start_date - timedelta(days=1)
        previous_start = previous_end - timedelta(days=query.days - 1)
        previous_query = query.shifted(previous_start, previous_end)

        if current_records is None:
            current_records = await self._fetch(query)
        previous_records = await self._fetch(previous_query)

        current = sum((to_decimal(r.cost) for r in current_records), ZERO)
        previous = sum((to_decimal(r.cost) for r in previous_records), ZERO)
        return compare_totals(current, previous)

    async def get_anomalies(self, query: CostQuery) -> List[CostAnomaly]:
        series = await self.get_daily_totals(query)
        anomalies = detect_anomalies(
            series,
            window=self.settings.ANOMALY_WINDOW_DAYS,
            multiplier=self.settings.ANOMALY_STD_MULTIPLIER,
        )
        if anomalies:
            logger.info("cost_anomalies_detected",
                        count=len(anomalies),
                        start_date=query.start_date,
                        end_date=query.end_date)
        return anomalies
