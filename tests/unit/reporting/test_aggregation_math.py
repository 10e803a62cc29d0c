"""
Pure aggregation helpers: matrix, ranking, trend, timeline, comparison, anomalies.
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from costscope.modules.reporting.domain.aggregator import (
    CostAggregator,
    build_daily_matrix,
    bucket_timeline,
    compare_totals,
    daily_totals,
    detect_anomalies,
    provider_of,
    rank_groups,
    trend_percent,
)
from costscope.schemas.costs import CostQuery, Granularity


def record(day, cost, category="compute", service="AmazonEC2", currency="USD", usage=None, provider="aws"):
    return SimpleNamespace(
        record_date=day,
        cost=Decimal(str(cost)),
        category=category,
        service=service,
        currency=currency,
        usage_quantity=None if usage is None else Decimal(str(usage)),
        account_id=uuid4(),
        account=SimpleNamespace(provider=provider) if provider else None,
    )


def series(start, values):
    return [(start + timedelta(days=i), Decimal(str(v))) for i, v in enumerate(values)]


class TestDailyMatrix:
    def test_every_date_and_category_present(self):
        records = [
            record(date(2026, 1, 1), "10", "compute"),
            record(date(2026, 1, 3), "4", "storage"),
        ]
        columns, matrix = build_daily_matrix(records, date(2026, 1, 1), date(2026, 1, 4))

        assert columns == ["compute", "storage"]
        assert list(matrix) == [date(2026, 1, d) for d in range(1, 5)]
        for row in matrix.values():
            assert set(row) == {"compute", "storage"}
        assert matrix[date(2026, 1, 2)]["compute"] == Decimal("0")
        assert matrix[date(2026, 1, 3)]["storage"] == Decimal("4")

    def test_matrix_sums_equal_raw_sums(self):
        start = date(2026, 1, 1)
        records = [
            record(start + timedelta(days=i % 10), Decimal("1.333") * (i + 1), cat)
            for i, cat in enumerate(["compute", "storage", "network", "database"] * 6)
        ]
        _, matrix = build_daily_matrix(records, start, start + timedelta(days=9))
        matrix_total = sum((sum(row.values()) for row in matrix.values()), Decimal("0"))
        assert matrix_total == sum(r.cost for r in records)

    def test_same_day_rows_are_summed_not_overwritten(self):
        day = date(2026, 1, 1)
        records = [record(day, "10.00"), record(day, "20.005"), record(day, "5")]
        _, matrix = build_daily_matrix(records, day, day)
        assert matrix[day]["compute"] == Decimal("35.005")

    def test_out_of_range_records_ignored(self):
        records = [record(date(2025, 12, 31), "99"), record(date(2026, 1, 1), "1")]
        _, matrix = build_daily_matrix(records, date(2026, 1, 1), date(2026, 1, 1))
        assert daily_totals(matrix) == [(date(2026, 1, 1), Decimal("1"))]


class TestRanking:
    def test_descending_with_key_tie_break(self):
        day = date(2026, 1, 1)
        records = [
            record(day, "5", service="S3"),
            record(day, "15", service="RDS"),
            record(day, "10", service="EC2"),
            record(day, "5", service="EC2"),
        ]
        ranked = rank_groups(records, "service")
        # EC2 and RDS tie at 15; key breaks the tie
        assert [g.key for g in ranked] == ["EC2", "RDS", "S3"]
        assert ranked[0].cost == Decimal("15.00")
        assert ranked[0].count == 2
        assert ranked[0].percent == Decimal("42.86")

    def test_zero_total_has_zero_percent(self):
        ranked = rank_groups([record(date(2026, 1, 1), "0")], "category")
        assert ranked[0].percent == Decimal("0")

    def test_provider_ranking_carries_usage(self):
        day = date(2026, 1, 1)
        records = [
            record(day, "10", provider="gcp", usage="2.5"),
            record(day, "10", provider="aws", usage="4"),
            record(day, "3", provider="aws"),
            record(day, "1", provider=None, usage="1"),
        ]
        ranked = rank_groups(records, provider_of)
        assert [(g.key, g.cost, g.count) for g in ranked] == [
            ("aws", Decimal("13.00"), 2),
            ("gcp", Decimal("10.00"), 1),
            ("unknown", Decimal("1.00"), 1),
        ]
        assert [g.usage for g in ranked] == [Decimal("4"), Decimal("2.5"), Decimal("1")]


class TestTrend:
    def test_first_week_zero_is_literal_zero(self):
        assert trend_percent([Decimal("0")] * 7 + [Decimal("5")] * 7) == "0"

    def test_empty_series(self):
        assert trend_percent([]) == "0"

    def test_one_decimal_place(self):
        totals = [Decimal("10")] * 7 + [Decimal("12.5")] * 7
        assert trend_percent(totals) == "25.0"

    def test_decrease(self):
        totals = [Decimal("3")] * 7 + [Decimal("2")] * 7
        assert trend_percent(totals) == "-33.3"

    def test_flat(self):
        assert trend_percent([Decimal("4")] * 14) == "0.0"


class TestTimeline:
    def test_weekly_buckets_keyed_by_monday(self):
        # 2026-01-01 is a Thursday
        points = bucket_timeline(series(date(2026, 1, 1), [1] * 10), Granularity.WEEKLY)
        assert [p.period_start for p in points] == [date(2025, 12, 29), date(2026, 1, 5)]
        assert [p.cost for p in points] == [Decimal("4.00"), Decimal("6.00")]

    def test_monthly_buckets(self):
        points = bucket_timeline(series(date(2026, 1, 30), [2, 2, 3]), Granularity.MONTHLY)
        assert [(p.period_start, p.cost) for p in points] == [
            (date(2026, 1, 1), Decimal("4.00")),
            (date(2026, 2, 1), Decimal("3.00")),
        ]

    def test_daily_keeps_zero_days(self):
        points = bucket_timeline(series(date(2026, 1, 1), [0, 1, 0]), Granularity.DAILY)
        assert len(points) == 3
        assert points[0].cost == Decimal("0.00")


def test_compare_totals():
    comparison = compare_totals(Decimal("150"), Decimal("100"))
    assert comparison.change_amount == Decimal("50.00")
    assert comparison.change_rate == Decimal("50.00")
    assert compare_totals(Decimal("10"), Decimal("0")).change_rate == Decimal("0")


class TestAnomalies:
    def test_spike_is_high(self):
        values = [10, 11, 9, 10, 11, 9, 10, 40]
        anomalies = detect_anomalies(series(date(2026, 1, 1), values))
        assert len(anomalies) == 1
        assert anomalies[0].date == date(2026, 1, 8)
        assert anomalies[0].anomaly_type == "spike"
        assert anomalies[0].severity == "high"
        assert anomalies[0].expected_cost == Decimal("10.00")

    def test_drop_is_medium(self):
        values = [10, 11, 9, 10, 11, 9, 10, 0]
        anomalies = detect_anomalies(series(date(2026, 1, 1), values))
        assert [a.anomaly_type for a in anomalies] == ["drop"]
        assert anomalies[0].severity == "medium"

    def test_flat_history_has_no_anomalies(self):
        assert detect_anomalies(series(date(2026, 1, 1), [5] * 7 + [50])) == []

    def test_short_series(self):
        assert detect_anomalies(series(date(2026, 1, 1), [1, 100])) == []


class TestSummarize:
    @pytest.fixture
    def aggregator(self, settings):
        return CostAggregator(store=None, settings=settings)

    def test_scenario_rounding_once(self, aggregator):
        day = date(2026, 1, 1)
        records = [record(day, "10.00"), record(day, "20.005"), record(day, "5")]
        breakdown = aggregator.summarize(records, CostQuery(start_date=day, end_date=day))
        assert breakdown.daily[0].total == Decimal("35.01")
        assert breakdown.daily[0].by_category["compute"] == Decimal("35.01")
        assert breakdown.total_cost == Decimal("35.01")

    def test_scalars(self, aggregator):
        start = date(2026, 1, 1)
        records = [record(start, "30"), record(start + timedelta(days=2), "10", "storage")]
        breakdown = aggregator.summarize(
            records, CostQuery(start_date=start, end_date=start + timedelta(days=3))
        )
        assert breakdown.categories == ["compute", "storage"]
        assert len(breakdown.daily) == 4
        assert breakdown.total_cost == Decimal("40.00")
        assert breakdown.average_daily_cost == Decimal("10.00")
        assert breakdown.max_daily_cost == Decimal("30.00")
        assert breakdown.min_daily_cost == Decimal("0.00")
        assert breakdown.record_count == 2
        assert [g.key for g in breakdown.by_category] == ["compute", "storage"]
        assert [g.key for g in breakdown.by_provider] == ["aws"]
        assert breakdown.total_usage == Decimal("0")

    def test_total_usage(self, aggregator):
        day = date(2026, 1, 1)
        records = [record(day, "1", usage="720"), record(day, "1", usage="0.5"), record(day, "1")]
        breakdown = aggregator.summarize(records, CostQuery(start_date=day, end_date=day))
        assert breakdown.total_usage == Decimal("720.5")
        assert breakdown.by_service[0].usage == Decimal("720.5")

    def test_empty_range(self, aggregator):
        day = date(2026, 1, 1)
        breakdown = aggregator.summarize([], CostQuery(start_date=day, end_date=day + timedelta(days=6)))
        assert breakdown.total_cost == Decimal("0.00")
        assert breakdown.average_daily_cost == Decimal("0.00")
        assert breakdown.trend_percent == "0"
        assert breakdown.categories == []
        assert all(row.by_category == {} for row in breakdown.daily)

    def test_mixed_currency_falls_back_to_default(self, aggregator):
        day = date(2026, 1, 1)
        records = [record(day, "1", currency="USD"), record(day, "1", currency="EUR")]
        breakdown = aggregator.summarize(records, CostQuery(start_date=day, end_date=day))
        assert breakdown.currency == "USD"
