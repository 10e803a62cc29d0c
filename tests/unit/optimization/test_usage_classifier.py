import pytest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from costscope.models.cloud import Resource, UsageSample
from costscope.modules.optimization.domain.usage import UsageClassifier

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def sample(hours_ago=0, cpu=0.0, mem=0.0, net_in=0.0, net_out=0.0, requests=0, naive=False):
    ts = NOW - timedelta(hours=hours_ago)
    if naive:
        ts = ts.replace(tzinfo=None)
    return UsageSample(
        resource_id=uuid4(), timestamp=ts, cpu_usage=cpu, memory_usage=mem,
        disk_usage=0.0, network_in=net_in, network_out=net_out, request_count=requests,
    )


def test_empty_window_is_all_zero():
    usage = UsageClassifier.compute_averages([])
    assert usage.is_empty
    assert usage.avg_cpu_usage == 0.0
    assert usage.avg_memory_usage == 0.0
    assert usage.avg_network == 0.0
    assert usage.cpu_always_below(10) is False


def test_arithmetic_means():
    samples = [
        sample(0, cpu=10, mem=40, net_in=5, net_out=5),
        sample(1, cpu=20, mem=60, net_in=1, net_out=9, requests=3),
    ]
    usage = UsageClassifier.compute_averages(samples)
    assert usage.sample_count == 2
    assert usage.avg_cpu_usage == 15.0
    assert usage.avg_memory_usage == 50.0
    assert usage.avg_network == 10.0
    assert usage.peak_cpu_usage == 20.0
    assert usage.total_requests == 3
    assert usage.window_end == NOW


def test_cpu_always_below_uses_every_sample():
    # Average is 6, but one sample reaches the threshold
    samples = [sample(i, cpu=2) for i in range(3)] + [sample(3, cpu=18)]
    usage = UsageClassifier.compute_averages(samples)
    assert usage.avg_cpu_usage < 10
    assert usage.cpu_always_below(10) is False


def test_daily_usage_groups_by_utc_day_newest_first():
    samples = [
        sample(0, cpu=4, requests=1),           # 2026-03-15
        sample(6, cpu=8, requests=2),           # 2026-03-15
        sample(24, cpu=50, naive=True),         # 2026-03-14, naive as read back from sqlite
    ]
    days = UsageClassifier.daily_usage(samples)
    assert [d.day for d in days] == [date(2026, 3, 15), date(2026, 3, 14)]
    assert days[0].avg_cpu_usage == 6.0
    assert days[0].total_requests == 3
    assert days[0].sample_count == 2


@pytest.mark.asyncio
async def test_classify_reads_most_recent_window(settings):
    store = MagicMock()
    store.list_usage_samples = AsyncMock(return_value=[sample(0, cpu=30)])
    resource = Resource(id=uuid4(), account_id=uuid4())

    usage = await UsageClassifier(store, settings).classify(resource)

    store.list_usage_samples.assert_awaited_once_with(resource.id, 24, most_recent_first=True)
    assert usage.resource_id == resource.id
    assert usage.avg_cpu_usage == 30.0
