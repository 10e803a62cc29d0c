from datetime import date
from typing import Dict, List, Optional, Sequence
import structlog

from costscope.models.cloud import Resource, UsageSample
from costscope.schemas.usage import DailyUsage, UsageAverages
from costscope.shared.core.config import Settings, get_settings
from costscope.shared.db.base import ensure_utc
from costscope.shared.db.ports import TimeSeriesStore

logger = structlog.get_logger()


def _network(sample: UsageSample) -> float:
    return (sample.network_in or 0.0) + (sample.network_out or 0.0)


class UsageClassifier:
    """
    Rolling utilization per resource.

    Reads the most recent N samples and averages CPU, memory and network
    (in + out). An empty window yields zeros, never an error.
    """

    def __init__(self, store: TimeSeriesStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    @staticmethod
    def compute_averages(samples: Sequence[UsageSample], resource_id=None) -> UsageAverages:
        if not samples:
            return UsageAverages(resource_id=resource_id)

        count = len(samples)
        timestamps = [ensure_utc(s.timestamp) for s in samples]
        return UsageAverages(
            resource_id=resource_id,
            sample_count=count,
            avg_cpu_usage=sum(s.cpu_usage or 0.0 for s in samples) / count,
            avg_memory_usage=sum(s.memory_usage or 0.0 for s in samples) / count,
            avg_network=sum(_network(s) for s in samples) / count,
            peak_cpu_usage=max(s.cpu_usage or 0.0 for s in samples),
            total_requests=sum(s.request_count or 0 for s in samples),
            window_start=min(timestamps),
            window_end=max(timestamps),
        )

    @staticmethod
    def daily_usage(samples: Sequence[UsageSample]) -> List[DailyUsage]:
        """Groups samples by UTC calendar day, newest day first."""
        by_day: Dict[date, List[UsageSample]] = {}
        for sample in samples:
            day = ensure_utc(sample.timestamp).date()
            by_day.setdefault(day, []).append(sample)

        rollups = []
        for day in sorted(by_day, reverse=True):
            group = by_day[day]
            count = len(group)
            rollups.append(DailyUsage(
                day=day,
                sample_count=count,
                avg_cpu_usage=sum(s.cpu_usage or 0.0 for s in group) / count,
                avg_memory_usage=sum(s.memory_usage or 0.0 for s in group) / count,
                avg_network=sum(_network(s) for s in group) / count,
                total_requests=sum(s.request_count or 0 for s in group),
            ))
        return rollups

    async def fetch_samples(self, resource: Resource, window: Optional[int] = None) -> List[UsageSample]:
        limit = window or self.settings.USAGE_SAMPLE_WINDOW
        return await self.store.list_usage_samples(resource.id, limit, most_recent_first=True)

    async def classify(self, resource: Resource, window: Optional[int] = None) -> UsageAverages:
        samples = await self.fetch_samples(resource, window)
        averages = self.compute_averages(samples, resource_id=resource.id)
        if averages.is_empty:
            logger.debug("usage_window_empty", resource_id=resource.id)
        return averages
