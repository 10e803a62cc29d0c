"""
Idle Resource Tracking

A resource is idle when it has been below a utilization threshold for at
least IDLE_MIN_DAYS consecutive days, counted back from the newest sampled
day. Types are checked in order: stopped_long, no_requests, low_network,
low_cpu.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence
import structlog

from costscope.models.cloud import Resource, ResourceStatus, UsageSample
from costscope.models.findings import IdleRecommendation, IdleType
from costscope.modules.optimization.domain.lifecycle import merge_idle_finding
from costscope.modules.optimization.domain.usage import UsageClassifier
from costscope.schemas.filters import ResourceFilter
from costscope.schemas.findings import IdleCandidate, IdleFindingState, IdleSummary, IdleTrackingResult
from costscope.schemas.usage import DailyUsage, UsageAverages
from costscope.shared.core.config import Settings, get_settings
from costscope.shared.core.money import monthly_cost, round_money, to_decimal
from costscope.shared.db.base import ensure_utc, utcnow
from costscope.shared.db.ports import TimeSeriesStore

logger = structlog.get_logger()

# idle_days at which the time component of the score saturates
SCORE_SATURATION_DAYS = 30


def idle_streak(days: Sequence[DailyUsage], predicate: Callable[[DailyUsage], bool]) -> int:
    """
    Consecutive days, newest first, that satisfy the predicate.
    A missing calendar day ends the streak.
    """
    streak = 0
    expected = None
    for day in days:
        if expected is not None and day.day != expected:
            break
        if not predicate(day):
            break
        streak += 1
        expected = day.day - timedelta(days=1)
    return streak


def idle_score(usage: UsageAverages, idle_days: int) -> float:
    usage_score = min(max(100.0 - (usage.avg_cpu_usage + usage.avg_memory_usage) / 2, 0.0), 100.0)
    time_score = min(idle_days / SCORE_SATURATION_DAYS * 100, 100.0)
    return round((usage_score + time_score) / 2, 2)


class IdleResourceTracker:
    def __init__(
        self,
        store: TimeSeriesStore,
        settings: Optional[Settings] = None,
        classifier: Optional[UsageClassifier] = None
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.classifier = classifier or UsageClassifier(store, self.settings)

    def _match(self, resource: Resource, days: List[DailyUsage], usage: UsageAverages, now: datetime):
        s = self.settings

        if resource.status == ResourceStatus.STOPPED.value:
            stopped_days = (now - ensure_utc(resource.status_changed_at)).days
            if stopped_days >= s.IDLE_STOPPED_DAYS:
                return IdleType.STOPPED_LONG, stopped_days

        if not usage.is_empty and usage.total_requests == 0:
            streak = idle_streak(days, lambda d: d.total_requests == 0)
            if streak >= s.IDLE_MIN_DAYS:
                return IdleType.NO_REQUESTS, streak

        streak = idle_streak(days, lambda d: d.avg_network < s.IDLE_NETWORK_THRESHOLD)
        if streak >= s.IDLE_MIN_DAYS:
            return IdleType.LOW_NETWORK, streak

        streak = idle_streak(days, lambda d: d.avg_cpu_usage < s.IDLE_CPU_THRESHOLD)
        if streak >= s.IDLE_MIN_DAYS:
            return IdleType.LOW_CPU, streak

        return None

    def recommend(self, idle_type: IdleType, idle_days: int) -> IdleRecommendation:
        if idle_type == IdleType.STOPPED_LONG:
            return IdleRecommendation.TERMINATE
        if idle_days > self.settings.IDLE_TERMINATE_AFTER_DAYS:
            return IdleRecommendation.TERMINATE
        if idle_type == IdleType.LOW_CPU:
            return IdleRecommendation.DOWNSIZE
        return IdleRecommendation.SCHEDULE_STOP

    def classify(
        self,
        resource: Resource,
        samples: Sequence[UsageSample],
        now: datetime
    ) -> Optional[IdleCandidate]:
        """Pure classification of one resource from its lookback samples."""
        usage = UsageClassifier.compute_averages(samples, resource_id=resource.id)
        days = UsageClassifier.daily_usage(samples)

        match = self._match(resource, days, usage, now)
        if match is None:
            return None
        idle_type, idle_days = match

        monthly = monthly_cost(resource.cost_per_hour)
        savings = monthly * to_decimal(self.settings.IDLE_RECOVERY_FRACTION)

        return IdleCandidate(
            resource_id=resource.id,
            account_id=resource.account_id,
            resource_name=resource.name or "",
            idle_type=idle_type,
            avg_cpu_usage=round(usage.avg_cpu_usage, 2),
            avg_memory_usage=round(usage.avg_memory_usage, 2),
            avg_network=round(usage.avg_network, 2),
            idle_days=idle_days,
            idle_score=idle_score(usage, idle_days),
            monthly_cost=round_money(monthly),
            potential_savings=round_money(savings),
            recommendation=self.recommend(idle_type, idle_days),
        )

    async def track(
        self,
        filters: Optional[ResourceFilter] = None,
        now: Optional[datetime] = None
    ) -> IdleTrackingResult:
        """
        Runs one idle-tracking pass.

        New matches become active findings; active/reviewing findings get fresh
        metrics; actioned/dismissed findings are left as they are.
        """
        now = now or utcnow()
        resources = await self.store.list_resources(filters)

        candidates: List[IdleCandidate] = []
        for resource in resources:
            samples = await self.classifier.fetch_samples(resource, self.settings.IDLE_LOOKBACK_SAMPLES)
            candidate = self.classify(resource, samples, now)
            if candidate is not None:
                candidates.append(candidate)

        merged: List[IdleFindingState] = []
        skipped = 0
        for candidate in candidates:
            existing = await self.store.get_idle_finding(candidate.resource_id)
            finding = merge_idle_finding(existing, candidate, now)
            if finding is None:
                skipped += 1
                continue
            merged.append(finding)

        async with self.store.unit_of_work():
            for finding in merged:
                await self.store.upsert_idle_finding(finding.resource_id, finding)

        summary = self.summarize(merged)
        logger.info("idle_tracking_complete",
                    scanned=len(resources),
                    findings=summary.total_findings,
                    skipped_terminal=skipped,
                    potential_savings=summary.total_potential_savings)

        return IdleTrackingResult(
            scanned_resources=len(resources),
            findings=merged,
            skipped_terminal=skipped,
            summary=summary,
        )

    def summarize(self, findings: Sequence[IdleFindingState]) -> IdleSummary:
        by_type: Dict[str, int] = {}
        by_recommendation: Dict[str, int] = {}
        savings_by_type: Dict[str, Decimal] = {}
        total_cost = Decimal("0")
        total_savings = Decimal("0")

        for f in findings:
            by_type[f.idle_type.value] = by_type.get(f.idle_type.value, 0) + 1
            by_recommendation[f.recommendation.value] = by_recommendation.get(f.recommendation.value, 0) + 1
            savings_by_type[f.idle_type.value] = savings_by_type.get(f.idle_type.value, Decimal("0")) + f.potential_savings
            total_cost += f.monthly_cost
            total_savings += f.potential_savings

        ranked = sorted(findings, key=lambda f: (-f.potential_savings, str(f.resource_id)))

        recommendations = []
        if by_recommendation.get(IdleRecommendation.TERMINATE.value):
            recommendations.append(
                f"Terminate {by_recommendation[IdleRecommendation.TERMINATE.value]} long-idle resources"
            )
        if by_recommendation.get(IdleRecommendation.SCHEDULE_STOP.value):
            recommendations.append(
                f"Put {by_recommendation[IdleRecommendation.SCHEDULE_STOP.value]} resources on a stop schedule outside working hours"
            )
        if by_recommendation.get(IdleRecommendation.DOWNSIZE.value):
            recommendations.append(
                f"Downsize {by_recommendation[IdleRecommendation.DOWNSIZE.value]} resources with persistently low CPU"
            )
        for idle_type in sorted(savings_by_type, key=lambda t: (-savings_by_type[t], t)):
            if savings_by_type[idle_type] >= to_decimal(self.settings.IDLE_SAVINGS_CALLOUT):
                recommendations.append(
                    f"{idle_type} idle resources waste {round_money(savings_by_type[idle_type])}/month"
                )

        return IdleSummary(
            total_findings=len(findings),
            total_monthly_cost=round_money(total_cost),
            total_potential_savings=round_money(total_savings),
            by_type=by_type,
            by_recommendation=by_recommendation,
            top_findings=ranked[:self.settings.IDLE_SUMMARY_TOP_N],
            recommendations=recommendations,
        )
