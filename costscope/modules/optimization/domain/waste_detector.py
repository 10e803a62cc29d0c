"""
Waste Detection

Classifies resources as zombie, unused, overprovisioned or orphaned (first
match wins) and estimates the monthly savings of remediating them.

A pass is compute -> merge -> write:
1. Candidates come from resource metadata + UsageClassifier output only
2. Each candidate is merged with the stored finding (status is sticky)
3. All merged findings are upserted in a single unit of work
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
import structlog

from costscope.models.cloud import Resource, ResourceCategory, ResourceStatus
from costscope.models.findings import Severity, WasteType
from costscope.modules.optimization.domain.lifecycle import merge_waste_finding
from costscope.modules.optimization.domain.usage import UsageClassifier
from costscope.schemas.filters import ResourceFilter
from costscope.schemas.findings import WasteCandidate, WasteDetectionResult, WasteFindingState, WasteSummary
from costscope.schemas.usage import UsageAverages
from costscope.shared.core.config import Settings, get_settings
from costscope.shared.core.money import monthly_cost, round_money, to_decimal
from costscope.shared.db.base import ensure_utc, utcnow
from costscope.shared.db.ports import TimeSeriesStore

logger = structlog.get_logger()

# Categories whose size implies capacity that can be shrunk
SIZABLE_CATEGORIES = {ResourceCategory.COMPUTE.value, ResourceCategory.DATABASE.value}


def severity_from_tiers(value: Decimal, tiers: Dict[str, float]) -> Severity:
    """Highest tier whose floor the value reaches; low otherwise."""
    for name, floor in sorted(tiers.items(), key=lambda kv: kv[1], reverse=True):
        if value >= to_decimal(floor):
            return Severity(name)
    return Severity.LOW


class WasteDetector:
    def __init__(
        self,
        store: TimeSeriesStore,
        settings: Optional[Settings] = None,
        classifier: Optional[UsageClassifier] = None
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.classifier = classifier or UsageClassifier(store, self.settings)

    def estimate_savings(self, resource: Resource, waste_type: WasteType) -> Decimal:
        """cost_per_hour x 24 x 30 x remediation fraction, unrounded."""
        fraction = to_decimal(self.settings.WASTE_REMEDIATION_FRACTIONS.get(waste_type.value, 0))
        return monthly_cost(resource.cost_per_hour) * fraction

    def _match(self, resource: Resource, usage: UsageAverages, now: datetime) -> Optional[tuple]:
        s = self.settings

        if resource.status == ResourceStatus.STOPPED.value:
            stopped_for = now - ensure_utc(resource.status_changed_at)
            if stopped_for > timedelta(days=s.ZOMBIE_GRACE_DAYS):
                return WasteType.ZOMBIE, f"Stopped for {stopped_for.days} days but still billed"

        if resource.status == ResourceStatus.RUNNING.value and usage.cpu_always_below(s.UNUSED_CPU_THRESHOLD):
            return WasteType.UNUSED, (
                f"CPU below {s.UNUSED_CPU_THRESHOLD:g}% in all {usage.sample_count} recent samples"
            )

        if (
            not usage.is_empty
            and usage.avg_cpu_usage < s.OVERPROVISIONED_THRESHOLD
            and usage.avg_memory_usage < s.OVERPROVISIONED_THRESHOLD
            and getattr(resource.category, "value", resource.category) in SIZABLE_CATEGORIES
            and (resource.vcpus or 0) >= s.OVERPROVISIONED_MIN_VCPUS
        ):
            return WasteType.OVERPROVISIONED, (
                f"{resource.vcpus} vCPUs at {usage.avg_cpu_usage:.1f}% CPU / "
                f"{usage.avg_memory_usage:.1f}% memory; a smaller size fits"
            )

        if usage.avg_network <= s.ORPHANED_NETWORK_THRESHOLD and not resource.workload_ref:
            return WasteType.ORPHANED, "No network traffic and not attached to any workload"

        return None

    def classify(self, resource: Resource, usage: UsageAverages, now: datetime) -> Optional[WasteCandidate]:
        """Pure classification of one resource. Knows nothing about stored findings."""
        match = self._match(resource, usage, now)
        if match is None:
            return None
        waste_type, reason = match

        savings = self.estimate_savings(resource, waste_type)
        if waste_type == WasteType.ZOMBIE:
            severity = severity_from_tiers(to_decimal(resource.cost_per_hour), self.settings.ZOMBIE_SEVERITY_TIERS)
        else:
            severity = severity_from_tiers(savings, self.settings.SAVINGS_SEVERITY_TIERS)

        return WasteCandidate(
            resource_id=resource.id,
            account_id=resource.account_id,
            resource_name=resource.name or "",
            waste_type=waste_type,
            severity=severity,
            estimated_savings=round_money(savings),
            avg_cpu_usage=round(usage.avg_cpu_usage, 2),
            avg_memory_usage=round(usage.avg_memory_usage, 2),
            reason=reason,
        )

    async def detect(
        self,
        filters: Optional[ResourceFilter] = None,
        now: Optional[datetime] = None
    ) -> WasteDetectionResult:
        """
        Runs one detection pass over the candidate resources.

        Returns:
            The merged findings written by this pass plus a summary rollup.
            Resources without a match keep whatever finding they already had.
        """
        now = now or utcnow()
        resources = await self.store.list_resources(filters)

        candidates: List[WasteCandidate] = []
        for resource in resources:
            usage = await self.classifier.classify(resource)
            candidate = self.classify(resource, usage, now)
            if candidate is not None:
                candidates.append(candidate)

        merged: List[WasteFindingState] = []
        for candidate in candidates:
            existing = await self.store.get_waste_finding(candidate.resource_id)
            merged.append(merge_waste_finding(existing, candidate, now))

        async with self.store.unit_of_work():
            for finding in merged:
                await self.store.upsert_waste_finding(finding.resource_id, finding)

        summary = self.summarize(merged)
        logger.info("waste_detection_complete",
                    scanned=len(resources),
                    findings=summary.total_findings,
                    total_savings=summary.total_estimated_savings)

        return WasteDetectionResult(scanned_resources=len(resources), findings=merged, summary=summary)

    def summarize(self, findings: Sequence[WasteFindingState]) -> WasteSummary:
        by_type: Dict[str, int] = {}
        savings_by_type: Dict[str, Decimal] = {}
        by_severity: Dict[str, int] = {}
        total = Decimal("0")

        for f in findings:
            key = f.waste_type.value
            by_type[key] = by_type.get(key, 0) + 1
            savings_by_type[key] = savings_by_type.get(key, Decimal("0")) + f.estimated_savings
            by_severity[f.severity.value] = by_severity.get(f.severity.value, 0) + 1
            total += f.estimated_savings

        ranked = sorted(
            findings,
            key=lambda f: (-f.severity.rank, -f.estimated_savings, str(f.resource_id))
        )

        return WasteSummary(
            total_findings=len(findings),
            total_estimated_savings=round_money(total),
            by_type=by_type,
            savings_by_type={k: round_money(v) for k, v in savings_by_type.items()},
            by_severity=by_severity,
            top_findings=ranked[:self.settings.WASTE_SUMMARY_TOP_N],
            recommendations=self._recommendations(by_type, savings_by_type, by_severity, total),
        )

    @staticmethod
    def _recommendations(
        by_type: Dict[str, int],
        savings_by_type: Dict[str, Decimal],
        by_severity: Dict[str, int],
        total: Decimal
    ) -> List[str]:
        if not by_type:
            return []

        recommendations = []
        urgent = by_severity.get(Severity.CRITICAL.value, 0) + by_severity.get(Severity.HIGH.value, 0)
        if urgent:
            recommendations.append(
                f"{urgent} high or critical findings account for most of the "
                f"{round_money(total)} monthly savings; handle them first"
            )

        actions = {
            WasteType.ZOMBIE.value: "Terminate {n} stopped resources that are still billed",
            WasteType.ORPHANED.value: "Delete or attach {n} orphaned resources",
            WasteType.UNUSED.value: "Stop or remove {n} resources with no meaningful CPU use",
            WasteType.OVERPROVISIONED.value: "Downsize {n} overprovisioned resources",
        }
        for waste_type in sorted(savings_by_type, key=lambda t: (-savings_by_type[t], t)):
            recommendations.append(
                actions[waste_type].format(n=by_type[waste_type])
                + f" to save {round_money(savings_by_type[waste_type])}/month"
            )
        return recommendations
