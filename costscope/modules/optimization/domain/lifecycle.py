"""
Finding Lifecycle

Merging freshly computed candidates with stored state, and user-driven status
transitions. Detection code never looks at status; everything status-related
lives here.

Waste:  open -> acknowledged -> resolved   (open -> resolved allowed)
Idle:   active -> reviewing -> actioned | dismissed
Alerts: acknowledged false -> true
"""

from datetime import date, datetime
from typing import Dict, FrozenSet, Optional
from uuid import UUID
import structlog

from costscope.models.findings import IdleStatus, WasteStatus
from costscope.schemas.findings import IdleCandidate, IdleFindingState, WasteCandidate, WasteFindingState
from costscope.schemas.forecasts import BudgetAlertState
from costscope.shared.core.exceptions import InvalidStatusTransitionError, ResourceNotFoundError
from costscope.shared.core.logging import audit_log
from costscope.shared.db.base import utcnow
from costscope.shared.db.ports import TimeSeriesStore

logger = structlog.get_logger()

WASTE_TRANSITIONS: Dict[WasteStatus, FrozenSet[WasteStatus]] = {
    WasteStatus.OPEN: frozenset({WasteStatus.ACKNOWLEDGED, WasteStatus.RESOLVED}),
    WasteStatus.ACKNOWLEDGED: frozenset({WasteStatus.RESOLVED}),
    WasteStatus.RESOLVED: frozenset(),
}

IDLE_TRANSITIONS: Dict[IdleStatus, FrozenSet[IdleStatus]] = {
    IdleStatus.ACTIVE: frozenset({IdleStatus.REVIEWING}),
    IdleStatus.REVIEWING: frozenset({IdleStatus.ACTIONED, IdleStatus.DISMISSED}),
    IdleStatus.ACTIONED: frozenset(),
    IdleStatus.DISMISSED: frozenset(),
}

IDLE_TERMINAL = frozenset({IdleStatus.ACTIONED, IdleStatus.DISMISSED})


def merge_waste_finding(
    existing: Optional[WasteFindingState],
    candidate: WasteCandidate,
    now: datetime
) -> WasteFindingState:
    """
    New resource -> open finding. Existing finding -> metrics replaced,
    status, resolved_at and detected_at kept.
    """
    metrics = dict(
        resource_id=candidate.resource_id,
        account_id=candidate.account_id,
        waste_type=candidate.waste_type,
        severity=candidate.severity,
        estimated_savings=candidate.estimated_savings,
        avg_cpu_usage=candidate.avg_cpu_usage,
        avg_memory_usage=candidate.avg_memory_usage,
        reason=candidate.reason,
        updated_at=now,
    )
    if existing is None:
        return WasteFindingState(status=WasteStatus.OPEN, detected_at=now, **metrics)
    return existing.model_copy(update=metrics)


def merge_idle_finding(
    existing: Optional[IdleFindingState],
    candidate: IdleCandidate,
    now: datetime
) -> Optional[IdleFindingState]:
    """
    New resource -> active finding. active/reviewing -> metrics updated.
    actioned/dismissed -> None (leave the stored row alone).
    """
    if existing is not None and existing.status in IDLE_TERMINAL:
        return None

    metrics = dict(
        resource_id=candidate.resource_id,
        account_id=candidate.account_id,
        idle_type=candidate.idle_type,
        avg_cpu_usage=candidate.avg_cpu_usage,
        avg_memory_usage=candidate.avg_memory_usage,
        avg_network=candidate.avg_network,
        idle_days=candidate.idle_days,
        idle_score=candidate.idle_score,
        monthly_cost=candidate.monthly_cost,
        potential_savings=candidate.potential_savings,
        recommendation=candidate.recommendation,
        updated_at=now,
    )
    if existing is None:
        return IdleFindingState(status=IdleStatus.ACTIVE, first_detected_at=now, **metrics)
    return existing.model_copy(update=metrics)


def merge_budget_alert(existing: Optional[BudgetAlertState], computed: BudgetAlertState) -> BudgetAlertState:
    """One alert per (account, period). Acknowledgement and trigger time survive recomputes."""
    if existing is None:
        return computed
    return computed.model_copy(update={
        "id": existing.id,
        "triggered_at": existing.triggered_at,
        "acknowledged": existing.acknowledged or computed.acknowledged,
    })


def advance_waste_status(finding: WasteFindingState, target: WasteStatus, now: datetime) -> WasteFindingState:
    target = WasteStatus(target)
    if target == finding.status:
        return finding
    if target not in WASTE_TRANSITIONS[finding.status]:
        raise InvalidStatusTransitionError(
            f"Cannot move waste finding from {finding.status.value} to {target.value}.",
            details={"resource_id": str(finding.resource_id), "from": finding.status.value, "to": target.value}
        )
    update = {"status": target, "updated_at": now}
    if target == WasteStatus.RESOLVED:
        update["resolved_at"] = now
    return finding.model_copy(update=update)


def advance_idle_status(finding: IdleFindingState, target: IdleStatus, now: datetime) -> IdleFindingState:
    target = IdleStatus(target)
    if target == finding.status:
        return finding
    if target not in IDLE_TRANSITIONS[finding.status]:
        raise InvalidStatusTransitionError(
            f"Cannot move idle finding from {finding.status.value} to {target.value}.",
            details={"resource_id": str(finding.resource_id), "from": finding.status.value, "to": target.value}
        )
    return finding.model_copy(update={"status": target, "updated_at": now})


class FindingLifecycleService:
    """
    User-driven status changes. Plain field updates forwarded to the store,
    each one audited.
    """

    def __init__(self, store: TimeSeriesStore):
        self.store = store

    async def transition_waste_finding(
        self, resource_id: UUID, target: WasteStatus, actor: str
    ) -> WasteFindingState:
        finding = await self.store.get_waste_finding(resource_id)
        if finding is None:
            raise ResourceNotFoundError(
                f"No waste finding for resource {resource_id}.",
                details={"resource_id": str(resource_id)}
            )

        previous = finding.status
        updated = advance_waste_status(finding, target, utcnow())
        if updated is finding:
            return finding

        async with self.store.unit_of_work():
            await self.store.upsert_waste_finding(resource_id, updated)

        audit_log(
            "waste_finding_status_changed",
            actor,
            updated.account_id,
            {"resource_id": str(resource_id), "from": previous.value, "to": updated.status.value},
        )
        return updated

    async def transition_idle_finding(
        self, resource_id: UUID, target: IdleStatus, actor: str
    ) -> IdleFindingState:
        finding = await self.store.get_idle_finding(resource_id)
        if finding is None:
            raise ResourceNotFoundError(
                f"No idle finding for resource {resource_id}.",
                details={"resource_id": str(resource_id)}
            )

        previous = finding.status
        updated = advance_idle_status(finding, target, utcnow())
        if updated is finding:
            return finding

        async with self.store.unit_of_work():
            await self.store.upsert_idle_finding(resource_id, updated)

        audit_log(
            "idle_finding_status_changed",
            actor,
            updated.account_id,
            {"resource_id": str(resource_id), "from": previous.value, "to": updated.status.value},
        )
        return updated

    async def acknowledge_budget_alert(self, account_id: UUID, period_start: date, actor: str) -> BudgetAlertState:
        alert = await self.store.get_budget_alert(account_id, period_start)
        if alert is None:
            raise ResourceNotFoundError(
                f"No budget alert for account {account_id} in period {period_start}.",
                details={"account_id": str(account_id), "period_start": period_start.isoformat()}
            )
        if alert.acknowledged:
            return alert

        updated = alert.model_copy(update={"acknowledged": True, "updated_at": utcnow()})
        async with self.store.unit_of_work():
            await self.store.upsert_budget_alert(account_id, updated)

        audit_log(
            "budget_alert_acknowledged",
            actor,
            account_id,
            {"period_start": period_start.isoformat(), "alert_status": updated.alert_status.value},
        )
        return updated
