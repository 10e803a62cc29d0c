"""
Derived entities produced by the analytics passes.

Workflow:
1. A detection/forecast pass computes candidates from raw facts
2. Candidates are merged with stored rows (sticky status, sticky acknowledgement)
3. Merged rows are upserted in one unit of work
4. Status changes afterwards are user-driven and forward-only
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from sqlalchemy import String, Integer, Float, Boolean, ForeignKey, Numeric, Date, DateTime, JSON, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from costscope.shared.db.base import Base, utcnow


class WasteType(str, Enum):
    ZOMBIE = "zombie"
    UNUSED = "unused"
    OVERPROVISIONED = "overprovisioned"
    ORPHANED = "orphaned"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class WasteStatus(str, Enum):
    """Status of a waste finding. Moves forward only."""
    OPEN = "open"                  # Detected, nobody has looked yet
    ACKNOWLEDGED = "acknowledged"  # Owner has seen it
    RESOLVED = "resolved"          # Remediated or accepted


class IdleType(str, Enum):
    LOW_CPU = "low_cpu"
    LOW_NETWORK = "low_network"
    NO_REQUESTS = "no_requests"
    STOPPED_LONG = "stopped_long"


class IdleRecommendation(str, Enum):
    TERMINATE = "terminate"
    DOWNSIZE = "downsize"
    SCHEDULE_STOP = "schedule_stop"


class IdleStatus(str, Enum):
    """Status of an idle finding. active -> reviewing -> actioned | dismissed."""
    ACTIVE = "active"
    REVIEWING = "reviewing"
    ACTIONED = "actioned"
    DISMISSED = "dismissed"


class CostTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class AlertStatus(str, Enum):
    WARNING = "warning"
    EXCEEDED = "exceeded"


class WasteFinding(Base):
    __tablename__ = "waste_findings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Findings are keyed by resource, never accumulated
    resource_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("resources.id"), unique=True, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("cloud_accounts.id"), nullable=False, index=True)

    waste_type: Mapped[str] = mapped_column(String, nullable=False)
    severity: Mapped[str] = mapped_column(String, nullable=False)
    estimated_savings: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    avg_cpu_usage: Mapped[float] = mapped_column(Float, default=0.0)
    avg_memory_usage: Mapped[float] = mapped_column(Float, default=0.0)
    reason: Mapped[str] = mapped_column(String, default="")

    status: Mapped[str] = mapped_column(String, default=WasteStatus.OPEN.value, index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class IdleFinding(Base):
    __tablename__ = "idle_findings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    resource_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("resources.id"), unique=True, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("cloud_accounts.id"), nullable=False, index=True)

    idle_type: Mapped[str] = mapped_column(String, nullable=False)
    avg_cpu_usage: Mapped[float] = mapped_column(Float, default=0.0)
    avg_memory_usage: Mapped[float] = mapped_column(Float, default=0.0)
    avg_network: Mapped[float] = mapped_column(Float, default=0.0)
    idle_days: Mapped[int] = mapped_column(Integer, default=0)
    idle_score: Mapped[float] = mapped_column(Float, default=0.0)

    monthly_cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    potential_savings: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    recommendation: Mapped[str] = mapped_column(String, nullable=False)

    status: Mapped[str] = mapped_column(String, default=IdleStatus.ACTIVE.value, index=True)

    first_detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class CostPrediction(Base):
    __tablename__ = "cost_predictions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("cloud_accounts.id"), nullable=False, index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    predicted_cost: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    trend: Mapped[str] = mapped_column(String, default=CostTrend.STABLE.value)
    factors: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    budget_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    budget_utilization: Mapped[Decimal] = mapped_column(Numeric(9, 2), default=Decimal("0"))
    over_budget: Mapped[bool] = mapped_column(Boolean, default=False)
    budget_gap: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))

    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "period_start", name="uix_prediction_account_period"),
    )


class BudgetAlert(Base):
    __tablename__ = "budget_alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("cloud_accounts.id"), nullable=False, index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    threshold_percent: Mapped[int] = mapped_column(Integer, default=80)
    current_spend: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    budget_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    utilization_percent: Mapped[Decimal] = mapped_column(Numeric(9, 2), default=Decimal("0"))
    alert_status: Mapped[str] = mapped_column(String, default=AlertStatus.WARNING.value)

    # Sticky: once true, recomputes never reset it
    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False)

    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "period_start", name="uix_budget_alert_account_period"),
    )
