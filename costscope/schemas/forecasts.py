"""
Prediction and Budget Alert Schemas
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional, Dict
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field

from costscope.models.findings import CostTrend, AlertStatus


class BudgetAssessment(BaseModel):
    """Predicted spend against a monthly budget. All zero when there is no budget."""
    budget_amount: Optional[Decimal] = None
    budget_utilization: Decimal = Decimal("0")
    over_budget: bool = False
    budget_gap: Decimal = Decimal("0")


class PredictionState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: UUID
    period_start: date
    predicted_cost: Decimal
    confidence: float = Field(..., ge=0.0, le=1.0)
    trend: CostTrend
    factors: Dict[str, Any] = Field(default_factory=dict)
    budget_amount: Optional[Decimal] = None
    budget_utilization: Decimal = Decimal("0")
    over_budget: bool = False
    budget_gap: Decimal = Decimal("0")
    generated_at: datetime


class BudgetAlertState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[UUID] = None
    account_id: UUID
    period_start: date
    threshold_percent: int
    current_spend: Decimal
    budget_amount: Decimal
    utilization_percent: Decimal
    alert_status: AlertStatus
    acknowledged: bool = False
    triggered_at: datetime
    updated_at: datetime


class ForecastSummary(BaseModel):
    accounts: int = 0
    total_predicted: Decimal = Decimal("0")
    total_budget: Decimal = Decimal("0")
    accounts_over_budget: int = 0
    average_confidence: float = 0.0
    by_trend: Dict[str, int] = Field(default_factory=dict)
    active_alerts: int = 0


class ForecastResult(BaseModel):
    as_of: date
    predictions: List[PredictionState]
    alerts: List[BudgetAlertState]
    summary: ForecastSummary
