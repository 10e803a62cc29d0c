"""
Cost Query and Breakdown Schemas

CostQuery is the immutable query context threaded through every aggregation
call. Output schemas carry money already rounded to cents.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Dict, Tuple
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from costscope.models.cloud import ResourceCategory
from costscope.shared.core.exceptions import InvalidQueryError


class Granularity(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class CostQuery(BaseModel):
    """Date range plus filter set. Frozen so aggregators cannot mutate shared state."""
    model_config = ConfigDict(frozen=True)

    start_date: date
    end_date: date
    account_ids: Tuple[UUID, ...] = ()
    categories: Tuple[ResourceCategory, ...] = ()
    services: Tuple[str, ...] = ()
    provider: Optional[str] = None

    @field_validator("end_date")
    @classmethod
    def end_not_before_start(cls, v: date, info: ValidationInfo) -> date:
        start = info.data.get("start_date")
        if start is not None and v < start:
            raise ValueError("end_date must not be before start_date")
        return v

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        if not v:
            raise ValueError("provider cannot be blank")
        return v

    @field_validator("services")
    @classmethod
    def reject_blank_services(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if any(not s.strip() for s in v):
            raise ValueError("service names cannot be blank")
        return v

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    @classmethod
    def build(cls, max_window_days: Optional[int] = None, **raw) -> "CostQuery":
        """
        Validates raw caller input (strings or typed values) into a CostQuery.
        Raises InvalidQueryError naming the first offending field.
        """
        try:
            query = cls.model_validate(raw)
        except ValidationError as e:
            error = e.errors()[0]
            loc = error.get("loc") or ("query",)
            raise InvalidQueryError(
                f"Invalid {loc[0]}: {error.get('msg')}",
                field=str(loc[0]),
                details={"input": str(error.get("input"))[:100]}
            ) from e

        if max_window_days is not None and query.days > max_window_days:
            raise InvalidQueryError(
                f"Date range spans {query.days} days; maximum is {max_window_days}.",
                field="end_date",
                details={"max_window_days": max_window_days}
            )
        return query

    def shifted(self, start_date: date, end_date: date) -> "CostQuery":
        """Same filters over a different window."""
        return self.model_copy(update={"start_date": start_date, "end_date": end_date})


class GroupedCost(BaseModel):
    key: str
    cost: Decimal
    percent: Decimal = Field(..., description="Share of the total cost, 0-100")
    count: int = Field(..., description="Number of cost records in the group")
    usage: Decimal = Field(Decimal("0"), description="Summed usage_quantity; records without usage count as 0")


class DailyCategoryCost(BaseModel):
    """One row of the day x category matrix. Every observed category is present."""
    date: date
    by_category: Dict[str, Decimal]
    total: Decimal


class TimelinePoint(BaseModel):
    period_start: date
    cost: Decimal


class PeriodComparison(BaseModel):
    current_period: Decimal
    previous_period: Decimal
    change_amount: Decimal
    change_rate: Decimal = Field(..., description="Percent change vs. previous period")


class CostAnomaly(BaseModel):
    date: date
    actual_cost: Decimal
    expected_cost: Decimal
    deviation: float = Field(..., description="Distance from the rolling mean in standard deviations")
    anomaly_type: str  # spike, drop
    severity: str


class CostBreakdown(BaseModel):
    """Cost breakdown over a period, ready for presentation."""
    start_date: date
    end_date: date
    currency: str = "USD"
    categories: List[str]
    daily: List[DailyCategoryCost]
    by_service: List[GroupedCost]
    by_category: List[GroupedCost]
    by_provider: List[GroupedCost] = Field(default_factory=list)
    total_cost: Decimal
    total_usage: Decimal = Decimal("0")
    average_daily_cost: Decimal
    max_daily_cost: Decimal
    min_daily_cost: Decimal
    trend_percent: str = Field(..., description='Week-over-week percent, 1 dp; "0" when the first week is empty')
    record_count: int
    comparison: Optional[PeriodComparison] = None
