"""
Waste and Idle Finding Schemas

Candidates are what a detection pass computes from raw facts and nothing else.
States are candidates merged with whatever lifecycle data the store already
holds; they are what gets upserted.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Dict
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field

from costscope.models.findings import (
    WasteType, Severity, WasteStatus,
    IdleType, IdleRecommendation, IdleStatus,
)


class WasteCandidate(BaseModel):
    resource_id: UUID
    account_id: UUID
    resource_name: str = ""
    waste_type: WasteType
    severity: Severity
    estimated_savings: Decimal = Field(..., description="Monthly savings, rounded to cents")
    avg_cpu_usage: float = 0.0
    avg_memory_usage: float = 0.0
    reason: str


class WasteFindingState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[UUID] = None
    resource_id: UUID
    account_id: UUID
    waste_type: WasteType
    severity: Severity
    estimated_savings: Decimal
    avg_cpu_usage: float = 0.0
    avg_memory_usage: float = 0.0
    reason: str = ""
    status: WasteStatus = WasteStatus.OPEN
    resolved_at: Optional[datetime] = None
    detected_at: datetime
    updated_at: datetime


class WasteSummary(BaseModel):
    total_findings: int = 0
    total_estimated_savings: Decimal = Decimal("0")
    by_type: Dict[str, int] = Field(default_factory=dict)
    savings_by_type: Dict[str, Decimal] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    top_findings: List[WasteFindingState] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class WasteDetectionResult(BaseModel):
    scanned_resources: int
    findings: List[WasteFindingState]
    summary: WasteSummary


class IdleCandidate(BaseModel):
    resource_id: UUID
    account_id: UUID
    resource_name: str = ""
    idle_type: IdleType
    avg_cpu_usage: float = 0.0
    avg_memory_usage: float = 0.0
    avg_network: float = 0.0
    idle_days: int
    idle_score: float = Field(..., description="0-100, higher is more idle")
    monthly_cost: Decimal
    potential_savings: Decimal
    recommendation: IdleRecommendation


class IdleFindingState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[UUID] = None
    resource_id: UUID
    account_id: UUID
    idle_type: IdleType
    avg_cpu_usage: float = 0.0
    avg_memory_usage: float = 0.0
    avg_network: float = 0.0
    idle_days: int = 0
    idle_score: float = 0.0
    monthly_cost: Decimal
    potential_savings: Decimal
    recommendation: IdleRecommendation
    status: IdleStatus = IdleStatus.ACTIVE
    first_detected_at: datetime
    updated_at: datetime


class IdleSummary(BaseModel):
    total_findings: int = 0
    total_monthly_cost: Decimal = Decimal("0")
    total_potential_savings: Decimal = Decimal("0")
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_recommendation: Dict[str, int] = Field(default_factory=dict)
    top_findings: List[IdleFindingState] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class IdleTrackingResult(BaseModel):
    scanned_resources: int
    findings: List[IdleFindingState]
    # Terminal findings the pass matched but did not touch
    skipped_terminal: int = 0
    summary: IdleSummary
