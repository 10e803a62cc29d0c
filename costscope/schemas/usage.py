from datetime import date, datetime
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field


class UsageAverages(BaseModel):
    """Rolling utilization over a sample window. Advisory, never persisted."""
    resource_id: Optional[UUID] = None
    sample_count: int = 0
    avg_cpu_usage: float = 0.0
    avg_memory_usage: float = 0.0
    avg_network: float = Field(0.0, description="Mean of network_in + network_out")
    peak_cpu_usage: float = 0.0
    total_requests: int = 0
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.sample_count == 0

    def cpu_always_below(self, threshold: float) -> bool:
        """True when the window is non-empty and no sample reached the threshold."""
        return not self.is_empty and self.peak_cpu_usage < threshold


class DailyUsage(BaseModel):
    """Samples rolled up to one UTC calendar day."""
    day: date
    sample_count: int
    avg_cpu_usage: float
    avg_memory_usage: float
    avg_network: float
    total_requests: int
