from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from typing import List, Optional
from uuid import UUID

from costscope.models.cloud import CloudAccount, CostRecord, Resource, UsageSample
from costscope.schemas.costs import CostQuery
from costscope.schemas.filters import AccountFilter, ResourceFilter
from costscope.schemas.findings import IdleFindingState, WasteFindingState
from costscope.schemas.forecasts import BudgetAlertState, PredictionState


class TimeSeriesStore(ABC):
    """
    Data-access port for the analytics pipeline.

    Raw facts (accounts, resources, samples, cost records) are read-only.
    Derived entities are read and written as schema states, so the pipeline
    never holds a live ORM row while it computes.

    Implementations raise StoreError for any backend failure.
    """

    # Raw facts

    @abstractmethod
    async def list_cost_records(self, query: CostQuery) -> List[CostRecord]:
        """Cost records within [query.start_date, query.end_date] matching the query filters."""

    @abstractmethod
    async def list_resources(self, filters: Optional[ResourceFilter] = None) -> List[Resource]:
        """Resources matching the filter, ordered by id."""

    @abstractmethod
    async def list_usage_samples(
        self, resource_id: UUID, limit: int, most_recent_first: bool = True
    ) -> List[UsageSample]:
        """At most `limit` samples for a resource, newest first unless told otherwise."""

    @abstractmethod
    async def get_accounts(self, filters: Optional[AccountFilter] = None) -> List[CloudAccount]:
        """Accounts matching the filter."""

    # Derived entities

    @abstractmethod
    async def get_waste_finding(self, resource_id: UUID) -> Optional[WasteFindingState]:
        """The stored waste finding for a resource, if any."""

    @abstractmethod
    async def upsert_waste_finding(self, resource_id: UUID, finding: WasteFindingState) -> None:
        """Insert or overwrite the single waste finding for a resource."""

    @abstractmethod
    async def list_waste_findings(self, account_ids: Optional[List[UUID]] = None) -> List[WasteFindingState]:
        """Stored waste findings, optionally limited to some accounts."""

    @abstractmethod
    async def get_idle_finding(self, resource_id: UUID) -> Optional[IdleFindingState]:
        """The stored idle finding for a resource, if any."""

    @abstractmethod
    async def upsert_idle_finding(self, resource_id: UUID, finding: IdleFindingState) -> None:
        """Insert or overwrite the single idle finding for a resource."""

    @abstractmethod
    async def list_idle_findings(self, account_ids: Optional[List[UUID]] = None) -> List[IdleFindingState]:
        """Stored idle findings, optionally limited to some accounts."""

    @abstractmethod
    async def replace_predictions(self, account_id: UUID, predictions: List[PredictionState]) -> None:
        """Delete every prediction of the account and insert the new set."""

    @abstractmethod
    async def list_predictions(self, account_id: UUID) -> List[PredictionState]:
        """Stored predictions of an account, ordered by period."""

    @abstractmethod
    async def get_budget_alert(self, account_id: UUID, period_start: date) -> Optional[BudgetAlertState]:
        """The alert for (account, period), if any."""

    @abstractmethod
    async def upsert_budget_alert(self, account_id: UUID, alert: BudgetAlertState) -> None:
        """Insert or overwrite the alert for (account, alert.period_start)."""

    @abstractmethod
    def unit_of_work(self) -> AbstractAsyncContextManager["TimeSeriesStore"]:
        """
        Groups writes. Commits when the block exits cleanly, rolls back and
        re-raises otherwise, so a failed pass leaves prior derived state untouched.
        """
