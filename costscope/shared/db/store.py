from contextlib import asynccontextmanager, contextmanager
from datetime import date
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional
from uuid import UUID
from pydantic import BaseModel
from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
import structlog

from costscope.models.cloud import CloudAccount, CostRecord, Resource, UsageSample
from costscope.models.findings import BudgetAlert, CostPrediction, IdleFinding, WasteFinding
from costscope.schemas.costs import CostQuery
from costscope.schemas.filters import AccountFilter, ResourceFilter
from costscope.schemas.findings import IdleFindingState, WasteFindingState
from costscope.schemas.forecasts import BudgetAlertState, PredictionState
from costscope.shared.core.config import get_settings
from costscope.shared.core.exceptions import InvalidQueryError, StoreError
from costscope.shared.db.ports import TimeSeriesStore

logger = structlog.get_logger()


def _column_values(state: BaseModel, exclude: Optional[set] = None) -> Dict[str, Any]:
    """Schema state -> ORM column values. Enums are stored as their string value."""
    values = state.model_dump(exclude=exclude or {"id"})
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in values.items()}


class SQLAlchemyTimeSeriesStore(TimeSeriesStore):
    """TimeSeriesStore over an async SQLAlchemy session."""

    def __init__(self, db: AsyncSession, max_detail_rows: Optional[int] = None):
        self.db = db
        self.max_detail_rows = max_detail_rows or get_settings().MAX_DETAIL_ROWS

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            logger.error("store_operation_failed", operation=operation, error=str(e)[:200])
            raise StoreError(str(e), details={"operation": operation}) from e

    async def list_cost_records(self, query: CostQuery) -> List[CostRecord]:
        stmt = (
            select(CostRecord)
            .where(
                CostRecord.record_date >= query.start_date,
                CostRecord.record_date <= query.end_date
            )
        )
        if query.account_ids:
            stmt = stmt.where(CostRecord.account_id.in_(query.account_ids))
        if query.categories:
            stmt = stmt.where(CostRecord.category.in_([c.value for c in query.categories]))
        if query.services:
            stmt = stmt.where(CostRecord.service.in_(query.services))
        if query.provider:
            stmt = stmt.join(CloudAccount).where(CloudAccount.provider == query.provider)

        # Safety gate: one extra row tells a full window from a truncated one
        stmt = (
            stmt.options(selectinload(CostRecord.account))
            .order_by(CostRecord.record_date, CostRecord.id)
            .limit(self.max_detail_rows + 1)
        )

        with self._guard("list_cost_records"):
            result = await self.db.execute(stmt)
            records = list(result.scalars().all())

        if len(records) > self.max_detail_rows:
            logger.warning("query_hit_safety_limit",
                           start_date=query.start_date,
                           end_date=query.end_date,
                           limit=self.max_detail_rows)
            raise InvalidQueryError(
                f"Date range holds more than {self.max_detail_rows} cost records; narrow the range or filters.",
                field="end_date",
                details={"max_detail_rows": self.max_detail_rows}
            )
        return records

    async def list_resources(self, filters: Optional[ResourceFilter] = None) -> List[Resource]:
        filters = filters or ResourceFilter()
        stmt = select(Resource)
        if filters.account_ids:
            stmt = stmt.where(Resource.account_id.in_(filters.account_ids))
        if filters.resource_ids:
            stmt = stmt.where(Resource.id.in_(filters.resource_ids))
        if filters.categories:
            stmt = stmt.where(Resource.category.in_([c.value for c in filters.categories]))
        if filters.statuses:
            stmt = stmt.where(Resource.status.in_([s.value for s in filters.statuses]))
        stmt = stmt.order_by(Resource.id)

        with self._guard("list_resources"):
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

    async def list_usage_samples(
        self, resource_id: UUID, limit: int, most_recent_first: bool = True
    ) -> List[UsageSample]:
        order = UsageSample.timestamp.desc() if most_recent_first else UsageSample.timestamp.asc()
        stmt = (
            select(UsageSample)
            .where(UsageSample.resource_id == resource_id)
            .order_by(order)
            .limit(limit)
        )
        with self._guard("list_usage_samples"):
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

    async def get_accounts(self, filters: Optional[AccountFilter] = None) -> List[CloudAccount]:
        filters = filters or AccountFilter()
        stmt = select(CloudAccount)
        if filters.account_ids:
            stmt = stmt.where(CloudAccount.id.in_(filters.account_ids))
        if filters.provider:
            stmt = stmt.where(CloudAccount.provider == filters.provider.lower())
        if filters.statuses:
            stmt = stmt.where(CloudAccount.status.in_([s.value for s in filters.statuses]))
        stmt = stmt.order_by(CloudAccount.id)

        with self._guard("get_accounts"):
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

    # Waste findings

    async def _waste_row(self, resource_id: UUID) -> Optional[WasteFinding]:
        result = await self.db.execute(
            select(WasteFinding).where(WasteFinding.resource_id == resource_id)
        )
        return result.scalar_one_or_none()

    async def get_waste_finding(self, resource_id: UUID) -> Optional[WasteFindingState]:
        with self._guard("get_waste_finding"):
            row = await self._waste_row(resource_id)
        return WasteFindingState.model_validate(row) if row else None

    async def upsert_waste_finding(self, resource_id: UUID, finding: WasteFindingState) -> None:
        values = _column_values(finding)
        values["resource_id"] = resource_id
        with self._guard("upsert_waste_finding"):
            row = await self._waste_row(resource_id)
            if row is None:
                self.db.add(WasteFinding(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            await self.db.flush()

    async def list_waste_findings(self, account_ids: Optional[List[UUID]] = None) -> List[WasteFindingState]:
        stmt = select(WasteFinding).order_by(WasteFinding.resource_id)
        if account_ids:
            stmt = stmt.where(WasteFinding.account_id.in_(account_ids))
        with self._guard("list_waste_findings"):
            result = await self.db.execute(stmt)
            rows = result.scalars().all()
        return [WasteFindingState.model_validate(r) for r in rows]

    # Idle findings

    async def _idle_row(self, resource_id: UUID) -> Optional[IdleFinding]:
        result = await self.db.execute(
            select(IdleFinding).where(IdleFinding.resource_id == resource_id)
        )
        return result.scalar_one_or_none()

    async def get_idle_finding(self, resource_id: UUID) -> Optional[IdleFindingState]:
        with self._guard("get_idle_finding"):
            row = await self._idle_row(resource_id)
        return IdleFindingState.model_validate(row) if row else None

    async def upsert_idle_finding(self, resource_id: UUID, finding: IdleFindingState) -> None:
        values = _column_values(finding)
        values["resource_id"] = resource_id
        with self._guard("upsert_idle_finding"):
            row = await self._idle_row(resource_id)
            if row is None:
                self.db.add(IdleFinding(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            await self.db.flush()

    async def list_idle_findings(self, account_ids: Optional[List[UUID]] = None) -> List[IdleFindingState]:
        stmt = select(IdleFinding).order_by(IdleFinding.resource_id)
        if account_ids:
            stmt = stmt.where(IdleFinding.account_id.in_(account_ids))
        with self._guard("list_idle_findings"):
            result = await self.db.execute(stmt)
            rows = result.scalars().all()
        return [IdleFindingState.model_validate(r) for r in rows]

    # Predictions

    async def replace_predictions(self, account_id: UUID, predictions: List[PredictionState]) -> None:
        with self._guard("replace_predictions"):
            await self.db.execute(
                delete(CostPrediction).where(CostPrediction.account_id == account_id)
            )
            for prediction in predictions:
                values = _column_values(prediction, exclude=set())
                values["account_id"] = account_id
                self.db.add(CostPrediction(**values))
            await self.db.flush()

    async def list_predictions(self, account_id: UUID) -> List[PredictionState]:
        stmt = (
            select(CostPrediction)
            .where(CostPrediction.account_id == account_id)
            .order_by(CostPrediction.period_start)
        )
        with self._guard("list_predictions"):
            result = await self.db.execute(stmt)
            rows = result.scalars().all()
        return [PredictionState.model_validate(r) for r in rows]

    # Budget alerts

    async def _alert_row(self, account_id: UUID, period_start: date) -> Optional[BudgetAlert]:
        result = await self.db.execute(
            select(BudgetAlert).where(
                BudgetAlert.account_id == account_id,
                BudgetAlert.period_start == period_start
            )
        )
        return result.scalar_one_or_none()

    async def get_budget_alert(self, account_id: UUID, period_start: date) -> Optional[BudgetAlertState]:
        with self._guard("get_budget_alert"):
            row = await self._alert_row(account_id, period_start)
        return BudgetAlertState.model_validate(row) if row else None

    async def upsert_budget_alert(self, account_id: UUID, alert: BudgetAlertState) -> None:
        values = _column_values(alert)
        values["account_id"] = account_id
        with self._guard("upsert_budget_alert"):
            row = await self._alert_row(account_id, alert.period_start)
            if row is None:
                self.db.add(BudgetAlert(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            await self.db.flush()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator["SQLAlchemyTimeSeriesStore"]:
        try:
            yield self
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("unit_of_work_rolled_back", error=str(e)[:200])
            raise StoreError(str(e), details={"operation": "commit"}) from e
        except Exception:
            await self.db.rollback()
            logger.warning("unit_of_work_rolled_back")
            raise
