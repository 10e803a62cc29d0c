import os
# Configure settings BEFORE any costscope imports
os.environ["ENVIRONMENT"] = "development"
os.environ["TESTING"] = "True"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure all models are registered in the metadata
from costscope.models.cloud import CloudAccount, Resource, UsageSample, CostRecord
from costscope.models.findings import WasteFinding, IdleFinding, CostPrediction, BudgetAlert  # noqa: F401
from costscope.shared.core.config import Settings
from costscope.shared.db.base import Base
from costscope.shared.db.store import SQLAlchemyTimeSeriesStore

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    return Settings(TESTING=True, DATABASE_URL="sqlite+aiosqlite:///:memory:")


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(test_engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()
        await test_engine.dispose()


@pytest.fixture
def store(db: AsyncSession) -> SQLAlchemyTimeSeriesStore:
    return SQLAlchemyTimeSeriesStore(db)


@pytest.fixture
def seed(db: AsyncSession):
    """Helpers for inserting raw facts."""

    class Seeder:
        async def account(self, **kwargs) -> CloudAccount:
            values = dict(id=uuid4(), provider="aws", account_number="123456789012", name="Test AWS")
            values.update(kwargs)
            account = CloudAccount(**values)
            db.add(account)
            await db.flush()
            return account

        async def resource(self, account: CloudAccount, **kwargs) -> Resource:
            values = dict(
                id=uuid4(),
                account_id=account.id,
                name="i-test",
                resource_type="ec2",
                category="compute",
                cost_per_hour=Decimal("0.10"),
                status="running",
                status_changed_at=NOW - timedelta(days=90),
                workload_ref="web",
            )
            values.update(kwargs)
            resource = Resource(**values)
            db.add(resource)
            await db.flush()
            return resource

        async def samples(self, resource: Resource, count: int, hours_apart: int = 1, end=None, **kwargs):
            """`count` samples ending at `end` (default NOW), spaced `hours_apart`."""
            end = end or NOW
            values = dict(cpu_usage=50.0, memory_usage=50.0, disk_usage=10.0,
                          network_in=100.0, network_out=100.0, request_count=10)
            values.update(kwargs)
            for i in range(count):
                db.add(UsageSample(
                    resource_id=resource.id,
                    timestamp=end - timedelta(hours=i * hours_apart),
                    **values
                ))
            await db.flush()

        async def cost(self, account: CloudAccount, record_date, cost, **kwargs) -> CostRecord:
            values = dict(
                account_id=account.id,
                record_date=record_date,
                category="compute",
                service="AmazonEC2",
                cost=Decimal(str(cost)),
                currency="USD",
            )
            values.update(kwargs)
            record = CostRecord(**values)
            db.add(record)
            await db.flush()
            return record

        async def commit(self):
            await db.commit()

    return Seeder()
