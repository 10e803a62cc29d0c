"""
Raw fact models: accounts, resources, usage samples and daily cost records.

The analytics core only reads these tables. Ingestion and administration
live outside this package.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import String, Integer, Float, ForeignKey, Numeric, Date, DateTime, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from costscope.shared.db.base import Base, utcnow


class AccountStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class ResourceCategory(str, Enum):
    COMPUTE = "compute"
    STORAGE = "storage"
    NETWORK = "network"
    DATABASE = "database"
    OTHER = "other"


class ResourceStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class CloudAccount(Base):
    __tablename__ = "cloud_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    provider: Mapped[str] = mapped_column(String, index=True)  # 'aws', 'azure', 'gcp'
    account_number: Mapped[str] = mapped_column(String)         # provider-side account id
    region: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str] = mapped_column(String, default="")

    # Budget (DECIMAL for money!)
    monthly_budget: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    alert_threshold_percent: Mapped[int] = mapped_column(Integer, default=80)

    status: Mapped[str] = mapped_column(String, default=AccountStatus.ACTIVE.value)

    resources: Mapped[list["Resource"]] = relationship(back_populates="account")
    cost_records: Mapped[list["CostRecord"]] = relationship(back_populates="account")


class Resource(Base):
    __tablename__ = "resources"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("cloud_accounts.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String, default="")
    resource_type: Mapped[str] = mapped_column(String)  # e.g., "ec2", "ebs", "rds"
    category: Mapped[str] = mapped_column(String, default=ResourceCategory.OTHER.value, index=True)
    cost_per_hour: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal("0"))

    status: Mapped[str] = mapped_column(String, default=ResourceStatus.RUNNING.value, index=True)
    # When the current status began; "stopped for N days" is measured from here
    status_changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Provisioned capacity, used to judge over-provisioning
    vcpus: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Owning workload / attachment; None means nothing references the resource
    workload_ref: Mapped[str | None] = mapped_column(String, nullable=True)

    account: Mapped["CloudAccount"] = relationship(back_populates="resources")


class UsageSample(Base):
    __tablename__ = "usage_samples"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    resource_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("resources.id"), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    cpu_usage: Mapped[float] = mapped_column(Float, default=0.0)      # percent
    memory_usage: Mapped[float] = mapped_column(Float, default=0.0)   # percent
    disk_usage: Mapped[float] = mapped_column(Float, default=0.0)     # percent
    network_in: Mapped[float] = mapped_column(Float, default=0.0)
    network_out: Mapped[float] = mapped_column(Float, default=0.0)
    request_count: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index("ix_usage_samples_resource_ts", "resource_id", "timestamp"),
    )


class CostRecord(Base):
    __tablename__ = "cost_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("cloud_accounts.id"), nullable=False, index=True)

    record_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    category: Mapped[str] = mapped_column(String, default=ResourceCategory.OTHER.value, index=True)
    service: Mapped[str] = mapped_column(String, index=True)  # e.g., "AmazonEC2"

    cost: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    currency: Mapped[str] = mapped_column(String, default="USD")
    usage_quantity: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    usage_unit: Mapped[str | None] = mapped_column(String, nullable=True)

    account: Mapped["CloudAccount"] = relationship(back_populates="cost_records")
