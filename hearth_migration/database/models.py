"""
SQLAlchemy models for the dual-write migration tables.

`system_configs` holds the feature flag row (one JSON value per key).
`dual_write_diffs` is the append-only log of store comparisons.
`budgets` / `spendings` are the legacy-store tables behind the budget repository.
"""

from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from hearth_migration.database.base import Base


def generate_uuid() -> uuid.UUID:
    return uuid.uuid4()


class SystemConfig(Base):
    """Key/value runtime configuration row."""

    __tablename__ = "system_configs"

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class DualWriteDiff(Base):
    """One comparison between store A and store B results."""

    __tablename__ = "dual_write_diffs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=generate_uuid)
    api_endpoint = Column(String(255), nullable=False)
    operation = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=True)
    request_id = Column(String(255), nullable=True)
    result_a = Column(JSON, nullable=True)
    result_b = Column(JSON, nullable=True)
    diff = Column(JSON, nullable=False, default=list)
    severity = Column(String(16), nullable=False)  # info, warning, error
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_dual_write_diffs_severity_created", "severity", "created_at"),
        Index("ix_dual_write_diffs_operation", "api_endpoint", "operation"),
    )


class Budget(Base):
    """Legacy-store budget row."""

    __tablename__ = "budgets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=generate_uuid)
    member_id = Column(String(255), nullable=False, index=True)
    period = Column(String(32), nullable=False)  # weekly, monthly, custom
    total_amount = Column(Numeric(12, 2), nullable=False)
    used_amount = Column(Numeric(12, 2), nullable=False, default=0)
    remaining_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(32), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class Spending(Base):
    """Legacy-store spending row."""

    __tablename__ = "spendings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=generate_uuid)
    budget_id = Column(UUID(as_uuid=True), ForeignKey("budgets.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    category = Column(String(64), nullable=False)
    description = Column(Text, nullable=True)
    purchase_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)


__all__ = ["SystemConfig", "DualWriteDiff", "Budget", "Spending"]
