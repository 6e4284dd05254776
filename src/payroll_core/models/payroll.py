"""Payroll record, batch, and audit models."""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_core.models.base import AuditedMixin, Base, TimestampMixin
from payroll_core.money import Money, MoneyType

if TYPE_CHECKING:
    from payroll_core.models.employee import Employee

# JSONB on PostgreSQL, plain JSON elsewhere
JsonDocument = JSON().with_variant(JSONB(), "postgresql")

_STATUS_CHECK = (
    "status IN ('DRAFT', 'PENDING_APPROVAL', 'APPROVED', 'PROCESSING', "
    "'PAID', 'FAILED', 'CANCELLED')"
)
_ACTIVE_RECORD = "status NOT IN ('CANCELLED', 'FAILED')"


class PayrollBatch(Base, AuditedMixin):
    """A named group of payroll records processed together."""

    __tablename__ = "payroll_batch"

    payroll_batch_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    business_account_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    # Totals over member records at creation time
    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross_amount: Mapped[Money] = mapped_column(MoneyType, nullable=False)
    total_deductions: Mapped[Money] = mapped_column(MoneyType, nullable=False)
    total_net_amount: Mapped[Money] = mapped_column(MoneyType, nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source_sub_account_id: Mapped[UUID | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(_STATUS_CHECK, name="payroll_batch_status_check"),
        CheckConstraint("period_end > period_start", name="payroll_batch_dates_check"),
        Index("ix_payroll_batch_tenant_account", "tenant_id", "business_account_id"),
    )

    # Relationships
    records: Mapped[list[PayrollRecord]] = relationship(
        lazy="selectin",
        order_by="PayrollRecord.created_at",
    )

    @property
    def records_by_status(self) -> dict[str, int]:
        """Count member records per status."""
        return dict(Counter(r.status for r in self.records))


class PayrollRecord(Base, AuditedMixin):
    """One employee's payroll obligation for one pay period."""

    __tablename__ = "payroll_record"

    payroll_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id"),
        nullable=False,
    )
    payroll_batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_batch.payroll_batch_id"),
        nullable=True,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    gross_amount: Mapped[Money] = mapped_column(MoneyType, nullable=False)
    deductions: Mapped[Money] = mapped_column(MoneyType, nullable=False)
    bonuses: Mapped[Money] = mapped_column(MoneyType, nullable=False)
    net_amount: Mapped[Money] = mapped_column(MoneyType, nullable=False)
    deduction_breakdown: Mapped[dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)
    bonus_breakdown: Mapped[dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(_STATUS_CHECK, name="payroll_record_status_check"),
        CheckConstraint("period_end > period_start", name="payroll_record_dates_check"),
        # At most one active record per employee and period
        Index(
            "uq_payroll_record_active_period",
            "tenant_id",
            "employee_id",
            "period_start",
            "period_end",
            unique=True,
            postgresql_where=text(_ACTIVE_RECORD),
            sqlite_where=text(_ACTIVE_RECORD),
        ),
        Index("ix_payroll_record_batch", "payroll_batch_id"),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(lazy="selectin")


class AuditEvent(Base, TimestampMixin):
    """Audit trail entry."""

    __tablename__ = "audit_event"

    audit_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)

    __table_args__ = (
        Index("ix_audit_event_entity", "entity_type", "entity_id"),
    )
