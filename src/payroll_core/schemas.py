"""Pydantic input schemas and result types for payroll operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from payroll_core.money import Money

# ============================================================================
# Inputs
# ============================================================================


Amount = Decimal
Breakdown = dict[str, Decimal]


class _PeriodMixin(BaseModel):
    period_start: date
    period_end: date

    @model_validator(mode="after")
    def _check_period(self):
        if self.period_end <= self.period_start:
            raise ValueError("period_end must be after period_start")
        return self


class PayrollRecordCreate(_PeriodMixin):
    """Schema for creating a single payroll record."""

    model_config = ConfigDict(frozen=True)

    tenant_id: UUID
    employee_id: UUID
    payroll_batch_id: UUID | None = None
    gross_amount: Amount = Field(ge=0)
    deductions: Amount = Field(default=Decimal("0"), ge=0)
    bonuses: Amount = Field(default=Decimal("0"), ge=0)
    deduction_breakdown: Breakdown | None = None
    bonus_breakdown: Breakdown | None = None
    notes: str | None = None
    created_by_id: UUID


class PayrollRecordUpdate(BaseModel):
    """Schema for updating a draft or pending record.

    Only fields that were explicitly set are applied.
    """

    gross_amount: Amount | None = Field(default=None, ge=0)
    deductions: Amount | None = Field(default=None, ge=0)
    bonuses: Amount | None = Field(default=None, ge=0)
    deduction_breakdown: Breakdown | None = None
    bonus_breakdown: Breakdown | None = None
    notes: str | None = None

    @field_validator("gross_amount", "deductions", "bonuses")
    @classmethod
    def _not_null(cls, value: Decimal | None) -> Decimal | None:
        if value is None:
            raise ValueError("amount cannot be null")
        return value


class PayrollBatchCreate(_PeriodMixin):
    """Schema for creating a payroll batch."""

    model_config = ConfigDict(frozen=True)

    tenant_id: UUID
    business_account_id: UUID
    name: str = Field(min_length=1)
    source_sub_account_id: UUID | None = None
    notes: str | None = None
    created_by_id: UUID
    employee_ids: list[UUID] | None = None


def breakdown_to_json(breakdown: Breakdown | None) -> dict[str, str] | None:
    """Normalize a category→amount map for JSON storage."""
    if breakdown is None:
        return None
    return {category: str(Money.of(amount)) for category, amount in breakdown.items()}


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class RecordPage:
    """A page of payroll records plus the unpaginated total."""

    records: list[Any]
    total: int


@dataclass(frozen=True)
class BatchPage:
    """A page of payroll batches plus the unpaginated total."""

    batches: list[Any]
    total: int


@dataclass(frozen=True)
class PaymentOutcome:
    """Result of attempting one record's payment in a batch run."""

    record_id: UUID
    employee_id: UUID
    status: str
    transaction_id: str | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchPaymentResult:
    """Result of a batch payment run."""

    batch_id: UUID
    status: str
    successful: int
    failed: int
    outcomes: list[PaymentOutcome] = field(default_factory=list)


@dataclass(frozen=True)
class MonthlyTotal:
    month: int  # 0 = January
    amount: Money


@dataclass(frozen=True)
class DepartmentTotal:
    department: str
    amount: Money


@dataclass(frozen=True)
class PayrollSummary:
    """Paid and pending payroll totals for a business account and year."""

    year: int
    total_paid: Money
    total_pending: Money
    by_month: list[MonthlyTotal]
    by_department: list[DepartmentTotal]
