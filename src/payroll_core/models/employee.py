"""Employee directory model."""

from __future__ import annotations

from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_core.models.base import Base, TimestampMixin
from payroll_core.money import Money, MoneyType


class Employee(Base, TimestampMixin):
    """Employee of a business account.

    Only the attributes payroll needs: activity, salary, department and the
    payment destinations (internal wallet or external account).
    """

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    business_account_id: Mapped[UUID] = mapped_column(nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    employee_number: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    department: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    salary_amount: Mapped[Money | None] = mapped_column(MoneyType, nullable=True)
    wallet_id: Mapped[str | None] = mapped_column(String, nullable=True)
    external_account: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("ix_employee_tenant_business", "tenant_id", "business_account_id"),
    )

    @property
    def has_payment_destination(self) -> bool:
        return bool(self.wallet_id or self.external_account)
