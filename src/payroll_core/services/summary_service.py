"""Payroll summary aggregation for a business account."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.config import get_settings
from payroll_core.models import Employee, PayrollRecord
from payroll_core.money import Money
from payroll_core.schemas import DepartmentTotal, MonthlyTotal, PayrollSummary
from payroll_core.services.state_machine import PayrollRecordStateMachine, PayrollStatus


class PayrollSummaryService:
    """Read-only totals over paid and pending payroll records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_summary(
        self,
        tenant_id: UUID,
        business_account_id: UUID,
        year: int,
    ) -> PayrollSummary:
        """Summarize a year of paid payroll plus everything still pending.

        Paid records are bucketed by month of ``paid_at`` (0 = January) and
        by employee department. Pending covers DRAFT, PENDING_APPROVAL and
        APPROVED records regardless of year.
        """
        unassigned = get_settings().unassigned_department
        start = datetime(year, 1, 1, tzinfo=timezone.utc)
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)

        paid_rows = await self.session.execute(
            select(PayrollRecord.net_amount, PayrollRecord.paid_at, Employee.department)
            .join(Employee, Employee.employee_id == PayrollRecord.employee_id)
            .where(
                PayrollRecord.tenant_id == tenant_id,
                Employee.business_account_id == business_account_id,
                PayrollRecord.status == PayrollStatus.PAID.value,
                PayrollRecord.paid_at >= start,
                PayrollRecord.paid_at < end,
            )
        )

        total_paid = Money.zero()
        by_month: dict[int, Money] = defaultdict(Money.zero)
        by_department: dict[str, Money] = defaultdict(Money.zero)

        for amount, paid_at, department in paid_rows:
            total_paid = total_paid + amount
            by_month[paid_at.month - 1] = by_month[paid_at.month - 1] + amount
            dept = department or unassigned
            by_department[dept] = by_department[dept] + amount

        pending_rows = await self.session.execute(
            select(PayrollRecord.net_amount)
            .join(Employee, Employee.employee_id == PayrollRecord.employee_id)
            .where(
                PayrollRecord.tenant_id == tenant_id,
                Employee.business_account_id == business_account_id,
                PayrollRecord.status.in_(
                    [s.value for s in PayrollRecordStateMachine.PENDING]
                ),
            )
        )
        total_pending = Money.total(pending_rows.scalars())

        return PayrollSummary(
            year=year,
            total_paid=total_paid,
            total_pending=total_pending,
            by_month=[MonthlyTotal(month=m, amount=a) for m, a in sorted(by_month.items())],
            by_department=[
                DepartmentTotal(department=d, amount=a)
                for d, a in sorted(by_department.items())
            ],
        )
