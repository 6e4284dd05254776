"""Employee directory lookups used by payroll."""

from __future__ import annotations

from typing import Protocol, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.models import Employee


class EmployeeDirectory(Protocol):
    """Read-only view of the employee directory."""

    async def get_employee(self, tenant_id: UUID, employee_id: UUID) -> Employee | None:
        """Look up one employee by (tenant, id)."""
        ...

    async def list_eligible(
        self,
        tenant_id: UUID,
        business_account_id: UUID,
        employee_ids: Sequence[UUID] | None = None,
    ) -> list[Employee]:
        """List employees eligible for batch payroll."""
        ...


class SqlEmployeeDirectory:
    """EmployeeDirectory backed by the ``employee`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_employee(self, tenant_id: UUID, employee_id: UUID) -> Employee | None:
        result = await self.session.execute(
            select(Employee).where(
                Employee.tenant_id == tenant_id,
                Employee.employee_id == employee_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_eligible(
        self,
        tenant_id: UUID,
        business_account_id: UUID,
        employee_ids: Sequence[UUID] | None = None,
    ) -> list[Employee]:
        """Active employees with no end date and a salary configured.

        An empty ``employee_ids`` behaves like None (no restriction).
        """
        stmt = select(Employee).where(
            Employee.tenant_id == tenant_id,
            Employee.business_account_id == business_account_id,
            Employee.is_active.is_(True),
            Employee.end_date.is_(None),
            Employee.salary_amount.is_not(None),
        )
        if employee_ids:
            stmt = stmt.where(Employee.employee_id.in_(list(employee_ids)))

        result = await self.session.execute(
            stmt.order_by(Employee.last_name, Employee.first_name)
        )
        return list(result.scalars().all())
