"""Payroll batch service - batch creation and batch-wide approval flow."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.config import get_settings
from payroll_core.database import transaction
from payroll_core.errors import (
    DuplicateRecordError,
    InvalidStateError,
    NoEligibleEmployeesError,
    NotFoundError,
)
from payroll_core.models import PayrollBatch, PayrollRecord, utcnow
from payroll_core.money import Money
from payroll_core.schemas import BatchPage, PayrollBatchCreate
from payroll_core.services.audit import record_audit, status_change
from payroll_core.services.directory import EmployeeDirectory, SqlEmployeeDirectory
from payroll_core.services.record_service import PayrollRecordService
from payroll_core.services.state_machine import (
    BatchAction,
    PayrollBatchStateMachine,
    PayrollStatus,
)

logger = logging.getLogger(__name__)

ENTITY_TYPE = "payroll_batch"


class PayrollBatchService:
    """Service for managing payroll batches.

    Creation, submission and approval each run as a single unit of work:
    the batch header and its member records move together or not at all.
    """

    def __init__(
        self,
        session: AsyncSession,
        directory: EmployeeDirectory | None = None,
    ):
        self.session = session
        self.directory = directory or SqlEmployeeDirectory(session)
        self.records = PayrollRecordService(session, self.directory)

    async def find_batch(self, tenant_id: UUID, batch_id: UUID) -> PayrollBatch | None:
        """Load a batch with its records, refreshing any cached copies."""
        result = await self.session.execute(
            select(PayrollBatch)
            .where(
                PayrollBatch.tenant_id == tenant_id,
                PayrollBatch.payroll_batch_id == batch_id,
            )
            .execution_options(populate_existing=True)
        )
        batch = result.scalar_one_or_none()
        if batch is not None:
            batch.records.sort(key=_employee_sort_key)
        return batch

    async def get_batch(self, tenant_id: UUID, batch_id: UUID) -> PayrollBatch:
        """Get a batch with records ordered by employee last/first name."""
        batch = await self.find_batch(tenant_id, batch_id)
        if batch is None:
            raise NotFoundError(ENTITY_TYPE, batch_id)
        return batch

    async def list_batches(
        self,
        tenant_id: UUID,
        business_account_id: UUID,
        *,
        status: PayrollStatus | None = None,
        year: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> BatchPage:
        """Page through a business account's batches, newest period first."""
        conditions = [
            PayrollBatch.tenant_id == tenant_id,
            PayrollBatch.business_account_id == business_account_id,
        ]
        if status is not None:
            conditions.append(PayrollBatch.status == PayrollStatus(status).value)
        if year is not None:
            conditions.append(PayrollBatch.period_start >= date(year, 1, 1))
            conditions.append(PayrollBatch.period_start < date(year + 1, 1, 1))

        if limit is None:
            limit = get_settings().batch_page_size

        result = await self.session.execute(
            select(PayrollBatch)
            .where(*conditions)
            .order_by(PayrollBatch.period_start.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        total = await self.session.scalar(
            select(func.count()).select_from(PayrollBatch).where(*conditions)
        )
        return BatchPage(batches=list(result.scalars().all()), total=total or 0)

    async def create_batch(self, data: PayrollBatchCreate) -> PayrollBatch:
        """Create a DRAFT batch with one DRAFT record per eligible employee.

        Eligible employees are active, have no end date and have a salary
        configured, optionally restricted to ``data.employee_ids``.

        Raises:
            NoEligibleEmployeesError: nobody is eligible
            DuplicateRecordError: an eligible employee already has an active
                record for the period (nothing is created)
        """
        async with transaction(self.session):
            employees = await self.directory.list_eligible(
                data.tenant_id, data.business_account_id, data.employee_ids
            )
            if not employees:
                raise NoEligibleEmployeesError()

            duplicates = await self.records.find_active_duplicates(
                data.tenant_id,
                [e.employee_id for e in employees],
                data.period_start,
                data.period_end,
            )
            if duplicates:
                raise DuplicateRecordError(
                    duplicates,
                    f"{len(duplicates)} employee(s) already have a payroll record "
                    "for this period",
                )

            total_gross = Money.total(e.salary_amount for e in employees)

            batch = PayrollBatch(
                tenant_id=data.tenant_id,
                business_account_id=data.business_account_id,
                name=data.name,
                period_start=data.period_start,
                period_end=data.period_end,
                total_employees=len(employees),
                total_gross_amount=total_gross,
                total_deductions=Money.zero(),
                total_net_amount=total_gross,
                status=PayrollStatus.DRAFT.value,
                source_sub_account_id=data.source_sub_account_id,
                notes=data.notes,
                created_by_id=data.created_by_id,
            )
            self.session.add(batch)
            await self.session.flush()

            for employee in employees:
                gross = employee.salary_amount
                self.session.add(
                    PayrollRecord(
                        tenant_id=data.tenant_id,
                        employee_id=employee.employee_id,
                        payroll_batch_id=batch.payroll_batch_id,
                        period_start=data.period_start,
                        period_end=data.period_end,
                        gross_amount=gross,
                        deductions=Money.zero(),
                        bonuses=Money.zero(),
                        net_amount=gross,
                        status=PayrollStatus.DRAFT.value,
                        created_by_id=data.created_by_id,
                    )
                )
            try:
                await self.session.flush()
            except IntegrityError as exc:
                raise DuplicateRecordError([e.employee_id for e in employees]) from exc

            await record_audit(
                self.session,
                tenant_id=data.tenant_id,
                entity_type=ENTITY_TYPE,
                entity_id=batch.payroll_batch_id,
                action="created",
                actor_id=data.created_by_id,
                details={
                    "total_employees": len(employees),
                    "total_gross_amount": str(total_gross),
                },
            )
            batch_id = batch.payroll_batch_id

        logger.info(
            "Created payroll batch %s with %d employee(s), gross %s",
            batch_id,
            len(employees),
            total_gross,
        )
        return await self.get_batch(data.tenant_id, batch_id)

    async def submit_batch(
        self, tenant_id: UUID, batch_id: UUID, actor_id: UUID | None = None
    ) -> PayrollBatch:
        """Submit a DRAFT batch and its DRAFT records for approval."""
        async with transaction(self.session):
            advanced = await self._advance(tenant_id, batch_id, BatchAction.SUBMIT, actor_id)

        logger.info("Submitted payroll batch %s (%d record(s))", batch_id, advanced)
        return await self.get_batch(tenant_id, batch_id)

    async def approve_batch(
        self, tenant_id: UUID, batch_id: UUID, approved_by_id: UUID
    ) -> PayrollBatch:
        """Approve a pending batch and its pending records with one approver stamp."""
        now = utcnow()
        stamp = {"approved_by_id": approved_by_id, "approved_at": now}

        async with transaction(self.session):
            advanced = await self._advance(
                tenant_id, batch_id, BatchAction.APPROVE, approved_by_id, **stamp
            )

        logger.info("Approved payroll batch %s (%d record(s))", batch_id, advanced)
        return await self.get_batch(tenant_id, batch_id)

    async def transition(
        self,
        tenant_id: UUID,
        batch_id: UUID,
        action: BatchAction,
        actor_id: UUID | None = None,
        **values: Any,
    ) -> str:
        """Apply a batch action to the header only; the caller owns the unit of work."""
        batch = await self.get_batch(tenant_id, batch_id)
        from_status = batch.status
        to_status = PayrollBatchStateMachine.next_status(action, from_status)
        allowed = [s.value for s in PayrollBatchStateMachine.allowed_from(action)]

        result = await self.session.execute(
            update(PayrollBatch)
            .where(
                PayrollBatch.tenant_id == tenant_id,
                PayrollBatch.payroll_batch_id == batch_id,
                PayrollBatch.status.in_(allowed),
            )
            .values(status=to_status.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidStateError(
                PayrollBatchStateMachine.ENTITY,
                action.value,
                from_status,
                "status changed concurrently",
            )

        await record_audit(
            self.session,
            tenant_id=tenant_id,
            entity_type=ENTITY_TYPE,
            entity_id=batch_id,
            action=status_change(from_status, to_status),
            actor_id=actor_id,
        )
        return to_status.value

    async def _advance(
        self,
        tenant_id: UUID,
        batch_id: UUID,
        action: BatchAction,
        actor_id: UUID | None,
        **stamp: Any,
    ) -> int:
        """Move the batch and its matching member records together."""
        await self.transition(tenant_id, batch_id, action, actor_id, **stamp)
        return await self._advance_member_records(tenant_id, batch_id, action, **stamp)

    async def _advance_member_records(
        self,
        tenant_id: UUID,
        batch_id: UUID,
        action: BatchAction,
        **stamp: Any,
    ) -> int:
        from_status, to_status = PayrollBatchStateMachine.MEMBER_TRANSITIONS[action]
        result = await self.session.execute(
            update(PayrollRecord)
            .where(
                PayrollRecord.tenant_id == tenant_id,
                PayrollRecord.payroll_batch_id == batch_id,
                PayrollRecord.status == from_status.value,
            )
            .values(status=to_status.value, updated_at=utcnow(), **stamp)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


def _employee_sort_key(record: PayrollRecord) -> tuple[str, str]:
    employee = record.employee
    if employee is None:
        return ("", "")
    return (employee.last_name, employee.first_name)
