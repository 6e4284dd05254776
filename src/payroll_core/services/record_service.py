"""Payroll record service - lifecycle of a single payroll record."""

from __future__ import annotations

import logging
from datetime import date, datetime
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
    MissingPaymentDestinationError,
    NotFoundError,
)
from payroll_core.models import PayrollBatch, PayrollRecord, utcnow
from payroll_core.money import Money, net_amount
from payroll_core.schemas import (
    PayrollRecordCreate,
    PayrollRecordUpdate,
    RecordPage,
    breakdown_to_json,
)
from payroll_core.services.audit import record_audit, status_change
from payroll_core.services.directory import EmployeeDirectory, SqlEmployeeDirectory
from payroll_core.services.state_machine import (
    PayrollRecordStateMachine,
    PayrollStatus,
    RecordAction,
)

logger = logging.getLogger(__name__)

ENTITY_TYPE = "payroll_record"


class PayrollRecordService:
    """Service for managing payroll record lifecycle.

    Operations:
    - create_record: DRAFT record with derived net amount
    - update_record: change amounts/breakdowns/notes, recomputing net
    - submit_for_approval: DRAFT → PENDING_APPROVAL
    - approve_record: PENDING_APPROVAL → APPROVED
    - process_payment: APPROVED → PAID with an externally obtained transaction id
    - mark_failed: APPROVED/PROCESSING → FAILED
    - cancel_record: anything but PAID/CANCELLED → CANCELLED

    Every public mutation is its own unit of work. Status changes are
    conditional updates keyed by (tenant, record id, current status) so two
    callers can never both advance the same record.
    """

    def __init__(
        self,
        session: AsyncSession,
        directory: EmployeeDirectory | None = None,
    ):
        self.session = session
        self.directory = directory or SqlEmployeeDirectory(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_record(self, tenant_id: UUID, record_id: UUID) -> PayrollRecord | None:
        """Load a record (with its employee), refreshing any cached copy."""
        result = await self.session.execute(
            select(PayrollRecord)
            .where(
                PayrollRecord.tenant_id == tenant_id,
                PayrollRecord.payroll_record_id == record_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_record(self, tenant_id: UUID, record_id: UUID) -> PayrollRecord:
        record = await self.find_record(tenant_id, record_id)
        if record is None:
            raise NotFoundError(ENTITY_TYPE, record_id)
        return record

    async def list_employee_records(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        *,
        status: PayrollStatus | None = None,
        year: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> RecordPage:
        """Page through an employee's records, newest period first."""
        conditions = [
            PayrollRecord.tenant_id == tenant_id,
            PayrollRecord.employee_id == employee_id,
        ]
        if status is not None:
            conditions.append(PayrollRecord.status == PayrollStatus(status).value)
        if year is not None:
            conditions.append(PayrollRecord.period_start >= date(year, 1, 1))
            conditions.append(PayrollRecord.period_start < date(year + 1, 1, 1))

        if limit is None:
            limit = get_settings().record_page_size

        result = await self.session.execute(
            select(PayrollRecord)
            .where(*conditions)
            .order_by(PayrollRecord.period_start.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        total = await self.session.scalar(
            select(func.count()).select_from(PayrollRecord).where(*conditions)
        )
        return RecordPage(records=list(result.scalars().all()), total=total or 0)

    async def find_active_duplicates(
        self,
        tenant_id: UUID,
        employee_ids: list[UUID],
        period_start: date,
        period_end: date,
    ) -> list[UUID]:
        """Employees that already hold an active record for the period."""
        if not employee_ids:
            return []
        result = await self.session.execute(
            select(PayrollRecord.employee_id).where(
                PayrollRecord.tenant_id == tenant_id,
                PayrollRecord.employee_id.in_(employee_ids),
                PayrollRecord.period_start == period_start,
                PayrollRecord.period_end == period_end,
                PayrollRecord.status.not_in(
                    [s.value for s in PayrollRecordStateMachine.INACTIVE]
                ),
            )
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_record(self, data: PayrollRecordCreate) -> PayrollRecord:
        """Create a DRAFT payroll record for an active employee.

        Raises:
            NotFoundError: employee missing/inactive, or unknown batch
            DuplicateRecordError: an active record exists for the period
        """
        async with transaction(self.session):
            employee = await self.directory.get_employee(data.tenant_id, data.employee_id)
            if employee is None or not employee.is_active:
                raise NotFoundError("employee", data.employee_id, "not found or inactive")

            if data.payroll_batch_id is not None:
                batch = await self.session.scalar(
                    select(PayrollBatch.payroll_batch_id).where(
                        PayrollBatch.tenant_id == data.tenant_id,
                        PayrollBatch.payroll_batch_id == data.payroll_batch_id,
                    )
                )
                if batch is None:
                    raise NotFoundError("payroll_batch", data.payroll_batch_id)

            duplicates = await self.find_active_duplicates(
                data.tenant_id, [data.employee_id], data.period_start, data.period_end
            )
            if duplicates:
                raise DuplicateRecordError(duplicates)

            gross = Money.of(data.gross_amount)
            deductions = Money.of(data.deductions)
            bonuses = Money.of(data.bonuses)

            record = PayrollRecord(
                tenant_id=data.tenant_id,
                employee_id=data.employee_id,
                payroll_batch_id=data.payroll_batch_id,
                period_start=data.period_start,
                period_end=data.period_end,
                gross_amount=gross,
                deductions=deductions,
                bonuses=bonuses,
                net_amount=net_amount(gross, deductions, bonuses),
                deduction_breakdown=breakdown_to_json(data.deduction_breakdown),
                bonus_breakdown=breakdown_to_json(data.bonus_breakdown),
                status=PayrollStatus.DRAFT.value,
                notes=data.notes,
                created_by_id=data.created_by_id,
            )
            self.session.add(record)
            try:
                await self.session.flush()
            except IntegrityError as exc:
                # Lost a race with a concurrent create for the same period
                raise DuplicateRecordError([data.employee_id]) from exc

            await record_audit(
                self.session,
                tenant_id=record.tenant_id,
                entity_type=ENTITY_TYPE,
                entity_id=record.payroll_record_id,
                action="created",
                actor_id=data.created_by_id,
                details={"net_amount": str(record.net_amount)},
            )
            record_id = record.payroll_record_id

        logger.debug("Created payroll record %s for employee %s", record_id, data.employee_id)
        return await self.get_record(data.tenant_id, record_id)

    async def update_record(
        self,
        tenant_id: UUID,
        record_id: UUID,
        data: PayrollRecordUpdate,
        actor_id: UUID | None = None,
    ) -> PayrollRecord:
        """Update amounts, breakdowns or notes, recomputing net atomically."""
        changes = data.model_dump(exclude_unset=True)

        async with transaction(self.session):
            record = await self.get_record(tenant_id, record_id)
            PayrollRecordStateMachine.validate(RecordAction.UPDATE, record.status)

            gross = Money.of(changes.get("gross_amount", record.gross_amount))
            deductions = Money.of(changes.get("deductions", record.deductions))
            bonuses = Money.of(changes.get("bonuses", record.bonuses))

            values: dict[str, Any] = {
                "gross_amount": gross,
                "deductions": deductions,
                "bonuses": bonuses,
                "net_amount": net_amount(gross, deductions, bonuses),
            }
            if "deduction_breakdown" in changes:
                values["deduction_breakdown"] = breakdown_to_json(data.deduction_breakdown)
            if "bonus_breakdown" in changes:
                values["bonus_breakdown"] = breakdown_to_json(data.bonus_breakdown)
            if "notes" in changes:
                values["notes"] = data.notes

            await self._conditional_update(
                record, RecordAction.UPDATE, **values
            )
            await record_audit(
                self.session,
                tenant_id=tenant_id,
                entity_type=ENTITY_TYPE,
                entity_id=record_id,
                action="updated",
                actor_id=actor_id,
                details={"fields": sorted(changes), "net_amount": str(values["net_amount"])},
            )

        return await self.get_record(tenant_id, record_id)

    async def submit_for_approval(
        self, tenant_id: UUID, record_id: UUID, actor_id: UUID | None = None
    ) -> PayrollRecord:
        async with transaction(self.session):
            await self.transition(tenant_id, record_id, RecordAction.SUBMIT, actor_id=actor_id)
        return await self.get_record(tenant_id, record_id)

    async def approve_record(
        self, tenant_id: UUID, record_id: UUID, approved_by_id: UUID
    ) -> PayrollRecord:
        """Approve a pending record, stamping approver and time."""
        async with transaction(self.session):
            await self.transition(
                tenant_id,
                record_id,
                RecordAction.APPROVE,
                actor_id=approved_by_id,
                approved_by_id=approved_by_id,
                approved_at=utcnow(),
            )
        return await self.get_record(tenant_id, record_id)

    async def process_payment(
        self,
        tenant_id: UUID,
        record_id: UUID,
        transaction_id: str,
        actor_id: UUID | None = None,
    ) -> PayrollRecord:
        """Mark an approved record paid with an externally obtained transaction id.

        The employee must have a wallet or an external account configured.
        """
        async with transaction(self.session):
            record = await self.get_record(tenant_id, record_id)
            PayrollRecordStateMachine.validate(RecordAction.PAY, record.status)

            employee = await self.directory.get_employee(tenant_id, record.employee_id)
            if employee is None or not employee.has_payment_destination:
                raise MissingPaymentDestinationError(record.employee_id)

            await self.transition(
                tenant_id,
                record_id,
                RecordAction.PAY,
                actor_id=actor_id,
                transaction_id=transaction_id,
                paid_at=utcnow(),
            )
        return await self.get_record(tenant_id, record_id)

    async def mark_failed(
        self,
        tenant_id: UUID,
        record_id: UUID,
        failure_reason: str,
        actor_id: UUID | None = None,
    ) -> PayrollRecord:
        async with transaction(self.session):
            await self.transition(
                tenant_id,
                record_id,
                RecordAction.FAIL,
                actor_id=actor_id,
                failure_reason=failure_reason,
            )
        return await self.get_record(tenant_id, record_id)

    async def cancel_record(
        self, tenant_id: UUID, record_id: UUID, actor_id: UUID | None = None
    ) -> PayrollRecord:
        async with transaction(self.session):
            await self.transition(tenant_id, record_id, RecordAction.CANCEL, actor_id=actor_id)
        return await self.get_record(tenant_id, record_id)

    # ------------------------------------------------------------------
    # Transition primitive (caller owns the unit of work)
    # ------------------------------------------------------------------

    async def transition(
        self,
        tenant_id: UUID,
        record_id: UUID,
        action: RecordAction,
        actor_id: UUID | None = None,
        **values: Any,
    ) -> str:
        """Apply a state machine action to a record and return the new status.

        Does not commit; the caller decides the unit of work.

        Raises:
            NotFoundError: record does not exist for the tenant
            InvalidStateError: action not allowed from the current status, or
                the record changed status underneath us
        """
        record = await self.get_record(tenant_id, record_id)
        from_status = record.status
        to_status = PayrollRecordStateMachine.next_status(action, from_status)

        await self._conditional_update(
            record, action, status=to_status.value, **values
        )
        await record_audit(
            self.session,
            tenant_id=tenant_id,
            entity_type=ENTITY_TYPE,
            entity_id=record_id,
            action=status_change(from_status, to_status),
            actor_id=actor_id,
            details=_audit_details(values),
        )
        logger.debug("Payroll record %s: %s → %s", record_id, from_status, to_status.value)
        return to_status.value

    async def _conditional_update(
        self, record: PayrollRecord, action: RecordAction, **values: Any
    ) -> None:
        allowed = [s.value for s in PayrollRecordStateMachine.allowed_from(action)]
        values.setdefault("updated_at", utcnow())

        result = await self.session.execute(
            update(PayrollRecord)
            .where(
                PayrollRecord.tenant_id == record.tenant_id,
                PayrollRecord.payroll_record_id == record.payroll_record_id,
                PayrollRecord.status.in_(allowed),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await self.get_record(record.tenant_id, record.payroll_record_id)
            logger.warning(
                "Conditional update lost for payroll record %s (%s, now %s)",
                record.payroll_record_id,
                action.value,
                current.status,
            )
            raise InvalidStateError(
                PayrollRecordStateMachine.ENTITY,
                action.value,
                current.status,
                "status changed concurrently",
            )


def _audit_details(values: dict[str, Any]) -> dict[str, Any] | None:
    if not values:
        return None
    details: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, (datetime, date)):
            details[key] = value.isoformat()
        elif isinstance(value, (UUID, Money)):
            details[key] = str(value)
        else:
            details[key] = value
    return details
