"""Batch payment orchestrator - pays every approved record of a batch.

Drives each approved member record through its own payment:
1. Guard the payment destination (wallet)
2. Commit the record as PROCESSING
3. Invoke the injected payment executor (the only funds movement)
4. Commit PAID with the transaction id, or FAILED with the reason

Per-record failures never abort the run; the batch's terminal status is
derived from the success/failure counts once every record was attempted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.database import transaction
from payroll_core.errors import (
    ExecutorFailureError,
    InvalidStateError,
    MissingPaymentDestinationError,
    PayrollError,
)
from payroll_core.models import PayrollRecord, utcnow
from payroll_core.money import Money
from payroll_core.schemas import BatchPaymentResult, PaymentOutcome
from payroll_core.services.audit import record_audit, status_change
from payroll_core.services.batch_service import PayrollBatchService
from payroll_core.services.directory import EmployeeDirectory
from payroll_core.services.record_service import ENTITY_TYPE as RECORD_ENTITY
from payroll_core.services.state_machine import (
    BatchAction,
    PayrollBatchStateMachine,
    PayrollRecordStateMachine,
    PayrollStatus,
    RecordAction,
)

logger = logging.getLogger(__name__)


class PaymentExecutor(Protocol):
    """Moves funds to an employee's wallet and returns a transaction id.

    Any exception (including a timeout) is treated as a failed payment and
    its message becomes the record's failure reason.
    """

    async def __call__(self, employee_id: UUID, amount: Money, wallet_id: str) -> str:
        ...


@dataclass(frozen=True)
class PaymentTarget:
    """Snapshot of one approved record taken when the run starts."""

    record_id: UUID
    employee_id: UUID
    net_amount: Money
    wallet_id: str | None


class BatchPaymentOrchestrator:
    """Executes approved batches against a payment executor.

    Usage:
        orchestrator = BatchPaymentOrchestrator(session)
        result = await orchestrator.process_batch_payments(tenant_id, batch_id, executor)
        if result.failed:
            ...  # inspect result.outcomes
    """

    def __init__(
        self,
        session: AsyncSession,
        directory: EmployeeDirectory | None = None,
    ):
        self.session = session
        self.batches = PayrollBatchService(session, directory)
        self.records = self.batches.records

    async def process_batch_payments(
        self,
        tenant_id: UUID,
        batch_id: UUID,
        executor: PaymentExecutor,
        actor_id: UUID | None = None,
    ) -> BatchPaymentResult:
        """Pay every APPROVED record of an APPROVED batch.

        Raises:
            NotFoundError: batch does not exist for the tenant
            InvalidStateError: batch is not APPROVED
        """
        async with transaction(self.session):
            batch = await self.batches.get_batch(tenant_id, batch_id)
            PayrollBatchStateMachine.validate(BatchAction.START_PROCESSING, batch.status)
            targets = [
                PaymentTarget(
                    record_id=r.payroll_record_id,
                    employee_id=r.employee_id,
                    net_amount=r.net_amount,
                    wallet_id=r.employee.wallet_id if r.employee is not None else None,
                )
                for r in batch.records
                if r.status == PayrollStatus.APPROVED
            ]
            await self.batches.transition(
                tenant_id,
                batch_id,
                BatchAction.START_PROCESSING,
                actor_id,
                processed_at=utcnow(),
            )

        logger.info(
            "Processing payroll batch %s: %d approved record(s)", batch_id, len(targets)
        )

        outcomes: list[PaymentOutcome] = []
        for target in targets:
            outcomes.append(await self._pay(tenant_id, target, executor, actor_id))

        successful = sum(1 for o in outcomes if o.succeeded)
        failed = len(outcomes) - successful
        action = PayrollBatchStateMachine.completion_action(successful, failed)

        async with transaction(self.session):
            final_status = await self.batches.transition(
                tenant_id, batch_id, action, actor_id, completed_at=utcnow()
            )

        logger.info(
            "Payroll batch %s finished as %s: %d paid, %d failed",
            batch_id,
            final_status,
            successful,
            failed,
        )
        return BatchPaymentResult(
            batch_id=batch_id,
            status=final_status,
            successful=successful,
            failed=failed,
            outcomes=outcomes,
        )

    async def _pay(
        self,
        tenant_id: UUID,
        target: PaymentTarget,
        executor: PaymentExecutor,
        actor_id: UUID | None,
    ) -> PaymentOutcome:
        """Attempt one record's payment; always returns an outcome."""
        if not target.wallet_id:
            return await self._fail(
                tenant_id,
                target,
                MissingPaymentDestinationError(
                    target.employee_id, "Employee has no wallet configured"
                ),
                actor_id,
            )

        try:
            async with transaction(self.session):
                await self.records.transition(
                    tenant_id, target.record_id, RecordAction.START_PROCESSING, actor_id
                )
        except InvalidStateError as exc:
            return await self._fail(tenant_id, target, exc, actor_id)

        try:
            transaction_id = await executor(
                target.employee_id, target.net_amount, target.wallet_id
            )
        except Exception as exc:
            return await self._fail(
                tenant_id, target, ExecutorFailureError.from_exception(exc), actor_id
            )
        if not transaction_id:
            return await self._fail(
                tenant_id,
                target,
                ExecutorFailureError("Payment executor returned no transaction id"),
                actor_id,
            )

        try:
            async with transaction(self.session):
                status = await self.records.transition(
                    tenant_id,
                    target.record_id,
                    RecordAction.SETTLE,
                    actor_id,
                    transaction_id=transaction_id,
                    paid_at=utcnow(),
                )
        except InvalidStateError as exc:
            # Funds already moved; keep the transaction id for reconciliation
            return await self._fail(
                tenant_id, target, exc, actor_id, transaction_id=transaction_id
            )
        return PaymentOutcome(
            record_id=target.record_id,
            employee_id=target.employee_id,
            status=status,
            transaction_id=transaction_id,
        )

    async def _fail(
        self,
        tenant_id: UUID,
        target: PaymentTarget,
        error: PayrollError,
        actor_id: UUID | None,
        transaction_id: str | None = None,
    ) -> PaymentOutcome:
        """Record a per-record failure and turn it into an outcome.

        A record that already left APPROVED/PROCESSING (e.g. cancelled by
        another caller) keeps its status; the outcome still counts as failed.
        When ``transaction_id`` is given the executor already moved funds, so
        the id is written to the record and audited as an unsettled payment.
        """
        if transaction_id is None:
            logger.warning(
                "Payment failed for payroll record %s (employee %s): %s",
                target.record_id,
                target.employee_id,
                error.message,
            )
        else:
            logger.error(
                "Unsettled payment %s for payroll record %s (employee %s, %s): %s",
                transaction_id,
                target.record_id,
                target.employee_id,
                target.net_amount,
                error.message,
            )
        allowed = [s.value for s in PayrollRecordStateMachine.allowed_from(RecordAction.FAIL)]
        details = {"failure_reason": error.message, "error_kind": error.kind}
        if transaction_id is not None:
            details["transaction_id"] = transaction_id

        async with transaction(self.session):
            current = await self.session.scalar(
                select(PayrollRecord.status).where(
                    PayrollRecord.tenant_id == tenant_id,
                    PayrollRecord.payroll_record_id == target.record_id,
                )
            )
            result = await self.session.execute(
                update(PayrollRecord)
                .where(
                    PayrollRecord.tenant_id == tenant_id,
                    PayrollRecord.payroll_record_id == target.record_id,
                    PayrollRecord.status.in_(allowed),
                )
                .values(
                    status=PayrollStatus.FAILED.value,
                    failure_reason=error.message,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                status = PayrollStatus.FAILED.value
                action = status_change(current, PayrollStatus.FAILED)
            else:
                status = current
                action = "payment_unsettled" if transaction_id is not None else None

            if transaction_id is not None:
                await self.session.execute(
                    update(PayrollRecord)
                    .where(
                        PayrollRecord.tenant_id == tenant_id,
                        PayrollRecord.payroll_record_id == target.record_id,
                        PayrollRecord.transaction_id.is_(None),
                    )
                    .values(transaction_id=transaction_id, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
            if action is not None:
                await record_audit(
                    self.session,
                    tenant_id=tenant_id,
                    entity_type=RECORD_ENTITY,
                    entity_id=target.record_id,
                    action=action,
                    actor_id=actor_id,
                    details=details,
                )

        return PaymentOutcome(
            record_id=target.record_id,
            employee_id=target.employee_id,
            status=status,
            transaction_id=transaction_id,
            error=error.message,
            error_kind=error.kind,
        )
