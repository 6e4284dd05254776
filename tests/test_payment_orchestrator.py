"""Tests for batch payment runs."""

import asyncio
from uuid import uuid4

import pytest

from payroll_core.errors import InvalidStateError, NotFoundError
from payroll_core.money import Money
from payroll_core.services.audit import list_audit_events
from payroll_core.services.record_service import ENTITY_TYPE as RECORD_ENTITY

pytestmark = pytest.mark.asyncio


class FakeExecutor:
    """Payment executor double that records calls and fails selected wallets."""

    def __init__(self, fail_wallets=(), empty_wallets=()):
        self.fail_wallets = set(fail_wallets)
        self.empty_wallets = set(empty_wallets)
        self.calls = []

    async def __call__(self, employee_id, amount, wallet_id):
        self.calls.append((employee_id, amount, wallet_id))
        if wallet_id in self.fail_wallets:
            raise RuntimeError("Insufficient funds in source account")
        if wallet_id in self.empty_wallets:
            return ""
        return f"txn-{len(self.calls)}"


class TestProcessBatchPayments:
    """Happy path and partial failure."""

    async def test_pays_every_record(
        self, orchestrator, batch_service, approved_batch, make_employee, tenant_id
    ):
        employees = [await make_employee(salary="1000.00"), await make_employee(salary="2000.00")]
        batch_id, record_ids = await approved_batch(employees)
        executor = FakeExecutor()

        result = await orchestrator.process_batch_payments(tenant_id, batch_id, executor)

        assert result.batch_id == batch_id
        assert result.status == "PAID"
        assert result.successful == 2
        assert result.failed == 0
        assert all(o.succeeded for o in result.outcomes)
        assert {o.record_id for o in result.outcomes} == set(record_ids)
        assert sorted(c[1] for c in executor.calls) == [Money("1000.00"), Money("2000.00")]

        batch = await batch_service.get_batch(tenant_id, batch_id)
        assert batch.status == "PAID"
        assert batch.processed_at is not None
        assert batch.completed_at is not None
        for record in batch.records:
            assert record.status == "PAID"
            assert record.transaction_id.startswith("txn-")
            assert record.paid_at is not None

    async def test_middle_failure_does_not_stop_run(
        self, orchestrator, record_service, approved_batch, make_employee, tenant_id
    ):
        employees = [
            await make_employee(last_name="Adams"),
            await make_employee(last_name="Baker"),
            await make_employee(last_name="Clark"),
        ]
        batch_id, record_ids = await approved_batch(employees)
        failing = await record_service.get_record(tenant_id, record_ids[1])
        executor = FakeExecutor(fail_wallets={failing.employee.wallet_id})

        result = await orchestrator.process_batch_payments(tenant_id, batch_id, executor)

        assert result.status == "PAID"
        assert (result.successful, result.failed) == (2, 1)
        assert len(executor.calls) == 3

        by_record = {o.record_id: o for o in result.outcomes}
        bad = by_record[record_ids[1]]
        assert not bad.succeeded
        assert bad.status == "FAILED"
        assert bad.error == "Insufficient funds in source account"
        assert bad.error_kind == "executor_failure"

        record = await record_service.get_record(tenant_id, record_ids[1])
        assert record.status == "FAILED"
        assert record.failure_reason == "Insufficient funds in source account"
        for record_id in (record_ids[0], record_ids[2]):
            record = await record_service.get_record(tenant_id, record_id)
            assert record.status == "PAID"

    async def test_all_failures_fail_batch(
        self, orchestrator, batch_service, approved_batch, make_employee, tenant_id
    ):
        employees = [await make_employee(), await make_employee()]
        batch_id, _ = await approved_batch(employees)

        class Down:
            async def __call__(self, employee_id, amount, wallet_id):
                raise ConnectionError("payment provider unreachable")

        result = await orchestrator.process_batch_payments(tenant_id, batch_id, Down())

        assert result.status == "FAILED"
        assert (result.successful, result.failed) == (0, 2)
        batch = await batch_service.get_batch(tenant_id, batch_id)
        assert batch.status == "FAILED"
        assert batch.records_by_status == {"FAILED": 2}

    async def test_executor_timeout_is_a_failure(
        self, orchestrator, approved_batch, make_employee, tenant_id
    ):
        batch_id, _ = await approved_batch([await make_employee()])

        async def slow(employee_id, amount, wallet_id):
            raise asyncio.TimeoutError()

        result = await orchestrator.process_batch_payments(tenant_id, batch_id, slow)

        assert result.status == "FAILED"
        # exceptions without a message fall back to their class name
        assert result.outcomes[0].error == "TimeoutError"

    async def test_empty_transaction_id_is_a_failure(
        self, orchestrator, record_service, approved_batch, make_employee, tenant_id
    ):
        employees = [await make_employee(), await make_employee()]
        batch_id, record_ids = await approved_batch(employees)
        silent = await record_service.get_record(tenant_id, record_ids[0])
        executor = FakeExecutor(empty_wallets={silent.employee.wallet_id})

        result = await orchestrator.process_batch_payments(tenant_id, batch_id, executor)

        assert result.status == "PAID"
        outcome = next(o for o in result.outcomes if o.record_id == record_ids[0])
        assert outcome.status == "FAILED"
        assert outcome.error == "Payment executor returned no transaction id"

    async def test_missing_wallet_fails_without_calling_executor(
        self, orchestrator, record_service, approved_batch, make_employee, tenant_id
    ):
        no_wallet = await make_employee(has_wallet=False, external_account="ACCT-1")
        batch_id, record_ids = await approved_batch([no_wallet])
        executor = FakeExecutor()

        result = await orchestrator.process_batch_payments(tenant_id, batch_id, executor)

        assert executor.calls == []
        assert result.status == "FAILED"
        outcome = result.outcomes[0]
        assert outcome.error == "Employee has no wallet configured"
        assert outcome.error_kind == "missing_payment_destination"

        record = await record_service.get_record(tenant_id, record_ids[0])
        assert record.status == "FAILED"
        assert record.failure_reason == "Employee has no wallet configured"

    async def test_record_is_processing_while_executor_runs(
        self, orchestrator, record_service, approved_batch, make_employee, tenant_id
    ):
        batch_id, record_ids = await approved_batch([await make_employee()])
        seen = []

        async def peek(employee_id, amount, wallet_id):
            record = await record_service.get_record(tenant_id, record_ids[0])
            seen.append(record.status)
            return "txn-peek"

        await orchestrator.process_batch_payments(tenant_id, batch_id, peek)
        assert seen == ["PROCESSING"]

    async def test_record_cancelled_mid_run(
        self, orchestrator, record_service, approved_batch, make_employee, tenant_id
    ):
        employees = [await make_employee(last_name="Adams"), await make_employee(last_name="Baker")]
        batch_id, record_ids = await approved_batch(employees)

        async def cancel_the_other(employee_id, amount, wallet_id):
            if employee_id == employees[0]:
                await record_service.cancel_record(tenant_id, record_ids[1])
            return "txn-1"

        result = await orchestrator.process_batch_payments(tenant_id, batch_id, cancel_the_other)

        assert (result.successful, result.failed) == (1, 1)
        skipped = next(o for o in result.outcomes if o.record_id == record_ids[1])
        assert skipped.status == "CANCELLED"
        assert skipped.error_kind == "invalid_state"

        record = await record_service.get_record(tenant_id, record_ids[1])
        assert record.status == "CANCELLED"

    async def test_record_cancelled_while_being_paid(
        self,
        session,
        orchestrator,
        batch_service,
        record_service,
        approved_batch,
        make_employee,
        tenant_id,
    ):
        employees = [await make_employee(last_name="Adams"), await make_employee(last_name="Baker")]
        batch_id, record_ids = await approved_batch(employees)
        calls = []

        async def cancel_own_record(employee_id, amount, wallet_id):
            calls.append(employee_id)
            if employee_id == employees[0]:
                await record_service.cancel_record(tenant_id, record_ids[0])
            return f"txn-{len(calls)}"

        result = await orchestrator.process_batch_payments(tenant_id, batch_id, cancel_own_record)

        # the run carries on to the next record and completes the batch
        assert calls == employees
        assert result.status == "PAID"
        assert (result.successful, result.failed) == (1, 1)

        lost = next(o for o in result.outcomes if o.record_id == record_ids[0])
        assert not lost.succeeded
        assert lost.status == "CANCELLED"
        assert lost.transaction_id == "txn-1"
        assert lost.error_kind == "invalid_state"

        record = await record_service.get_record(tenant_id, record_ids[0])
        assert record.status == "CANCELLED"
        assert record.transaction_id == "txn-1"
        assert record.paid_at is None

        events = await list_audit_events(session, tenant_id, RECORD_ENTITY, record_ids[0])
        unsettled = next(e for e in events if e.action == "payment_unsettled")
        assert unsettled.details["transaction_id"] == "txn-1"

        batch = await batch_service.get_batch(tenant_id, batch_id)
        assert batch.status == "PAID"
        assert batch.completed_at is not None
        assert batch.records_by_status == {"CANCELLED": 1, "PAID": 1}

    async def test_only_approved_records_are_paid(
        self,
        orchestrator,
        batch_service,
        record_service,
        batch_input,
        make_employee,
        tenant_id,
        approver_id,
    ):
        kept = await make_employee()
        dropped = await make_employee()
        batch = await batch_service.create_batch(batch_input())
        batch_id = batch.payroll_batch_id
        await batch_service.submit_batch(tenant_id, batch_id)
        batch = await batch_service.get_batch(tenant_id, batch_id)
        dropped_id = next(r.payroll_record_id for r in batch.records if r.employee_id == dropped)
        await record_service.cancel_record(tenant_id, dropped_id)
        await batch_service.approve_batch(tenant_id, batch_id, approver_id)
        executor = FakeExecutor()

        result = await orchestrator.process_batch_payments(tenant_id, batch_id, executor)

        assert [c[0] for c in executor.calls] == [kept]
        assert [o.employee_id for o in result.outcomes] == [kept]
        record = await record_service.get_record(tenant_id, dropped_id)
        assert record.status == "CANCELLED"

    async def test_failures_are_audited(
        self, session, orchestrator, approved_batch, make_employee, tenant_id
    ):
        employee = await make_employee(has_wallet=False)
        batch_id, record_ids = await approved_batch([employee])

        await orchestrator.process_batch_payments(tenant_id, batch_id, FakeExecutor())

        events = await list_audit_events(session, tenant_id, RECORD_ENTITY, record_ids[0])
        failure = next(e for e in events if e.action == "status_change:APPROVED:FAILED")
        assert failure.details["error_kind"] == "missing_payment_destination"


class TestBatchGuards:
    """Runs that are refused before any payment."""

    async def test_batch_must_be_approved(
        self, orchestrator, batch_service, batch_input, make_employee, tenant_id
    ):
        await make_employee()
        batch = await batch_service.create_batch(batch_input())
        batch_id = batch.payroll_batch_id
        executor = FakeExecutor()

        with pytest.raises(InvalidStateError) as exc_info:
            await orchestrator.process_batch_payments(tenant_id, batch_id, executor)
        assert exc_info.value.status == "DRAFT"

        assert executor.calls == []
        batch = await batch_service.get_batch(tenant_id, batch_id)
        assert batch.status == "DRAFT"

    async def test_batch_cannot_be_run_twice(
        self, orchestrator, approved_batch, make_employee, tenant_id
    ):
        batch_id, _ = await approved_batch([await make_employee()])
        await orchestrator.process_batch_payments(tenant_id, batch_id, FakeExecutor())

        executor = FakeExecutor()
        with pytest.raises(InvalidStateError):
            await orchestrator.process_batch_payments(tenant_id, batch_id, executor)
        assert executor.calls == []

    async def test_unknown_batch(self, orchestrator, tenant_id):
        with pytest.raises(NotFoundError):
            await orchestrator.process_batch_payments(tenant_id, uuid4(), FakeExecutor())

    async def test_no_approved_records_still_completes(
        self,
        orchestrator,
        batch_service,
        record_service,
        batch_input,
        make_employee,
        tenant_id,
        approver_id,
    ):
        await make_employee()
        batch = await batch_service.create_batch(batch_input())
        batch_id = batch.payroll_batch_id
        await batch_service.submit_batch(tenant_id, batch_id)
        batch = await batch_service.get_batch(tenant_id, batch_id)
        await record_service.cancel_record(tenant_id, batch.records[0].payroll_record_id)
        await batch_service.approve_batch(tenant_id, batch_id, approver_id)

        result = await orchestrator.process_batch_payments(tenant_id, batch_id, FakeExecutor())

        assert result.outcomes == []
        assert result.status == "PAID"
