"""Payroll core services."""

from payroll_core.services.state_machine import (
    BatchAction,
    PayrollBatchStateMachine,
    PayrollRecordStateMachine,
    PayrollStatus,
    RecordAction,
)
from payroll_core.services.directory import EmployeeDirectory, SqlEmployeeDirectory
from payroll_core.services.record_service import PayrollRecordService
from payroll_core.services.batch_service import PayrollBatchService
from payroll_core.services.payment_orchestrator import (
    BatchPaymentOrchestrator,
    PaymentExecutor,
)
from payroll_core.services.summary_service import PayrollSummaryService

__all__ = [
    "BatchAction",
    "BatchPaymentOrchestrator",
    "EmployeeDirectory",
    "PaymentExecutor",
    "PayrollBatchService",
    "PayrollBatchStateMachine",
    "PayrollRecordService",
    "PayrollRecordStateMachine",
    "PayrollStatus",
    "PayrollSummaryService",
    "RecordAction",
    "SqlEmployeeDirectory",
]
