"""Payroll core error hierarchy.

Every error carries a machine-readable ``kind`` and a human ``message`` so
callers can tell guard violations apart from downstream failures.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID


class PayrollError(Exception):
    """Base class for all payroll core errors."""

    kind = "payroll_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(PayrollError):
    """A record, batch or employee is absent (or the employee is inactive)."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: UUID | str, reason: str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        msg = f"{entity} {entity_id} not found"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class InvalidStateError(PayrollError):
    """Raised when an action is attempted from a status that forbids it."""

    kind = "invalid_state"

    def __init__(
        self,
        entity: str,
        action: str,
        status: str,
        reason: str | None = None,
    ):
        self.entity = entity
        self.action = action
        self.status = status
        self.reason = reason
        msg = f"Cannot {action} {entity} in status '{status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class DuplicateRecordError(PayrollError):
    """An active payroll record already exists for the employee and period."""

    kind = "duplicate_record"

    def __init__(self, employee_ids: list[UUID], message: str | None = None):
        self.employee_ids = employee_ids
        super().__init__(
            message or "A payroll record already exists for this period"
        )


class NoEligibleEmployeesError(PayrollError):
    kind = "no_eligible_employees"

    def __init__(self, message: str = "No eligible employees found for payroll"):
        super().__init__(message)


class MissingPaymentDestinationError(PayrollError):
    """The employee has nowhere to receive funds."""

    kind = "missing_payment_destination"

    def __init__(self, employee_id: UUID, message: str | None = None):
        self.employee_id = employee_id
        super().__init__(
            message or "Employee has no payment destination configured"
        )


class ExecutorFailureError(PayrollError):
    """The injected payment executor failed; its message becomes the failure reason."""

    kind = "executor_failure"

    def __init__(self, message: str, cause: BaseException | None = None):
        self.cause = cause
        super().__init__(message)

    @classmethod
    def from_exception(cls, exc: BaseException) -> ExecutorFailureError:
        return cls(str(exc) or exc.__class__.__name__, cause=exc)
