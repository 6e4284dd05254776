"""Payroll record and batch state machines with transition validation."""

from __future__ import annotations

from enum import Enum

from payroll_core.errors import InvalidStateError


class PayrollStatus(str, Enum):
    """Status values shared by payroll records and batches."""

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ALL_STATUSES = frozenset(PayrollStatus)


class RecordAction(str, Enum):
    """Operations that move (or guard) a single payroll record."""

    UPDATE = "update"
    SUBMIT = "submit"
    APPROVE = "approve"
    PAY = "pay"
    START_PROCESSING = "start_processing"
    SETTLE = "settle"
    FAIL = "fail"
    CANCEL = "cancel"


class BatchAction(str, Enum):
    """Operations that move a payroll batch."""

    SUBMIT = "submit"
    APPROVE = "approve"
    START_PROCESSING = "start_processing"
    MARK_PAID = "mark_paid"
    MARK_FAILED = "mark_failed"


class _StateMachine:
    """Table-driven state machine.

    ``RULES`` maps each action to (statuses it is allowed from, target
    status). A target of None means the action keeps the current status.
    """

    ENTITY: str = ""
    RULES: dict[str, tuple[frozenset[PayrollStatus], PayrollStatus | None]] = {}

    @classmethod
    def allowed_from(cls, action: str) -> frozenset[PayrollStatus]:
        return cls.RULES[action][0]

    @classmethod
    def target(cls, action: str) -> PayrollStatus | None:
        return cls.RULES[action][1]

    @classmethod
    def can(cls, action: str, status: str) -> bool:
        """Check if an action is allowed in this status."""
        return status in cls.allowed_from(action)

    @classmethod
    def validate(cls, action: str, status: str, reason: str | None = None) -> None:
        """Validate an action, raising InvalidStateError if not allowed."""
        if not cls.can(action, status):
            raise InvalidStateError(cls.ENTITY, _action_name(action), _status_name(status), reason)

    @classmethod
    def next_status(cls, action: str, status: str) -> PayrollStatus:
        """Validate and return the status the action lands in."""
        cls.validate(action, status)
        target = cls.target(action)
        return target if target is not None else PayrollStatus(status)

    @classmethod
    def available_actions(cls, status: str) -> list[str]:
        """Get the actions allowed from the current status."""
        return [action for action in cls.RULES if cls.can(action, status)]


class PayrollRecordStateMachine(_StateMachine):
    """State machine for a single payroll record.

    DRAFT → PENDING_APPROVAL → APPROVED → PROCESSING → PAID, with FAILED
    reachable from APPROVED or PROCESSING and CANCELLED reachable from any
    status except PAID and CANCELLED. APPROVED → PAID is the direct payment
    path; PROCESSING → PAID is used by batch payment runs.
    """

    ENTITY = "payroll record"

    # Statuses where amounts, breakdowns and notes can be changed
    EDITABLE = frozenset({PayrollStatus.DRAFT, PayrollStatus.PENDING_APPROVAL})

    # Statuses that do not block a new record for the same employee and period
    INACTIVE = frozenset({PayrollStatus.CANCELLED, PayrollStatus.FAILED})

    # Statuses counted as not-yet-paid obligations
    PENDING = frozenset(
        {PayrollStatus.DRAFT, PayrollStatus.PENDING_APPROVAL, PayrollStatus.APPROVED}
    )

    RULES = {
        RecordAction.UPDATE: (EDITABLE, None),
        RecordAction.SUBMIT: (frozenset({PayrollStatus.DRAFT}), PayrollStatus.PENDING_APPROVAL),
        RecordAction.APPROVE: (
            frozenset({PayrollStatus.PENDING_APPROVAL}),
            PayrollStatus.APPROVED,
        ),
        RecordAction.PAY: (frozenset({PayrollStatus.APPROVED}), PayrollStatus.PAID),
        RecordAction.START_PROCESSING: (
            frozenset({PayrollStatus.APPROVED}),
            PayrollStatus.PROCESSING,
        ),
        RecordAction.SETTLE: (frozenset({PayrollStatus.PROCESSING}), PayrollStatus.PAID),
        RecordAction.FAIL: (
            frozenset({PayrollStatus.APPROVED, PayrollStatus.PROCESSING}),
            PayrollStatus.FAILED,
        ),
        RecordAction.CANCEL: (
            ALL_STATUSES - {PayrollStatus.PAID, PayrollStatus.CANCELLED},
            PayrollStatus.CANCELLED,
        ),
    }

    @classmethod
    def is_active(cls, status: str) -> bool:
        return status not in cls.INACTIVE

    @classmethod
    def can_modify(cls, status: str) -> bool:
        """Check if amounts/breakdowns/notes can be modified."""
        return status in cls.EDITABLE


class PayrollBatchStateMachine(_StateMachine):
    """State machine for a payroll batch.

    DRAFT → PENDING_APPROVAL → APPROVED → PROCESSING → PAID | FAILED.
    CANCELLED is a valid stored status but no batch action reaches it.
    """

    ENTITY = "payroll batch"

    RULES = {
        BatchAction.SUBMIT: (frozenset({PayrollStatus.DRAFT}), PayrollStatus.PENDING_APPROVAL),
        BatchAction.APPROVE: (
            frozenset({PayrollStatus.PENDING_APPROVAL}),
            PayrollStatus.APPROVED,
        ),
        BatchAction.START_PROCESSING: (
            frozenset({PayrollStatus.APPROVED}),
            PayrollStatus.PROCESSING,
        ),
        BatchAction.MARK_PAID: (frozenset({PayrollStatus.PROCESSING}), PayrollStatus.PAID),
        BatchAction.MARK_FAILED: (frozenset({PayrollStatus.PROCESSING}), PayrollStatus.FAILED),
    }

    # Member record status moved by each batch-wide action
    MEMBER_TRANSITIONS = {
        BatchAction.SUBMIT: (PayrollStatus.DRAFT, PayrollStatus.PENDING_APPROVAL),
        BatchAction.APPROVE: (PayrollStatus.PENDING_APPROVAL, PayrollStatus.APPROVED),
    }

    @staticmethod
    def terminal_status(successful: int, failed: int) -> PayrollStatus:
        """Derive a batch's status after a payment run.

        PAID when nothing failed or at least one payment succeeded; FAILED
        only when every attempted payment failed. PAID therefore means "done
        processing", not "every record paid".
        """
        if failed == 0 or successful > 0:
            return PayrollStatus.PAID
        return PayrollStatus.FAILED

    @classmethod
    def completion_action(cls, successful: int, failed: int) -> BatchAction:
        if cls.terminal_status(successful, failed) == PayrollStatus.PAID:
            return BatchAction.MARK_PAID
        return BatchAction.MARK_FAILED


def _action_name(action: str) -> str:
    return action.value if isinstance(action, Enum) else str(action)


def _status_name(status: str) -> str:
    return status.value if isinstance(status, Enum) else str(status)
