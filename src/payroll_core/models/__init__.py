"""ORM models for payroll core."""

from payroll_core.models.base import AuditedMixin, Base, TimestampMixin, utcnow
from payroll_core.models.employee import Employee
from payroll_core.models.payroll import AuditEvent, PayrollBatch, PayrollRecord

__all__ = [
    "AuditEvent",
    "AuditedMixin",
    "Base",
    "Employee",
    "PayrollBatch",
    "PayrollRecord",
    "TimestampMixin",
    "utcnow",
]
