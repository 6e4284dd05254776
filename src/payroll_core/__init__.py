"""Payroll core: payroll records, batches and batch payment runs."""

from payroll_core.errors import (
    DuplicateRecordError,
    ExecutorFailureError,
    InvalidStateError,
    MissingPaymentDestinationError,
    NoEligibleEmployeesError,
    NotFoundError,
    PayrollError,
)
from payroll_core.money import Money

__version__ = "0.1.0"

__all__ = [
    "DuplicateRecordError",
    "ExecutorFailureError",
    "InvalidStateError",
    "MissingPaymentDestinationError",
    "Money",
    "NoEligibleEmployeesError",
    "NotFoundError",
    "PayrollError",
    "__version__",
]
