"""
Error taxonomy for the payroll calculation core.

InvalidInput and NegativeNetPayError are scoped to one employee and never abort
a batch. ConfigurationError means the reference data is broken for everyone.
Registry write rejections derive from BracketValidationError.
"""
from typing import Any, Optional


class PayrollError(Exception):
    """Base class for every error raised by the calculation core."""


class InvalidInput(PayrollError, ValueError):
    """Negative amounts, malformed dates, missing attendance and similar."""


class ConfigurationError(PayrollError):
    """Missing or duplicate open-ended bracket/band, overlapping active brackets."""


class BracketValidationError(PayrollError):
    """A registry write was rejected; registry state is unchanged."""


class InvalidRange(BracketValidationError):
    pass


class InvalidRate(BracketValidationError):
    pass


class OverlapConflict(BracketValidationError):
    def __init__(self, with_bracket_id: str, message: Optional[str] = None):
        self.with_bracket_id = with_bracket_id
        super().__init__(message or f"Income range overlaps with active bracket {with_bracket_id}")


class NegativeNetPayError(PayrollError):
    def __init__(self, employee_id: str, gross: Any, deductions: Any):
        self.employee_id = employee_id
        self.gross = gross
        self.deductions = deductions
        super().__init__(
            f"Deductions {deductions} exceed gross pay {gross} for employee {employee_id}"
        )
