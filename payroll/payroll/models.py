"""
Input and output records for the payroll engine.

Inputs come from external collaborators (attendance system, HR record store);
outputs are immutable and serialise to plain dicts for audit logging and
payslip rendering.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from payroll.core.errors import InvalidInput
from payroll.core.utils import ZERO, non_negative, parse_date
from payroll.tax.paye import PAYECalculationResult


@dataclass(frozen=True)
class Employee:
    employee_id: str
    full_name: str = ""
    employee_number: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "full_name": self.full_name,
            "employee_number": self.employee_number,
            "department": self.department,
            "position": self.position,
        }


@dataclass(frozen=True)
class AttendanceRecord:
    employee_id: str
    days_worked: Decimal
    overtime_hours: Decimal = ZERO
    absent_days: Decimal = ZERO
    late_days: Decimal = ZERO

    def __post_init__(self):
        for name in ("days_worked", "overtime_hours", "absent_days", "late_days"):
            object.__setattr__(self, name, non_negative(getattr(self, name), name))


@dataclass(frozen=True)
class Allowance:
    name: str
    amount: Decimal

    def __post_init__(self):
        object.__setattr__(self, "amount", non_negative(self.amount, f"allowance {self.name}"))


@dataclass(frozen=True)
class Bonus:
    name: str
    amount: Decimal

    def __post_init__(self):
        object.__setattr__(self, "amount", non_negative(self.amount, f"bonus {self.name}"))


@dataclass(frozen=True)
class LoanDeduction:
    loan_id: str
    installment: Decimal

    def __post_init__(self):
        object.__setattr__(self, "installment", non_negative(self.installment, f"loan {self.loan_id}"))


@dataclass(frozen=True)
class FixedDeduction:
    name: str
    amount: Decimal

    def __post_init__(self):
        object.__setattr__(self, "amount", non_negative(self.amount, f"deduction {self.name}"))


class SalaryBasis(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


@dataclass(frozen=True)
class EmployeeCompensationProfile:
    employee_id: str
    base_salary: Decimal
    salary_basis: SalaryBasis = SalaryBasis.MONTHLY
    allowances: Tuple[Allowance, ...] = ()
    pension_contribution_rate_percent: Decimal = ZERO
    active_loan_deductions: Tuple[LoanDeduction, ...] = ()
    other_fixed_deductions: Tuple[FixedDeduction, ...] = ()
    # annual relief claims, capped by the configured limits
    insurance_relief: Decimal = ZERO
    pension_relief: Decimal = ZERO
    is_tax_exempt: bool = False

    def __post_init__(self):
        object.__setattr__(self, "base_salary", non_negative(self.base_salary, "base_salary"))
        object.__setattr__(self, "insurance_relief", non_negative(self.insurance_relief, "insurance_relief"))
        object.__setattr__(self, "pension_relief", non_negative(self.pension_relief, "pension_relief"))
        rate = non_negative(self.pension_contribution_rate_percent, "pension_contribution_rate_percent")
        if rate > 100:
            raise InvalidInput(f"Pension contribution rate above 100%: {rate}")
        object.__setattr__(self, "pension_contribution_rate_percent", rate)
        try:
            object.__setattr__(self, "salary_basis", SalaryBasis(self.salary_basis))
        except ValueError:
            raise InvalidInput(f"Unknown salary basis: {self.salary_basis!r}") from None
        for name in ("allowances", "active_loan_deductions", "other_fixed_deductions"):
            object.__setattr__(self, name, tuple(getattr(self, name) or ()))

    @property
    def monthly_base_salary(self) -> Decimal:
        if self.salary_basis == SalaryBasis.ANNUAL:
            return self.base_salary / 12
        return self.base_salary


@dataclass(frozen=True)
class PayPeriod:
    period_id: str
    start_date: date
    end_date: date
    pay_date: Optional[date] = None

    def __post_init__(self):
        start = parse_date(self.start_date, "start_date")
        end = parse_date(self.end_date, "end_date")
        if start is None or end is None:
            raise InvalidInput("Pay period needs both start_date and end_date")
        if start > end:
            raise InvalidInput(f"Pay period {self.period_id} starts after it ends")
        object.__setattr__(self, "start_date", start)
        object.__setattr__(self, "end_date", end)
        object.__setattr__(self, "pay_date", parse_date(self.pay_date, "pay_date") or end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period_id": self.period_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "pay_date": self.pay_date.isoformat(),
        }


@dataclass(frozen=True)
class Earnings:
    base_salary: Decimal
    overtime: Decimal
    bonuses: Decimal
    allowances: Decimal
    gross: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {k: str(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class Deductions:
    income_tax: Decimal
    health_fund_contribution: Decimal
    pension_fund_contribution: Decimal
    housing_levy: Decimal
    voluntary_pension: Decimal
    loans: Decimal
    other: Decimal
    total: Decimal
    # breakdown of pension_fund_contribution, not added to total
    pension_fund_tier1: Decimal = ZERO
    pension_fund_tier2: Decimal = ZERO

    @property
    def statutory(self) -> Decimal:
        return self.health_fund_contribution + self.pension_fund_contribution + self.housing_levy

    def to_dict(self) -> Dict[str, str]:
        return {k: str(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class EmployerContributions:
    """Employer-side statutory costs; never deducted from the employee."""
    pension_fund_tier1: Decimal = ZERO
    pension_fund_tier2: Decimal = ZERO
    housing_levy: Decimal = ZERO

    @property
    def pension_fund(self) -> Decimal:
        return self.pension_fund_tier1 + self.pension_fund_tier2

    @property
    def total(self) -> Decimal:
        return self.pension_fund + self.housing_levy

    def to_dict(self) -> Dict[str, str]:
        return {
            "pension_fund_tier1": str(self.pension_fund_tier1),
            "pension_fund_tier2": str(self.pension_fund_tier2),
            "pension_fund": str(self.pension_fund),
            "housing_levy": str(self.housing_levy),
            "total": str(self.total),
        }


@dataclass(frozen=True)
class PayrollCalculationResult:
    employee_id: str
    period: PayPeriod
    earnings: Earnings
    deductions: Deductions
    taxable_income: Decimal
    net_pay: Decimal
    applied_bracket_set_id: str
    tax_detail: Optional[PAYECalculationResult] = None
    employer_contributions: EmployerContributions = EmployerContributions()
    tax_exempt: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "period": self.period.to_dict(),
            "earnings": self.earnings.to_dict(),
            "deductions": self.deductions.to_dict(),
            "taxable_income": str(self.taxable_income),
            "net_pay": str(self.net_pay),
            "applied_bracket_set_id": self.applied_bracket_set_id,
            "tax_detail": self.tax_detail.to_dict() if self.tax_detail else None,
            "employer_contributions": self.employer_contributions.to_dict(),
            "tax_exempt": self.tax_exempt,
        }


@dataclass(frozen=True)
class PayrollInput:
    """One employee's line in a batch run."""
    employee: Employee
    profile: Optional[EmployeeCompensationProfile]
    attendance: Optional[AttendanceRecord]
    bonuses: Tuple[Bonus, ...] = ()

    @property
    def employee_id(self) -> str:
        return self.employee.employee_id
