"""
Payslip assembly: a pure projection of one calculation result plus the
employee's year-to-date totals. Nothing here recalculates tax or deductions.
"""
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from payroll.core.config import PayrollConfig
from payroll.core.errors import InvalidInput
from payroll.core.utils import ZERO, fiscal_year_of
from payroll.payroll.bulk_processor import PayrollBatchResult
from payroll.payroll.models import (
    Deductions, Earnings, Employee, EmployerContributions, PayPeriod, PayrollCalculationResult,
)


@dataclass(frozen=True)
class YearToDateAccumulator:
    employee_id: str
    fiscal_year: int
    gross_earnings: Decimal = ZERO
    total_deductions: Decimal = ZERO
    net_pay: Decimal = ZERO
    tax_paid: Decimal = ZERO

    def add(self, result: PayrollCalculationResult) -> "YearToDateAccumulator":
        if result.employee_id != self.employee_id:
            raise InvalidInput(
                f"Year-to-date totals for {self.employee_id} cannot absorb a result for {result.employee_id}"
            )
        return replace(
            self,
            gross_earnings=self.gross_earnings + result.earnings.gross,
            total_deductions=self.total_deductions + result.deductions.total,
            net_pay=self.net_pay + result.net_pay,
            tax_paid=self.tax_paid + result.deductions.income_tax,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fiscal_year": self.fiscal_year,
            "gross_earnings": str(self.gross_earnings),
            "total_deductions": str(self.total_deductions),
            "net_pay": str(self.net_pay),
            "tax_paid": str(self.tax_paid),
        }


@dataclass(frozen=True)
class Payslip:
    payslip_id: str
    employee_id: str
    pay_period: PayPeriod
    earnings: Earnings
    deductions: Deductions
    net_pay: Decimal
    ytd_totals: YearToDateAccumulator
    applied_bracket_set_id: str
    employee: Optional[Employee] = None
    employer_contributions: EmployerContributions = EmployerContributions()

    @property
    def totals(self) -> Dict[str, Decimal]:
        return {
            "gross": self.earnings.gross,
            "deductions": self.deductions.total,
            "net": self.net_pay,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payslip_id": self.payslip_id,
            "employee_id": self.employee_id,
            "employee": self.employee.to_dict() if self.employee else None,
            "pay_period": self.pay_period.to_dict(),
            "earnings": self.earnings.to_dict(),
            "deductions": self.deductions.to_dict(),
            "totals": {k: str(v) for k, v in self.totals.items()},
            "ytd_totals": self.ytd_totals.to_dict(),
            "employer_contributions": self.employer_contributions.to_dict(),
            "applied_bracket_set_id": self.applied_bracket_set_id,
        }


class PayslipAssembler:
    def __init__(self, config: PayrollConfig = None):
        self.config = config or PayrollConfig.from_settings()

    def fiscal_year(self, period: PayPeriod) -> int:
        return fiscal_year_of(period.pay_date, self.config.fiscal_year_start_month)

    def empty_ytd(self, employee_id: str, period: PayPeriod) -> YearToDateAccumulator:
        return YearToDateAccumulator(employee_id=employee_id, fiscal_year=self.fiscal_year(period))

    def assemble(
        self,
        result: PayrollCalculationResult,
        ytd: Optional[YearToDateAccumulator] = None,
        employee: Optional[Employee] = None,
    ) -> Payslip:
        period = result.period
        if ytd is None:
            ytd = self.empty_ytd(result.employee_id, period)
        if ytd.fiscal_year != self.fiscal_year(period):
            raise InvalidInput(
                f"Year-to-date totals are for fiscal year {ytd.fiscal_year}, "
                f"period {period.period_id} falls in {self.fiscal_year(period)}"
            )
        if employee is not None and employee.employee_id != result.employee_id:
            raise InvalidInput(f"Employee {employee.employee_id} does not match result {result.employee_id}")
        return Payslip(
            payslip_id=f"PS-{period.period_id}-{result.employee_id}",
            employee_id=result.employee_id,
            pay_period=period,
            earnings=result.earnings,
            deductions=result.deductions,
            net_pay=result.net_pay,
            ytd_totals=ytd.add(result),
            applied_bracket_set_id=result.applied_bracket_set_id,
            employee=employee,
            employer_contributions=result.employer_contributions,
        )

    def assemble_batch(
        self,
        batch: PayrollBatchResult,
        ytd_by_employee: Mapping[str, YearToDateAccumulator] = None,
        employees: Mapping[str, Employee] = None,
    ) -> List[Payslip]:
        """Payslips for the successful lines of a batch, in batch order."""
        ytd_by_employee = ytd_by_employee or {}
        employees = employees or {}
        return [
            self.assemble(r, ytd_by_employee.get(r.employee_id), employees.get(r.employee_id))
            for r in batch.results
        ]
