from decimal import Decimal
from typing import Any, Optional, Sequence, Tuple

from payroll.core.config import PayrollConfig
from payroll.core.errors import InvalidInput, NegativeNetPayError
from payroll.core.utils import ZERO, setup_logging
from payroll.payroll.models import (
    AttendanceRecord, Bonus, Deductions, Earnings, Employee, EmployeeCompensationProfile,
    EmployerContributions, PayPeriod, PayrollCalculationResult,
)
from payroll.tax.brackets import HUNDRED, BracketSet, TaxBracketRegistry
from payroll.tax.paye import PAYECalculator
from payroll.tax.statutory import StatutoryTables


class PayrollEngine:
    def __init__(
        self,
        tenant_id: str,
        registry: TaxBracketRegistry,
        tables: StatutoryTables = None,
        config: PayrollConfig = None,
        logger=None,
    ):
        self.tenant_id = tenant_id
        self.registry = registry
        self.tables = tables or StatutoryTables.from_settings()
        self.config = config or PayrollConfig.from_settings()
        self.logger = logger or setup_logging(tenant_id)
        self.paye = PAYECalculator(personal_relief=self.config.personal_relief, registry=registry)

    def resolve_brackets(self, period: PayPeriod) -> BracketSet:
        return self.registry.active_brackets_as_of(period.pay_date)

    def compute_earnings(
        self,
        profile: EmployeeCompensationProfile,
        attendance: AttendanceRecord,
        bonuses: Sequence[Bonus] = (),
    ) -> Earnings:
        cfg = self.config
        daily_rate = profile.monthly_base_salary / cfg.standard_working_days
        hourly_rate = daily_rate / cfg.standard_hours_per_day
        base = cfg.round(daily_rate * attendance.days_worked)
        overtime = cfg.round(hourly_rate * cfg.overtime_multiplier * attendance.overtime_hours)
        bonus_total = cfg.round(sum((b.amount for b in bonuses), ZERO))
        allowance_total = cfg.round(sum((a.amount for a in profile.allowances), ZERO))
        return Earnings(
            base_salary=base,
            overtime=overtime,
            bonuses=bonus_total,
            allowances=allowance_total,
            gross=base + overtime + bonus_total + allowance_total,
        )

    def taxable_income(self, gross: Decimal, pension_fund: Decimal, voluntary_pension: Decimal) -> Decimal:
        pre_tax = ZERO
        if self.config.pension_fund_pre_tax:
            pre_tax += pension_fund
        if self.config.voluntary_pension_pre_tax:
            pre_tax += voluntary_pension
        return max(ZERO, gross - pre_tax)

    def reliefs(self, profile: EmployeeCompensationProfile, pension_contributions: Decimal) -> Tuple[Decimal, Decimal]:
        """Annual insurance and pension reliefs claimed on the profile, capped by config.

        Pension relief is further limited to a share of the annualised pension
        contributions made this period.
        """
        cfg = self.config
        insurance = min(profile.insurance_relief, cfg.insurance_relief_limit)
        pension_cap = pension_contributions * cfg.tax_periods_per_year * cfg.pension_relief_rate_percent / HUNDRED
        pension = min(profile.pension_relief, pension_cap, cfg.pension_relief_limit)
        return insurance, pension

    def calculate(
        self,
        employee: Employee,
        profile: Optional[EmployeeCompensationProfile],
        attendance: Optional[AttendanceRecord],
        period: PayPeriod,
        bonuses: Sequence[Bonus] = (),
        brackets: BracketSet = None,
    ) -> PayrollCalculationResult:
        employee_id = employee.employee_id
        if profile is None:
            raise InvalidInput(f"No compensation profile for employee {employee_id}")
        if attendance is None:
            raise InvalidInput(f"No attendance record for employee {employee_id}")
        if profile.employee_id != employee_id or attendance.employee_id != employee_id:
            raise InvalidInput(
                f"Profile/attendance belong to {profile.employee_id}/{attendance.employee_id}, "
                f"not {employee_id}"
            )
        if brackets is None:
            brackets = self.resolve_brackets(period)
        elif not isinstance(brackets, BracketSet):
            brackets = BracketSet.build(list(brackets), as_of=period.pay_date)

        cfg = self.config
        earnings = self.compute_earnings(profile, attendance, bonuses)
        gross = earnings.gross

        pension_fund = cfg.round(self.tables.pension_fund_contribution(gross))
        pension_tier1 = min(cfg.round(self.tables.pension_fund_tiers(gross).tier1), pension_fund)
        voluntary = cfg.round(gross * profile.pension_contribution_rate_percent / HUNDRED)
        taxable = self.taxable_income(gross, pension_fund, voluntary)

        # brackets and reliefs are annual; tax is computed on the annualised figure
        periods = cfg.tax_periods_per_year
        if profile.is_tax_exempt:
            tax_detail = None
            income_tax = cfg.round(ZERO)
        else:
            insurance_relief, pension_relief = self.reliefs(profile, pension_fund + voluntary)
            tax_detail = self.paye.calculate(
                taxable * periods, brackets, cfg.personal_relief,
                insurance_relief=insurance_relief, pension_relief=pension_relief,
            )
            income_tax = cfg.round(tax_detail.net_tax / periods)

        health_fund = cfg.round(self.tables.health_fund_contribution(gross))
        levy = cfg.round(self.tables.housing_levy(gross))
        loans = cfg.round(sum((loan.installment for loan in profile.active_loan_deductions), ZERO))
        other = cfg.round(sum((d.amount for d in profile.other_fixed_deductions), ZERO))

        total = income_tax + health_fund + pension_fund + levy + voluntary + loans + other
        net_pay = gross - total
        if net_pay < 0:
            self.logger.warning(f"Negative net pay for {employee_id} in {period.period_id}: gross={gross} deductions={total}")
            raise NegativeNetPayError(employee_id, gross, total)

        return PayrollCalculationResult(
            employee_id=employee_id,
            period=period,
            earnings=earnings,
            deductions=Deductions(
                income_tax=income_tax,
                health_fund_contribution=health_fund,
                pension_fund_contribution=pension_fund,
                housing_levy=levy,
                voluntary_pension=voluntary,
                loans=loans,
                other=other,
                total=total,
                pension_fund_tier1=pension_tier1,
                pension_fund_tier2=pension_fund - pension_tier1,
            ),
            taxable_income=cfg.round(taxable),
            net_pay=net_pay,
            applied_bracket_set_id=brackets.set_id,
            tax_detail=tax_detail,
            employer_contributions=self.employer_contributions(gross),
            tax_exempt=profile.is_tax_exempt,
        )

    def employer_contributions(self, gross: Decimal) -> EmployerContributions:
        cfg = self.config
        tiers = self.tables.employer_pension_fund_tiers(gross)
        total = cfg.round(tiers.total)
        tier1 = min(cfg.round(tiers.tier1), total)
        return EmployerContributions(
            pension_fund_tier1=tier1,
            pension_fund_tier2=total - tier1,
            housing_levy=cfg.round(self.tables.employer_housing_levy(gross)),
        )

    def run_payroll(self, items: Sequence[Any], period: PayPeriod):
        """Sequential convenience wrapper; see PayrollBulkProcessor for the pooled run."""
        from payroll.payroll.bulk_processor import PayrollBulkProcessor
        return PayrollBulkProcessor(self, max_workers=1).calculate_batch(items, period)
