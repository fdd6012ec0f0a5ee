"""
Statutory deduction tables: banded health-fund contributions, tiered pension
contributions with a ceiling, and percentage levies with an optional cap.
"""
from bisect import bisect_right
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence, Tuple

from payroll.core.config import Settings, settings
from payroll.core.errors import ConfigurationError
from payroll.core.utils import ZERO, non_negative, to_decimal
from payroll.tax.brackets import HUNDRED, check_partition


@dataclass(frozen=True)
class DeductionBand:
    min_salary: Decimal
    max_salary: Optional[Decimal]
    fixed_contribution: Decimal

    @classmethod
    def create(cls, min_salary: Any, max_salary: Any, fixed_contribution: Any) -> "DeductionBand":
        return cls(
            min_salary=to_decimal(min_salary, "min_salary"),
            max_salary=None if max_salary in (None, "") else to_decimal(max_salary, "max_salary"),
            fixed_contribution=to_decimal(fixed_contribution, "fixed_contribution"),
        )


class HealthFundTable:
    """Ordered, non-overlapping bands covering 0 to unbounded."""

    def __init__(self, bands: Sequence[DeductionBand]):
        ordered = tuple(sorted(bands, key=lambda b: b.min_salary))
        for band in ordered:
            if band.fixed_contribution < 0:
                raise ConfigurationError(f"Negative contribution in band starting {band.min_salary}")
            if band.max_salary is not None and band.min_salary >= band.max_salary:
                raise ConfigurationError(f"Empty band {band.min_salary}-{band.max_salary}")
        check_partition(ordered, "min_salary", "max_salary", "deduction band")
        self.bands: Tuple[DeductionBand, ...] = ordered
        self._lower_bounds = [b.min_salary for b in ordered]

    @classmethod
    def from_rows(cls, rows: Sequence[Tuple[Any, Any, Any]]) -> "HealthFundTable":
        return cls([DeductionBand.create(lo, hi, amount) for lo, hi, amount in rows])

    def band_for(self, gross_pay: Decimal) -> DeductionBand:
        # pay between two whole-unit bands (5999.50) stays in the lower band
        index = bisect_right(self._lower_bounds, gross_pay) - 1
        return self.bands[max(index, 0)]

    def contribution(self, gross_pay: Any) -> Decimal:
        pay = non_negative(gross_pay, "gross_pay")
        return self.band_for(pay).fixed_contribution


def _check_rate(rate_percent: Decimal, label: str):
    if rate_percent < 0 or rate_percent > HUNDRED:
        raise ConfigurationError(f"{label} rate must be within 0-100, got {rate_percent}")


@dataclass(frozen=True)
class TieredContributionRule:
    """Pension fund rule: rate on pensionable pay up to a ceiling.

    The first ``tier1_limit`` of pay is Tier I and the rest Tier II; the split
    only reports where the total came from. ``employer_rate_percent`` defaults
    to a matching contribution.
    """
    rate_percent: Decimal
    ceiling_amount: Decimal
    tier1_limit: Optional[Decimal] = None
    employer_rate_percent: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, "rate_percent", to_decimal(self.rate_percent, "rate_percent"))
        object.__setattr__(self, "ceiling_amount", to_decimal(self.ceiling_amount, "ceiling_amount"))
        _check_rate(self.rate_percent, "Pension fund")
        if self.ceiling_amount < 0:
            raise ConfigurationError(f"Pension fund ceiling cannot be negative: {self.ceiling_amount}")
        if self.tier1_limit is not None:
            object.__setattr__(self, "tier1_limit", to_decimal(self.tier1_limit, "tier1_limit"))
            if self.tier1_limit < 0:
                raise ConfigurationError(f"Tier I limit cannot be negative: {self.tier1_limit}")
        employer = self.rate_percent if self.employer_rate_percent is None else self.employer_rate_percent
        object.__setattr__(self, "employer_rate_percent", to_decimal(employer, "employer_rate_percent"))
        _check_rate(self.employer_rate_percent, "Pension fund employer")

    def for_employer(self) -> "TieredContributionRule":
        return replace(self, rate_percent=self.employer_rate_percent)


@dataclass(frozen=True)
class CappedLevyRule:
    rate_percent: Decimal
    cap_amount: Optional[Decimal] = None
    employer_rate_percent: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, "rate_percent", to_decimal(self.rate_percent, "rate_percent"))
        if self.cap_amount is not None:
            object.__setattr__(self, "cap_amount", to_decimal(self.cap_amount, "cap_amount"))
            if self.cap_amount < 0:
                raise ConfigurationError(f"Levy cap cannot be negative: {self.cap_amount}")
        _check_rate(self.rate_percent, "Levy")
        employer = self.rate_percent if self.employer_rate_percent is None else self.employer_rate_percent
        object.__setattr__(self, "employer_rate_percent", to_decimal(employer, "employer_rate_percent"))
        _check_rate(self.employer_rate_percent, "Levy employer")

    def for_employer(self) -> "CappedLevyRule":
        return replace(self, rate_percent=self.employer_rate_percent)


@dataclass(frozen=True)
class PensionFundContribution:
    tier1: Decimal
    tier2: Decimal

    @property
    def total(self) -> Decimal:
        return self.tier1 + self.tier2

    def to_dict(self) -> Dict[str, str]:
        return {"tier1": str(self.tier1), "tier2": str(self.tier2), "total": str(self.total)}


def health_fund_contribution(gross_pay: Any, table: HealthFundTable) -> Decimal:
    return table.contribution(gross_pay)


def pension_fund_contribution(pensionable_pay: Any, rule: TieredContributionRule) -> Decimal:
    pay = non_negative(pensionable_pay, "pensionable_pay")
    return min(pay * rule.rate_percent / HUNDRED, rule.ceiling_amount)


def pension_fund_tiers(pensionable_pay: Any, rule: TieredContributionRule) -> PensionFundContribution:
    """Split min(pay x rate, ceiling) into Tier I and Tier II."""
    total = pension_fund_contribution(pensionable_pay, rule)
    if rule.tier1_limit is None:
        return PensionFundContribution(tier1=total, tier2=ZERO)
    pay = non_negative(pensionable_pay, "pensionable_pay")
    tier1 = min(min(pay, rule.tier1_limit) * rule.rate_percent / HUNDRED, total)
    return PensionFundContribution(tier1=tier1, tier2=total - tier1)


def housing_levy(gross_pay: Any, rule: CappedLevyRule) -> Decimal:
    pay = non_negative(gross_pay, "gross_pay")
    levy = pay * rule.rate_percent / HUNDRED
    if rule.cap_amount is None:
        return levy
    return min(levy, rule.cap_amount)


@dataclass(frozen=True)
class StatutoryTables:
    """Read-only reference tables shared by every calculation in a run."""
    health_fund_table: HealthFundTable
    pension_rule: TieredContributionRule
    housing_levy_rule: CappedLevyRule

    @classmethod
    def from_settings(cls, s: Settings = None) -> "StatutoryTables":
        s = s or settings
        return cls(
            health_fund_table=HealthFundTable.from_rows(s.SHIF_BANDS),
            pension_rule=TieredContributionRule(
                Decimal(str(s.PENSION_FUND_RATE_PERCENT)),
                Decimal(str(s.PENSION_FUND_CEILING)),
                tier1_limit=Decimal(str(s.PENSION_FUND_TIER1_LIMIT)),
                employer_rate_percent=Decimal(str(s.PENSION_FUND_EMPLOYER_RATE_PERCENT)),
            ),
            housing_levy_rule=CappedLevyRule(
                Decimal(str(s.HOUSING_LEVY_RATE_PERCENT)),
                None if s.HOUSING_LEVY_CAP is None else Decimal(str(s.HOUSING_LEVY_CAP)),
                employer_rate_percent=Decimal(str(s.HOUSING_LEVY_EMPLOYER_RATE_PERCENT)),
            ),
        )

    def health_fund_contribution(self, gross_pay: Any) -> Decimal:
        return health_fund_contribution(gross_pay, self.health_fund_table)

    def pension_fund_contribution(self, pensionable_pay: Any) -> Decimal:
        return pension_fund_contribution(pensionable_pay, self.pension_rule)

    def housing_levy(self, gross_pay: Any) -> Decimal:
        return housing_levy(gross_pay, self.housing_levy_rule)

    def pension_fund_tiers(self, pensionable_pay: Any) -> PensionFundContribution:
        return pension_fund_tiers(pensionable_pay, self.pension_rule)

    def employer_pension_fund_tiers(self, pensionable_pay: Any) -> PensionFundContribution:
        return pension_fund_tiers(pensionable_pay, self.pension_rule.for_employer())

    def employer_housing_levy(self, gross_pay: Any) -> Decimal:
        return housing_levy(gross_pay, self.housing_levy_rule.for_employer())
