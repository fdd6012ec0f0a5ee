from bisect import bisect_left
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from payroll.core.errors import ConfigurationError, InvalidInput
from payroll.core.utils import ZERO, non_negative, to_decimal
from payroll.tax.brackets import HUNDRED, BracketSet, TaxBracket, TaxBracketRegistry


@dataclass(frozen=True)
class PAYEStep:
    bracket_id: str
    income_in_bracket: Decimal
    rate: Decimal
    bracket_tax: Decimal
    cumulative_tax: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bracket_id": self.bracket_id,
            "income_in_bracket": str(self.income_in_bracket),
            "rate": str(self.rate),
            "bracket_tax": str(self.bracket_tax),
            "cumulative_tax": str(self.cumulative_tax),
        }


@dataclass(frozen=True)
class PAYECalculationResult:
    gross_income: Decimal
    total_tax: Decimal
    personal_relief: Decimal
    net_tax: Decimal
    effective_rate: Decimal
    steps: Tuple[PAYEStep, ...] = field(default=())
    bracket_set_id: Optional[str] = None
    insurance_relief: Decimal = ZERO
    pension_relief: Decimal = ZERO

    @property
    def total_relief(self) -> Decimal:
        return self.personal_relief + self.insurance_relief + self.pension_relief

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gross_income": str(self.gross_income),
            "total_tax": str(self.total_tax),
            "personal_relief": str(self.personal_relief),
            "insurance_relief": str(self.insurance_relief),
            "pension_relief": str(self.pension_relief),
            "total_relief": str(self.total_relief),
            "net_tax": str(self.net_tax),
            "effective_rate": str(self.effective_rate),
            "steps": [s.to_dict() for s in self.steps],
            "bracket_set_id": self.bracket_set_id,
        }


BracketsLike = Union[BracketSet, Sequence[TaxBracket]]


class PAYECalculator:
    """Progressive bracket walk with personal, insurance and pension reliefs.

    Never rounds and never touches the registry; callers apply their own
    rounding policy to the figures returned.
    """

    def __init__(self, personal_relief: Any = Decimal("28800"), registry: Optional[TaxBracketRegistry] = None):
        self.personal_relief = non_negative(personal_relief, "personal_relief")
        self.registry = registry

    @staticmethod
    def _as_set(brackets: BracketsLike) -> BracketSet:
        if isinstance(brackets, BracketSet):
            if not brackets.brackets:
                raise ConfigurationError("Empty bracket set")
            return brackets
        if brackets is None:
            raise ConfigurationError("No tax brackets supplied")
        return BracketSet.build(list(brackets))

    def calculate(
        self,
        taxable_income: Any,
        brackets: BracketsLike,
        personal_relief: Any = None,
        insurance_relief: Any = ZERO,
        pension_relief: Any = ZERO,
    ) -> PAYECalculationResult:
        """Walk the brackets, then subtract every relief from the gross tax (floored at 0)."""
        income = to_decimal(taxable_income, "taxable_income")
        if income < 0:
            raise InvalidInput(f"Taxable income cannot be negative: {income}")
        relief = self.personal_relief if personal_relief is None else non_negative(personal_relief, "personal_relief")
        insurance = non_negative(insurance_relief, "insurance_relief")
        pension = non_negative(pension_relief, "pension_relief")
        bracket_set = self._as_set(brackets)

        tax_due = ZERO
        steps: List[PAYEStep] = []
        for bracket in bracket_set:
            if income <= bracket.min_income:
                break
            if bracket.is_open_ended:
                income_in_bracket = income - bracket.min_income
            else:
                income_in_bracket = min(income - bracket.min_income, bracket.width)
            bracket_tax = income_in_bracket * bracket.rate / HUNDRED
            tax_due += bracket_tax
            steps.append(PAYEStep(
                bracket_id=bracket.id,
                income_in_bracket=income_in_bracket,
                rate=bracket.rate,
                bracket_tax=bracket_tax,
                cumulative_tax=tax_due,
            ))
            if bracket.max_income is not None and income <= bracket.max_income:
                break

        net_tax = max(ZERO, tax_due - relief - insurance - pension)
        effective_rate = net_tax / income * HUNDRED if income > 0 else ZERO
        return PAYECalculationResult(
            gross_income=income,
            total_tax=tax_due,
            personal_relief=relief,
            net_tax=net_tax,
            effective_rate=effective_rate,
            steps=tuple(steps),
            bracket_set_id=bracket_set.set_id,
            insurance_relief=insurance,
            pension_relief=pension,
        )

    def calculate_as_of(self, taxable_income: Any, as_of: Any, personal_relief: Any = None) -> PAYECalculationResult:
        if self.registry is None:
            raise ConfigurationError("No tax bracket registry configured")
        return self.calculate(taxable_income, self.registry.active_brackets_as_of(as_of), personal_relief)

    def lookup_tax(self, taxable_income: Any, brackets: BracketsLike) -> Decimal:
        """Gross tax from the precomputed cumulative amounts, same result as the walk."""
        income = to_decimal(taxable_income, "taxable_income")
        if income < 0:
            raise InvalidInput(f"Taxable income cannot be negative: {income}")
        bracket_set = self._as_set(brackets)
        # last bracket whose min_income is strictly below income
        index = bisect_left([b.min_income for b in bracket_set], income) - 1
        if index < 0:
            return ZERO
        bracket = bracket_set[index]
        portion = income - bracket.min_income
        if not bracket.is_open_ended:
            portion = min(portion, bracket.width)
        return bracket_set.cumulative_below[index] + portion * bracket.rate / HUNDRED
