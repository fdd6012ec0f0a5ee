"""
Batch payroll processing over a bounded worker pool, with per-employee
failure isolation, input-order results and cooperative cancellation.
"""
import os
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from payroll.core.config import settings
from payroll.core.errors import ConfigurationError, InvalidInput, NegativeNetPayError
from payroll.core.utils import ZERO
from payroll.tax.brackets import BracketSet
from payroll.payroll.engine import PayrollEngine
from payroll.payroll.models import PayPeriod, PayrollCalculationResult, PayrollInput


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class EmployeeOutcome:
    employee_id: str
    status: OutcomeStatus
    result: Optional[PayrollCalculationResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass(frozen=True)
class PayrollBatchResult:
    period: PayPeriod
    outcomes: Tuple[EmployeeOutcome, ...]
    applied_bracket_set_id: str
    cancelled: bool = False
    total_gross: Decimal = field(init=False)
    total_net: Decimal = field(init=False)
    total_deductions: Decimal = field(init=False)
    total_tax: Decimal = field(init=False)
    total_employer_contributions: Decimal = field(init=False)
    employee_count: int = field(init=False)
    failure_count: int = field(init=False)

    def __post_init__(self):
        results = self.results
        object.__setattr__(self, "total_gross", sum((r.earnings.gross for r in results), ZERO))
        object.__setattr__(self, "total_net", sum((r.net_pay for r in results), ZERO))
        object.__setattr__(self, "total_deductions", sum((r.deductions.total for r in results), ZERO))
        object.__setattr__(self, "total_tax", sum((r.deductions.income_tax for r in results), ZERO))
        object.__setattr__(
            self, "total_employer_contributions", sum((r.employer_contributions.total for r in results), ZERO)
        )
        object.__setattr__(self, "employee_count", len(results))
        object.__setattr__(
            self, "failure_count", sum(1 for o in self.outcomes if o.status == OutcomeStatus.FAILED)
        )

    @property
    def results(self) -> List[PayrollCalculationResult]:
        return [o.result for o in self.outcomes if o.succeeded]

    @property
    def failures(self) -> List[EmployeeOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.FAILED]

    @property
    def cancelled_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.CANCELLED)

    def to_frame(self) -> pd.DataFrame:
        """Per-employee lines for reporting, one row per successful calculation."""
        rows = []
        for r in self.results:
            rows.append({
                'employee_id': r.employee_id,
                'gross': float(r.earnings.gross),
                'paye': float(r.deductions.income_tax),
                'health_fund': float(r.deductions.health_fund_contribution),
                'pension_fund': float(r.deductions.pension_fund_contribution),
                'housing_levy': float(r.deductions.housing_levy),
                'voluntary_pension': float(r.deductions.voluntary_pension),
                'loans': float(r.deductions.loans),
                'other': float(r.deductions.other),
                'total_deductions': float(r.deductions.total),
                'net': float(r.net_pay),
                'employer_pension_fund': float(r.employer_contributions.pension_fund),
                'employer_housing_levy': float(r.employer_contributions.housing_levy),
            })
        columns = ['employee_id', 'gross', 'paye', 'health_fund', 'pension_fund', 'housing_levy',
                   'voluntary_pension', 'loans', 'other', 'total_deductions', 'net',
                   'employer_pension_fund', 'employer_housing_levy']
        return pd.DataFrame(rows, columns=columns)

    def summary(self) -> Dict[str, Any]:
        count = self.employee_count
        return {
            'period': self.period.period_id,
            'total_employees': count,
            'failed': self.failure_count,
            'cancelled': self.cancelled,
            'bracket_set_id': self.applied_bracket_set_id,
            'totals': {
                'gross': str(self.total_gross),
                'paye': str(self.total_tax),
                'deductions': str(self.total_deductions),
                'net': str(self.total_net),
                'employer_contributions': str(self.total_employer_contributions),
            },
            'averages': {
                'gross': str(round(self.total_gross / count, 2)) if count > 0 else "0",
                'net': str(round(self.total_net / count, 2)) if count > 0 else "0",
            },
            'employee_details': [o.to_dict() for o in self.outcomes],
        }


class PayrollBulkProcessor:
    """Runs PayrollEngine.calculate for many employees against one bracket snapshot."""

    def __init__(self, engine: PayrollEngine, max_workers: Optional[int] = None):
        self.engine = engine
        self.logger = engine.logger
        self.max_workers = max_workers or settings.BATCH_WORKERS or os.cpu_count() or 1

    def _calculate_one(
        self,
        item: PayrollInput,
        period: PayPeriod,
        brackets: BracketSet,
        cancel_event: Optional[threading.Event],
    ) -> EmployeeOutcome:
        employee_id = item.employee_id
        if cancel_event is not None and cancel_event.is_set():
            return EmployeeOutcome(employee_id, OutcomeStatus.CANCELLED)
        try:
            result = self.engine.calculate(
                item.employee, item.profile, item.attendance, period,
                bonuses=item.bonuses, brackets=brackets,
            )
        except (InvalidInput, NegativeNetPayError) as exc:
            self.logger.warning(f"Payroll failed for {employee_id} in {period.period_id}: {exc}")
            return EmployeeOutcome(employee_id, OutcomeStatus.FAILED, error=str(exc), error_type=type(exc).__name__)
        return EmployeeOutcome(employee_id, OutcomeStatus.SUCCESS, result=result)

    def calculate_batch(
        self,
        items: Sequence[PayrollInput],
        period: PayPeriod,
        cancel_event: Optional[threading.Event] = None,
    ) -> PayrollBatchResult:
        # one snapshot for the whole run, resolved before any worker starts
        brackets = self.engine.resolve_brackets(period)
        self.logger.info(
            f"Payroll batch {period.period_id}: {len(items)} employees, "
            f"{self.max_workers} workers, brackets {brackets.set_id}"
        )

        outcomes: List[Optional[EmployeeOutcome]] = [None] * len(items)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                pool.submit(self._calculate_one, item, period, brackets, cancel_event): index
                for index, item in enumerate(items)
            }
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in done:
                exc = future.exception()
                if exc is not None:
                    for p in pending:
                        p.cancel()
                    if isinstance(exc, ConfigurationError):
                        self.logger.error(f"Payroll batch {period.period_id} aborted: {exc}")
                    raise exc
            for future in futures:
                outcomes[futures[future]] = future.result()

        cancelled = cancel_event is not None and cancel_event.is_set()
        batch = PayrollBatchResult(
            period=period,
            outcomes=tuple(outcomes),
            applied_bracket_set_id=brackets.set_id,
            cancelled=cancelled,
        )
        self.logger.info(
            f"Payroll batch {period.period_id} finished: {batch.employee_count} ok, "
            f"{batch.failure_count} failed, {batch.cancelled_count} cancelled, net {batch.total_net}"
        )
        return batch
