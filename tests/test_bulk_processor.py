import threading
from decimal import Decimal

import pytest

from payroll.core.config import PayrollConfig, settings
from payroll.core.errors import ConfigurationError
from payroll.payroll.bulk_processor import OutcomeStatus, PayrollBulkProcessor
from payroll.payroll.engine import PayrollEngine
from payroll.payroll.models import (
    AttendanceRecord, Employee, EmployeeCompensationProfile, LoanDeduction, PayPeriod, PayrollInput,
)
from payroll.tax.brackets import TaxBracketRegistry

JAN = PayPeriod("2025-01", "2025-01-01", "2025-01-31")


def make_engine(cls=PayrollEngine):
    reg = TaxBracketRegistry.from_table(settings.PAYE_BRACKETS, "2025-01-01", tenant_id="test-batch")
    return cls("test-batch", reg, config=PayrollConfig())


def staff(n):
    items = []
    for i in range(n):
        eid = f"E{i:03d}"
        items.append(PayrollInput(
            Employee(eid),
            EmployeeCompensationProfile(eid, 25000 + i * 7300),
            AttendanceRecord(eid, 22 - i % 3, overtime_hours=i % 5),
        ))
    return items


def test_batch_preserves_input_order():
    items = staff(25)
    batch = PayrollBulkProcessor(make_engine(), max_workers=4).calculate_batch(items, JAN)
    assert [o.employee_id for o in batch.outcomes] == [i.employee_id for i in items]
    assert [r.employee_id for r in batch.results] == [i.employee_id for i in items]
    assert batch.employee_count == 25
    assert batch.failure_count == 0
    assert not batch.cancelled


def test_batch_totals_match_sum_of_results():
    batch = PayrollBulkProcessor(make_engine(), max_workers=3).calculate_batch(staff(12), JAN)
    assert sum(r.net_pay for r in batch.results) == batch.total_net
    assert sum(r.earnings.gross for r in batch.results) == batch.total_gross
    assert batch.total_gross - batch.total_deductions == batch.total_net
    assert sum(r.deductions.income_tax for r in batch.results) == batch.total_tax


def test_batch_matches_sequential_run():
    eng = make_engine()
    items = staff(10)
    pooled = PayrollBulkProcessor(eng, max_workers=4).calculate_batch(items, JAN)
    sequential = eng.run_payroll(items, JAN)
    assert pooled.results == sequential.results
    assert pooled.applied_bracket_set_id == sequential.applied_bracket_set_id


def test_failures_are_isolated():
    items = staff(4)
    items.insert(1, PayrollInput(Employee("NOPROFILE"), None, AttendanceRecord("NOPROFILE", 22)))
    items.append(PayrollInput(
        Employee("BROKE"),
        EmployeeCompensationProfile("BROKE", 20000, active_loan_deductions=(LoanDeduction("L", 50000),)),
        AttendanceRecord("BROKE", 22),
    ))
    batch = PayrollBulkProcessor(make_engine(), max_workers=2).calculate_batch(items, JAN)
    assert batch.employee_count == 4
    assert batch.failure_count == 2
    failed = {o.employee_id: o.error_type for o in batch.failures}
    assert failed == {"NOPROFILE": "InvalidInput", "BROKE": "NegativeNetPayError"}
    assert batch.outcomes[1].status == OutcomeStatus.FAILED
    assert sum(r.net_pay for r in batch.results) == batch.total_net


def test_broken_brackets_abort_batch():
    reg = TaxBracketRegistry("test-batch")
    eng = PayrollEngine("test-batch", reg, config=PayrollConfig())
    with pytest.raises(ConfigurationError):
        PayrollBulkProcessor(eng, max_workers=2).calculate_batch(staff(3), JAN)


class ExplodingEngine(PayrollEngine):
    def calculate(self, employee, *args, **kwargs):
        if employee.employee_id == "E002":
            raise ConfigurationError("health fund table vanished")
        return super().calculate(employee, *args, **kwargs)


def test_configuration_error_in_worker_aborts():
    with pytest.raises(ConfigurationError):
        PayrollBulkProcessor(make_engine(ExplodingEngine), max_workers=2).calculate_batch(staff(6), JAN)


def test_cancel_before_start():
    stop = threading.Event()
    stop.set()
    batch = PayrollBulkProcessor(make_engine(), max_workers=2).calculate_batch(staff(5), JAN, cancel_event=stop)
    assert batch.cancelled
    assert batch.cancelled_count == 5
    assert batch.employee_count == 0
    assert batch.total_net == 0


def test_cancel_mid_run_keeps_partial_results():
    stop = threading.Event()

    class StoppingEngine(PayrollEngine):
        def calculate(self, *args, **kwargs):
            result = super().calculate(*args, **kwargs)
            stop.set()
            return result

    batch = PayrollBulkProcessor(make_engine(StoppingEngine), max_workers=1).calculate_batch(
        staff(5), JAN, cancel_event=stop
    )
    assert batch.cancelled
    assert [o.status for o in batch.outcomes] == [OutcomeStatus.SUCCESS] + [OutcomeStatus.CANCELLED] * 4
    assert batch.total_net == batch.results[0].net_pay


def test_summary_and_frame():
    batch = PayrollBulkProcessor(make_engine(), max_workers=2).calculate_batch(staff(6), JAN)
    s = batch.summary()
    assert s["total_employees"] == 6
    assert s["totals"]["net"] == str(batch.total_net)
    assert s["bracket_set_id"] == batch.applied_bracket_set_id
    assert len(s["employee_details"]) == 6
    df = batch.to_frame()
    assert list(df["employee_id"]) == [f"E{i:03d}" for i in range(6)]
    assert df["net"].sum() == pytest.approx(float(batch.total_net))
    assert (df["gross"] - df["total_deductions"] - df["net"]).abs().max() < 1e-6


def test_empty_batch():
    batch = PayrollBulkProcessor(make_engine(), max_workers=2).calculate_batch([], JAN)
    assert batch.employee_count == 0
    assert batch.total_net == Decimal("0")
    assert batch.summary()["averages"]["net"] == "0"
    assert batch.to_frame().empty


def test_employer_contributions_in_summary_and_frame():
    batch = PayrollBulkProcessor(make_engine(), max_workers=2).calculate_batch(staff(4), JAN)
    expected = sum(r.employer_contributions.total for r in batch.results)
    assert batch.total_employer_contributions == expected > 0
    assert batch.summary()["totals"]["employer_contributions"] == str(expected)
    df = batch.to_frame()
    assert (df["employer_pension_fund"] + df["employer_housing_levy"]).sum() == pytest.approx(float(expected))
