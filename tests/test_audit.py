import json

from payroll.core.audit import AuditAction, AuditLogger
from payroll.core.config import PayrollConfig, settings
from payroll.payroll.engine import PayrollEngine
from payroll.payroll.models import AttendanceRecord, Employee, EmployeeCompensationProfile, PayPeriod, PayrollInput
from payroll.tax.brackets import TaxBracketRegistry


def test_log_action_and_history(tmp_path):
    audit = AuditLogger("tenant-a", audit_dir=str(tmp_path))
    reg = TaxBracketRegistry.from_table(settings.PAYE_BRACKETS, "2025-01-01", tenant_id="tenant-a")
    before = reg.get("BR005").to_dict()
    after = reg.update_bracket("BR005", rate=36).to_dict()
    audit.log_action("admin@acme", AuditAction.CREATE, "tax_bracket", "BR005", after=before)
    audit.log_action("admin@acme", AuditAction.UPDATE, "tax_bracket", "BR005", before=before, after=after)
    audit.log_action("admin@acme", "deactivate", "tax_bracket", "BR004")

    history = audit.get_change_history("tax_bracket", "BR005")
    assert [h["action"] for h in history] == ["update", "create"]
    assert history[0]["before"]["rate"] == before["rate"]
    assert history[0]["after"]["rate"] == "36"
    assert history[0]["tenant_id"] == "tenant-a"
    assert audit.get_change_history("tax_bracket", "missing") == []


def test_entries_are_json_lines(tmp_path):
    audit = AuditLogger("tenant-b", audit_dir=str(tmp_path))
    audit.log_action("clerk", AuditAction.APPROVE, "payroll_batch", "2025-01")
    lines = (tmp_path / "tenant-b_changes.jsonl").read_text().splitlines()
    entry = json.loads(lines[0])
    assert set(entry) == {"timestamp", "tenant_id", "actor", "action", "entity_type", "entity_id", "before", "after"}
    assert entry["action"] == "approve"


def test_log_calculation_and_batch(tmp_path):
    reg = TaxBracketRegistry.from_table(settings.PAYE_BRACKETS, "2025-01-01", tenant_id="tenant-c")
    eng = PayrollEngine("tenant-c", reg, config=PayrollConfig())
    period = PayPeriod("2025-01", "2025-01-01", "2025-01-31")
    item = PayrollInput(Employee("E1"), EmployeeCompensationProfile("E1", 100000), AttendanceRecord("E1", 22))
    result = eng.calculate(item.employee, item.profile, item.attendance, period)
    batch = eng.run_payroll([item], period)

    audit = AuditLogger("tenant-c", audit_dir=str(tmp_path))
    audit.log_calculation("payroll-bot", result)
    audit.log_batch("payroll-bot", batch)

    calc = audit.get_change_history("payroll_calculation", "2025-01:E1")
    assert calc[0]["after"]["net_pay"] == "72904.71"
    run = audit.get_change_history("payroll_batch", "2025-01")
    assert run[0]["after"]["totals"]["net"] == "72904.71"
    assert len(audit.get_recent_actions(days=1, action=AuditAction.CALCULATE)) == 2
    assert audit.get_recent_actions(days=1, action=AuditAction.APPROVE) == []
