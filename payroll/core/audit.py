"""
Audit trail for payroll and tax-table actions.

The calculation core never writes here itself: callers record who did what
after a calculation, batch run or registry change, using the structured
to_dict() output of the core for the before/after snapshots.
"""
import json
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from payroll.core.config import settings


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    CALCULATE = "calculate"
    APPROVE = "approve"


class AuditLogger:
    """Append-only JSON-lines audit log per tenant."""

    def __init__(self, tenant_id: str, audit_dir: Optional[str] = None):
        self.tenant_id = tenant_id
        self.audit_dir = Path(audit_dir or settings.AUDIT_LOG_PATH)
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self.changes_log = self.audit_dir / f"{tenant_id}_changes.jsonl"

    def log_action(
        self,
        actor: str,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Record one action with before/after snapshots."""
        log_entry = {
            'timestamp': datetime.now().isoformat(),
            'tenant_id': self.tenant_id,
            'actor': actor,
            'action': AuditAction(action).value,
            'entity_type': entity_type,
            'entity_id': entity_id,
            'before': before,
            'after': after,
        }
        with open(self.changes_log, 'a', encoding='utf-8') as f:
            f.write(json.dumps(log_entry, default=str) + '\n')
        return log_entry

    def log_calculation(self, actor: str, result) -> Dict[str, Any]:
        """Record a single-employee calculation (PayrollCalculationResult)."""
        entity_id = f"{result.period.period_id}:{result.employee_id}"
        return self.log_action(actor, AuditAction.CALCULATE, 'payroll_calculation', entity_id, after=result.to_dict())

    def log_batch(self, actor: str, batch) -> Dict[str, Any]:
        """Record a batch run (PayrollBatchResult) with its per-employee breakdown."""
        return self.log_action(actor, AuditAction.CALCULATE, 'payroll_batch', batch.period.period_id, after=batch.summary())

    def _read_entries(self) -> List[Dict[str, Any]]:
        if not self.changes_log.exists():
            return []
        entries = []
        with open(self.changes_log, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return entries

    def get_change_history(self, entity_type: str, entity_id: str) -> List[Dict[str, Any]]:
        """Get change history for specific entity, newest first."""
        changes = [
            e for e in reversed(self._read_entries())
            if e.get('entity_type') == entity_type and e.get('entity_id') == entity_id
        ]
        # ties keep newest-first file order
        changes.sort(key=lambda x: x['timestamp'], reverse=True)
        return changes

    def get_recent_actions(self, days: int = 30, action: Optional[AuditAction] = None) -> List[Dict[str, Any]]:
        cutoff = datetime.now() - timedelta(days=days)
        history = []
        for entry in reversed(self._read_entries()):
            try:
                if datetime.fromisoformat(entry['timestamp']) < cutoff:
                    continue
            except (KeyError, ValueError):
                continue
            if action is None or entry.get('action') == AuditAction(action).value:
                history.append(entry)
        history.sort(key=lambda x: x['timestamp'], reverse=True)
        return history
