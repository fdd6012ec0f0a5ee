"""
Tax configuration tables: templates and loaders for PAYE brackets and
health-fund bands supplied by the configuration store as CSV/JSON or DataFrames.
"""
import math
from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd

from payroll.core.config import settings
from payroll.core.errors import BracketValidationError, InvalidInput
from payroll.core.utils import setup_logging
from payroll.tax.brackets import BracketStatus, TaxBracket, TaxBracketRegistry
from payroll.tax.statutory import DeductionBand, HealthFundTable

TableSource = Union[pd.DataFrame, str, Path]

BRACKET_COLUMNS = ['id', 'min_income', 'max_income', 'rate', 'effective_from', 'effective_to', 'status', 'description']
BAND_COLUMNS = ['min_salary', 'max_salary', 'fixed_contribution']


def _open_ended(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return True
    return str(value).strip().lower() in ('', 'inf', 'infinity', 'none', 'no limit')


def _blank(value: Any) -> bool:
    return value is None or value is pd.NaT or (isinstance(value, float) and math.isnan(value)) or str(value).strip() == ''


class TaxConfigManager:
    """Tax table templates, loading and registry seeding."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self.logger = setup_logging(tenant_id)

    def get_template(self) -> pd.DataFrame:
        """PAYE bracket template pre-filled with the configured defaults."""
        rows = []
        for lo, hi, rate in settings.PAYE_BRACKETS:
            rows.append({
                'id': None,
                'min_income': lo,
                'max_income': hi,
                'rate': rate,
                'effective_from': settings.PAYE_EFFECTIVE_FROM,
                'effective_to': None,
                'status': BracketStatus.ACTIVE.value,
                'description': 'Open-ended top bracket' if hi is None else '',
            })
        return pd.DataFrame(rows, columns=BRACKET_COLUMNS)

    def get_band_template(self) -> pd.DataFrame:
        """Health-fund band template pre-filled with the configured defaults."""
        return pd.DataFrame(
            [{'min_salary': lo, 'max_salary': hi, 'fixed_contribution': amt} for lo, hi, amt in settings.SHIF_BANDS],
            columns=BAND_COLUMNS,
        )

    def load_table(self, source: TableSource) -> pd.DataFrame:
        if isinstance(source, pd.DataFrame):
            df = source.copy()
        else:
            file_path = Path(source)
            if not file_path.exists():
                raise InvalidInput(f"File not found: {file_path}")
            ext = file_path.suffix.lower()
            if ext == '.csv':
                df = pd.read_csv(file_path)
            elif ext == '.json':
                df = pd.read_json(file_path, orient='records')
            else:
                raise InvalidInput(f"Unsupported file format: {ext}")
        df.columns = [str(c).strip().lower() for c in df.columns]
        return df

    def load_brackets(self, source: TableSource) -> List[TaxBracket]:
        df = self.load_table(source)
        missing = {'min_income', 'max_income', 'rate', 'effective_from'} - set(df.columns)
        if missing:
            raise InvalidInput(f"Bracket table is missing columns: {sorted(missing)}")

        for col in ('effective_from', 'effective_to'):
            if col not in df.columns:
                continue
            raw = df[col].copy()
            df[col] = pd.to_datetime(raw, errors='coerce').dt.strftime('%Y-%m-%d')
            bad = [value for value, parsed in zip(raw, df[col]) if not _blank(value) and _blank(parsed)]
            if bad:
                raise InvalidInput(f"Bracket table has unparseable {col} values: {bad}")

        brackets = []
        for row in df.to_dict(orient='records'):
            if _blank(row.get('effective_from')):
                raise InvalidInput(f"Bracket row has no valid effective_from: {row}")
            brackets.append(TaxBracket.create(
                min_income=row['min_income'],
                max_income=None if _open_ended(row['max_income']) else row['max_income'],
                rate=row['rate'],
                effective_from=row['effective_from'],
                effective_to=None if _blank(row.get('effective_to')) else row['effective_to'],
                status=BracketStatus.ACTIVE if _blank(row.get('status')) else str(row['status']).strip().lower(),
                id=None if _blank(row.get('id')) else str(row['id']).strip(),
                description='' if _blank(row.get('description')) else str(row['description']),
                cumulative_tax_below=None if _blank(row.get('cumulative_tax_below')) else row['cumulative_tax_below'],
            ))
        return brackets

    def load_health_fund_table(self, source: TableSource) -> HealthFundTable:
        df = self.load_table(source)
        missing = set(BAND_COLUMNS) - set(df.columns)
        if missing:
            raise InvalidInput(f"Band table is missing columns: {sorted(missing)}")
        bands = [
            DeductionBand.create(
                row['min_salary'],
                None if _open_ended(row['max_salary']) else row['max_salary'],
                row['fixed_contribution'],
            )
            for row in df.to_dict(orient='records')
        ]
        return HealthFundTable(bands)

    def seed_registry(self, registry: TaxBracketRegistry, source: TableSource) -> Dict[str, Any]:
        """Add every bracket in the table; rejected rows are reported, not fatal."""
        added, rejected = [], []
        for bracket in self.load_brackets(source):
            try:
                added.append(registry.add_bracket(bracket))
            except (BracketValidationError, InvalidInput) as exc:
                rejected.append({'bracket': bracket.to_dict(), 'error': str(exc), 'error_type': type(exc).__name__})
        self.logger.info(f"Seeded registry for {self.tenant_id}: {len(added)} added, {len(rejected)} rejected")
        return {'added': added, 'rejected': rejected, 'total': len(registry.list_brackets())}

    def get_config_stats(self, registry: TaxBracketRegistry) -> Dict[str, Any]:
        brackets = registry.list_brackets()
        by_status: Dict[str, int] = {}
        for b in brackets:
            by_status[b.status.value] = by_status.get(b.status.value, 0) + 1
        active = [b for b in brackets if b.status == BracketStatus.ACTIVE]
        return {
            'total_brackets': len(brackets),
            'by_status': by_status,
            'top_rate': str(max((b.rate for b in active), default=0)),
            'latest_effective_from': max((b.effective_from for b in brackets), default=None),
        }

    def export_frame(self, registry: TaxBracketRegistry) -> pd.DataFrame:
        return pd.DataFrame([b.to_dict() for b in registry.list_brackets()], columns=BRACKET_COLUMNS + ['cumulative_tax_below'])
