import json
from decimal import Decimal

import pandas as pd
import pytest

from payroll.core.errors import ConfigurationError, InvalidInput
from payroll.tax.brackets import BracketSet, TaxBracketRegistry
from payroll.tax.config_manager import TaxConfigManager
from payroll.tax.paye import PAYECalculator


def test_template_round_trips_through_csv(tmp_path):
    mgr = TaxConfigManager("test-config")
    file = tmp_path / "brackets.csv"
    mgr.get_template().to_csv(file, index=False)
    brackets = mgr.load_brackets(str(file))
    assert len(brackets) == 5
    assert brackets[-1].max_income is None
    assert brackets[1].min_income == Decimal("288001")
    assert brackets[0].effective_to is None


def test_seed_registry_and_calculate():
    mgr = TaxConfigManager("test-config")
    reg = TaxBracketRegistry("test-config")
    report = mgr.seed_registry(reg, mgr.get_template())
    assert len(report["added"]) == 5
    assert report["rejected"] == []
    res = PAYECalculator(registry=reg).calculate_as_of(1200000, "2025-03-31")
    assert res.net_tax == Decimal("268599.45")


def test_seeding_twice_rejects_overlaps():
    mgr = TaxConfigManager("test-config")
    reg = TaxBracketRegistry("test-config")
    mgr.seed_registry(reg, mgr.get_template())
    report = mgr.seed_registry(reg, mgr.get_template())
    assert report["added"] == []
    assert len(report["rejected"]) == 5
    assert {r["error_type"] for r in report["rejected"]} == {"OverlapConflict"}
    assert report["total"] == 5


def test_load_json_with_text_open_ended(tmp_path):
    rows = [
        {"id": "K1", "min_income": 0, "max_income": 100000, "rate": 10, "effective_from": "2026-01-01"},
        {"id": "K2", "min_income": 100001, "max_income": "No limit", "rate": 20, "effective_from": "2026-01-01"},
    ]
    file = tmp_path / "brackets.json"
    file.write_text(json.dumps(rows))
    brackets = TaxConfigManager("test-config").load_brackets(file)
    assert [b.id for b in brackets] == ["K1", "K2"]
    assert brackets[1].is_open_ended


def test_unsupported_or_missing_file(tmp_path):
    mgr = TaxConfigManager("test-config")
    bad = tmp_path / "brackets.xml"
    bad.write_text("<x/>")
    with pytest.raises(InvalidInput):
        mgr.load_brackets(bad)
    with pytest.raises(InvalidInput):
        mgr.load_brackets(tmp_path / "nope.csv")


def test_missing_columns_rejected():
    df = pd.DataFrame([{"Min_Income": 0, "Rate": 10}])
    with pytest.raises(InvalidInput):
        TaxConfigManager("test-config").load_brackets(df)


def test_health_fund_table_from_band_template():
    mgr = TaxConfigManager("test-config")
    table = mgr.load_health_fund_table(mgr.get_band_template())
    assert table.contribution(15000) == 600
    assert table.contribution(250000) == 1700


def test_stats_and_export():
    mgr = TaxConfigManager("test-config")
    reg = TaxBracketRegistry("test-config")
    mgr.seed_registry(reg, mgr.get_template())
    reg.deactivate("BR005")
    stats = mgr.get_config_stats(reg)
    assert stats["total_brackets"] == 5
    assert stats["by_status"] == {"active": 4, "inactive": 1}
    assert Decimal(stats["top_rate"]) == Decimal("32.5")
    df = mgr.export_frame(reg)
    assert len(df) == 5
    assert list(df["id"]) == ["BR001", "BR002", "BR003", "BR004", "BR005"]


def test_unparseable_dates_rejected():
    mgr = TaxConfigManager("test-config")
    df = mgr.get_template()
    df.loc[0, 'effective_to'] = '2025-13-45'
    with pytest.raises(InvalidInput):
        mgr.load_brackets(df)
    df = mgr.get_template()
    df.loc[2, 'effective_from'] = 'soon'
    with pytest.raises(InvalidInput):
        mgr.load_brackets(df)


def test_valid_effective_to_is_kept():
    mgr = TaxConfigManager("test-config")
    df = mgr.get_template()
    df['effective_to'] = '2025-12-31'
    brackets = mgr.load_brackets(df)
    assert all(str(b.effective_to) == '2025-12-31' for b in brackets)


def test_declared_cumulative_tax_is_loaded():
    mgr = TaxConfigManager("test-config")
    df = mgr.get_template()
    df['cumulative_tax_below'] = [0, 28800, 53799.75, 1737399.45, 2907399.125]
    brackets = mgr.load_brackets(df)
    assert brackets[1].cumulative_tax_below == Decimal("28800")
    assert len(BracketSet.build(brackets)) == 5

    df.loc[1, 'cumulative_tax_below'] = 28801
    with pytest.raises(ConfigurationError):
        BracketSet.build(mgr.load_brackets(df))
