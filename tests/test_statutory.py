from decimal import Decimal

import pytest

from payroll.core.errors import ConfigurationError, InvalidInput
from payroll.tax.statutory import (
    CappedLevyRule, HealthFundTable, StatutoryTables, TieredContributionRule,
    health_fund_contribution, housing_levy, pension_fund_contribution, pension_fund_tiers,
)


def test_health_fund_bands():
    t = StatutoryTables.from_settings()
    assert t.health_fund_contribution(0) == 150
    assert t.health_fund_contribution(5999) == 150
    assert t.health_fund_contribution(6000) == 300
    assert t.health_fund_contribution(15000) == 600
    assert t.health_fund_contribution(99999) == 1600
    assert t.health_fund_contribution(100000) == 1700
    assert t.health_fund_contribution(2500000) == 1700


def test_health_fund_value_between_whole_unit_bands_stays_low():
    t = StatutoryTables.from_settings()
    assert t.health_fund_contribution(Decimal("5999.50")) == 150


def test_health_fund_negative_rejected():
    table = HealthFundTable.from_rows([(0, 999, 10), (1000, None, 20)])
    with pytest.raises(InvalidInput):
        health_fund_contribution(-1, table)


def test_health_fund_table_validation():
    with pytest.raises(ConfigurationError):
        HealthFundTable.from_rows([(0, 999, 10), (1000, 1999, 20)])
    with pytest.raises(ConfigurationError):
        HealthFundTable.from_rows([(0, 999, 10), (1000, None, 20), (2000, None, 30)])
    with pytest.raises(ConfigurationError):
        HealthFundTable.from_rows([(0, 999, 10), (900, None, 20)])
    with pytest.raises(ConfigurationError):
        HealthFundTable.from_rows([(0, 999, 10), (1500, None, 20)])
    with pytest.raises(ConfigurationError):
        HealthFundTable.from_rows([(0, 999, -10), (1000, None, 20)])


def test_pension_fund_capped():
    rule = TieredContributionRule(6, 2160)
    assert pension_fund_contribution(36000, rule) == Decimal("2160")
    assert pension_fund_contribution(100000, rule) == Decimal("2160")
    assert pension_fund_contribution(20000, rule) == Decimal("1200")
    assert pension_fund_contribution(0, rule) == 0
    with pytest.raises(InvalidInput):
        pension_fund_contribution(-5, rule)


def test_pension_rule_validation():
    with pytest.raises(ConfigurationError):
        TieredContributionRule(120, 2160)
    with pytest.raises(ConfigurationError):
        TieredContributionRule(6, -1)


def test_housing_levy():
    uncapped = CappedLevyRule(Decimal("1.5"))
    assert housing_levy(50000, uncapped) == Decimal("750")
    capped = CappedLevyRule("1.5", 500)
    assert housing_levy(50000, capped) == Decimal("500")
    assert housing_levy(20000, capped) == Decimal("300")
    with pytest.raises(InvalidInput):
        housing_levy(-1, capped)
    with pytest.raises(ConfigurationError):
        CappedLevyRule(1.5, -10)


def test_float_input_coerced_through_str():
    rule = TieredContributionRule(6, 2160)
    assert pension_fund_contribution(0.1 + 0.2, rule) == Decimal("0.30000000000000004") * 6 / 100


def test_pension_fund_tiers():
    rule = TieredContributionRule(6, 2160, tier1_limit=18000)
    low = pension_fund_tiers(10000, rule)
    assert (low.tier1, low.tier2) == (Decimal("600"), Decimal("0"))
    mid = pension_fund_tiers(30000, rule)
    assert (mid.tier1, mid.tier2) == (Decimal("1080"), Decimal("720"))
    high = pension_fund_tiers(100000, rule)
    assert (high.tier1, high.tier2) == (Decimal("1080"), Decimal("1080"))
    assert high.total == pension_fund_contribution(100000, rule)
    untiered = pension_fund_tiers(100000, TieredContributionRule(6, 2160))
    assert (untiered.tier1, untiered.tier2) == (Decimal("2160"), Decimal("0"))


def test_employer_shares():
    t = StatutoryTables.from_settings()
    assert t.employer_pension_fund_tiers(100000).total == Decimal("2160")
    assert t.employer_housing_levy(100000) == Decimal("1500")
    rule = TieredContributionRule(6, 2160, employer_rate_percent=3)
    assert pension_fund_contribution(10000, rule.for_employer()) == Decimal("300")
    with pytest.raises(ConfigurationError):
        CappedLevyRule("1.5", employer_rate_percent=150)


def test_default_housing_levy_cap():
    t = StatutoryTables.from_settings()
    assert t.housing_levy(400000) == Decimal("5000")
    assert t.housing_levy(333400) == Decimal("5000")
    assert t.housing_levy(Decimal("333333.33")) == Decimal("4999.99995")
    assert t.housing_levy(100000) == Decimal("1500")
