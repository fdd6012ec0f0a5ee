from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from payroll.core.errors import ConfigurationError


class RoundingPolicy(str, Enum):
    HALF_UP = "half_up"
    DOWN = "down"
    NEAREST = "nearest"

    @property
    def decimal_mode(self) -> str:
        return {
            RoundingPolicy.HALF_UP: ROUND_HALF_UP,
            RoundingPolicy.DOWN: ROUND_DOWN,
            RoundingPolicy.NEAREST: ROUND_HALF_EVEN,
        }[self]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PAYROLL_")

    APP_NAME: str = Field("PayrollCore", description="Logger namespace")
    LOG_LEVEL: str = Field("INFO", description="Root level for tenant loggers")
    LOG_PATH: str = Field("./data/logs", description="Directory for rotating log files")
    AUDIT_LOG_PATH: str = Field("./data/audit", description="Directory for audit trail files")

    # Engine behaviour
    OVERTIME_MULTIPLIER: float = 1.5
    STANDARD_WORKING_DAYS: int = 22
    STANDARD_HOURS_PER_DAY: int = 8
    ROUNDING_POLICY: RoundingPolicy = RoundingPolicy.HALF_UP
    ROUNDING_QUANTUM: str = "0.01"
    PENSION_FUND_PRE_TAX: bool = True
    VOLUNTARY_PENSION_PRE_TAX: bool = True
    TAX_PERIODS_PER_YEAR: int = 12
    FISCAL_YEAR_START_MONTH: int = 1
    BATCH_WORKERS: Optional[int] = Field(None, description="Worker pool size, defaults to CPU count")

    # PAYE (Kenya 2025, annual KES): (min, max or None, rate percent)
    PAYE_BRACKETS: List[Tuple[float, Optional[float], float]] = [
        (0, 288000, 10.0),
        (288001, 388000, 25.0),
        (388001, 6000000, 30.0),
        (6000001, 9600000, 32.5),
        (9600001, None, 35.0),
    ]
    PAYE_EFFECTIVE_FROM: str = "2025-01-01"
    PERSONAL_RELIEF_ANNUAL: float = 28800.0
    INSURANCE_RELIEF_LIMIT: float = 60000.0
    PENSION_RELIEF_RATE_PERCENT: float = 30.0
    PENSION_RELIEF_LIMIT: float = 240000.0

    # SHIF (monthly KES): (min, max or None, fixed contribution)
    SHIF_BANDS: List[Tuple[float, Optional[float], float]] = [
        (0, 5999, 150),
        (6000, 7999, 300),
        (8000, 11999, 400),
        (12000, 14999, 500),
        (15000, 19999, 600),
        (20000, 24999, 750),
        (25000, 29999, 850),
        (30000, 34999, 900),
        (35000, 39999, 950),
        (40000, 44999, 1000),
        (45000, 49999, 1100),
        (50000, 59999, 1200),
        (60000, 69999, 1300),
        (70000, 79999, 1400),
        (80000, 89999, 1500),
        (90000, 99999, 1600),
        (100000, None, 1700),
    ]

    # NSSF: 6% of pensionable pay, capped at 6% of 36,000; Tier I covers the first 18,000
    PENSION_FUND_RATE_PERCENT: float = 6.0
    PENSION_FUND_CEILING: float = 2160.0
    PENSION_FUND_TIER1_LIMIT: float = 18000.0
    PENSION_FUND_EMPLOYER_RATE_PERCENT: float = 6.0

    # Housing levy: 1.5% of gross, capped monthly; employer matches
    HOUSING_LEVY_RATE_PERCENT: float = 1.5
    HOUSING_LEVY_CAP: Optional[float] = 5000.0
    HOUSING_LEVY_EMPLOYER_RATE_PERCENT: float = 1.5


settings = Settings()


@dataclass(frozen=True)
class PayrollConfig:
    """Explicit engine configuration; nothing in the engine reads globals."""
    overtime_multiplier: Decimal = Decimal("1.5")
    standard_working_days: int = 22
    standard_hours_per_day: int = 8
    rounding_policy: RoundingPolicy = RoundingPolicy.HALF_UP
    rounding_quantum: Decimal = Decimal("0.01")
    pension_fund_pre_tax: bool = True
    voluntary_pension_pre_tax: bool = True
    tax_periods_per_year: int = 12
    personal_relief: Decimal = Decimal("28800")
    insurance_relief_limit: Decimal = Decimal("60000")
    pension_relief_rate_percent: Decimal = Decimal("30")
    pension_relief_limit: Decimal = Decimal("240000")
    fiscal_year_start_month: int = 1

    def __post_init__(self):
        if self.standard_working_days <= 0 or self.standard_hours_per_day <= 0:
            raise ConfigurationError("Standard working days and hours per day must be positive")
        if self.tax_periods_per_year <= 0:
            raise ConfigurationError("Tax periods per year must be positive")
        if Decimal(self.overtime_multiplier) < 0 or Decimal(self.personal_relief) < 0:
            raise ConfigurationError("Overtime multiplier and personal relief cannot be negative")
        if min(Decimal(self.insurance_relief_limit), Decimal(self.pension_relief_limit)) < 0:
            raise ConfigurationError("Relief limits cannot be negative")
        if not 0 <= Decimal(self.pension_relief_rate_percent) <= 100:
            raise ConfigurationError("Pension relief rate must be within 0-100")
        if Decimal(self.rounding_quantum) <= 0:
            raise ConfigurationError("Rounding quantum must be positive")
        if not 1 <= self.fiscal_year_start_month <= 12:
            raise ConfigurationError("Fiscal year start month must be between 1 and 12")

    def round(self, amount: Decimal) -> Decimal:
        return Decimal(amount).quantize(
            Decimal(self.rounding_quantum), rounding=self.rounding_policy.decimal_mode
        )

    @classmethod
    def from_settings(cls, s: Settings = None) -> "PayrollConfig":
        s = s or settings
        return cls(
            overtime_multiplier=Decimal(str(s.OVERTIME_MULTIPLIER)),
            standard_working_days=s.STANDARD_WORKING_DAYS,
            standard_hours_per_day=s.STANDARD_HOURS_PER_DAY,
            rounding_policy=RoundingPolicy(s.ROUNDING_POLICY),
            rounding_quantum=Decimal(s.ROUNDING_QUANTUM),
            pension_fund_pre_tax=s.PENSION_FUND_PRE_TAX,
            voluntary_pension_pre_tax=s.VOLUNTARY_PENSION_PRE_TAX,
            tax_periods_per_year=s.TAX_PERIODS_PER_YEAR,
            personal_relief=Decimal(str(s.PERSONAL_RELIEF_ANNUAL)),
            insurance_relief_limit=Decimal(str(s.INSURANCE_RELIEF_LIMIT)),
            pension_relief_rate_percent=Decimal(str(s.PENSION_RELIEF_RATE_PERCENT)),
            pension_relief_limit=Decimal(str(s.PENSION_RELIEF_LIMIT)),
            fiscal_year_start_month=s.FISCAL_YEAR_START_MONTH,
        )
