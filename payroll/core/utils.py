import logging
import os
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from payroll.core.config import settings
from payroll.core.errors import InvalidInput

ZERO = Decimal("0")
THOUSANDS = re.compile(r"^[-+]?\d{1,3}(,\d{3})+(\.\d+)?$")


def mkdir_safe(path: str):
    Path(path).mkdir(parents=True, exist_ok=True)


def setup_logging(tenant_id: str = "system", *, log_level: str = None):
    logger_name = f"{settings.APP_NAME}.{tenant_id}"
    logger = logging.getLogger(logger_name)
    if logger.handlers:
        return logger
    level = log_level or settings.LOG_LEVEL
    logger.setLevel(getattr(logging, level))
    log_dir = settings.LOG_PATH
    mkdir_safe(log_dir)
    logfile = Path(log_dir) / f"{tenant_id}.log"
    handler = RotatingFileHandler(str(logfile), maxBytes=10_000_000, backupCount=5)
    formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    if os.getenv("DEV", "").lower() in ("1", "true", "yes"):
        ch = logging.StreamHandler()
        ch.setFormatter(formatter)
        logger.addHandler(ch)
    logger.propagate = False
    return logger


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """Coerce int/float/str/Decimal to Decimal, going through str for floats."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise InvalidInput(f"{field} must be numeric, got {value!r}")
    else:
        text = str(value).strip()
        if "," in text:
            if not THOUSANDS.match(text):
                raise InvalidInput(f"{field} has misplaced thousands separators: {value!r}")
            text = text.replace(",", "")
        try:
            result = Decimal(text)
        except (InvalidOperation, ValueError):
            raise InvalidInput(f"{field} must be numeric, got {value!r}") from None
    if not result.is_finite():
        raise InvalidInput(f"{field} must be a finite number, got {value!r}")
    return result


def non_negative(value: Any, field: str = "amount") -> Decimal:
    amount = to_decimal(value, field)
    if amount < 0:
        raise InvalidInput(f"{field} cannot be negative: {amount}")
    return amount


def parse_date(value: Any, field: str = "date") -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise InvalidInput(f"{field} is not a valid ISO date: {value!r}") from None


def fiscal_year_of(day: date, start_month: int = 1) -> int:
    """Fiscal years are labelled by the calendar year in which they end."""
    if start_month == 1:
        return day.year
    return day.year + 1 if day.month >= start_month else day.year


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)
