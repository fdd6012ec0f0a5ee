"""
Tax Bracket Registry with dated, validated progressive income-tax brackets.

Brackets are closed ranges [min_income, max_income] in currency units. Two
neighbours are contiguous when prev.max < next.min <= prev.max + 1, which
accepts both whole-unit tables (288000 / 288001) and decimal ones
(288000 / 288000.01). The registry is copy-on-write: every mutation swaps in a
new tuple, so a BracketSet handed to an in-flight calculation never changes.
"""
import hashlib
import threading
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from payroll.core.errors import (
    ConfigurationError, InvalidInput, InvalidRange, InvalidRate, OverlapConflict
)
from payroll.core.utils import ZERO, decimal_str, parse_date, setup_logging, to_decimal

HUNDRED = Decimal("100")
UNIT = Decimal("1")


class BracketStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TaxBracket:
    id: Optional[str]
    min_income: Decimal
    max_income: Optional[Decimal]
    rate: Decimal
    effective_from: date
    effective_to: Optional[date] = None
    status: BracketStatus = BracketStatus.ACTIVE
    cumulative_tax_below: Optional[Decimal] = None
    description: str = ""

    @classmethod
    def create(
        cls,
        min_income: Any,
        max_income: Any,
        rate: Any,
        effective_from: Any,
        effective_to: Any = None,
        status: Any = BracketStatus.ACTIVE,
        id: Optional[str] = None,
        cumulative_tax_below: Any = None,
        description: str = "",
    ) -> "TaxBracket":
        """Build a bracket from loosely typed values (strings, floats, ISO dates)."""
        start = parse_date(effective_from, "effective_from")
        if start is None:
            raise InvalidInput("effective_from is required")
        try:
            status = BracketStatus(status)
        except ValueError:
            raise InvalidInput(f"Unknown bracket status: {status!r}") from None
        return cls(
            id=id,
            min_income=to_decimal(min_income, "min_income"),
            max_income=None if max_income in (None, "") else to_decimal(max_income, "max_income"),
            rate=to_decimal(rate, "rate"),
            effective_from=start,
            effective_to=parse_date(effective_to, "effective_to"),
            status=status,
            cumulative_tax_below=(
                None if cumulative_tax_below in (None, "")
                else to_decimal(cumulative_tax_below, "cumulative_tax_below")
            ),
            description=description,
        )

    @property
    def is_open_ended(self) -> bool:
        return self.max_income is None

    @property
    def width(self) -> Optional[Decimal]:
        return None if self.max_income is None else self.max_income - self.min_income

    def covers_date(self, day: date) -> bool:
        return self.effective_from <= day and (self.effective_to is None or day <= self.effective_to)

    def dates_overlap(self, other: "TaxBracket") -> bool:
        self_end = self.effective_to or date.max
        other_end = other.effective_to or date.max
        return self.effective_from <= other_end and other.effective_from <= self_end

    def income_overlaps(self, other: "TaxBracket") -> bool:
        if self.max_income is not None and other.min_income > self.max_income:
            return False
        if other.max_income is not None and self.min_income > other.max_income:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "min_income": decimal_str(self.min_income),
            "max_income": decimal_str(self.max_income),
            "rate": decimal_str(self.rate),
            "effective_from": self.effective_from.isoformat(),
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "status": self.status.value,
            "cumulative_tax_below": decimal_str(self.cumulative_tax_below),
            "description": self.description,
        }


def validate_bracket(bracket: TaxBracket):
    """Field-level checks shared by add and update."""
    if not isinstance(bracket.effective_from, date):
        raise InvalidInput(f"effective_from is not a date: {bracket.effective_from!r}")
    if bracket.effective_to is not None:
        if not isinstance(bracket.effective_to, date):
            raise InvalidInput(f"effective_to is not a date: {bracket.effective_to!r}")
        if bracket.effective_to < bracket.effective_from:
            raise InvalidInput(
                f"effective_to {bracket.effective_to} is before effective_from {bracket.effective_from}"
            )
    if bracket.min_income < 0:
        raise InvalidRange(f"min_income cannot be negative: {bracket.min_income}")
    if bracket.max_income is not None and bracket.min_income >= bracket.max_income:
        raise InvalidRange(
            f"min_income {bracket.min_income} must be below max_income {bracket.max_income}"
        )
    if bracket.rate < 0 or bracket.rate > HUNDRED:
        raise InvalidRate(f"rate must be within 0-100, got {bracket.rate}")


def check_partition(ordered: Sequence[Any], lo: str, hi: str, label: str):
    """Ordered ranges must start at 0, touch without gap or overlap, and end open."""
    if not ordered:
        raise ConfigurationError(f"No {label}s configured")
    open_ended = [r for r in ordered if getattr(r, hi) is None]
    if len(open_ended) != 1:
        raise ConfigurationError(
            f"Expected exactly one open-ended {label}, found {len(open_ended)}"
        )
    if getattr(ordered[-1], hi) is not None:
        raise ConfigurationError(f"The open-ended {label} must be the highest one")
    if getattr(ordered[0], lo) != ZERO:
        raise ConfigurationError(f"The lowest {label} must start at 0, not {getattr(ordered[0], lo)}")
    for prev, nxt in zip(ordered, ordered[1:]):
        prev_max, next_min = getattr(prev, hi), getattr(nxt, lo)
        if next_min <= prev_max:
            raise ConfigurationError(
                f"Overlapping {label}s: {getattr(prev, lo)}-{prev_max} and {next_min}"
            )
        if next_min > prev_max + UNIT:
            raise ConfigurationError(f"Gap between {label}s: {prev_max} and {next_min}")


@dataclass(frozen=True)
class BracketSet:
    """Immutable ordered snapshot of the brackets that apply on one date."""
    brackets: Tuple[TaxBracket, ...]
    as_of: Optional[date] = None
    set_id: str = ""
    cumulative_below: Tuple[Decimal, ...] = field(default=(), repr=False)

    @classmethod
    def build(cls, brackets: Sequence[TaxBracket], as_of: Optional[date] = None) -> "BracketSet":
        ordered = tuple(sorted(brackets, key=lambda b: b.min_income))
        for b in ordered:
            try:
                validate_bracket(b)
            except (InvalidRange, InvalidRate, InvalidInput) as exc:
                raise ConfigurationError(f"Malformed bracket {b.id}: {exc}") from exc
        check_partition(ordered, "min_income", "max_income", "tax bracket")

        cumulative = []
        running = ZERO
        for b in ordered:
            if b.cumulative_tax_below is not None and abs(b.cumulative_tax_below - running) > Decimal("0.01"):
                raise ConfigurationError(
                    f"Bracket {b.id} declares cumulative tax {b.cumulative_tax_below}, "
                    f"walk gives {running}"
                )
            cumulative.append(running)
            if b.width is not None:
                running += b.width * b.rate / HUNDRED
        return cls(
            brackets=ordered,
            as_of=as_of,
            set_id=cls._make_id(ordered),
            cumulative_below=tuple(cumulative),
        )

    @staticmethod
    def _make_id(ordered: Sequence[TaxBracket]) -> str:
        newest = max(b.effective_from for b in ordered)
        fingerprint = "|".join(
            f"{b.id}:{b.min_income}:{b.max_income}:{b.rate}" for b in ordered
        )
        digest = hashlib.sha1(fingerprint.encode("utf-8")).hexdigest()[:8]
        return f"PAYE-{newest.isoformat()}-{digest}"

    def __iter__(self) -> Iterator[TaxBracket]:
        return iter(self.brackets)

    def __len__(self) -> int:
        return len(self.brackets)

    def __getitem__(self, index):
        return self.brackets[index]


class TaxBracketRegistry:
    def __init__(self, tenant_id: str = "system", brackets: Sequence[TaxBracket] = (), logger=None):
        self.tenant_id = tenant_id
        self.logger = logger or setup_logging(tenant_id)
        self._lock = threading.Lock()
        self._brackets: Tuple[TaxBracket, ...] = ()
        self._counter = 0
        for b in brackets:
            self.add_bracket(b)

    @classmethod
    def from_table(
        cls,
        rows: Sequence[Tuple[Any, Any, Any]],
        effective_from: Any,
        tenant_id: str = "system",
        logger=None,
    ) -> "TaxBracketRegistry":
        """Seed a registry from (min, max or None, rate percent) rows."""
        registry = cls(tenant_id, logger=logger)
        for lo, hi, rate in rows:
            registry.add_bracket(TaxBracket.create(lo, hi, rate, effective_from))
        return registry

    def _next_id(self, taken: set) -> str:
        while True:
            self._counter += 1
            candidate = f"BR{self._counter:03d}"
            if candidate not in taken:
                return candidate

    def _check_overlap(self, candidate: TaxBracket, current: Sequence[TaxBracket], exclude_id: Optional[str] = None):
        if candidate.status not in (BracketStatus.ACTIVE, BracketStatus.PENDING):
            return
        for existing in current:
            if existing.id == exclude_id or existing.status != BracketStatus.ACTIVE:
                continue
            if existing.dates_overlap(candidate) and existing.income_overlaps(candidate):
                raise OverlapConflict(existing.id)

    def add_bracket(self, candidate: TaxBracket) -> str:
        validate_bracket(candidate)
        with self._lock:
            current = self._brackets
            taken = {b.id for b in current}
            if candidate.id is not None and candidate.id in taken:
                raise InvalidInput(f"Bracket id {candidate.id} already exists")
            try:
                self._check_overlap(candidate, current)
            except OverlapConflict as exc:
                self.logger.warning(f"Rejected bracket {candidate.to_dict()}: {exc}")
                raise
            bracket = candidate if candidate.id else replace(candidate, id=self._next_id(taken))
            self._brackets = current + (bracket,)
        self.logger.info(f"Added tax bracket {bracket.id} {bracket.min_income}-{bracket.max_income} @ {bracket.rate}%")
        return bracket.id

    def update_bracket(self, bracket_id: str, **changes) -> Optional[TaxBracket]:
        if "id" in changes:
            raise InvalidInput("Bracket id cannot be changed")
        with self._lock:
            current = self._brackets
            existing = next((b for b in current if b.id == bracket_id), None)
            if existing is None:
                self.logger.warning(f"Update requested for unknown bracket {bracket_id}")
                return None
            merged = existing.to_dict()
            merged.update({k: v.value if isinstance(v, Enum) else v for k, v in changes.items()})
            updated = TaxBracket.create(**merged)
            validate_bracket(updated)
            try:
                self._check_overlap(updated, current, exclude_id=bracket_id)
            except OverlapConflict as exc:
                self.logger.warning(f"Rejected update of {bracket_id}: {exc}")
                raise
            self._brackets = tuple(updated if b.id == bracket_id else b for b in current)
        self.logger.info(f"Updated tax bracket {bracket_id}: {sorted(changes)}")
        return updated

    def _set_status(self, bracket_id: str, status: BracketStatus) -> bool:
        with self._lock:
            current = self._brackets
            existing = next((b for b in current if b.id == bracket_id), None)
            if existing is None:
                self.logger.warning(f"Status change requested for unknown bracket {bracket_id}")
                return False
            updated = replace(existing, status=status)
            if status == BracketStatus.ACTIVE:
                self._check_overlap(updated, current, exclude_id=bracket_id)
            self._brackets = tuple(updated if b.id == bracket_id else b for b in current)
        self.logger.info(f"Tax bracket {bracket_id} {existing.status.value} -> {status.value}")
        return True

    def activate(self, bracket_id: str) -> bool:
        return self._set_status(bracket_id, BracketStatus.ACTIVE)

    def deactivate(self, bracket_id: str) -> bool:
        return self._set_status(bracket_id, BracketStatus.INACTIVE)

    def expire_elapsed(self, as_of: Any) -> List[str]:
        """Move active brackets whose effective_to is before as_of to expired."""
        day = parse_date(as_of, "as_of")
        if day is None:
            raise InvalidInput("as_of date is required")
        with self._lock:
            expired = []
            updated = []
            for b in self._brackets:
                if b.status == BracketStatus.ACTIVE and b.effective_to is not None and b.effective_to < day:
                    b = replace(b, status=BracketStatus.EXPIRED)
                    expired.append(b.id)
                updated.append(b)
            self._brackets = tuple(updated)
        if expired:
            self.logger.info(f"Expired tax brackets as of {day}: {expired}")
        return expired

    def get(self, bracket_id: str) -> Optional[TaxBracket]:
        return next((b for b in self._brackets if b.id == bracket_id), None)

    def list_brackets(self, status: Optional[BracketStatus] = None) -> List[TaxBracket]:
        snapshot = self._brackets
        if status is not None:
            snapshot = tuple(b for b in snapshot if b.status == BracketStatus(status))
        return sorted(snapshot, key=lambda b: (b.effective_from, b.min_income))

    def active_brackets_as_of(self, as_of: Any) -> BracketSet:
        day = parse_date(as_of, "as_of")
        if day is None:
            raise InvalidInput("as_of date is required")
        snapshot = self._brackets
        active = [b for b in snapshot if b.status == BracketStatus.ACTIVE and b.covers_date(day)]
        try:
            return BracketSet.build(active, as_of=day)
        except ConfigurationError as exc:
            self.logger.error(f"Tax bracket configuration broken as of {day}: {exc}")
            raise
