"""
Tip pool allocation engine.

Turns counted cash and registered tips into a total/tax/net breakdown and
splits the net pool among employees by hours worked, paying out in $5 steps.
Everything here is pure: no I/O and no state kept between calls.
"""
import logging
import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DENOMINATIONS = (5, 10, 20, 50, 100)
FULL_TIME_HOURS = 40
PAYOUT_STEP = 5
SALES_TAX_RATE = 0.25
RETRY_DISCOUNT = 0.95

RawAmount = Union[str, float, int, None]

# Leading decimal number of a string; anything after it is ignored
_NUMERIC_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class InputPolicy(str, Enum):
    COERCE = "coerce"
    REJECT = "reject"


class TipAllocationError(Exception):
    """Base exception for tip allocation errors."""


class InvalidNumericInput(TipAllocationError):
    def __init__(self, field: str, raw: RawAmount):
        self.field = field
        self.raw = raw
        super().__init__(f"{field}: cannot use {raw!r} as an amount")


class InvalidHoursError(TipAllocationError):
    def __init__(self, employee_name: str, hours: float):
        self.employee_name = employee_name
        self.hours = hours
        super().__init__(f"{employee_name} has an invalid hour entry ({hours!r}). Hours must be 0-149.")


class TotalsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_tips: float
    sales_tax: float
    net_tips: float


class EmployeeHours(BaseModel):
    model_config = ConfigDict(frozen=True)

    employee_id: int
    employee_name: str
    hours: float


class EmployeeTip(BaseModel):
    model_config = ConfigDict(frozen=True)

    employee_id: int
    employee_name: str
    hours: float
    deserved_tip: float


class Allocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    tips: Tuple[EmployeeTip, ...]
    remainder: float
    retried: bool = False
    remainder_unresolved: bool = False


class PayoutEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    hours: float
    deserved_tip: float


class AllocationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_tips: float
    sales_tax: float
    net_tips: float
    remainder: float
    employee_data: Dict[str, PayoutEntry]
    timestamp: datetime


def parse_amount(raw: RawAmount, policy: InputPolicy = InputPolicy.COERCE, field: str = "value") -> float:
    """
    Parse a free-text amount.

    Empty input is 0 under every policy. COERCE reads the leading number of
    the text and falls back to 0; REJECT raises InvalidNumericInput for
    anything that is not a finite, non-negative number.
    """
    if raw is None or isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip()
        if not text:
            return 0.0
        if policy is InputPolicy.REJECT:
            try:
                value = float(text)
            except ValueError:
                raise InvalidNumericInput(field, raw) from None
        else:
            match = _NUMERIC_PREFIX.match(text)
            value = float(match.group(0)) if match else 0.0

    if not math.isfinite(value):
        if policy is InputPolicy.REJECT:
            raise InvalidNumericInput(field, raw)
        return 0.0
    if value < 0 and policy is InputPolicy.REJECT:
        raise InvalidNumericInput(field, raw)
    return value


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def compute_totals(
    denominations: Mapping[int, RawAmount],
    registered_tips: RawAmount,
    policy: InputPolicy = InputPolicy.COERCE,
) -> TotalsSnapshot:
    """
    Total the counted cash and set aside a quarter of the registered tips,
    rounded to the nearest $5, as estimated sales tax.
    """
    unknown = set(denominations) - set(DENOMINATIONS)
    if unknown:
        raise ValueError(f"Unsupported denominations: {sorted(unknown)}")

    total = 0.0
    for face in DENOMINATIONS:
        total += face * parse_amount(denominations.get(face), policy, field=f"${face} count")

    registered = parse_amount(registered_tips, policy, field="registered tips")
    sales_tax = float(_round_half_up(registered * SALES_TAX_RATE / PAYOUT_STEP) * PAYOUT_STEP)
    return TotalsSnapshot(total_tips=total, sales_tax=sales_tax, net_tips=total - sales_tax)


def _hourly_ratio(net_tips: float, total_share: float, discount: float = 1.0) -> float:
    return float(math.floor(net_tips * discount / total_share / PAYOUT_STEP) * PAYOUT_STEP)


def _distribute(ratio: float, hours: Sequence[EmployeeHours]) -> Tuple[EmployeeTip, ...]:
    return tuple(
        EmployeeTip(
            employee_id=entry.employee_id,
            employee_name=entry.employee_name,
            hours=entry.hours,
            deserved_tip=float(math.floor(ratio * entry.hours / FULL_TIME_HOURS / PAYOUT_STEP) * PAYOUT_STEP),
        )
        for entry in hours
    )


def _remainder(net_tips: float, tips: Sequence[EmployeeTip]) -> float:
    return net_tips - sum(t.deserved_tip for t in tips)


def allocate(net_tips: float, hours: Sequence[EmployeeHours]) -> Allocation:
    """
    Split `net_tips` among employees in proportion to hours worked.

    Every payout is floored to a multiple of $5 and the rest is left as the
    remainder. If the floored payouts overshoot the pool, a single second
    pass runs with the pool discounted to 95%; its result is returned even
    when the remainder is still negative, flagged as unresolved.
    """
    if not hours:
        return Allocation(tips=(), remainder=net_tips)

    total_share = sum(entry.hours / FULL_TIME_HOURS for entry in hours)
    if total_share <= 0:
        tips = tuple(
            EmployeeTip(employee_id=e.employee_id, employee_name=e.employee_name, hours=e.hours, deserved_tip=0.0)
            for e in hours
        )
        return Allocation(tips=tips, remainder=net_tips)

    tips = _distribute(_hourly_ratio(net_tips, total_share), hours)
    remainder = _remainder(net_tips, tips)
    if remainder >= 0:
        return Allocation(tips=tips, remainder=remainder)

    logger.info("Payouts overshoot net tips by %.2f, retrying with discounted ratio", -remainder)
    tips = _distribute(_hourly_ratio(net_tips, total_share, RETRY_DISCOUNT), hours)
    remainder = _remainder(net_tips, tips)
    unresolved = remainder < 0
    if unresolved:
        logger.warning("Remainder still negative after discounted retry: %.2f", remainder)
    return Allocation(tips=tips, remainder=remainder, retried=True, remainder_unresolved=unresolved)


def validate_hours(hours: Sequence[EmployeeHours]) -> None:
    """Raise InvalidHoursError for the first entry with non-finite or negative hours."""
    for entry in hours:
        if not math.isfinite(entry.hours) or entry.hours < 0:
            raise InvalidHoursError(entry.employee_name, entry.hours)


def build_record(
    totals: TotalsSnapshot, allocation: Allocation, timestamp: Optional[datetime] = None
) -> AllocationRecord:
    """Snapshot a computed allocation into an immutable history record."""
    return AllocationRecord(
        total_tips=totals.total_tips,
        sales_tax=totals.sales_tax,
        net_tips=totals.net_tips,
        remainder=allocation.remainder,
        employee_data={
            t.employee_name: PayoutEntry(hours=t.hours, deserved_tip=t.deserved_tip) for t in allocation.tips
        },
        timestamp=timestamp or datetime.now(timezone.utc),
    )
