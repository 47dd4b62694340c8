"""Fine arithmetic.

Everything here is pure: no database, no clock. Amounts are `Decimal`
and are rounded to whole cents.
"""

from __future__ import annotations

import datetime
import math
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum

CENTS = Decimal("0.01")
SECONDS_PER_DAY = 24 * 60 * 60


class DamageSeverity(StrEnum):
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"

    @classmethod
    def from_value(cls, value: str | DamageSeverity | None) -> DamageSeverity:
        """Look up a severity, falling back to moderate for anything unknown."""
        if value is None:
            return cls.MODERATE
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.MODERATE


# Share of the item's price charged for damage.
DAMAGE_MULTIPLIERS: dict[DamageSeverity, Decimal] = {
    DamageSeverity.MINOR: Decimal("0.25"),
    DamageSeverity.MODERATE: Decimal("0.50"),
    DamageSeverity.SEVERE: Decimal("0.75"),
}


def to_cents(amount: Decimal | int | str) -> Decimal:
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def days_overdue(due_date: datetime.datetime, as_of: datetime.datetime) -> int:
    """Whole days `as_of` is past `due_date`, rounding any part day up."""
    if as_of <= due_date:
        return 0
    return math.ceil((as_of - due_date).total_seconds() / SECONDS_PER_DAY)


def overdue_fine(
    due_date: datetime.datetime,
    return_date: datetime.datetime,
    daily_rate: Decimal,
    grace_period_days: int,
) -> Decimal:
    """The fine for returning (or still holding) an item late.

    The first `grace_period_days` late days are free.
    """
    chargeable_days = max(0, days_overdue(due_date, return_date) - grace_period_days)
    return to_cents(Decimal(chargeable_days) * Decimal(daily_rate))


def damage_fine(price: Decimal, severity: str | DamageSeverity | None) -> Decimal:
    multiplier = DAMAGE_MULTIPLIERS[DamageSeverity.from_value(severity)]
    return to_cents(Decimal(price) * multiplier)


def lost_fine(price: Decimal, processing_fee: Decimal = Decimal("0")) -> Decimal:
    return to_cents(Decimal(price) + Decimal(processing_fee))
