"""
Travel Allowance Calculator
===========================

Formula
-------
Daily   = round_half_up(Distance_KM x Cost_Per_KM, 2)
Total   = round_half_up(Daily x Days, 2)
Weekly  = round_half_up(Daily x 5, 2)
Monthly = round_half_up(Daily x 22, 2)

The daily figure is rounded to the cent *before* it is multiplied by the
day count, and the product is rounded again.  Historical allowances were
issued this way, so a single un-rounded multiplication must not be used:
it drifts by a cent on some inputs.

Amounts are ``Decimal`` (CHF); floats are converted through ``str`` so the
rounding operates on the decimal value the caller sees.

Complexity: O(1) per calculation.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from .entities import AllowanceResult
from .errors import ComputationError, ValidationError

Number = Union[int, float, Decimal]

_CENT = Decimal("0.01")

MIN_DAYS = 1
MAX_DAYS = 365
WORKDAYS_PER_WEEK = 5
WORKDAYS_PER_MONTH = 22


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_chf(amount: Decimal) -> Decimal:
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def validate_allowance_inputs(
    distance_km: Number, cost_per_km: Number, days: int = 1
) -> None:
    """Raise ``ValidationError`` naming every offending field."""
    bad: list[str] = []
    if not _is_number(distance_km) or distance_km < 0:
        bad.append("distance_km")
    if not _is_number(cost_per_km) or cost_per_km <= 0:
        bad.append("cost_per_km")
    if (
        not isinstance(days, int)
        or isinstance(days, bool)
        or not MIN_DAYS <= days <= MAX_DAYS
    ):
        bad.append("days")
    if bad:
        raise ValidationError(
            f"Invalid allowance input: {', '.join(bad)}", fields=bad
        )


def _is_number(value: object) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, Decimal):
        return value.is_finite()
    return isinstance(value, (int, float)) and math.isfinite(value)


class AllowanceCalculator:
    """Pure allowance arithmetic; no state beyond the workday constants."""

    workdays_per_week = WORKDAYS_PER_WEEK
    workdays_per_month = WORKDAYS_PER_MONTH

    def daily(self, distance_km: Number, cost_per_km: Number) -> Decimal:
        validate_allowance_inputs(distance_km, cost_per_km)
        try:
            return round_chf(to_decimal(distance_km) * to_decimal(cost_per_km))
        except InvalidOperation as exc:
            raise ComputationError(f"Allowance arithmetic failed: {exc}") from exc

    def allowance(
        self, distance_km: Number, cost_per_km: Number, days: int = 1
    ) -> AllowanceResult:
        validate_allowance_inputs(distance_km, cost_per_km, days)
        daily = self.daily(distance_km, cost_per_km)
        return AllowanceResult(
            distance_km=float(distance_km),
            cost_per_km=to_decimal(cost_per_km),
            days=days,
            daily_allowance=daily,
            total_allowance=round_chf(daily * days),
        )

    def weekly_estimate(self, daily_allowance: Decimal) -> Decimal:
        return round_chf(daily_allowance * self.workdays_per_week)

    def monthly_estimate(self, daily_allowance: Decimal) -> Decimal:
        return round_chf(daily_allowance * self.workdays_per_month)


def calculate_allowance(
    distance_km: Number, cost_per_km: Number, days: int = 1
) -> AllowanceResult:
    return AllowanceCalculator().allowance(distance_km, cost_per_km, days)
