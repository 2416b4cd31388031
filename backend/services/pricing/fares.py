"""
Fare calculation.

Pure and deterministic: the same distance, duration and surge always give
the same breakdown. Amounts are whole PKR, rounded half away from zero.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

BASE_FARE = Decimal("100")
PER_KM_RATE = Decimal("30")
PER_MINUTE_RATE = Decimal("5")
CURRENCY = "PKR"

Number = Union[int, float, Decimal, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round_currency(value: Number) -> Decimal:
    """Round to whole currency units, ties away from zero."""
    return to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FareBreakdown:
    base: Decimal
    distance_fare: Decimal
    time_fare: Decimal
    subtotal: Decimal
    surge: Decimal
    total: Decimal
    currency: str = CURRENCY

    def as_dict(self) -> dict:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = float(value) if key == "surge" else int(value)
        return data


def calculate_fare(distance_km: Number, duration_min: Number, surge: Number = 1) -> FareBreakdown:
    """
    Compute the fare for a trip.

    Args:
        distance_km: Trip distance in kilometres
        duration_min: Trip duration in minutes
        surge: Scalar multiplier (1 = no surge)

    Returns:
        FareBreakdown with every component rounded to whole units
    """
    distance = to_decimal(distance_km)
    duration = to_decimal(duration_min)
    multiplier = to_decimal(surge)

    distance_part = distance * PER_KM_RATE
    time_part = duration * PER_MINUTE_RATE
    raw_subtotal = BASE_FARE + distance_part + time_part

    return FareBreakdown(
        base=round_currency(BASE_FARE),
        distance_fare=round_currency(distance_part),
        time_fare=round_currency(time_part),
        subtotal=round_currency(raw_subtotal),
        surge=multiplier,
        total=round_currency(raw_subtotal * multiplier),
    )


def fare_for_route(distance_m: int, duration_s: int, surge: Number = 1) -> FareBreakdown:
    """Convenience wrapper taking route units (metres, seconds)."""
    return calculate_fare(
        to_decimal(distance_m) / Decimal("1000"),
        to_decimal(duration_s) / Decimal("60"),
        surge,
    )
