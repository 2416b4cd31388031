"""Pure pricing rules: trip fares and cancellation fees."""

from .fares import FareBreakdown, calculate_fare, fare_for_route, round_currency
from .cancellation import (
    CancellationContext,
    CancellationDecision,
    evaluate_cancellation,
    surge_multiplier,
)

__all__ = [
    "FareBreakdown",
    "calculate_fare",
    "fare_for_route",
    "round_currency",
    "CancellationContext",
    "CancellationDecision",
    "evaluate_cancellation",
    "surge_multiplier",
]
