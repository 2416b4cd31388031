"""
Cancellation policy.

Given a snapshot of the ride, who is cancelling and when, decide whether the
cancellation is allowed and what fee it carries. Nothing here touches the
database, so the same inputs always produce the same decision.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

from django.utils import timezone

from rides.constants import (
    STATUS_SCHEDULED, STATUS_PENDING, STATUS_ACCEPTED, STATUS_IN_PROGRESS,
    TERMINAL_STATUSES,
    CANCELLED_BY_PASSENGER, CANCELLED_BY_DRIVER, CANCELLED_BY_ADMIN,
)
from .fares import to_decimal

BASE_FEES = {
    CANCELLED_BY_PASSENGER: {"immediate": 0, "early": 50, "standard": 100, "late": 150},
    CANCELLED_BY_DRIVER: {"immediate": 0, "early": 25, "standard": 50, "late": 100},
}

# Upper bound (minutes since request) for each fee category
TIME_THRESHOLDS = (
    ("immediate", 1),
    ("early", 2),
    ("standard", 5),
)

SURGE_NORMAL = Decimal("1.0")
SURGE_PEAK = Decimal("1.5")
SURGE_WEEKEND = Decimal("2.0")

PEAK_HOURS = frozenset((7, 8, 9, 17, 18, 19))

SUBSCRIPTION_FACTOR = Decimal("0.5")
FIRST_WEEK_DISCOUNT = Decimal("25")
GOOD_RATING_DISCOUNT = Decimal("20")
GOOD_RATING_THRESHOLD = Decimal("4.5")
EARLY_CANCELLATION_DISCOUNT = Decimal("25")
EARLY_CANCELLATION_SECONDS = 30
NEW_USER_DAYS = 7

PASSENGER_WINDOW_MINUTES = 10

REASON_NOT_ALLOWED = "CANCELLATION_NOT_ALLOWED"
REASON_WINDOW_EXCEEDED = "CANCELLATION_WINDOW_EXCEEDED"


@dataclass(frozen=True)
class CancellationContext:
    """Everything the policy needs to know about the ride and the canceller."""
    status: str
    canceller: str
    requested_at: datetime
    subscription_active: bool = False
    passenger_joined_at: Optional[datetime] = None
    driver_rating: Optional[Decimal] = None


@dataclass(frozen=True)
class CancellationDecision:
    allowed: bool
    fee: Decimal = Decimal("0")
    category: str = ""
    reason: Optional[str] = None
    message: str = ""
    base_fee: Decimal = Decimal("0")
    surge: Decimal = SURGE_NORMAL
    elapsed_minutes: float = 0.0
    discounts: Dict[str, Decimal] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "fee": int(self.fee),
            "category": self.category,
            "base_fee": int(self.base_fee),
            "surge": float(self.surge),
            "elapsed_minutes": round(self.elapsed_minutes, 2),
            "discounts": {key: float(value) for key, value in self.discounts.items()},
        }


def surge_multiplier(moment: datetime) -> Decimal:
    """
    Time-of-week multiplier, evaluated in the project's local time zone.

    Weekend (Friday 20:00 through Sunday 20:59) wins over weekday peak hours.
    """
    local = timezone.localtime(moment) if timezone.is_aware(moment) else moment
    hour = local.hour
    weekday = local.weekday()  # Monday == 0

    is_weekend_high = (
        (weekday == 4 and hour >= 20)
        or weekday == 5
        or (weekday == 6 and hour <= 20)
    )
    if is_weekend_high:
        return SURGE_WEEKEND

    if weekday <= 4 and hour in PEAK_HOURS:
        return SURGE_PEAK

    return SURGE_NORMAL


def fee_category(elapsed_minutes: float) -> str:
    for category, limit in TIME_THRESHOLDS:
        if elapsed_minutes <= limit:
            return category
    return "late"


def round_to_ten(amount: Decimal) -> Decimal:
    return (amount / Decimal("10")).quantize(Decimal("1"), rounding=ROUND_HALF_UP) * Decimal("10")


def _discounts(ctx: CancellationContext, now: datetime, elapsed_seconds: float) -> Dict[str, Decimal]:
    discounts = {}
    if ctx.canceller == CANCELLED_BY_PASSENGER and ctx.passenger_joined_at is not None:
        if now - ctx.passenger_joined_at <= timedelta(days=NEW_USER_DAYS):
            discounts["first_week"] = FIRST_WEEK_DISCOUNT
    if ctx.canceller == CANCELLED_BY_DRIVER and ctx.driver_rating is not None:
        if to_decimal(ctx.driver_rating) >= GOOD_RATING_THRESHOLD:
            discounts["good_rating"] = GOOD_RATING_DISCOUNT
    if elapsed_seconds < EARLY_CANCELLATION_SECONDS:
        discounts["early_cancellation"] = EARLY_CANCELLATION_DISCOUNT
    return discounts


def calculate_fee(ctx: CancellationContext, now: datetime) -> CancellationDecision:
    """Fee for a cancellation that is already known to be allowed."""
    if ctx.status == STATUS_SCHEDULED or ctx.canceller == CANCELLED_BY_ADMIN:
        category = "scheduled" if ctx.status == STATUS_SCHEDULED else "admin"
        return CancellationDecision(allowed=True, category=category)

    elapsed_seconds = max(0.0, (now - ctx.requested_at).total_seconds())
    elapsed_minutes = elapsed_seconds / 60
    category = fee_category(elapsed_minutes)
    base_fee = Decimal(BASE_FEES[ctx.canceller][category])
    surge = surge_multiplier(now)

    fee = base_fee * surge
    discounts = {}
    if ctx.canceller == CANCELLED_BY_PASSENGER and ctx.subscription_active:
        discounts["subscription"] = fee - fee * SUBSCRIPTION_FACTOR
        fee = fee * SUBSCRIPTION_FACTOR

    fixed = _discounts(ctx, now, elapsed_seconds)
    discounts.update(fixed)
    fee = fee - sum(fixed.values(), Decimal("0"))
    fee = round_to_ten(max(Decimal("0"), fee))

    return CancellationDecision(
        allowed=True,
        fee=fee,
        category=category,
        base_fee=base_fee,
        surge=surge,
        elapsed_minutes=elapsed_minutes,
        discounts=discounts,
    )


def _deny(reason: str, message: str) -> CancellationDecision:
    return CancellationDecision(allowed=False, reason=reason, message=message)


def evaluate_cancellation(
    ctx: CancellationContext,
    now: datetime,
    passenger_window_minutes: int = PASSENGER_WINDOW_MINUTES,
) -> CancellationDecision:
    """
    Decide whether ``ctx.canceller`` may cancel a ride in ``ctx.status`` at ``now``.

    Returns a CancellationDecision; ``allowed=False`` carries a reason code and
    a message naming the ride's current status.
    """
    status = ctx.status

    if status in TERMINAL_STATUSES:
        return _deny(REASON_NOT_ALLOWED, f"Ride is already {status}")
    if status == STATUS_IN_PROGRESS:
        return _deny(REASON_NOT_ALLOWED, "Ride is in_progress and can no longer be cancelled")

    if ctx.canceller == CANCELLED_BY_ADMIN:
        return calculate_fee(ctx, now)

    if status == STATUS_SCHEDULED:
        if ctx.canceller == CANCELLED_BY_PASSENGER:
            return calculate_fee(ctx, now)
        return _deny(REASON_NOT_ALLOWED, "Only the passenger can cancel a scheduled ride")

    if ctx.canceller == CANCELLED_BY_PASSENGER and status in (STATUS_PENDING, STATUS_ACCEPTED):
        elapsed = now - ctx.requested_at
        if elapsed > timedelta(minutes=passenger_window_minutes):
            return _deny(
                REASON_WINDOW_EXCEEDED,
                f"Ride is {status}; passengers can only cancel within "
                f"{passenger_window_minutes} minutes of requesting",
            )
        return calculate_fee(ctx, now)

    if ctx.canceller == CANCELLED_BY_DRIVER and status == STATUS_ACCEPTED:
        return calculate_fee(ctx, now)

    return _deny(REASON_NOT_ALLOWED, f"Ride is {status}; {ctx.canceller} cannot cancel it")


def cancellation_policy_text(canceller: str) -> dict:
    """Human readable fee schedule, returned alongside cancellation results."""
    fees = BASE_FEES.get(canceller)
    if not fees:
        return {"fee": "No fee for administrative cancellations"}
    return {
        "free_cancellation": "Within 1 minute of booking",
        "early_fee": f"PKR {fees['early']} (1-2 minutes)",
        "standard_fee": f"PKR {fees['standard']} (2-5 minutes)",
        "late_fee": f"PKR {fees['late']} (after 5 minutes)",
        "surge": "x1.5 on weekday peak hours, x2 from Friday 8 PM to Sunday 8 PM",
    }
