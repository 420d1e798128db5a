"""
Proration arithmetic over tier prices.

All amounts are integer cents. The daily delta is computed with Decimal and
rounded half-up once at the end, so no float error leaks into a charge.
"""

import math
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from shared.constants import BILLING_PERIOD_DAYS

from billing.tiers import Tier

ONE_DAY = timedelta(days=1)


def days_remaining(plan_end_date: Optional[datetime], now: datetime) -> int:
    """Whole days (rounded up) until plan_end_date; 0 if unset or already past."""
    if plan_end_date is None or plan_end_date <= now:
        return 0
    return math.ceil((plan_end_date - now) / ONE_DAY)


def calculate_proration(current_tier: Tier, new_tier: Tier, days: int) -> int:
    """
    Prorated charge in cents for switching tiers with `days` left in the period.

    Downgrades (negative delta) floor to 0 - they are never charged here.

    Args:
        current_tier: Tier the user is on now
        new_tier: Tier being switched to
        days: Days remaining in the billing period

    Returns:
        Non-negative amount in cents
    """
    delta = new_tier.price - current_tier.price
    if delta <= 0 or days <= 0:
        return 0

    amount = Decimal(delta) * Decimal(days) / Decimal(BILLING_PERIOD_DAYS)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(cents: int, currency: str = "usd") -> str:
    """Format cents for display ("$12.50")."""
    if currency == "usd":
        return f"${cents / 100:.2f}"
    return f"{cents / 100:.2f} {currency.upper()}"
