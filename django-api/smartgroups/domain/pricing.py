"""Discount resolution for smart groups.

The single source of every price shown to or charged from a participant.
Display layers receive resolved values and never recompute them.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from smartgroups.domain.models import DiscountRule, PriceQuote

CENTS = Decimal("0.01")
HUNDRED = Decimal(100)


def applicable_discount(current_participants: int, rules: Iterable[DiscountRule]) -> Decimal:
    """Return the largest discount among rules whose threshold is reached."""
    reached = [r.discount_percent for r in rules if r.threshold <= current_participants]
    if not reached:
        return Decimal(0)
    return max(reached)


def resolve(current_participants: int, base_price: Decimal, rules: Iterable[DiscountRule]) -> PriceQuote:
    base_price = Decimal(base_price)
    discount = applicable_discount(current_participants, rules)
    if discount == 0:
        return PriceQuote(
            effective_price=base_price.quantize(CENTS, rounding=ROUND_HALF_UP),
            discount_percent=Decimal(0),
        )

    effective = base_price * (1 - discount / HUNDRED)
    return PriceQuote(
        effective_price=effective.quantize(CENTS, rounding=ROUND_HALF_UP),
        discount_percent=discount,
        original_price=base_price.quantize(CENTS, rounding=ROUND_HALF_UP),
    )
