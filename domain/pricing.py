"""Pricing engine

Pure functions; rate fields missing for the requested mode count as zero.
"""
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Optional, Tuple, Union

from domain.enums import PricingMode
from domain.value_objects import PerPersonPricing, PerRoomPricing

CENT = Decimal("0.01")


def _rate(room_pricing, field: str) -> Decimal:
    value = getattr(room_pricing, field, None)
    if value is None:
        return Decimal("0")
    return Decimal(value)


def child_rate_for(room_pricing) -> Decimal:
    explicit = getattr(room_pricing, "child_rate", None)
    if explicit is not None:
        return Decimal(explicit)
    return (_rate(room_pricing, "adult_rate") / 2).to_integral_value(rounding=ROUND_FLOOR)


def room_rate(
    pricing_mode: Union[PricingMode, str],
    room_pricing: Union[PerRoomPricing, PerPersonPricing],
) -> Decimal:
    """Nightly headline rate: the room rate or the adult rate"""
    if PricingMode(pricing_mode) == PricingMode.PER_ROOM:
        return _rate(room_pricing, "base_rate")
    return _rate(room_pricing, "adult_rate")


def compute_price(
    pricing_mode: Union[PricingMode, str],
    room_pricing: Union[PerRoomPricing, PerPersonPricing],
    nights: int,
    adults: int,
    younger_children: int = 0,
    older_children: int = 0,
    base_capacity: Optional[int] = None,
) -> Decimal:
    """Total price of a stay.

    perRoom:   (base_rate + max(0, adults + older_children - base_capacity) * extra_person_charge) * nights
    perPerson: (adults * adult_rate + older_children * child_rate) * nights

    Younger children never add to the price nor count toward capacity.
    """
    if PricingMode(pricing_mode) == PricingMode.PER_ROOM:
        capacity = base_capacity or 1
        chargeable_guests = adults + older_children
        extra_guests = max(0, chargeable_guests - capacity)
        nightly = _rate(room_pricing, "base_rate") + extra_guests * _rate(room_pricing, "extra_person_charge")
        return nightly * nights

    nightly = adults * _rate(room_pricing, "adult_rate") + older_children * child_rate_for(room_pricing)
    return nightly * nights


def split_payment(
    total: Decimal,
    advance_amount: Optional[Decimal] = None,
    advance_percentage: Decimal = Decimal("50"),
) -> Tuple[Decimal, Decimal]:
    """Split a total into (advance, balance).

    A flat advance configured on the room wins over the percentage split.
    """
    total = Decimal(total)
    if advance_amount:
        advance = min(Decimal(advance_amount), total)
    else:
        advance = (total * Decimal(advance_percentage) / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    return advance, total - advance
