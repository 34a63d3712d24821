from __future__ import annotations

from typing import Optional


# Per-sheet photocopy price by minimum sheet count, highest threshold first.
# Below the lowest threshold the product's own sell price applies.
PHOTOCOPY_TIERS: tuple[tuple[int, int], ...] = (
    (1000, 260),
    (400, 275),
    (150, 285),
)

# Non-photocopy lines may carry a negotiated unit price from this quantity up.
BULK_PRICE_MIN_QTY = 12


def tiered_unit_price(quantity: int, base_price: int) -> int:
    for threshold, price in PHOTOCOPY_TIERS:
        if quantity >= threshold:
            return price
    return base_price


def resolve_photocopy_price(quantity: int, base_price: int, custom_price: Optional[int] = None) -> tuple[int, int]:
    """
    Returns (unit_price, total_price) for a photocopy order of `quantity` sheets.

    A positive `custom_price` wins over the tier table. Quantity is validated by
    the caller (> 0).
    """
    if custom_price is not None and custom_price > 0:
        unit = int(custom_price)
    else:
        unit = tiered_unit_price(quantity, base_price)
    return unit, unit * quantity


def bulk_price_allowed(quantity: int) -> bool:
    return quantity >= BULK_PRICE_MIN_QTY
