from __future__ import annotations

from typing import Annotated, Literal, Optional

from fastapi import HTTPException
from pydantic import BeforeValidator, StringConstraints


_PAYMENT_ALIASES = {
    "cash": "tunai",
    "credit": "kredit",
}


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _to_payment_method(v):
    if v is None or not str(v).strip():
        return "tunai"
    raw = _to_lower_str(v)
    return _PAYMENT_ALIASES.get(raw, raw)


# Advisory only; the receipt just records how the customer paid.
PaymentMethod = Annotated[
    Literal["tunai", "debit", "kredit", "qris", "transfer"],
    BeforeValidator(_to_payment_method),
]

DiscountKind = Annotated[Literal["amount", "percent"], BeforeValidator(_to_lower_str)]

ProductName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]


def require_positive_qty(line_label: str, quantity: Optional[int]) -> int:
    q = int(quantity or 0)
    if q <= 0:
        raise HTTPException(status_code=400, detail=f"{line_label}: quantity must be > 0")
    return q


def require_positive_price(line_label: str, price: Optional[int], field_name: str = "price") -> int:
    p = int(price or 0)
    if p <= 0:
        raise HTTPException(status_code=400, detail=f"{line_label}: {field_name} must be > 0")
    return p


def require_items(items: Optional[list], what: str = "items") -> list:
    if not items:
        raise HTTPException(status_code=400, detail=f"{what} must not be empty")
    return items
