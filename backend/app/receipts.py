from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Literal, Optional


PHOTOCOPY_CATEGORY = "Fotocopy"
MANUAL_CATEGORY = "Manual"


def round_half_up(v: Decimal) -> int:
    # Rupiah has no subunit; halves round away from zero like the cashier UI did.
    return int(v.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class ProductSnapshot:
    """Copy of a product as it was when the receipt was made."""

    id: Optional[str]
    name: str
    cost_price: int
    sell_price: int
    stock: int = 0
    category: Optional[str] = None
    is_photocopy: bool = False
    barcode: Optional[str] = None
    # Services (lamination, binding, photocopy) carry no inventory.
    is_service: bool = False

    @classmethod
    def from_row(cls, row: dict) -> "ProductSnapshot":
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            name=str(row.get("name") or ""),
            cost_price=int(row.get("cost_price") or 0),
            sell_price=int(row.get("sell_price") or 0),
            stock=int(row.get("stock") or 0),
            category=row.get("category"),
            is_photocopy=bool(row.get("is_photocopy")),
            barcode=row.get("barcode"),
            is_service=bool(row.get("is_service")),
        )


@dataclass(frozen=True)
class ReceiptLine:
    product: ProductSnapshot
    quantity: int
    # Authoritative per-unit price when set; otherwise product.sell_price.
    final_price: Optional[int] = None

    @property
    def unit_price(self) -> int:
        return self.final_price if self.final_price is not None else self.product.sell_price

    @property
    def total_price(self) -> int:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Discount:
    kind: Literal["amount", "percent"] = "amount"
    value: Decimal = Decimal("0")

    @classmethod
    def amount(cls, value) -> "Discount":
        return cls(kind="amount", value=Decimal(str(value or 0)))

    @classmethod
    def percent(cls, value) -> "Discount":
        return cls(kind="percent", value=Decimal(str(value or 0)))


class ManualPhotocopyProfit(str, Enum):
    ZERO = "zero"
    FULL_REVENUE = "full_revenue"


@dataclass(frozen=True)
class ProfitPolicy:
    """
    Business rules for realized profit.

    - POS photocopy lines are a service with cost basis 0: full revenue is profit.
    - Manual invoice lines carry no catalog cost, so their revenue is profit,
      except photocopy lines, which follow `manual_photocopy_profit`.
    """

    manual_photocopy_profit: ManualPhotocopyProfit = ManualPhotocopyProfit.ZERO

    @classmethod
    def from_settings(cls, s) -> "ProfitPolicy":
        raw = (getattr(s, "manual_photocopy_profit", "") or "").strip().lower()
        try:
            mode = ManualPhotocopyProfit(raw)
        except ValueError:
            mode = ManualPhotocopyProfit.ZERO
        return cls(manual_photocopy_profit=mode)


@dataclass(frozen=True)
class Receipt:
    invoice_no: str
    items: tuple[ReceiptLine, ...]
    subtotal: int
    discount: int
    total: int
    profit: int
    timestamp: datetime
    payment_method: str
    is_manual: bool = False
    id: Optional[str] = None
    # Username of the cashier who rang it up, when known.
    cashier: Optional[str] = None
    line_profits: tuple[int, ...] = field(default=(), compare=False)

    def photocopy_revenue(self) -> int:
        return sum(
            ln.total_price
            for ln in self.items
            if ln.product.is_photocopy or ln.product.category == PHOTOCOPY_CATEGORY
        )


def compute_subtotal(lines: Iterable[ReceiptLine]) -> int:
    return sum(ln.total_price for ln in lines)


def resolve_discount(subtotal: int, discount: Optional[Discount]) -> int:
    if discount is None:
        return 0
    value = Decimal(str(discount.value or 0))
    if discount.kind == "percent":
        amount = round_half_up(Decimal(subtotal) * value / Decimal("100"))
    else:
        amount = round_half_up(value)
    return max(0, min(amount, subtotal))


def line_profit(line: ReceiptLine, *, manual: bool, policy: Optional[ProfitPolicy] = None) -> int:
    policy = policy or ProfitPolicy()
    revenue = line.total_price
    if line.product.is_photocopy:
        if manual and policy.manual_photocopy_profit == ManualPhotocopyProfit.ZERO:
            return 0
        return revenue
    return (line.unit_price - line.product.cost_price) * line.quantity


def compute_profit(lines: Iterable[ReceiptLine], *, manual: bool, policy: Optional[ProfitPolicy] = None) -> int:
    return sum(line_profit(ln, manual=manual, policy=policy) for ln in lines)


def manual_line(name: str, quantity: int, unit_price: int, is_photocopy: bool = False) -> ReceiptLine:
    """
    A manually authored invoice line. Photocopy work is billed as one line of
    quantity 1 whose unit price is the whole photocopy charge.
    """
    if is_photocopy:
        quantity = 1
    product = ProductSnapshot(
        id=None,
        name=name.strip(),
        cost_price=0,
        sell_price=unit_price,
        stock=0,
        category=PHOTOCOPY_CATEGORY if is_photocopy else MANUAL_CATEGORY,
        is_photocopy=is_photocopy,
    )
    return ReceiptLine(product=product, quantity=quantity, final_price=unit_price)


def derive_receipt(
    lines: Iterable[ReceiptLine],
    *,
    invoice_no: str,
    discount: Optional[Discount] = None,
    payment_method: str = "tunai",
    manual: bool = False,
    timestamp: Optional[datetime] = None,
    policy: Optional[ProfitPolicy] = None,
    receipt_id: Optional[str] = None,
) -> Receipt:
    """
    Turn validated lines into a finished receipt. Input is assumed well formed
    (non-empty, positive quantities); see validation in the POS router.
    """
    items = tuple(lines)
    subtotal = compute_subtotal(items)
    discount_amount = resolve_discount(subtotal, discount)
    profits = tuple(line_profit(ln, manual=manual, policy=policy) for ln in items)
    return Receipt(
        id=receipt_id,
        invoice_no=invoice_no,
        items=items,
        subtotal=subtotal,
        discount=discount_amount,
        total=max(0, subtotal - discount_amount),
        profit=sum(profits),
        timestamp=timestamp or datetime.now(timezone.utc),
        payment_method=payment_method,
        is_manual=manual,
        line_profits=profits,
    )
