from __future__ import annotations

from typing import Optional

from .pricing import resolve_photocopy_price
from .receipts import ProductSnapshot, ReceiptLine, compute_subtotal


class Cart:
    """
    Mutable, ordered collection of lines keyed by product id.

    Photocopy lines without a custom price are re-priced from the tier table
    whenever their quantity changes, so the merged sheet count picks the tier.
    """

    def __init__(self) -> None:
        self._lines: list[ReceiptLine] = []
        # product id -> custom price given by the cashier for photocopy lines
        self._custom: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self):
        return iter(self._lines)

    def _index(self, product_id: str) -> Optional[int]:
        for i, ln in enumerate(self._lines):
            if ln.product.id == product_id:
                return i
        return None

    def _priced(self, product: ProductSnapshot, quantity: int, price: Optional[int]) -> ReceiptLine:
        if product.is_photocopy:
            custom = price if price is not None and price > 0 else self._custom.get(str(product.id))
            unit, _total = resolve_photocopy_price(quantity, product.sell_price, custom)
            return ReceiptLine(product=product, quantity=quantity, final_price=unit)
        return ReceiptLine(product=product, quantity=quantity, final_price=price)

    def add(self, product: ProductSnapshot, quantity: int = 1, price: Optional[int] = None) -> None:
        idx = self._index(str(product.id))
        if idx is not None:
            existing = self._lines[idx]
            if price is None and not product.is_photocopy:
                price = existing.final_price
            self.set_quantity(str(product.id), existing.quantity + quantity, price)
            return
        if quantity <= 0:
            return
        if product.is_photocopy and price is not None and price > 0:
            self._custom[str(product.id)] = price
        self._lines.append(self._priced(product, quantity, price))

    def set_quantity(self, product_id: str, quantity: int, price: Optional[int] = None) -> None:
        idx = self._index(product_id)
        if idx is None:
            return
        if quantity <= 0:
            self.remove(product_id)
            return
        product = self._lines[idx].product
        if product.is_photocopy and price is not None and price > 0:
            self._custom[product_id] = price
        self._lines[idx] = self._priced(product, quantity, price)

    def remove(self, product_id: str) -> None:
        self._lines = [ln for ln in self._lines if ln.product.id != product_id]
        self._custom.pop(product_id, None)

    def clear(self) -> None:
        self._lines = []
        self._custom = {}

    def lines(self) -> list[ReceiptLine]:
        return list(self._lines)

    def subtotal(self) -> int:
        return compute_subtotal(self._lines)
