from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


PAPER_CATEGORY = "kertas"
SHEETS_PER_REAM = 500

# (unit, multiplier to base unit), base unit first.
PAPER_UNITS: tuple[tuple[str, int], ...] = (("rim", 1), ("karton", 5))
PIECE_UNITS: tuple[tuple[str, int], ...] = (("pcs", 1), ("lusin", 12), ("kodi", 20), ("gros", 144))

UNIT_LABELS = {
    "rim": f"Rim ({SHEETS_PER_REAM} lembar)",
    "karton": "Karton (5 rim)",
    "pcs": "Pcs",
    "lusin": "Lusin (12 pcs)",
    "kodi": "Kodi (20 pcs)",
    "gros": "Gros (144 pcs)",
}


@dataclass(frozen=True)
class UnitBreakdown:
    unit: str
    quantity: int
    display: str


def norm_unit(v: Optional[str]) -> str:
    return (v or "").strip().lower()


def is_paper_category(category: Optional[str]) -> bool:
    return norm_unit(category) == PAPER_CATEGORY


def _unit_table(category: Optional[str]) -> tuple[tuple[str, int], ...]:
    return PAPER_UNITS if is_paper_category(category) else PIECE_UNITS


def decompose(quantity: int, category: Optional[str] = None) -> list[UnitBreakdown]:
    """
    Break a flat base-unit quantity into the packaging units of its category.

    Entries come base unit first, then ascending pack size; a pack unit is only
    listed once the quantity reaches it. Remainders are shown in the base unit.
    """
    table = _unit_table(category)
    base_unit = table[0][0]
    if base_unit == "rim":
        base_display = f"{quantity} rim ({quantity * SHEETS_PER_REAM} lembar)"
    else:
        base_display = f"{quantity} {base_unit}"
    out = [UnitBreakdown(unit=base_unit, quantity=quantity, display=base_display)]

    for unit, multiplier in table[1:]:
        if quantity < multiplier:
            continue
        packs, remainder = divmod(quantity, multiplier)
        display = f"{packs} {unit}"
        if remainder:
            display += f" + {remainder} {base_unit}"
        out.append(UnitBreakdown(unit=unit, quantity=packs, display=display))
    return out


def multiplier_for(unit: Optional[str], category: Optional[str] = None) -> int:
    u = norm_unit(unit)
    if u == "karton":
        # A carton only means 5 reams for paper.
        return 5 if is_paper_category(category) else 1
    for code, multiplier in PIECE_UNITS + PAPER_UNITS:
        if code == u:
            return multiplier
    return 1


def unit_options(category: Optional[str] = None) -> list[dict]:
    return [
        {"value": unit, "label": UNIT_LABELS[unit], "multiplier": multiplier}
        for unit, multiplier in _unit_table(category)
    ]


def to_base_quantity(unit_count: int, unit: Optional[str], category: Optional[str] = None) -> int:
    return unit_count * multiplier_for(unit, category)
