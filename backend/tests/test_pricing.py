import pytest

from backend.app.pricing import bulk_price_allowed, resolve_photocopy_price, tiered_unit_price


@pytest.mark.parametrize(
    "qty,expected",
    [
        (1, 300),
        (149, 300),
        (150, 285),
        (399, 285),
        (400, 275),
        (999, 275),
        (1000, 260),
        (5000, 260),
    ],
)
def test_tier_boundaries(qty, expected):
    assert tiered_unit_price(qty, 300) == expected


def test_below_first_tier_uses_base_price():
    assert resolve_photocopy_price(100, 300) == (300, 30000)


def test_tier_price_applies_to_whole_quantity():
    assert resolve_photocopy_price(500, 300) == (275, 137500)


def test_custom_price_overrides_tier():
    assert resolve_photocopy_price(1200, 300, custom_price=200) == (200, 240000)


def test_non_positive_custom_price_is_ignored():
    assert resolve_photocopy_price(150, 300, custom_price=0) == (285, 42750)
    assert resolve_photocopy_price(150, 300, custom_price=-5) == (285, 42750)


def test_bulk_price_needs_a_dozen():
    assert bulk_price_allowed(11) is False
    assert bulk_price_allowed(12) is True
