from datetime import date, datetime, timezone

import pytest
from fastapi import HTTPException

from backend.app.inflight import InFlightGuard
from backend.app.invoice_numbers import LocalInvoiceSequence
from backend.app.receipts import ManualPhotocopyProfit, ProfitPolicy
from backend.app.routers import pos as pos_router


PEN = "11111111-1111-1111-1111-111111111111"
COPY = "22222222-2222-2222-2222-222222222222"
LAMINATE = "33333333-3333-3333-3333-333333333333"

CATALOG = {
    PEN: {"id": PEN, "name": "Pulpen Standard", "cost_price": 2000, "sell_price": 3000, "stock": 40, "category": "ATK"},
    COPY: {
        "id": COPY,
        "name": "Fotocopy",
        "cost_price": 0,
        "sell_price": 300,
        "stock": 0,
        "category": "Fotocopy",
        "is_photocopy": True,
        "is_service": True,
    },
    LAMINATE: {
        "id": LAMINATE,
        "name": "Laminating KTP",
        "cost_price": 0,
        "sell_price": 5000,
        "stock": 0,
        "category": "Jasa",
        "is_service": True,
    },
}

NOW = datetime(2026, 8, 19, 3, 0, tzinfo=timezone.utc)  # 10:00 in Jakarta
CASHIER = {"session_id": "s1", "user_id": "u1", "username": "kasir1", "role": "cashier", "admin_until": None}
ADMIN = {"session_id": "s2", "user_id": "u2", "username": "owner", "role": "admin", "admin_until": None}


@pytest.fixture(autouse=True)
def _fixed_clock(monkeypatch):
    monkeypatch.setattr(pos_router, "_now", lambda: NOW)


def _catalog_rows(params):
    return [CATALOG[i] for i in params[0] if i in CATALOG]


def _checkout_handlers(*, invoice_no="INV-190826-0001", stock_ok=True):
    return [
        ("FROM products", _catalog_rows),
        ("generate_invoice_number_v2", lambda p: [{"invoice_no": invoice_no}] if invoice_no else [{"invoice_no": None}]),
        ("INSERT INTO receipt_items", lambda p: []),
        ("INSERT INTO receipts", lambda p: [{"id": "r1", "created_at": NOW}]),
        ("UPDATE products", lambda p: [{"stock": 1}] if stock_ok else []),
    ]


def _checkout(lines, **kw):
    return pos_router.checkout(
        data=pos_router.CheckoutIn(lines=lines, **kw),
        session=CASHIER,
        guard=InFlightGuard(),
        policy=ProfitPolicy(),
    )


def test_checkout_saves_receipt_and_takes_stock(fake_db):
    conn = fake_db(pos_router, _checkout_handlers())
    out = _checkout(
        [
            {"product_id": PEN, "quantity": 2},
            {"product_id": COPY, "quantity": 200},
            {"product_id": PEN, "quantity": 1},
        ],
        discount={"kind": "percent", "value": "10"},
    )

    assert conn.committed
    assert out["invoice_no"] == "INV-190826-0001"
    assert out["id"] == "r1"
    # Pens merge into one line; 200 sheets sit in the 285 tier.
    assert [(i["name"], i["quantity"], i["unit_price"]) for i in out["items"]] == [
        ("Pulpen Standard", 3, 3000),
        ("Fotocopy", 200, 285),
    ]
    assert out["subtotal"] == 9000 + 57000
    assert out["discount"] == 6600
    assert out["total"] == 59400
    assert out["profit"] == 3000 + 57000

    cur = conn.cursor()
    assert cur.ran("generate_invoice_number_v2") == [(False, date(2026, 8, 19))]
    # Only the pen is stocked; the photocopy service is skipped.
    assert cur.ran("UPDATE products") == [(3, PEN, 3)]
    assert len(cur.ran("INSERT INTO receipt_items")) == 2
    assert "FOR UPDATE" in cur.executed[0][0]


def test_checkout_skips_stock_for_non_photocopy_services(fake_db):
    conn = fake_db(pos_router, _checkout_handlers())
    out = _checkout([{"product_id": LAMINATE, "quantity": 2}])
    assert out["total"] == 10000
    assert conn.cursor().ran("UPDATE products") == []


def test_checkout_rolls_back_on_stock_shortfall(fake_db):
    conn = fake_db(pos_router, _checkout_handlers(stock_ok=False))
    with pytest.raises(HTTPException) as ei:
        _checkout([{"product_id": PEN, "quantity": 50}])
    assert ei.value.status_code == 409
    assert ei.value.detail == "insufficient stock for Pulpen Standard"
    assert conn.rolled_back and not conn.committed


def test_checkout_fails_when_no_invoice_number(fake_db):
    conn = fake_db(pos_router, _checkout_handlers(invoice_no=None))
    with pytest.raises(HTTPException) as ei:
        _checkout([{"product_id": PEN, "quantity": 1}])
    assert ei.value.status_code == 500
    assert conn.rolled_back
    assert conn.cursor().ran("INSERT INTO receipts") == []


def test_checkout_rejects_unknown_product_and_small_bulk_override(fake_db):
    fake_db(pos_router, _checkout_handlers())
    with pytest.raises(HTTPException) as ei:
        _checkout([{"product_id": "99999999-9999-9999-9999-999999999999", "quantity": 1}])
    assert ei.value.detail == "line 1: unknown product"

    with pytest.raises(HTTPException) as ei:
        _checkout([{"product_id": PEN, "quantity": 5, "price": 2500}])
    assert ei.value.status_code == 400
    assert ei.value.detail == "line 1: price override requires quantity >= 12"

    with pytest.raises(HTTPException) as ei:
        _checkout([])
    assert ei.value.detail == "lines must not be empty"


def test_checkout_accepts_bulk_override_at_a_dozen(fake_db):
    fake_db(pos_router, _checkout_handlers())
    out = _checkout([{"product_id": PEN, "quantity": 12, "price": 2500}])
    assert out["total"] == 30000
    assert out["profit"] == 12 * 500


def test_checkout_rejects_a_second_submit_from_the_same_cashier(fake_db):
    conn = fake_db(pos_router, _checkout_handlers())
    guard = InFlightGuard()
    with guard.hold("user:u1"):
        with pytest.raises(HTTPException) as ei:
            pos_router.checkout(
                data=pos_router.CheckoutIn(lines=[{"product_id": PEN, "quantity": 1}]),
                session=CASHIER,
                guard=guard,
                policy=ProfitPolicy(),
            )
    assert ei.value.status_code == 409
    assert conn.cursor().executed == []


def test_discount_over_100_percent_is_rejected(fake_db):
    fake_db(pos_router, _checkout_handlers())
    with pytest.raises(HTTPException) as ei:
        _checkout([{"product_id": PEN, "quantity": 1}], discount={"kind": "percent", "value": "150"})
    assert ei.value.detail == "discount percent must be <= 100"


def test_quote_previews_number_without_writing(fake_db):
    conn = fake_db(pos_router, [("FROM products", _catalog_rows)])
    seq = LocalInvoiceSequence()
    out = pos_router.quote(
        data=pos_router.CheckoutIn(lines=[{"product_id": PEN, "quantity": 41}]),
        session=CASHIER,
        policy=ProfitPolicy(),
        local_invoices=seq,
    )
    assert out["invoice_no"] == "INV-190826-0001"
    assert out["stock_warnings"] == [{"product_id": PEN, "name": "Pulpen Standard", "requested": 41, "stock": 40}]
    assert seq.peek(False, date(2026, 8, 19)) == "INV-190826-0001"
    assert [sql for sql, _ in conn.cursor().executed if "INSERT" in sql or "UPDATE" in sql] == []


def _manual_handlers():
    return [
        ("generate_invoice_number_v2", lambda p: [{"invoice_no": "MAN-190826-0003"}]),
        ("INSERT INTO receipt_items", lambda p: []),
        ("INSERT INTO receipts", lambda p: [{"id": "m1", "created_at": NOW}]),
    ]


def test_manual_invoice_numbers_with_man_prefix_and_leaves_stock(fake_db):
    conn = fake_db(pos_router, _manual_handlers())
    out = pos_router.create_manual_invoice(
        data=pos_router.ManualInvoiceIn(
            items=[
                {"name": "Jilid Spiral", "quantity": 2, "unit_price": 7500},
                {"is_photocopy": True, "unit_price": 15000},
            ]
        ),
        session=CASHIER,
        guard=InFlightGuard(),
        policy=ProfitPolicy(),
    )
    assert out["is_manual"] is True
    assert out["invoice_no"] == "MAN-190826-0003"
    assert [(i["name"], i["quantity"], i["total_price"]) for i in out["items"]] == [
        ("Jilid Spiral", 2, 15000),
        ("Fotocopy", 1, 15000),
    ]
    # Manual photocopy earns nothing under the default policy.
    assert out["profit"] == 15000
    cur = conn.cursor()
    assert cur.ran("generate_invoice_number_v2") == [(True, date(2026, 8, 19))]
    assert cur.ran("UPDATE products") == []


def test_manual_photocopy_profit_can_count_full_revenue(fake_db):
    fake_db(pos_router, _manual_handlers())
    out = pos_router.create_manual_invoice(
        data=pos_router.ManualInvoiceIn(items=[{"is_photocopy": True, "unit_price": 15000}]),
        session=CASHIER,
        guard=InFlightGuard(),
        policy=ProfitPolicy(manual_photocopy_profit=ManualPhotocopyProfit.FULL_REVENUE),
    )
    assert out["profit"] == 15000


def test_manual_invoice_validates_items():
    with pytest.raises(HTTPException) as ei:
        pos_router._manual_lines([pos_router.ManualItemIn(name=" ", unit_price=1000)])
    assert ei.value.detail == "item 1: name is required"

    with pytest.raises(HTTPException) as ei:
        pos_router._manual_lines([pos_router.ManualItemIn(is_photocopy=True, unit_price=0)])
    assert ei.value.detail == "item 1: total price must be > 0"


def test_photocopy_price_endpoint():
    out = pos_router.photocopy_price(pos_router.PhotocopyPriceIn(quantity=1000, base_price=300))
    assert out == {"quantity": 1000, "unit_price": 260, "total_price": 260000, "custom": False}
    out = pos_router.photocopy_price(pos_router.PhotocopyPriceIn(quantity=10, base_price=300, custom_price=250))
    assert out["unit_price"] == 250 and out["custom"] is True


def test_dashboard_scopes_cashier_to_own_sales(fake_db):
    conn = fake_db(
        pos_router,
        [
            ("photocopy_revenue", lambda p: [{"photocopy_revenue": 57000}]),
            ("FROM receipts", lambda p: [{"receipts": 4, "revenue": 120000, "profit": 70000}]),
            ("FROM products", lambda p: [{"low_stock": 2}]),
        ],
    )
    out = pos_router.dashboard(day=None, session=CASHIER)
    assert out == {
        "day": "2026-08-19",
        "receipts": 4,
        "revenue": 120000,
        "profit": 70000,
        "photocopy_revenue": 57000,
        "low_stock": 2,
    }
    totals_params = conn.cursor().ran("SUM(total)")[0]
    assert totals_params[2:] == ("u1", "u1")

    pos_router.dashboard(day=date(2026, 8, 18), session=ADMIN)
    assert conn.cursor().ran("SUM(total)")[1][2:] == (None, None)


def test_receipt_lookup_404(fake_db):
    fake_db(pos_router, [("FROM receipts", lambda p: [])])
    with pytest.raises(HTTPException) as ei:
        pos_router.get_receipt("r404", session=CASHIER)
    assert ei.value.status_code == 404


def test_checkout_accepts_product_ids_in_any_uuid_spelling(fake_db):
    conn = fake_db(pos_router, _checkout_handlers())
    out = _checkout(
        [
            {"product_id": PEN.upper(), "quantity": 1},
            {"product_id": PEN.replace("-", ""), "quantity": 2},
        ]
    )
    # Both spellings are the same catalog entry and merge into one line.
    assert [(i["product_id"], i["quantity"]) for i in out["items"]] == [(PEN, 3)]
    assert conn.cursor().ran("FROM products")[0] == ([PEN],)
    assert out["cashier"] == "kasir1"


def test_malformed_product_id_is_an_unknown_product(fake_db):
    conn = fake_db(pos_router, _checkout_handlers())
    with pytest.raises(HTTPException) as ei:
        _checkout([{"product_id": "not-a-uuid", "quantity": 1}])
    assert ei.value.detail == "line 1: unknown product"
    assert conn.cursor().ran("FROM products") == []


def _stored_receipt_handlers():
    row = {
        "id": "r1",
        "invoice_number": "INV-190826-0001",
        "subtotal": 6000,
        "discount": 0,
        "total": 6000,
        "profit": 2000,
        "payment_method": "tunai",
        "is_manual": False,
        "created_at": NOW,
        "cashier": "kasir1",
    }
    item = {
        "receipt_id": "r1",
        "product_id": PEN,
        "product_name": "Pulpen Standard",
        "quantity": 2,
        "unit_price": 3000,
        "cost_price": 2000,
        "total_price": 6000,
        "profit": 2000,
        "final_price": None,
        "category": "ATK",
        "is_photocopy": False,
    }
    return [("FROM receipt_items", lambda p: [item]), ("FROM receipts", lambda p: [row])]


def test_text_export_shows_profit_to_admins_only(fake_db):
    fake_db(pos_router, _stored_receipt_handlers())
    cashier_text = pos_router.receipt_text("r1", session=CASHIER)
    assert "Profit:" not in cashier_text
    assert "Kasir: kasir1" in cashier_text

    admin_text = pos_router.receipt_text("r1", session=ADMIN)
    assert "Profit: Rp 2.000" in admin_text
