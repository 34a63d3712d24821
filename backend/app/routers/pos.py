from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from pydantic import BaseModel, Field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional
from zoneinfo import ZoneInfo
import uuid
from ..cart import Cart
from ..config import settings
from ..db import get_conn
from ..deps import (
    get_inflight_guard,
    get_local_invoice_sequence,
    get_profit_policy,
    get_session,
    get_store_info,
    session_is_admin,
)
from ..inflight import InFlightGuard
from ..invoice_numbers import LocalInvoiceSequence, generate_invoice_number
from ..jsonlog import json_log
from ..pricing import BULK_PRICE_MIN_QTY, bulk_price_allowed, resolve_photocopy_price
from ..printer import frame_escpos
from ..receipt_format import (
    NARROW_WIDTH,
    WIDE_WIDTH,
    StoreInfo,
    format_receipt_html,
    format_text_export,
    format_thermal_receipt,
)
from ..receipt_store import (
    decrement_stock,
    fetch_receipt,
    insert_receipt,
    insert_receipt_items,
    list_receipts as _list_receipts,
    load_products,
    local_day_bounds,
)
from ..receipts import (
    PHOTOCOPY_CATEGORY,
    Discount,
    ProductSnapshot,
    ProfitPolicy,
    Receipt,
    derive_receipt,
    manual_line,
)
from ..validation import (
    DiscountKind,
    PaymentMethod,
    require_items,
    require_positive_price,
    require_positive_qty,
)

router = APIRouter(prefix="/pos", tags=["pos"])


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _store_date(ts: datetime) -> date:
    return ts.astimezone(ZoneInfo(settings.store_timezone)).date()


def _product_key(v) -> Optional[str]:
    # Canonical uuid text; catalog rows are keyed the same way.
    try:
        return str(uuid.UUID(str(v or "").strip()))
    except ValueError:
        return None


def _line_product_ids(lines: Optional[List["CartLineIn"]]) -> list[str]:
    return [k for k in (_product_key(ln.product_id) for ln in lines or []) if k]


def _scope_user_id(session: dict) -> Optional[str]:
    # Cashiers only see their own sales; admins see the whole store.
    return None if session_is_admin(session) else str(session["user_id"])


class PhotocopyPriceIn(BaseModel):
    quantity: int
    base_price: int = Field(gt=0)
    custom_price: Optional[int] = None


class CartLineIn(BaseModel):
    product_id: str
    quantity: int
    # Custom per-sheet price for photocopy lines, or a negotiated bulk price.
    price: Optional[int] = None


class DiscountIn(BaseModel):
    kind: DiscountKind = "amount"
    value: Decimal = Decimal("0")

    def to_discount(self) -> Discount:
        if self.value < 0:
            raise HTTPException(status_code=400, detail="discount must be >= 0")
        if self.kind == "percent":
            if self.value > 100:
                raise HTTPException(status_code=400, detail="discount percent must be <= 100")
            return Discount.percent(self.value)
        return Discount.amount(self.value)


class CheckoutIn(BaseModel):
    lines: List[CartLineIn]
    discount: Optional[DiscountIn] = None
    payment_method: PaymentMethod = "tunai"


class ManualItemIn(BaseModel):
    name: Optional[str] = None
    quantity: int = 1
    # For photocopy items this is the whole photocopy charge.
    unit_price: int
    is_photocopy: bool = False


class ManualInvoiceIn(BaseModel):
    items: List[ManualItemIn]
    discount: Optional[DiscountIn] = None
    payment_method: PaymentMethod = "tunai"


def _receipt_out(receipt: Receipt) -> dict:
    profits = receipt.line_profits or tuple(0 for _ in receipt.items)
    return {
        "id": receipt.id,
        "invoice_no": receipt.invoice_no,
        "is_manual": receipt.is_manual,
        "cashier": receipt.cashier,
        "timestamp": receipt.timestamp.isoformat(),
        "payment_method": receipt.payment_method,
        "subtotal": receipt.subtotal,
        "discount": receipt.discount,
        "total": receipt.total,
        "profit": receipt.profit,
        "items": [
            {
                "product_id": ln.product.id,
                "name": ln.product.name,
                "category": ln.product.category,
                "is_photocopy": ln.product.is_photocopy,
                "quantity": ln.quantity,
                "unit_price": ln.unit_price,
                "total_price": ln.total_price,
                "profit": p,
            }
            for ln, p in zip(receipt.items, profits)
        ],
    }


def _build_cart(lines: List[CartLineIn], products: dict[str, dict]) -> Cart:
    """
    Validate request lines against the catalog and collect them into a cart.
    Repeated product ids merge into one line.
    """
    require_items(lines, "lines")
    cart = Cart()
    for idx, ln in enumerate(lines, start=1):
        label = f"line {idx}"
        qty = require_positive_qty(label, ln.quantity)
        key = _product_key(ln.product_id)
        row = products.get(key) if key else None
        if not row:
            raise HTTPException(status_code=400, detail=f"{label}: unknown product")
        product = ProductSnapshot.from_row(row)
        price = ln.price
        if price is not None:
            price = require_positive_price(label, price)
            if not product.is_photocopy and not bulk_price_allowed(qty):
                raise HTTPException(
                    status_code=400,
                    detail=f"{label}: price override requires quantity >= {BULK_PRICE_MIN_QTY}",
                )
        cart.add(product, qty, price)
    return cart


def _stock_warnings(cart: Cart) -> list[dict]:
    out = []
    for ln in cart:
        p = ln.product
        if p.is_photocopy or p.is_service:
            continue
        if ln.quantity > p.stock:
            out.append({"product_id": p.id, "name": p.name, "requested": ln.quantity, "stock": p.stock})
    return out


def _manual_lines(items: List[ManualItemIn]):
    require_items(items)
    lines = []
    for idx, it in enumerate(items, start=1):
        label = f"item {idx}"
        name = (it.name or "").strip()
        if it.is_photocopy:
            price = require_positive_price(label, it.unit_price, "total price")
            lines.append(manual_line(name or PHOTOCOPY_CATEGORY, 1, price, is_photocopy=True))
            continue
        if not name:
            raise HTTPException(status_code=400, detail=f"{label}: name is required")
        qty = require_positive_qty(label, it.quantity)
        price = require_positive_price(label, it.unit_price, "unit price")
        lines.append(manual_line(name, qty, price))
    return lines


@router.post("/photocopy-price")
def photocopy_price(data: PhotocopyPriceIn):
    qty = require_positive_qty("photocopy", data.quantity)
    custom = data.custom_price if data.custom_price and data.custom_price > 0 else None
    unit, total = resolve_photocopy_price(qty, data.base_price, custom)
    return {"quantity": qty, "unit_price": unit, "total_price": total, "custom": custom is not None}


@router.post("/quote")
def quote(
    data: CheckoutIn,
    session=Depends(get_session),
    policy: ProfitPolicy = Depends(get_profit_policy),
    local_invoices: LocalInvoiceSequence = Depends(get_local_invoice_sequence),
):
    """Price a cart without saving anything. The invoice number is a preview."""
    discount = data.discount.to_discount() if data.discount else None
    with get_conn() as conn:
        with conn.cursor() as cur:
            products = load_products(cur, _line_product_ids(data.lines))
    cart = _build_cart(data.lines, products)
    now = _now()
    receipt = derive_receipt(
        cart.lines(),
        invoice_no=local_invoices.peek(False, _store_date(now)),
        discount=discount,
        payment_method=data.payment_method,
        timestamp=now,
        policy=policy,
    )
    out = _receipt_out(receipt)
    out["stock_warnings"] = _stock_warnings(cart)
    return out


def _persist(cur, receipt: Receipt, user_id: str, cashier: Optional[str] = None) -> Receipt:
    stored = insert_receipt(cur, receipt, user_id)
    insert_receipt_items(cur, stored["id"], receipt)
    return Receipt(
        id=str(stored["id"]),
        invoice_no=receipt.invoice_no,
        items=receipt.items,
        subtotal=receipt.subtotal,
        discount=receipt.discount,
        total=receipt.total,
        profit=receipt.profit,
        timestamp=stored.get("created_at") or receipt.timestamp,
        payment_method=receipt.payment_method,
        is_manual=receipt.is_manual,
        cashier=cashier,
        line_profits=receipt.line_profits,
    )


@router.post("/checkout")
def checkout(
    data: CheckoutIn,
    session=Depends(get_session),
    guard: InFlightGuard = Depends(get_inflight_guard),
    policy: ProfitPolicy = Depends(get_profit_policy),
):
    """
    Record a sale: number it, write the receipt and its lines, and take the
    goods out of stock. Either all of it is saved or none of it.
    """
    user_id = str(session["user_id"])
    discount = data.discount.to_discount() if data.discount else None
    with guard.hold(f"user:{user_id}"):
        now = _now()
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    products = load_products(cur, _line_product_ids(data.lines), for_update=True)
                    cart = _build_cart(data.lines, products)
                    invoice_no = generate_invoice_number(cur, False, _store_date(now))
                    receipt = derive_receipt(
                        cart.lines(),
                        invoice_no=invoice_no,
                        discount=discount,
                        payment_method=data.payment_method,
                        timestamp=now,
                        policy=policy,
                    )
                    saved = _persist(cur, receipt, user_id, session.get("username"))
                    decrement_stock(cur, list(saved.items))
    json_log(
        "info",
        "pos.checkout",
        user_id=user_id,
        receipt_id=saved.id,
        invoice_no=saved.invoice_no,
        total=saved.total,
        lines=len(saved.items),
    )
    return _receipt_out(saved)


@router.post("/manual-invoices")
def create_manual_invoice(
    data: ManualInvoiceIn,
    session=Depends(get_session),
    guard: InFlightGuard = Depends(get_inflight_guard),
    policy: ProfitPolicy = Depends(get_profit_policy),
):
    """Hand-written invoice for goods or work outside the catalog. Stock is untouched."""
    user_id = str(session["user_id"])
    discount = data.discount.to_discount() if data.discount else None
    lines = _manual_lines(data.items)
    with guard.hold(f"user:{user_id}"):
        now = _now()
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    invoice_no = generate_invoice_number(cur, True, _store_date(now))
                    receipt = derive_receipt(
                        lines,
                        invoice_no=invoice_no,
                        discount=discount,
                        payment_method=data.payment_method,
                        manual=True,
                        timestamp=now,
                        policy=policy,
                    )
                    saved = _persist(cur, receipt, user_id, session.get("username"))
    json_log("info", "pos.manual_invoice", user_id=user_id, receipt_id=saved.id, invoice_no=saved.invoice_no, total=saved.total)
    return _receipt_out(saved)


@router.get("/receipts")
def list_receipts(
    day: Optional[date] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session=Depends(get_session),
):
    start = end = None
    if day:
        start, end = local_day_bounds(day, settings.store_timezone)
    with get_conn() as conn:
        with conn.cursor() as cur:
            rows = _list_receipts(cur, _scope_user_id(session), start=start, end=end, limit=limit, offset=offset)
    return {"receipts": [_receipt_out(r) for r in rows]}


def _load_receipt(receipt_id: str, session: dict) -> Receipt:
    with get_conn() as conn:
        with conn.cursor() as cur:
            return fetch_receipt(cur, receipt_id, _scope_user_id(session))


@router.get("/receipts/{receipt_id}")
def get_receipt(receipt_id: str, session=Depends(get_session)):
    return _receipt_out(_load_receipt(receipt_id, session))


@router.get("/receipts/{receipt_id}/text", response_class=PlainTextResponse)
def receipt_text(receipt_id: str, session=Depends(get_session)):
    return format_text_export(
        _load_receipt(receipt_id, session),
        tz_name=settings.store_timezone,
        include_profit=session_is_admin(session),
    )


@router.get("/receipts/{receipt_id}/html", response_class=HTMLResponse)
def receipt_html(receipt_id: str, session=Depends(get_session), store: StoreInfo = Depends(get_store_info)):
    return format_receipt_html(_load_receipt(receipt_id, session), store, tz_name=settings.store_timezone)


@router.get("/receipts/{receipt_id}/escpos")
def receipt_escpos(
    receipt_id: str,
    wide: bool = False,
    session=Depends(get_session),
    store: StoreInfo = Depends(get_store_info),
):
    receipt = _load_receipt(receipt_id, session)
    text = format_thermal_receipt(
        receipt,
        store,
        width=WIDE_WIDTH if wide else NARROW_WIDTH,
        tz_name=settings.store_timezone,
    )
    return Response(
        content=frame_escpos(text),
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{receipt.invoice_no}.bin"'},
    )


@router.get("/dashboard")
def dashboard(day: Optional[date] = None, session=Depends(get_session)):
    day = day or _store_date(_now())
    start, end = local_day_bounds(day, settings.store_timezone)
    user_id = _scope_user_id(session)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT COUNT(*)::int AS receipts,
                       COALESCE(SUM(total), 0)::bigint AS revenue,
                       COALESCE(SUM(profit), 0)::bigint AS profit
                FROM receipts
                WHERE created_at >= %s AND created_at < %s
                  AND (%s::uuid IS NULL OR user_id = %s::uuid)
                """,
                (start, end, user_id, user_id),
            )
            totals = cur.fetchone() or {}
            cur.execute(
                """
                SELECT COALESCE(SUM(ri.total_price), 0)::bigint AS photocopy_revenue
                FROM receipt_items ri
                JOIN receipts r ON r.id = ri.receipt_id
                WHERE r.created_at >= %s AND r.created_at < %s
                  AND (%s::uuid IS NULL OR r.user_id = %s::uuid)
                  AND (ri.is_photocopy = true OR ri.category = %s)
                """,
                (start, end, user_id, user_id, PHOTOCOPY_CATEGORY),
            )
            photocopy = cur.fetchone() or {}
            cur.execute(
                """
                SELECT COUNT(*)::int AS low_stock
                FROM products
                WHERE stock <= %s AND is_photocopy = false AND is_service = false
                """,
                (settings.low_stock_threshold,),
            )
            low = cur.fetchone() or {}
    return {
        "day": day.isoformat(),
        "receipts": int(totals.get("receipts") or 0),
        "revenue": int(totals.get("revenue") or 0),
        "profit": int(totals.get("profit") or 0),
        "photocopy_revenue": int(photocopy.get("photocopy_revenue") or 0),
        "low_stock": int(low.get("low_stock") or 0),
    }
