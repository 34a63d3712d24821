from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import HTTPException

from .receipts import ProductSnapshot, Receipt, ReceiptLine


PRODUCT_COLUMNS = "id, name, cost_price, sell_price, stock, barcode, category, is_photocopy, is_service"


def load_products(cur, product_ids: list[str], *, for_update: bool = False) -> dict[str, dict]:
    ids = sorted({str(x) for x in (product_ids or []) if str(x).strip()})
    if not ids:
        return {}
    # Lock in id order so concurrent checkouts on overlapping carts queue instead of deadlocking.
    lock = " ORDER BY id FOR UPDATE" if for_update else ""
    cur.execute(
        f"""
        SELECT {PRODUCT_COLUMNS}
        FROM products
        WHERE id = ANY(%s::uuid[]){lock}
        """,
        (ids,),
    )
    return {str(r["id"]): r for r in (cur.fetchall() or [])}


def decrement_stock(cur, lines: list[ReceiptLine]) -> None:
    """
    Take sold quantities out of inventory. Photocopy and other service lines
    have no stock. A shortfall raises 409 so the surrounding transaction rolls
    back the whole checkout.
    """
    needed: dict[str, int] = {}
    names: dict[str, str] = {}
    for ln in lines:
        if ln.product.is_photocopy or ln.product.is_service or not ln.product.id:
            continue
        needed[ln.product.id] = needed.get(ln.product.id, 0) + ln.quantity
        names[ln.product.id] = ln.product.name

    for product_id in sorted(needed):
        qty = needed[product_id]
        cur.execute(
            """
            UPDATE products
            SET stock = stock - %s,
                updated_at = now()
            WHERE id = %s AND stock >= %s
            RETURNING stock
            """,
            (qty, product_id, qty),
        )
        if not cur.fetchone():
            raise HTTPException(status_code=409, detail=f"insufficient stock for {names[product_id]}")


def insert_receipt(cur, receipt: Receipt, user_id: Optional[str]) -> dict:
    cur.execute(
        """
        INSERT INTO receipts
          (id, invoice_number, subtotal, discount, total, profit, payment_method, is_manual, user_id, created_at)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id, created_at
        """,
        (
            receipt.invoice_no,
            receipt.subtotal,
            receipt.discount,
            receipt.total,
            receipt.profit,
            receipt.payment_method,
            receipt.is_manual,
            user_id,
            receipt.timestamp,
        ),
    )
    return cur.fetchone()


def insert_receipt_items(cur, receipt_id: str, receipt: Receipt) -> None:
    profits = receipt.line_profits or tuple(0 for _ in receipt.items)
    for line_no, (ln, profit) in enumerate(zip(receipt.items, profits), start=1):
        cur.execute(
            """
            INSERT INTO receipt_items
              (id, receipt_id, line_no, product_id, product_name, quantity, unit_price, cost_price,
               total_price, profit, final_price, category, is_photocopy)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                receipt_id,
                line_no,
                ln.product.id,
                ln.product.name,
                ln.quantity,
                ln.unit_price,
                ln.product.cost_price,
                ln.total_price,
                profit,
                ln.final_price,
                ln.product.category,
                ln.product.is_photocopy,
            ),
        )


def receipt_from_rows(row: dict, item_rows: list[dict]) -> Receipt:
    items = []
    profits = []
    for it in item_rows:
        unit_price = int(it.get("unit_price") or 0)
        final_price = it.get("final_price")
        items.append(
            ReceiptLine(
                product=ProductSnapshot(
                    id=str(it["product_id"]) if it.get("product_id") else None,
                    name=str(it.get("product_name") or ""),
                    cost_price=int(it.get("cost_price") or 0),
                    sell_price=unit_price,
                    category=it.get("category"),
                    is_photocopy=bool(it.get("is_photocopy")),
                ),
                quantity=int(it.get("quantity") or 0),
                final_price=int(final_price) if final_price is not None else None,
            )
        )
        profits.append(int(it.get("profit") or 0))
    return Receipt(
        id=str(row["id"]),
        invoice_no=str(row.get("invoice_number") or ""),
        items=tuple(items),
        subtotal=int(row.get("subtotal") or 0),
        discount=int(row.get("discount") or 0),
        total=int(row.get("total") or 0),
        profit=int(row.get("profit") or 0),
        timestamp=row["created_at"],
        payment_method=str(row.get("payment_method") or "tunai"),
        is_manual=bool(row.get("is_manual")),
        cashier=row.get("cashier"),
        line_profits=tuple(profits),
    )


def _load_items(cur, receipt_ids: list[str]) -> dict[str, list[dict]]:
    if not receipt_ids:
        return {}
    cur.execute(
        """
        SELECT receipt_id, product_id, product_name, quantity, unit_price, cost_price,
               total_price, profit, final_price, category, is_photocopy
        FROM receipt_items
        WHERE receipt_id = ANY(%s::uuid[])
        ORDER BY receipt_id, line_no
        """,
        (receipt_ids,),
    )
    by_receipt: dict[str, list[dict]] = {}
    for r in cur.fetchall() or []:
        by_receipt.setdefault(str(r["receipt_id"]), []).append(r)
    return by_receipt


def fetch_receipt(cur, receipt_id: str, user_id: Optional[str] = None) -> Receipt:
    cur.execute(
        """
        SELECT r.id, r.invoice_number, r.subtotal, r.discount, r.total, r.profit, r.payment_method,
               r.is_manual, r.created_at, u.username AS cashier
        FROM receipts r
        LEFT JOIN users u ON u.id = r.user_id
        WHERE r.id = %s AND (%s::uuid IS NULL OR r.user_id = %s::uuid)
        """,
        (receipt_id, user_id, user_id),
    )
    row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="receipt not found")
    items = _load_items(cur, [str(row["id"])])
    return receipt_from_rows(row, items.get(str(row["id"]), []))


def list_receipts(
    cur,
    user_id: Optional[str],
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Receipt]:
    cur.execute(
        """
        SELECT r.id, r.invoice_number, r.subtotal, r.discount, r.total, r.profit, r.payment_method,
               r.is_manual, r.created_at, u.username AS cashier
        FROM receipts r
        LEFT JOIN users u ON u.id = r.user_id
        WHERE (%s::uuid IS NULL OR r.user_id = %s::uuid)
          AND (%s::timestamptz IS NULL OR r.created_at >= %s::timestamptz)
          AND (%s::timestamptz IS NULL OR r.created_at < %s::timestamptz)
        ORDER BY r.created_at DESC
        LIMIT %s OFFSET %s
        """,
        (user_id, user_id, start, start, end, end, limit, offset),
    )
    rows = cur.fetchall() or []
    items = _load_items(cur, [str(r["id"]) for r in rows])
    return [receipt_from_rows(r, items.get(str(r["id"]), [])) for r in rows]


def local_day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)
