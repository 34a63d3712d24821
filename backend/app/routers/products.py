from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Discriminator, Field, Tag
from typing import Annotated, Literal, Optional, Union
import json
from ..config import settings
from ..db import get_conn
from ..deps import get_current_user, require_admin
from ..receipt_store import PRODUCT_COLUMNS
from ..units import decompose, is_paper_category, multiplier_for, norm_unit, to_base_quantity, unit_options
from ..validation import ProductName

router = APIRouter(prefix="/products", tags=["products"])


def _clean(v: Optional[str]) -> Optional[str]:
    return (v or "").strip() or None


def _with_units(row: dict) -> dict:
    out = dict(row)
    if not (row.get("is_photocopy") or row.get("is_service")):
        out["stock_units"] = [
            {"unit": b.unit, "quantity": b.quantity, "display": b.display}
            for b in decompose(int(row.get("stock") or 0), row.get("category"))
        ]
    return out


class ProductIntake(BaseModel):
    kind: Literal["product"] = "product"
    name: ProductName
    cost_price: int = Field(ge=0)
    sell_price: int = Field(gt=0)
    category: Optional[str] = None
    barcode: Optional[str] = None
    # Initial stock, counted in `unit` (pcs/lusin/kodi/gros or rim/karton).
    unit_count: int = Field(gt=0)
    unit: Optional[str] = None


class ServiceIntake(BaseModel):
    kind: Literal["service"]
    name: ProductName
    cost_price: int = Field(default=0, ge=0)
    sell_price: int = Field(gt=0)
    category: Optional[str] = None
    is_photocopy: bool = False


def _intake_kind(v) -> str:
    # Intakes without a kind are stocked products.
    if isinstance(v, dict):
        return v.get("kind") or "product"
    return getattr(v, "kind", None) or "product"


ProductCreate = Annotated[
    Union[Annotated[ProductIntake, Tag("product")], Annotated[ServiceIntake, Tag("service")]],
    Discriminator(_intake_kind),
]


class ProductUpdate(BaseModel):
    name: Optional[ProductName] = None
    cost_price: Optional[int] = Field(default=None, ge=0)
    sell_price: Optional[int] = Field(default=None, gt=0)
    category: Optional[str] = None
    barcode: Optional[str] = None


class RestockIn(BaseModel):
    unit_count: int = Field(gt=0)
    unit: Optional[str] = None


class StockAdjustIn(BaseModel):
    delta: int


def _audit(cur, user_id, action: str, product_id, details: dict) -> None:
    cur.execute(
        """
        INSERT INTO audit_logs (id, user_id, action, entity_type, entity_id, details)
        VALUES (gen_random_uuid(), %s, %s, 'product', %s, %s::jsonb)
        """,
        (user_id, action, product_id, json.dumps(details, default=str)),
    )


@router.get("")
def list_products(q: Optional[str] = None, category: Optional[str] = None, user=Depends(get_current_user)):
    needle = _clean(q)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {PRODUCT_COLUMNS}, created_at, updated_at
                FROM products
                WHERE (%s::text IS NULL OR name ILIKE '%%' || %s || '%%' OR barcode = %s)
                  AND (%s::text IS NULL OR lower(category) = lower(%s))
                ORDER BY name
                """,
                (needle, needle, needle, _clean(category), _clean(category)),
            )
            return {"products": [_with_units(r) for r in cur.fetchall()]}


@router.get("/units")
def list_units(category: Optional[str] = None):
    return {"category": category, "paper": is_paper_category(category), "units": unit_options(category)}


@router.get("/low-stock")
def low_stock(user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {PRODUCT_COLUMNS}
                FROM products
                WHERE stock <= %s AND is_photocopy = false AND is_service = false
                ORDER BY stock, name
                """,
                (settings.low_stock_threshold,),
            )
            return {"threshold": settings.low_stock_threshold, "products": [_with_units(r) for r in cur.fetchall()]}


@router.post("", dependencies=[Depends(require_admin)])
def create_product(data: ProductCreate, user=Depends(get_current_user)):
    """
    Add a catalog entry. A product intake whose name already exists
    (case-insensitive) restocks that product instead, taking over any new
    prices.
    """
    is_service = data.kind == "service"
    is_photocopy = bool(getattr(data, "is_photocopy", False))
    category = _clean(data.category)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {PRODUCT_COLUMNS}
                    FROM products
                    WHERE lower(name) = lower(%s)
                    FOR UPDATE
                    """,
                    (data.name,),
                )
                existing = cur.fetchone()
                unit_category = category or (existing or {}).get("category")
                stock = 0 if is_service else to_base_quantity(data.unit_count, data.unit, unit_category)
                if existing and is_service:
                    raise HTTPException(status_code=409, detail=f"{existing['name']} already exists")
                if existing:
                    if existing["is_photocopy"] or existing["is_service"]:
                        raise HTTPException(status_code=409, detail=f"{existing['name']} is a service and has no stock")
                    cur.execute(
                        f"""
                        UPDATE products
                        SET stock = stock + %s,
                            cost_price = %s,
                            sell_price = %s,
                            updated_at = now()
                        WHERE id = %s
                        RETURNING {PRODUCT_COLUMNS}
                        """,
                        (stock, data.cost_price, data.sell_price, existing["id"]),
                    )
                    row = cur.fetchone()
                    _audit(
                        cur,
                        user["user_id"],
                        "product_restock",
                        row["id"],
                        {"added": stock, "cost_price": data.cost_price, "sell_price": data.sell_price},
                    )
                    return {"created": False, "added_stock": stock, "product": _with_units(row)}

                cur.execute(
                    f"""
                    INSERT INTO products
                      (id, name, cost_price, sell_price, stock, barcode, category, is_photocopy, is_service)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {PRODUCT_COLUMNS}
                    """,
                    (
                        data.name,
                        data.cost_price,
                        data.sell_price,
                        stock,
                        None if is_service else _clean(data.barcode),
                        category,
                        is_photocopy,
                        is_service,
                    ),
                )
                row = cur.fetchone()
                _audit(cur, user["user_id"], "product_create", row["id"], data.model_dump())
                return {"created": True, "added_stock": stock, "product": _with_units(row)}


@router.patch("/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, data: ProductUpdate, user=Depends(get_current_user)):
    patch = data.model_dump(exclude_unset=True)
    fields = []
    params = []
    for k, v in patch.items():
        if k in {"name", "cost_price", "sell_price"} and v is None:
            raise HTTPException(status_code=400, detail=f"{k} cannot be cleared")
        fields.append(f"{k} = %s")
        params.append(_clean(v) if k in {"category", "barcode"} else v)
    if not fields:
        return {"ok": True}
    params.append(product_id)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE products
                    SET {', '.join(fields)}, updated_at = now()
                    WHERE id = %s
                    RETURNING {PRODUCT_COLUMNS}
                    """,
                    params,
                )
                row = cur.fetchone()
                if not row:
                    raise HTTPException(status_code=404, detail="product not found")
                _audit(cur, user["user_id"], "product_update", product_id, patch)
                return {"ok": True, "product": _with_units(row)}


def _change_stock(cur, product_id: str, delta: int) -> dict:
    cur.execute(
        f"""
        UPDATE products
        SET stock = GREATEST(0, stock + %s),
            updated_at = now()
        WHERE id = %s AND is_photocopy = false AND is_service = false
        RETURNING {PRODUCT_COLUMNS}
        """,
        (delta, product_id),
    )
    row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="stocked product not found")
    return row


@router.post("/{product_id}/restock", dependencies=[Depends(require_admin)])
def restock_product(product_id: str, data: RestockIn, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT category FROM products WHERE id = %s", (product_id,))
                cat = cur.fetchone()
                if not cat:
                    raise HTTPException(status_code=404, detail="product not found")
                unit = norm_unit(data.unit) or None
                added = data.unit_count * multiplier_for(unit, cat["category"])
                row = _change_stock(cur, product_id, added)
                _audit(cur, user["user_id"], "product_restock", product_id, {"unit": unit, "unit_count": data.unit_count, "added": added})
                return {"added_stock": added, "product": _with_units(row)}


@router.post("/{product_id}/stock-adjust", dependencies=[Depends(require_admin)])
def adjust_stock(product_id: str, data: StockAdjustIn, user=Depends(get_current_user)):
    # Manual count correction; stock never goes below zero.
    if data.delta == 0:
        raise HTTPException(status_code=400, detail="delta must not be 0")
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                row = _change_stock(cur, product_id, data.delta)
                _audit(cur, user["user_id"], "product_stock_adjust", product_id, {"delta": data.delta})
                return {"product": _with_units(row)}
