from fastapi import Header, HTTPException, Depends, Cookie, Request
from .config import settings
from .db import get_conn
from .inflight import InFlightGuard
from .invoice_numbers import LocalInvoiceSequence
from .receipt_format import StoreInfo
from .receipts import ProfitPolicy
from .security import hash_session_token
from datetime import datetime, timezone
from typing import Optional


SESSION_COOKIE_NAME = "kasir_session"


def _extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1]
    if cookie_token:
        return cookie_token
    raise HTTPException(status_code=401, detail="missing token")


def get_session(
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
):
    token = _extract_session_token(authorization, cookie_token)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.id AS session_id, s.user_id, u.username, u.email, u.role,
                       s.expires_at, s.is_active, s.admin_until
                FROM auth_sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.token = %s AND u.is_active = true
                """,
                (hash_session_token(token),),
            )
            row = cur.fetchone()
            now = datetime.now(timezone.utc)
            if not row or not row["is_active"] or row["expires_at"] < now:
                raise HTTPException(status_code=401, detail="invalid token")
            return {
                "session_id": row["session_id"],
                "user_id": row["user_id"],
                "username": row["username"],
                "email": row["email"],
                "role": row["role"],
                "admin_until": row["admin_until"],
                "token": token,
            }


def get_current_user(session=Depends(get_session)):
    return {
        "user_id": session["user_id"],
        "username": session["username"],
        "email": session["email"],
        "role": session["role"],
    }


def session_is_admin(session: dict, now: Optional[datetime] = None) -> bool:
    if session.get("role") == "admin":
        return True
    until = session.get("admin_until")
    return bool(until) and until > (now or datetime.now(timezone.utc))


def require_admin(session=Depends(get_session)):
    if not session_is_admin(session):
        raise HTTPException(status_code=403, detail="admin access required")
    return True


# Service objects are built once in main.py and parked on app.state.
def get_inflight_guard(request: Request) -> InFlightGuard:
    return request.app.state.inflight


def get_local_invoice_sequence(request: Request) -> LocalInvoiceSequence:
    return request.app.state.local_invoices


def get_profit_policy() -> ProfitPolicy:
    return ProfitPolicy.from_settings(settings)


def get_store_info() -> StoreInfo:
    return StoreInfo.from_settings(settings)
