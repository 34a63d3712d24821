from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional
import secrets
from ..config import settings
from ..db import get_conn
from ..deps import get_session, require_admin, session_is_admin, SESSION_COOKIE_NAME
from ..jsonlog import json_log
from ..security import (
    hash_password,
    verify_password,
    needs_rehash,
    hash_session_token,
    verify_admin_password,
    verify_after_hours_code,
    is_within_business_hours,
)
from ..users import create_user

router = APIRouter(prefix="/auth", tags=["auth"])
SESSION_DAYS = 1


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _business_hours(now: datetime) -> dict:
    return {
        "open_hour": settings.business_open_hour,
        "close_hour": settings.business_close_hour,
        "timezone": settings.store_timezone,
        "is_open": is_within_business_hours(
            now, settings.store_timezone, settings.business_open_hour, settings.business_close_hour
        ),
    }


def _check_business_hours(now: datetime, after_hours_code: Optional[str]) -> bool:
    """
    Returns True when the login goes through the after-hours path. Outside
    opening hours the shared access code is required.
    """
    if _business_hours(now)["is_open"]:
        return False
    code = (after_hours_code or "").strip()
    if not code:
        raise HTTPException(status_code=403, detail="outside business hours: access code required")
    if not verify_after_hours_code(code, settings.after_hours_code_hash):
        raise HTTPException(status_code=403, detail="invalid access code")
    return True


class LoginIn(BaseModel):
    # Email address or username.
    login: str
    password: str
    after_hours_code: Optional[str] = None


@router.post("/login")
def login(data: LoginIn):
    ident = (data.login or "").strip().lower()
    if not ident:
        raise HTTPException(status_code=400, detail="login is required")
    now = _now()
    after_hours = _check_business_hours(now, data.after_hours_code)

    column = "email" if "@" in ident else "username"
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT id, username, email, role, hashed_password, is_active
                    FROM users
                    WHERE lower({column}) = %s
                    """,
                    (ident,),
                )
                user = cur.fetchone()
                if not user or not user["is_active"]:
                    raise HTTPException(status_code=401, detail="invalid credentials")
                if not verify_password(data.password, user["hashed_password"]):
                    raise HTTPException(status_code=401, detail="invalid credentials")

                if needs_rehash(user["hashed_password"]):
                    cur.execute(
                        """
                        UPDATE users
                        SET hashed_password = %s
                        WHERE id = %s
                        """,
                        (hash_password(data.password), user["id"]),
                    )

                # Use a strong random token and store only a one-way hash in the DB.
                token = secrets.token_urlsafe(32)
                expires = now + timedelta(days=SESSION_DAYS)
                cur.execute(
                    """
                    INSERT INTO auth_sessions (id, user_id, token, expires_at, after_hours)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s)
                    """,
                    (user["id"], hash_session_token(token), expires, after_hours),
                )

    json_log("info", "auth.login", user_id=str(user["id"]), after_hours=after_hours)
    resp = JSONResponse(
        {
            "token": token,
            "user_id": str(user["id"]),
            "username": user["username"],
            "role": user["role"],
            "expires_at": expires.isoformat(),
        }
    )
    secure = settings.env not in {"local", "dev"}
    resp.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=SESSION_DAYS * 24 * 60 * 60,
        path="/",
    )
    return resp


@router.get("/me")
def me(session=Depends(get_session)):
    now = _now()
    until = session.get("admin_until")
    return {
        "user_id": str(session["user_id"]),
        "username": session["username"],
        "email": session["email"],
        "role": session["role"],
        "is_admin": session_is_admin(session, now),
        "admin_until": until.isoformat() if until and until > now else None,
        "business_hours": _business_hours(now),
    }


class AdminVerifyIn(BaseModel):
    password: str


@router.post("/admin/verify")
def admin_verify(data: AdminVerifyIn, session=Depends(get_session)):
    """
    Elevate the current session to admin for a short window. Stock and
    catalog writes check this instead of a password held by the client.
    """
    if not verify_admin_password(data.password, settings.admin_password_hash):
        json_log("warning", "auth.admin_verify_failed", user_id=str(session["user_id"]))
        raise HTTPException(status_code=403, detail="invalid admin password")
    until = _now() + timedelta(minutes=settings.admin_elevation_minutes)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE auth_sessions
                SET admin_until = %s
                WHERE id = %s
                """,
                (until, session["session_id"]),
            )
    return {"ok": True, "admin_until": until.isoformat()}


@router.post("/logout")
def logout(session=Depends(get_session)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE auth_sessions
                SET is_active = false
                WHERE token = %s
                """,
                (hash_session_token(session["token"]),),
            )
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
    return resp


class UserCreateIn(BaseModel):
    username: str
    password: str
    email: Optional[str] = None
    role: Literal["cashier", "admin"] = "cashier"


@router.post("/users", status_code=201, dependencies=[Depends(require_admin)])
def create_account(data: UserCreateIn):
    """Sign up a new cashier (or another admin). Admin only."""
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                user = create_user(
                    cur,
                    username=data.username,
                    password=data.password,
                    email=data.email,
                    role=data.role,
                )
    json_log("info", "auth.user_created", user_id=str(user["id"]), role=user["role"])
    return {
        "id": str(user["id"]),
        "username": user["username"],
        "email": user["email"],
        "role": user["role"],
        "is_active": user["is_active"],
    }
