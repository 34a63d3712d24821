from __future__ import annotations

from typing import Optional

from fastapi import HTTPException
from psycopg.errors import UniqueViolation  # type: ignore

from .security import hash_password


ROLES = ("cashier", "admin")
MIN_PASSWORD_LENGTH = 6


def norm_username(v: Optional[str]) -> str:
    return (v or "").strip().lower()


def norm_email(v: Optional[str]) -> Optional[str]:
    return (v or "").strip().lower() or None


def check_password(password: Optional[str]) -> str:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


def find_user(cur, username: str) -> Optional[dict]:
    cur.execute(
        """
        SELECT id, username, email, role, is_active
        FROM users
        WHERE lower(username) = %s
        """,
        (norm_username(username),),
    )
    return cur.fetchone()


def create_user(cur, *, username: str, password: str, email: Optional[str] = None, role: str = "cashier") -> dict:
    """
    Insert a user with a bcrypt password hash. Usernames and emails are
    unique case-insensitively; a clash is a 409.
    """
    username = norm_username(username)
    email = norm_email(email)
    if not username:
        raise HTTPException(status_code=400, detail="username is required")
    if "@" in username:
        # Login treats anything with "@" as an email address.
        raise HTTPException(status_code=400, detail="username must not contain @")
    if role not in ROLES:
        raise HTTPException(status_code=400, detail="invalid role")
    check_password(password)

    cur.execute(
        """
        SELECT username, email
        FROM users
        WHERE lower(username) = %s OR (%s::text IS NOT NULL AND lower(email) = %s)
        """,
        (username, email, email),
    )
    clash = cur.fetchone()
    if clash:
        what = "username" if norm_username(clash.get("username")) == username else "email"
        raise HTTPException(status_code=409, detail=f"{what} already exists")

    try:
        cur.execute(
            """
            INSERT INTO users (id, username, email, role, hashed_password, is_active)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, true)
            RETURNING id, username, email, role, is_active
            """,
            (username, email, role, hash_password(password)),
        )
    except UniqueViolation:
        # Lost a race with a concurrent sign-up.
        raise HTTPException(status_code=409, detail="username already exists")
    return cur.fetchone()


def set_password(cur, username: str, password: str) -> Optional[dict]:
    """
    Replace a user's password, re-activate the account and revoke every
    session issued under the old password. Returns None for an unknown user.
    """
    check_password(password)
    cur.execute(
        """
        UPDATE users
        SET hashed_password = %s,
            is_active = true,
            updated_at = now()
        WHERE lower(username) = %s
        RETURNING id, username
        """,
        (hash_password(password), norm_username(username)),
    )
    row = cur.fetchone()
    if not row:
        return None
    cur.execute(
        """
        UPDATE auth_sessions
        SET is_active = false
        WHERE user_id = %s AND is_active = true
        """,
        (row["id"],),
    )
    return row
