#!/usr/bin/env python3
import os
import secrets
import sys

import psycopg
from fastapi import HTTPException
from psycopg.rows import dict_row

from backend.app.jsonlog import json_log
from backend.app.users import create_user, find_user, norm_username


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def main() -> int:
    """
    Create the first admin account from BOOTSTRAP_ADMIN_* env vars. Runs on
    every deploy; an existing user with that name is left untouched.
    """
    if not _truthy(os.getenv("BOOTSTRAP_ADMIN", "")):
        return 0

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("bootstrap_admin: missing DATABASE_URL", file=sys.stderr)
        return 2

    username = norm_username(os.getenv("BOOTSTRAP_ADMIN_USERNAME", "admin"))
    email = os.getenv("BOOTSTRAP_ADMIN_EMAIL")
    password = os.getenv("BOOTSTRAP_ADMIN_PASSWORD") or ""
    generated = not password
    if generated:
        password = secrets.token_urlsafe(16)

    try:
        with psycopg.connect(db_url, row_factory=dict_row) as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    if find_user(cur, username):
                        return 0
                    user = create_user(cur, username=username, password=password, email=email, role="admin")
    except HTTPException as exc:
        print(f"bootstrap_admin: {exc.detail}", file=sys.stderr)
        return 2

    json_log("info", "users.bootstrap_admin", user_id=str(user["id"]), username=user["username"])
    if generated:
        # Shown once; only the hash is stored.
        print(f"bootstrap_admin: generated password for {user['username']}: {password}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
