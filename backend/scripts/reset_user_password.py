#!/usr/bin/env python3
import argparse
import getpass
import os
import sys

import psycopg
from fastapi import HTTPException
from psycopg.rows import dict_row

from backend.app.jsonlog import json_log
from backend.app.users import norm_username, set_password


def main() -> int:
    parser = argparse.ArgumentParser(description="Set a new password for a cashier and revoke their sessions.")
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL") or "postgresql://localhost/kasir",
        help="Postgres connection string (defaults to $DATABASE_URL).",
    )
    parser.add_argument("--username", required=True)
    parser.add_argument("--password", help="New password. Prompted for when omitted.")
    args = parser.parse_args()

    username = norm_username(args.username)
    if not username:
        print("username is required", file=sys.stderr)
        return 2
    password = args.password if args.password is not None else getpass.getpass("new password: ")

    try:
        with psycopg.connect(args.db, row_factory=dict_row) as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    user = set_password(cur, username, password)
    except HTTPException as exc:
        print(exc.detail, file=sys.stderr)
        return 2
    if not user:
        print(f"user not found: {username}", file=sys.stderr)
        return 2

    json_log("info", "users.password_reset", user_id=str(user["id"]), username=user["username"])
    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
