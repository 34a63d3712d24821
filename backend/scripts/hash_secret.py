#!/usr/bin/env python3
import argparse
import getpass
import sys

from backend.app.security import hash_password


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Print a bcrypt hash for ADMIN_PASSWORD_HASH or AFTER_HOURS_CODE_HASH."
    )
    parser.add_argument("--value", help="Secret to hash. Prompted for when omitted.")
    args = parser.parse_args()

    value = args.value if args.value is not None else getpass.getpass("secret: ")
    value = (value or "").strip()
    if not value:
        print("secret must not be empty", file=sys.stderr)
        return 2
    print(hash_password(value))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
