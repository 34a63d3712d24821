#!/usr/bin/env python3
import argparse
import os
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.config import settings
from backend.app.printer import RAW_PRINTER_PORT, RawSocketTransport, ThermalPrinter
from backend.app.receipt_format import NARROW_WIDTH, WIDE_WIDTH, StoreInfo, format_thermal_receipt
from backend.app.receipt_store import fetch_receipt


def _find_receipt_id(cur, invoice_no: str):
    cur.execute("SELECT id FROM receipts WHERE invoice_number = %s", (invoice_no,))
    row = cur.fetchone()
    return str(row["id"]) if row else None


def main() -> int:
    parser = argparse.ArgumentParser(description="Reprint a stored receipt on a network thermal printer.")
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL") or settings.db_url,
        help="Postgres connection string (defaults to $DATABASE_URL).",
    )
    parser.add_argument("--invoice", required=True, help="Invoice number, e.g. INV-190826-0001")
    parser.add_argument("--host", help="Printer host. Omit with --dry-run to dump the text instead.")
    parser.add_argument("--port", type=int, default=RAW_PRINTER_PORT)
    parser.add_argument("--wide", action="store_true", help="80mm paper (48 columns) instead of 58mm.")
    parser.add_argument("--dry-run", action="store_true", help="Write the receipt text to stdout and exit.")
    args = parser.parse_args()

    invoice_no = (args.invoice or "").strip().upper()
    if not invoice_no:
        print("invoice is required", file=sys.stderr)
        return 2
    if not args.dry_run and not args.host:
        print("--host is required unless --dry-run is given", file=sys.stderr)
        return 2

    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.cursor() as cur:
            receipt_id = _find_receipt_id(cur, invoice_no)
            if not receipt_id:
                print(f"receipt not found: {invoice_no}", file=sys.stderr)
                return 2
            receipt = fetch_receipt(cur, receipt_id)

    text = format_thermal_receipt(
        receipt,
        StoreInfo.from_settings(settings),
        width=WIDE_WIDTH if args.wide else NARROW_WIDTH,
        tz_name=settings.store_timezone,
    )
    if args.dry_run:
        sys.stdout.write(text)
        return 0

    printer = ThermalPrinter.from_settings(RawSocketTransport(args.host, args.port), settings)
    try:
        ok = printer.print(text)
    finally:
        printer.disconnect()
    if not ok:
        print("print failed", file=sys.stderr)
        return 1
    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
