from __future__ import annotations

import threading
from datetime import date
from typing import Optional

from fastapi import HTTPException


POS_PREFIX = "INV"
MANUAL_PREFIX = "MAN"
SEQUENCE_WIDTH = 4


def invoice_prefix(is_manual: bool) -> str:
    return MANUAL_PREFIX if is_manual else POS_PREFIX


def format_invoice_no(is_manual: bool, tx_date: date, seq: int) -> str:
    # e.g. MAN-190826-0007
    return f"{invoice_prefix(is_manual)}-{tx_date.strftime('%d%m%y')}-{seq:0{SEQUENCE_WIDTH}d}"


class LocalInvoiceSequence:
    """
    In-memory, date-scoped counters per prefix. Used for previews and offline
    rendering; persisted receipts always take their number from the database.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, date], int] = {}

    def next(self, is_manual: bool, tx_date: Optional[date] = None) -> str:
        d = tx_date or date.today()
        key = (invoice_prefix(is_manual), d)
        with self._lock:
            seq = self._counters.get(key, 0) + 1
            self._counters[key] = seq
        return format_invoice_no(is_manual, d, seq)

    def peek(self, is_manual: bool, tx_date: Optional[date] = None) -> str:
        d = tx_date or date.today()
        with self._lock:
            seq = self._counters.get((invoice_prefix(is_manual), d), 0) + 1
        return format_invoice_no(is_manual, d, seq)


def generate_invoice_number(cur, is_manual: bool, tx_date: Optional[date] = None) -> str:
    """
    Ask the database for the next invoice number. Runs inside the caller's
    transaction so the counter bump rolls back with a failed checkout.
    """
    cur.execute(
        "SELECT generate_invoice_number_v2(%s, %s) AS invoice_no",
        (bool(is_manual), tx_date),
    )
    row = cur.fetchone()
    invoice_no = (row or {}).get("invoice_no")
    if not invoice_no:
        raise HTTPException(status_code=500, detail="invoice number generation failed")
    return str(invoice_no)
