from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from .receipts import Receipt


ESC = "\x1b"
GS = "\x1d"
BOLD_ON = ESC + "E\x01"
BOLD_OFF = ESC + "E\x00"
ALIGN_LEFT = ESC + "a\x00"
ALIGN_CENTER = ESC + "a\x01"
DOUBLE_HEIGHT = ESC + "!\x10"
NORMAL_SIZE = ESC + "!\x00"

NARROW_WIDTH = 32  # 58mm paper
WIDE_WIDTH = 48  # 80mm paper


@dataclass(frozen=True)
class StoreInfo:
    name: str
    address: str
    phone: str

    @classmethod
    def from_settings(cls, s) -> "StoreInfo":
        return cls(name=s.store_name, address=s.store_address, phone=s.store_phone)


def format_amount(amount: int) -> str:
    # id-ID grouping: 1.250.000
    sign = "-" if amount < 0 else ""
    return sign + f"{abs(int(amount)):,}".replace(",", ".")


def format_price(amount: int) -> str:
    return f"Rp {format_amount(amount)}"


def format_timestamp(ts: datetime, tz_name: Optional[str] = None) -> str:
    if tz_name and ts.tzinfo is not None:
        ts = ts.astimezone(ZoneInfo(tz_name))
    return ts.strftime("%d/%m/%Y %H.%M")


def _payment_label(receipt: Receipt) -> str:
    return (receipt.payment_method or "tunai").upper()


def _lr(left: str, right: str, width: int) -> str:
    gap = max(1, width - len(left) - len(right))
    return f"{left}{' ' * gap}{right}"


def _bold(text: str) -> str:
    return f"{BOLD_ON}{text}{BOLD_OFF}"


def format_thermal_receipt(
    receipt: Receipt,
    store: StoreInfo,
    *,
    width: int = NARROW_WIDTH,
    tz_name: Optional[str] = None,
) -> str:
    """
    ESC/POS receipt body. Printer framing (init, feed, cut) is added by
    `printer.frame_escpos`.
    """
    rule = "=" * width
    thin = "-" * width
    wide = width >= WIDE_WIDTH
    title = f"{DOUBLE_HEIGHT}{store.name}{NORMAL_SIZE}" if wide else store.name

    out = [
        ALIGN_CENTER + _bold(rule),
        _bold(title),
        _bold(rule),
        store.address,
        f"Telp/WA: {store.phone}",
        "",
        _bold("NOTA MANUAL" if receipt.is_manual else "STRUK PENJUALAN"),
        _bold(rule),
        ALIGN_LEFT + f"Invoice: {_bold(receipt.invoice_no)}",
        f"Tanggal: {format_timestamp(receipt.timestamp, tz_name)}",
        _bold(thin),
    ]

    for idx, ln in enumerate(receipt.items):
        if idx:
            out.append("")
        qty_price = f"{ln.quantity} x {format_price(ln.unit_price)}"
        total = format_price(ln.total_price)
        out.append(ln.product.name)
        if wide:
            out.append(_lr(qty_price, total, width))
        else:
            out.append(qty_price)
            out.append(total.rjust(width))

    out.append(_bold(thin))
    out.append(_lr("Subtotal:", format_price(receipt.subtotal), width))
    if receipt.discount > 0:
        out.append(_lr("Diskon:", "-" + format_price(receipt.discount), width))
    out.append(_bold(thin))
    out.append(_bold(_lr("TOTAL:", format_price(receipt.total), width)))
    out.append("")
    out.append(f"Metode: {_bold(_payment_label(receipt))}")
    out.append("")
    out.extend(
        [
            ALIGN_CENTER + _bold(rule),
            _bold("TERIMA KASIH ATAS"),
            _bold("KUNJUNGAN ANDA!"),
            "",
            _bold("Semoga Hari Anda Menyenangkan"),
            _bold(rule),
        ]
    )
    return "\n".join(out) + "\n"


def format_text_export(receipt: Receipt, *, tz_name: Optional[str] = None, include_profit: bool = False) -> str:
    """
    Plain key/value summary, one field per line. Profit is internal and only
    written when `include_profit` is set.
    """
    lines = [
        f"Invoice: {receipt.invoice_no}",
        f"Tanggal: {format_timestamp(receipt.timestamp, tz_name)}",
        f"Jenis: {'manual' if receipt.is_manual else 'kasir'}",
    ]
    for idx, ln in enumerate(receipt.items, start=1):
        lines.append(
            f"Item {idx}: {ln.product.name} | {ln.quantity} x {format_price(ln.unit_price)} = {format_price(ln.total_price)}"
        )
    lines.extend(
        [
            f"Subtotal: {format_price(receipt.subtotal)}",
            f"Diskon: {format_price(receipt.discount)}",
            f"Total: {format_price(receipt.total)}",
        ]
    )
    if include_profit:
        lines.append(f"Profit: {format_price(receipt.profit)}")
    lines.append(f"Metode: {_payment_label(receipt)}")
    if receipt.cashier:
        lines.append(f"Kasir: {receipt.cashier}")
    return "\n".join(lines) + "\n"


def format_receipt_html(receipt: Receipt, store: StoreInfo, *, tz_name: Optional[str] = None) -> str:
    def e(x):
        return html.escape(str(x if x is not None else ""))

    title = "Nota Manual" if receipt.is_manual else "Struk Penjualan"
    footer = _payment_label(receipt)
    if receipt.cashier:
        footer = f"Kasir: {receipt.cashier} | {footer}"
    line_rows = []
    for ln in receipt.items:
        line_rows.append(
            f"""
            <tr>
              <td class="name">{e(ln.product.name)}<div class="muted">{e(format_price(ln.unit_price))} &times; {e(ln.quantity)}</div></td>
              <td class="amt">{e(format_price(ln.total_price))}</td>
            </tr>
            """
        )

    discount_row = ""
    if receipt.discount > 0:
        discount_row = (
            f'<div class="row discount"><span>Diskon</span><span class="mono">-{e(format_price(receipt.discount))}</span></div>'
        )

    return f"""<!doctype html>
<html lang="id">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width,initial-scale=1" />
    <title>{e(title)} {e(receipt.invoice_no)}</title>
    <style>
      :root {{
        --w: 80mm;
        --fg: #111;
        --muted: #666;
        --border: #e5e7eb;
        --mono: ui-monospace, SFMono-Regular, Menlo, Monaco, Consolas, "Liberation Mono", "Courier New", monospace;
      }}
      body {{
        margin: 0 auto;
        padding: 10px;
        color: var(--fg);
        font-family: var(--mono);
        max-width: var(--w);
      }}
      .center {{ text-align: center; }}
      .muted {{ color: var(--muted); font-size: 11px; }}
      .mono {{ font-family: var(--mono); }}
      h1 {{ font-size: 16px; margin: 0 0 4px; }}
      h2 {{ font-size: 14px; margin: 12px 0 4px; }}
      hr {{ border: 0; border-top: 1px solid var(--border); margin: 12px 0; }}
      table {{ width: 100%; border-collapse: collapse; font-size: 12px; }}
      tbody td {{ padding: 4px 0; vertical-align: top; }}
      td.amt {{ text-align: right; width: 35%; }}
      .row {{ display: flex; justify-content: space-between; gap: 10px; padding: 2px 0; font-size: 12px; }}
      .row.discount {{ color: #dc2626; }}
      .row.total {{ font-size: 16px; font-weight: bold; }}
      @media print {{
        body {{ padding: 0; }}
        @page {{ size: 80mm auto; margin: 0; }}
      }}
    </style>
  </head>
  <body>
    <div class="center">
      <h1>{e(store.name)}</h1>
      <div class="muted">{e(store.address)}</div>
      <div class="muted">Telp/WA: {e(store.phone)}</div>
    </div>
    <hr />
    <div class="center">
      <h2>{e(title.upper())}</h2>
      <div class="muted">{e(receipt.invoice_no)}</div>
      <div class="muted">{e(format_timestamp(receipt.timestamp, tz_name))}</div>
    </div>
    <hr />
    <table>
      <tbody>
        {''.join(line_rows)}
      </tbody>
    </table>
    <hr />
    <div class="row"><span>Subtotal</span><span class="mono">{e(format_price(receipt.subtotal))}</span></div>
    {discount_row}
    <div class="row total"><span>TOTAL</span><span class="mono">{e(format_price(receipt.total))}</span></div>
    <hr />
    <div class="center muted">
      <p>Terima kasih atas kunjungan Anda!</p>
      <p>Semoga Hari Anda Menyenangkan</p>
      <p>{e(footer)}</p>
    </div>
  </body>
</html>"""
