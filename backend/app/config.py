import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/kasir')
        # Comma-separated list of allowed CORS origins for the cashier web app.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:8080", "http://127.0.0.1:8080"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Receipt header.
        self.store_name = os.getenv("STORE_NAME", "TOKO ANJAR FOTOCOPY & ATK").strip()
        self.store_address = os.getenv("STORE_ADDRESS", "Jl. Raya Gajah - Dempet (Depan Koramil Gajah)").strip()
        self.store_phone = os.getenv("STORE_PHONE", "0895630183347").strip()

        # Business hours are evaluated in the store's local time.
        self.store_timezone = os.getenv("STORE_TIMEZONE", "Asia/Jakarta").strip() or "Asia/Jakarta"
        self.business_open_hour = _env_int("BUSINESS_OPEN_HOUR", 6)
        self.business_close_hour = _env_int("BUSINESS_CLOSE_HOUR", 17)

        self.low_stock_threshold = _env_int("LOW_STOCK_THRESHOLD", 24)
        # "zero" or "full_revenue"; see receipts.ManualPhotocopyProfit.
        self.manual_photocopy_profit = (os.getenv("MANUAL_PHOTOCOPY_PROFIT") or "zero").strip().lower()

        # Secrets are bcrypt hashes, never plaintext.
        self.admin_password_hash = (os.getenv("ADMIN_PASSWORD_HASH") or "").strip() or None
        self.after_hours_code_hash = (os.getenv("AFTER_HOURS_CODE_HASH") or "").strip() or None
        self.admin_elevation_minutes = _env_int("ADMIN_ELEVATION_MINUTES", 30)

        self.printer_chunk_size = _env_int("PRINTER_CHUNK_SIZE", 20)
        self.printer_chunk_delay_s = _env_float("PRINTER_CHUNK_DELAY_S", 0.05)
        self.printer_connect_timeout_s = _env_float("PRINTER_CONNECT_TIMEOUT_S", 15.0)

settings = Settings()
