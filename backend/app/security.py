import hashlib
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from passlib.context import CryptContext

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed or not password:
        return False
    return _pwd_context.verify(password, hashed)


def needs_rehash(hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return _pwd_context.needs_update(hashed)


def hash_session_token(token: str) -> str:
    # Store sessions as a one-way hash so a DB leak doesn't immediately grant access.
    return "sha256:" + hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_admin_password(password: str, admin_hash: Optional[str]) -> bool:
    # No configured hash means admin elevation is disabled, not open.
    return verify_password(password, admin_hash)


def verify_after_hours_code(code: str, code_hash: Optional[str]) -> bool:
    return verify_password((code or "").strip(), code_hash)


def is_within_business_hours(
    now: Optional[datetime],
    tz_name: str,
    open_hour: int,
    close_hour: int,
) -> bool:
    """
    True when the store-local hour is in [open_hour, close_hour). Naive
    datetimes are taken as UTC.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(ZoneInfo(tz_name))
    return open_hour <= local.hour < close_hour
