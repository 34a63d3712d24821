from __future__ import annotations

import threading
from contextlib import contextmanager

from fastapi import HTTPException


class InFlightGuard:
    """
    Rejects a second submission for the same key while the first is still
    running (e.g. a double-tapped "Bayar" button).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._active

    @contextmanager
    def hold(self, key: str):
        with self._lock:
            if key in self._active:
                raise HTTPException(status_code=409, detail="transaction already in progress")
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)
