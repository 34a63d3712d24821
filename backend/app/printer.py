from __future__ import annotations

import socket
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Protocol

from .jsonlog import json_log


ESC = "\x1b"
GS = "\x1d"
INIT = ESC + "@"
CENTER = ESC + "a\x01"
FEED = "\n\n\n"
PARTIAL_CUT = GS + "V\x42\x00"

# Services exposed by the cheap BLE thermal printers sold locally.
CANDIDATE_SERVICE_UUIDS = (
    "000018f0-0000-1000-8000-00805f9b34fb",  # thermal printer
    "49535343-fe7d-4ae5-8fa9-9fafd205e455",  # ISSC / HM-10 transparent UART
    "0000ff00-0000-1000-8000-00805f9b34fb",
    "0000ffe0-0000-1000-8000-00805f9b34fb",  # HM-10
    "6e400001-b5a3-f393-e0a9-e50e24dcca9e",  # Nordic UART
)

DEFAULT_CHUNK_SIZE = 20
DEFAULT_CHUNK_DELAY_S = 0.05
MOBILE_CHUNK_DELAY_S = 0.1
DEFAULT_CONNECT_TIMEOUT_S = 15.0
RAW_PRINTER_PORT = 9100


@dataclass(frozen=True)
class Characteristic:
    service_uuid: str
    uuid: str
    write: bool = False
    write_without_response: bool = False

    @property
    def writable(self) -> bool:
        return self.write or self.write_without_response


class PrinterTransport(Protocol):
    """
    What a platform binding has to provide. BLE stacks (native or browser)
    and the raw socket transport all fit behind it.
    """

    name: str

    def discover(self, service_uuids: tuple[str, ...]) -> list[Characteristic]: ...

    def write(self, characteristic: Characteristic, data: bytes) -> None: ...

    def close(self) -> None: ...


def pick_writable_characteristic(
    characteristics: list[Characteristic],
    service_uuids: tuple[str, ...] = CANDIDATE_SERVICE_UUIDS,
) -> Optional[Characteristic]:
    allowed = {u.lower() for u in service_uuids}
    for ch in characteristics:
        if ch.service_uuid.lower() in allowed and ch.writable:
            return ch
    return None


def frame_escpos(text: str) -> bytes:
    return (INIT + CENTER + text + FEED + PARTIAL_CUT).encode("utf-8")


def chunk_payload(data: bytes, size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    if size <= 0:
        raise ValueError("chunk size must be > 0")
    for i in range(0, len(data), size):
        yield data[i : i + size]


class ThermalPrinter:
    """
    ESC/POS printer over a single transport. Every public method reports
    failure through its return value; nothing raises to the caller.
    """

    def __init__(
        self,
        transport: PrinterTransport,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_delay_s: float = DEFAULT_CHUNK_DELAY_S,
        connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        self.chunk_size = chunk_size
        self.chunk_delay_s = chunk_delay_s
        self.connect_timeout_s = connect_timeout_s
        self._sleep = sleep
        self._characteristic: Optional[Characteristic] = None

    @classmethod
    def from_settings(cls, transport: PrinterTransport, s, *, mobile: bool = False) -> "ThermalPrinter":
        delay = float(s.printer_chunk_delay_s)
        if mobile:
            delay = max(delay, MOBILE_CHUNK_DELAY_S)
        return cls(
            transport,
            chunk_size=int(s.printer_chunk_size),
            chunk_delay_s=delay,
            connect_timeout_s=float(s.printer_connect_timeout_s),
        )

    def is_connected(self) -> bool:
        return self._characteristic is not None

    def connect(self) -> bool:
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            fut = pool.submit(self.transport.discover, CANDIDATE_SERVICE_UUIDS)
            found = fut.result(timeout=self.connect_timeout_s)
        except FutureTimeout:
            json_log("warning", "printer.connect_timeout", transport=self.transport.name, timeout_s=self.connect_timeout_s)
            fut.add_done_callback(self._drop_late_discovery)
            return False
        except Exception as ex:
            json_log("warning", "printer.connect_failed", transport=self.transport.name, error=str(ex))
            return False
        finally:
            # A hung discovery is left to finish on its own thread.
            pool.shutdown(wait=False)

        ch = pick_writable_characteristic(found or [])
        if ch is None:
            json_log("warning", "printer.no_writable_characteristic", transport=self.transport.name, seen=len(found or []))
            return False
        self._characteristic = ch
        json_log("info", "printer.connected", transport=self.transport.name, service=ch.service_uuid, characteristic=ch.uuid)
        return True

    def _drop_late_discovery(self, fut) -> None:
        # Discovery finished after connect gave up; release whatever it opened.
        if self.is_connected() or fut.cancelled() or fut.exception() is not None:
            return
        try:
            self.transport.close()
        except Exception as ex:
            json_log("warning", "printer.disconnect_failed", transport=self.transport.name, error=str(ex))

    def print(self, text: str) -> bool:
        if not self.is_connected() and not self.connect():
            return False
        data = frame_escpos(text)
        sent = 0
        try:
            for idx, chunk in enumerate(chunk_payload(data, self.chunk_size)):
                if idx:
                    self._sleep(self.chunk_delay_s)
                self.transport.write(self._characteristic, chunk)
                sent += len(chunk)
        except Exception as ex:
            json_log("error", "printer.write_failed", transport=self.transport.name, sent=sent, total=len(data), error=str(ex))
            return False
        json_log("info", "printer.printed", transport=self.transport.name, bytes=len(data))
        return True

    def disconnect(self) -> None:
        try:
            self.transport.close()
        except Exception as ex:
            json_log("warning", "printer.disconnect_failed", transport=self.transport.name, error=str(ex))
        finally:
            self._characteristic = None


class HybridThermalPrinter:
    """
    Uses the native binding when the host says it is a native (packaged
    mobile) platform, otherwise the browser binding. The choice is made on
    every call so a late capability report is honoured. Build it with
    `from_settings` so the native side gets the slower mobile chunk delay.
    """

    def __init__(
        self,
        native: ThermalPrinter,
        web: ThermalPrinter,
        is_native_platform: Callable[[], bool],
    ) -> None:
        self.native = native
        self.web = web
        self._is_native_platform = is_native_platform

    @classmethod
    def from_settings(
        cls,
        native_transport: PrinterTransport,
        web_transport: PrinterTransport,
        s,
        is_native_platform: Callable[[], bool],
    ) -> "HybridThermalPrinter":
        return cls(
            ThermalPrinter.from_settings(native_transport, s, mobile=True),
            ThermalPrinter.from_settings(web_transport, s),
            is_native_platform,
        )

    def _active(self) -> ThermalPrinter:
        try:
            native = bool(self._is_native_platform())
        except Exception as ex:
            json_log("warning", "printer.platform_probe_failed", error=str(ex))
            native = False
        return self.native if native else self.web

    def connect(self) -> bool:
        return self._active().connect()

    def print(self, text: str) -> bool:
        return self._active().print(text)

    def disconnect(self) -> None:
        for p in (self.native, self.web):
            if p.is_connected():
                p.disconnect()

    def is_connected(self) -> bool:
        return self._active().is_connected()


class RawSocketTransport:
    """Network thermal printers listening on the JetDirect port."""

    name = "raw_socket"

    def __init__(self, host: str, port: int = RAW_PRINTER_PORT, timeout_s: float = 5.0) -> None:
        self.host = host
        self.port = port
        self.timeout_s = timeout_s
        self._sock: Optional[socket.socket] = None

    def discover(self, service_uuids: tuple[str, ...]) -> list[Characteristic]:
        # Reconnecting replaces the link; never leave the old socket open.
        self.close()
        self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout_s)
        # A raw port has no GATT table; expose it as one always-writable endpoint.
        return [
            Characteristic(
                service_uuid=service_uuids[0],
                uuid=f"{self.host}:{self.port}",
                write_without_response=True,
            )
        ]

    def write(self, characteristic: Characteristic, data: bytes) -> None:
        if self._sock is None:
            raise ConnectionError("printer socket is not open")
        self._sock.sendall(data)

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None
