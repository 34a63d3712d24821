import time

from backend.app import printer as printer_mod
from backend.app.printer import (
    CANDIDATE_SERVICE_UUIDS,
    Characteristic,
    HybridThermalPrinter,
    RawSocketTransport,
    ThermalPrinter,
    chunk_payload,
    frame_escpos,
    pick_writable_characteristic,
)


NORDIC = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"


class _FakeTransport:
    def __init__(self, characteristics=None, *, discover_error=None, write_error_at=None, hang_s=0.0, name="fake"):
        self.name = name
        self._characteristics = characteristics if characteristics is not None else [
            Characteristic(service_uuid=NORDIC, uuid="6e400002", write_without_response=True)
        ]
        self._discover_error = discover_error
        self._write_error_at = write_error_at
        self._hang_s = hang_s
        self.writes: list[bytes] = []
        self.closed = 0

    def discover(self, service_uuids):
        if self._hang_s:
            time.sleep(self._hang_s)
        if self._discover_error:
            raise self._discover_error
        return list(self._characteristics)

    def write(self, characteristic, data):
        if self._write_error_at is not None and len(self.writes) == self._write_error_at:
            raise OSError("link lost")
        self.writes.append(data)

    def close(self):
        self.closed += 1
        raise RuntimeError("already gone")


def _printer(transport, **kw):
    sleeps: list[float] = []
    p = ThermalPrinter(transport, sleep=sleeps.append, **kw)
    return p, sleeps


def test_frame_wraps_text_in_escpos_codes():
    data = frame_escpos("HALO")
    assert data.startswith(b"\x1b@\x1ba\x01HALO")
    assert data.endswith(b"\n\n\n\x1dVB\x00")


def test_chunks_are_at_most_twenty_bytes():
    chunks = list(chunk_payload(b"x" * 45))
    assert [len(c) for c in chunks] == [20, 20, 5]


def test_pick_skips_read_only_and_unknown_services():
    chars = [
        Characteristic(service_uuid="0000180a-0000-1000-8000-00805f9b34fb", uuid="a", write=True),
        Characteristic(service_uuid=CANDIDATE_SERVICE_UUIDS[0], uuid="b"),
        Characteristic(service_uuid=CANDIDATE_SERVICE_UUIDS[0].upper(), uuid="c", write=True),
    ]
    assert pick_writable_characteristic(chars).uuid == "c"
    assert pick_writable_characteristic(chars[:2]) is None


def test_print_connects_then_writes_in_chunks_with_delay():
    t = _FakeTransport()
    p, sleeps = _printer(t, chunk_delay_s=0.05)
    assert p.print("A" * 30) is True
    assert p.is_connected()
    assert b"".join(t.writes) == frame_escpos("A" * 30)
    assert all(len(w) <= 20 for w in t.writes)
    assert sleeps == [0.05] * (len(t.writes) - 1)


def test_connect_failure_returns_false():
    p, _ = _printer(_FakeTransport(discover_error=OSError("bluetooth off")))
    assert p.connect() is False
    assert p.print("x") is False


def test_connect_without_writable_characteristic_returns_false():
    t = _FakeTransport([Characteristic(service_uuid=NORDIC, uuid="ro")])
    p, _ = _printer(t)
    assert p.connect() is False
    assert not p.is_connected()


def test_connect_times_out():
    p, _ = _printer(_FakeTransport(hang_s=0.5), connect_timeout_s=0.05)
    assert p.connect() is False


def test_write_failure_returns_false():
    t = _FakeTransport(write_error_at=1)
    p, _ = _printer(t)
    assert p.print("B" * 50) is False
    assert len(t.writes) == 1


def test_disconnect_never_raises():
    t = _FakeTransport()
    p, _ = _printer(t)
    assert p.connect() is True
    p.disconnect()
    assert t.closed == 1
    assert not p.is_connected()


def test_hybrid_picks_transport_by_platform():
    native_t = _FakeTransport(name="native")
    web_t = _FakeTransport(name="web")
    native, _ = _printer(native_t)
    web, _ = _printer(web_t)
    flag = {"native": True}
    hp = HybridThermalPrinter(native, web, lambda: flag["native"])

    assert hp.print("one") is True
    assert native_t.writes and not web_t.writes

    flag["native"] = False
    assert hp.print("two") is True
    assert web_t.writes


def test_hybrid_falls_back_to_web_when_platform_check_fails():
    def _boom():
        raise RuntimeError("no bridge")

    web_t = _FakeTransport(name="web")
    hp = HybridThermalPrinter(_printer(_FakeTransport(name="native"))[0], _printer(web_t)[0], _boom)
    assert hp.connect() is True
    assert hp.is_connected() is True


class _PrinterSettings:
    printer_chunk_size = 20
    printer_chunk_delay_s = 0.05
    printer_connect_timeout_s = 15.0


def test_mobile_printers_pause_longer_between_chunks():
    s = _PrinterSettings()
    assert ThermalPrinter.from_settings(_FakeTransport(), s, mobile=True).chunk_delay_s == 0.1
    assert ThermalPrinter.from_settings(_FakeTransport(), s).chunk_delay_s == 0.05

    hp = HybridThermalPrinter.from_settings(_FakeTransport(name="native"), _FakeTransport(name="web"), s, lambda: True)
    assert hp.native.chunk_delay_s == 0.1
    assert hp.web.chunk_delay_s == 0.05
    assert hp.native.connect_timeout_s == 15.0


def test_discovery_finishing_after_timeout_is_closed():
    t = _FakeTransport(hang_s=0.2)
    p, _ = _printer(t, connect_timeout_s=0.02)
    assert p.connect() is False
    deadline = time.monotonic() + 2.0
    while t.closed == 0 and time.monotonic() < deadline:
        time.sleep(0.02)
    assert t.closed == 1
    assert not p.is_connected()


class _Sock:
    def __init__(self):
        self.closed = False
        self.sent = b""

    def sendall(self, data):
        self.sent += data

    def close(self):
        self.closed = True


def test_raw_socket_reconnect_closes_previous_socket(monkeypatch):
    opened: list[_Sock] = []

    def _connect(addr, timeout=None):
        opened.append(_Sock())
        return opened[-1]

    monkeypatch.setattr(printer_mod.socket, "create_connection", _connect)
    t = RawSocketTransport("10.0.0.9")
    ch = t.discover(CANDIDATE_SERVICE_UUIDS)[0]
    assert ch.writable and ch.uuid == "10.0.0.9:9100"
    t.discover(CANDIDATE_SERVICE_UUIDS)
    assert [s.closed for s in opened] == [True, False]

    t.write(ch, b"abc")
    assert opened[1].sent == b"abc"
    t.close()
    assert opened[1].closed
