import pytest
from fastapi import HTTPException

from backend.app.inflight import InFlightGuard


def test_second_submission_is_rejected_while_first_runs():
    g = InFlightGuard()
    with g.hold("user:1"):
        assert g.is_active("user:1")
        with pytest.raises(HTTPException) as ei:
            with g.hold("user:1"):
                pass
        assert ei.value.status_code == 409
        # Other cashiers are unaffected.
        with g.hold("user:2"):
            pass
    assert not g.is_active("user:1")


def test_key_is_released_after_failure():
    g = InFlightGuard()
    with pytest.raises(RuntimeError):
        with g.hold("user:1"):
            raise RuntimeError("db down")
    with g.hold("user:1"):
        pass
