#!/usr/bin/env python3
"""
Tests for session context helpers and debug logging.
"""

import io
import logging
import sys
from pathlib import Path

# Add scripts dir to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mobile_telemetry.context import (
    DeviceInfoProvider,
    StaticDeviceInfoProvider,
    get_anonymous_id,
    new_session_id,
    snapshot,
)
from mobile_telemetry.logs import LOGGER_NAME, disable_debug_logging, enable_debug_logging


class BrokenProvider(DeviceInfoProvider):
    def collect(self):
        raise RuntimeError("no device api")


def test_session_ids_are_unique():
    assert new_session_id() != new_session_id()


def test_anonymous_id_from_environment():
    assert get_anonymous_id({"MOBILE_TELEMETRY_ANONYMOUS_ID": "anon-1"}) == "anon-1"
    assert get_anonymous_id({}) != get_anonymous_id({})


def test_snapshot_is_best_effort():
    assert snapshot(None) == (None, None)
    assert snapshot(DeviceInfoProvider()) == (None, None)
    assert snapshot(BrokenProvider()) == (None, None)

    device, app = snapshot(StaticDeviceInfoProvider({"model": "iPhone 15"}))
    assert device == {"model": "iPhone 15"}
    assert app is None


def test_debug_logging_handler_is_reused():
    stream = io.StringIO()
    try:
        first = enable_debug_logging(stream)
        second = enable_debug_logging(stream)
        assert first is second

        logging.getLogger(LOGGER_NAME + ".transport.dispatcher").debug("queued %d", 3)
        assert "[mobile-telemetry] DEBUG" in stream.getvalue()
        assert "queued 3" in stream.getvalue()
    finally:
        disable_debug_logging()

    assert not any(getattr(h, "_mobile_telemetry", False)
                   for h in logging.getLogger(LOGGER_NAME).handlers)


if __name__ == "__main__":
    import pytest
    sys.exit(pytest.main([__file__, "-v"]))
