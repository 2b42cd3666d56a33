#!/usr/bin/env python3
"""
Tests for the mobile-telemetry command line.

Run: python3 -m pytest tests/test_cli.py
"""

import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest

# Add the scripts directory to the path so we can import the package under test
scripts_dir = str(Path(__file__).parent.parent / "scripts")
if scripts_dir not in sys.path:
    sys.path.insert(0, scripts_dir)

from mobile_telemetry.cli import main, send_test_event
from mobile_telemetry.config import load_config


@pytest.fixture
def telemetry_env(monkeypatch):
    monkeypatch.setenv("MOBILE_TELEMETRY_API_KEY", "secret-key-123")
    monkeypatch.setenv("MOBILE_TELEMETRY_APP_ID", "app-1")
    monkeypatch.setenv("MOBILE_TELEMETRY_API_URL", "https://collector.example.com")
    monkeypatch.delenv("MOBILE_TELEMETRY_ENABLED", raising=False)
    monkeypatch.delenv("MOBILE_TELEMETRY_DEBUG", raising=False)


def test_config_json_masks_api_key(telemetry_env, capsys):
    assert main(["config", "--json"]) == 0

    data = json.loads(capsys.readouterr().out)
    assert data["app_id"] == "app-1"
    assert data["api_key"] == "secr..."
    assert data["transport"]["max_queue_size"] == 30
    assert data["heatmap"]["touch_sampling"] == 1.0


def test_config_reads_file(telemetry_env, tmp_path, capsys):
    config_file = tmp_path / "telemetry.json"
    config_file.write_text(json.dumps({"environment": "staging", "heatmap": {"max_queue_size": 20}}))

    assert main(["config", "--config", str(config_file)]) == 0

    out = capsys.readouterr().out
    assert "environment: staging" in out
    assert "max_queue_size: 20" in out


def test_invalid_config_exits_2(telemetry_env, monkeypatch, capsys):
    monkeypatch.setenv("MOBILE_TELEMETRY_API_URL", "not-a-url")

    assert main(["config"]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_send_test_event_disabled(telemetry_env, monkeypatch, capsys):
    monkeypatch.setenv("MOBILE_TELEMETRY_ENABLED", "false")

    assert main(["send-test-event"]) == 1
    assert "disabled" in capsys.readouterr().out


def run_send_test_event(config, status_code):
    """Send the test event through a MockTransport answering with status_code."""
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(status_code, text="ok" if status_code < 400 else "boom")

    async def scenario():
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        try:
            return await send_test_event(config, "cli_check", http_client=http)
        finally:
            await http.aclose()

    return asyncio.run(scenario()), paths


def test_send_test_event_delivers(telemetry_env):
    sender, paths = run_send_test_event(load_config(), 202)

    assert sender.failures == []
    assert sender.delivered == 2
    assert "/v1/rum/sessions" in paths
    assert "/v1/rum/events" in paths


def test_send_test_event_reports_failures(telemetry_env):
    sender, paths = run_send_test_event(load_config(), 500)

    assert sender.delivered == 0
    assert sender.failures
    url, error = sender.failures[0]
    assert url.startswith("https://collector.example.com/v1/")
    assert "HTTP 500" in error


def test_command_required():
    with pytest.raises(SystemExit):
        main([])


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
