#!/usr/bin/env python3
"""
Command line helpers for the telemetry pipeline.

Usage:
    mobile-telemetry config [--config PATH] [--json]
    mobile-telemetry send-test-event [--config PATH] [--name NAME]
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import httpx

from .client import TelemetryClient
from .config import ConfigError, TelemetryConfig, load_config
from .logs import enable_debug_logging
from .transport.http import HttpxSender, TransportError


class RecordingSender(HttpxSender):
    """HttpxSender that remembers how each request ended."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.delivered = 0
        self.failures = []

    async def send(self, url, payload, method="POST"):
        try:
            await super().send(url, payload, method)
        except TransportError as e:
            self.failures.append((url, str(e)))
            raise
        self.delivered += 1


def display_config(config: TelemetryConfig, as_json: bool = False):
    data = config.to_dict()
    data["api_key"] = data["api_key"][:4] + "..." if len(data["api_key"]) > 4 else "..."

    if as_json:
        print(json.dumps(data, indent=2, default=str))
        return

    print("=" * 60)
    print("Mobile Telemetry Configuration")
    print("=" * 60 + "\n")
    for key, value in data.items():
        if isinstance(value, dict):
            print(f"\n[{key}]")
            for sub_key, sub_value in value.items():
                print(f"   {sub_key}: {sub_value}")
        else:
            print(f"{key}: {value}")
    print("")


async def send_test_event(
    config: TelemetryConfig,
    name: str,
    http_client: Optional[httpx.AsyncClient] = None,
) -> RecordingSender:
    """
    Start a client, track one event and shut down.

    Args:
        config: Resolved configuration
        name: Event name to track
        http_client: Client to send through; a fresh one when omitted
    """
    sender = RecordingSender(
        config.api_key, config.app_id,
        timeout=config.transport.timeout,
        client=http_client,
    )
    client = TelemetryClient(config, sender=sender)
    client.start()
    client.track(name, {"source": "cli"})
    await client.shutdown()
    return sender


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Mobile telemetry pipeline tools"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    config_parser = subparsers.add_parser("config", help="Show the resolved configuration")
    config_parser.add_argument(
        "--config",
        type=str,
        metavar="PATH",
        help="Path to a JSON config file",
    )
    config_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )

    send_parser = subparsers.add_parser("send-test-event", help="Send one event and report the outcome")
    send_parser.add_argument(
        "--config",
        type=str,
        metavar="PATH",
        help="Path to a JSON config file",
    )
    send_parser.add_argument(
        "--name",
        type=str,
        default="cli_test_event",
        help="Event name (default: cli_test_event)",
    )

    args = parser.parse_args(argv)

    try:
        config = load_config(Path(args.config) if args.config else None)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.command == "config":
        display_config(config, as_json=args.json)
        return 0

    if config.debug:
        enable_debug_logging()
    if not config.enabled:
        print("Telemetry is disabled (enabled=false), nothing sent")
        return 1

    sender = asyncio.run(send_test_event(config, args.name))
    print(f"Delivered requests: {sender.delivered}")
    for url, error in sender.failures:
        print(f"Failed: {url}: {error}", file=sys.stderr)
    return 0 if sender.delivered and not sender.failures else 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nCancelled by user")
        sys.exit(1)
