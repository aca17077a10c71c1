#!/usr/bin/env python3
"""
TailHub - BLE tail hub entry point

Usage:
    tailhub run                        # Start with default config
    tailhub run --config my.yaml       # Use custom config file
    tailhub run --dry-run              # Print config and exit
    tailhub run --verbose              # Enable debug logging
    tailhub status                     # Query a running hub
    tailhub scan                       # Ask a running hub to scan for a tail
"""

import argparse
import asyncio
import dataclasses
import logging
import os
import sys

import httpx
import yaml

from tailhub import __version__
from tailhub.common.config import DEFAULT_CONFIG_PATH, AppConfig, load_config_file
from tailhub.common.exceptions import ConfigError
from tailhub.common.logging_setup import set_log_level, setup_logging


def print_startup_banner(config: AppConfig) -> None:
    """Print startup information."""
    print()
    print("=" * 60)
    print(f"  TAILHUB v{__version__}")
    print("=" * 60)
    print()
    print(f"  Devices file:  {config.devices_file}")
    if config.events.enabled:
        print(f"  OSC listener:  {config.events.host}:{config.events.port}{config.events.address_prefix}*")
    else:
        print("  OSC listener:  disabled")
    print(f"  Control API:   {config.health_url}")
    print(f"  Scan target:   {config.discovery.target_name}")
    print()
    print("=" * 60)
    print()


async def main_async(config: AppConfig) -> None:
    """
    Async main function that runs the device service.

    Args:
        config: Loaded configuration
    """
    # Imported late so module loggers pick up the configured level/format
    from tailhub.services.device.service import DeviceService

    logger = logging.getLogger("tailhub.main")
    logger.info("Starting TailHub")

    service = DeviceService(config)
    try:
        await service.run()
    except Exception as e:
        logger.critical(f"Device service failed: {e}")
        raise


def run_command(args: argparse.Namespace) -> int:
    try:
        config = load_config_file(args.config)
    except ConfigError as e:
        print(f"Error loading configuration: {e}")
        return 1

    log_level = "DEBUG" if args.verbose else config.log_level
    # Plain text in verbose/debug mode
    if args.verbose:
        os.environ["TAILHUB_LOG_FORMAT"] = "text"
    setup_logging("main", log_level=log_level, json_format=not args.verbose)
    set_log_level(log_level)

    print_startup_banner(config)

    if args.dry_run:
        print("Dry run mode - configuration valid")
        print(yaml.safe_dump(dataclasses.asdict(config), sort_keys=False))
        print("Exiting without starting services")
        return 0

    print("Starting services...")
    print("Press Ctrl+C to stop")
    print()

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        print("\nStopped by user")
    except Exception as e:
        print(f"\nFatal error: {e}")
        return 1
    return 0


def _base_url(args: argparse.Namespace) -> str:
    if args.url:
        return args.url.rstrip("/")
    try:
        return load_config_file(args.config).health_url
    except ConfigError as e:
        print(f"Error loading configuration: {e}")
        sys.exit(1)


def status_command(args: argparse.Namespace) -> int:
    base = _base_url(args)
    try:
        with httpx.Client(timeout=5.0) as client:
            health = client.get(f"{base}/health").json()
            devices = client.get(f"{base}/devices").json()
    except httpx.HTTPError as e:
        print(f"Hub not reachable at {base}: {e}")
        return 1

    counts = health.get("devices", {})
    print(f"Status: {health.get('status', 'unknown')} (uptime {health.get('uptime', 0)}s)")
    print(
        f"Devices: {counts.get('total', 0)} total, "
        f"{counts.get('online', 0)} online, {counts.get('enabled', 0)} enabled"
    )
    for device in devices:
        print(
            f"  {device['name'] or '-':<12} {device['id']:<38} "
            f"{device['status']:<12} event={device['event'] or '-'}"
        )
    return 0


def scan_command(args: argparse.Namespace) -> int:
    base = _base_url(args)
    try:
        # Scan runs server side for up to discovery.timeout_s
        with httpx.Client(timeout=60.0) as client:
            response = client.post(f"{base}/scan")
    except httpx.HTTPError as e:
        print(f"Hub not reachable at {base}: {e}")
        return 1

    if response.status_code == 409:
        print("A scan is already running")
        return 1

    result = response.json()
    if not result.get("found"):
        print("No tail found")
        return 1

    device = result["device"]
    print(f"Found {device['name']} ({device['id']})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tailhub",
        description="TailHub - BLE tail hub",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"TailHub v{__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the hub")
    run.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help=f"Path to configuration file (default: $TAILHUB_CONFIG or {DEFAULT_CONFIG_PATH})",
    )
    run.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without starting",
    )
    run.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    run.set_defaults(func=run_command)

    for name, func, help_text in (
        ("status", status_command, "Show the status of a running hub"),
        ("scan", scan_command, "Ask a running hub to scan for a tail"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--url", type=str, default=None, help="Hub control API base URL")
        sub.add_argument("--config", "-c", type=str, default=None, help="Configuration file to read the URL from")
        sub.set_defaults(func=func)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
