#!/usr/bin/env python3
"""
hookrelay command line.

Registers a dev listener with the webhook service and forwards every webhook
it streams to a local endpoint.

Usage:
    hookrelay listen --forward-to http://localhost:3000/webhooks
    hookrelay listen --forward-to http://localhost:3000/webhooks --events payment.succeeded,payment.failed
    python -m hookrelay listen --config hookrelay.yaml

Environment variables:
    HOOKRELAY_API_KEY: API key (sk_test_... or sk_live_...)
    HOOKRELAY_WEBHOOK_SERVICE_URL: Webhook service base URL
    HOOKRELAY_FORWARD_TO: Default forward URL
    HOOKRELAY_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from hookrelay.__version__ import __version__
from hookrelay.api_client import ListenerApiClient
from hookrelay.config import RelayConfig
from hookrelay.credentials import CredentialStore
from hookrelay.exceptions import AuthenticationError, RegistrationError
from hookrelay.session import AuthContext, RelaySession, resolve_auth

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", format_str: Optional[str] = None) -> None:
    """Configure logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    log_format = format_str or "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level, format=log_format, handlers=[logging.StreamHandler(sys.stdout)]
    )

    # Set aiohttp logging level
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="hookrelay",
        description="Relay webhooks from the webhook service to a local endpoint",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    listen = subparsers.add_parser(
        "listen",
        help="Listen for webhook events and forward them locally",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Forward everything to a local server
    %(prog)s --forward-to http://localhost:3000/webhooks

    # Only payment events, explicit key
    %(prog)s --forward-to http://localhost:3000/webhooks \\
             --events payment.succeeded,payment.failed \\
             --api-key sk_test_123
        """,
    )

    listen.add_argument(
        "--forward-to", "-f", help="Local URL to forward webhook events to"
    )

    listen.add_argument(
        "--events", "-e", help="Comma-separated event types to listen for (default: all)"
    )

    listen.add_argument("--api-key", help="API key (overrides stored credentials)")

    listen.add_argument(
        "--no-heartbeat", action="store_true", help="Disable session keep-alive"
    )

    listen.add_argument("--webhook-service-url", help="Webhook service base URL")

    listen.add_argument(
        "--config", "-c", help="Path to configuration file (JSON or YAML)"
    )

    listen.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    listen.add_argument(
        "--no-verify-ssl",
        action="store_true",
        help="Disable SSL certificate verification",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RelayConfig:
    """Build configuration from file, environment and arguments."""
    config = RelayConfig.load(args.config)

    if args.forward_to:
        config.forward_to = args.forward_to
    if args.events:
        config.events = [e.strip() for e in args.events.split(",") if e.strip()]
    if args.api_key:
        config.api_key = args.api_key
    if args.no_heartbeat:
        config.heartbeat_enabled = False
    if args.webhook_service_url:
        config.webhook_service_url = args.webhook_service_url
    if args.log_level:
        config.log_level = args.log_level
    if args.no_verify_ssl:
        config.verify_ssl = False

    return config


async def main_async(config: RelayConfig, auth: AuthContext) -> int:
    """Async main function."""
    # Setup signal handlers
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    async with ListenerApiClient(
        config.webhook_service_url,
        auth.token,
        account_id=auth.account_id,
        timeout=config.api_timeout,
        verify_ssl=config.verify_ssl,
    ) as api_client:
        relay = RelaySession(config, api_client)
        try:
            await relay.run(shutdown_event)
        except RegistrationError as e:
            logger.error(f"Failed to register: {e}")
            return 1

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = build_config(args)
    except (OSError, ValueError, TypeError) as e:
        setup_logging()
        logger.error(f"Failed to load configuration: {e}")
        return 1

    setup_logging(level=config.log_level, format_str=config.log_format)

    errors = config.validate()
    if errors:
        logger.error("Configuration errors:")
        for error in errors:
            logger.error(f"  - {error}")
        return 1

    try:
        auth = resolve_auth(config, CredentialStore(config.credentials_path))
    except AuthenticationError as e:
        logger.error(str(e))
        return 1

    if auth.method == "cli_token":
        logger.info("Using stored credentials")
        logger.info(f"Account ID: {auth.account_id}")
    else:
        logger.info(f"Environment: {auth.environment}")
    logger.info(f"Webhook service: {config.webhook_service_url}")

    try:
        return asyncio.run(main_async(config, auth))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
