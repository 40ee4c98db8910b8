"""Command-line entry point: serve, sweep, listen."""

import argparse
import os
import sys
import threading
from typing import Optional

import uvicorn

from renewal_sync.bootstrap import build_services
from renewal_sync.config import ConfigurationError, get_config
from renewal_sync.logging_config import configure_logging, get_logger
from renewal_sync.services.billing_client import BillingAuthError

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="renewal_sync",
        description="Google Play subscription renewal reconciliation",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/settings.yaml"),
        help="Path to settings.yaml (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
        help="Log output format (default: json)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the webhook HTTP server")
    serve.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"), help="Host to bind to")
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")), help="Port to bind to")
    serve.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Enable auto-reload for development",
    )

    sweep = commands.add_parser("sweep", help="Check subscriptions expiring soon against the billing backend")
    sweep.add_argument("--days", type=int, default=None, help="Horizon in days (default: from settings, 7)")
    sweep.add_argument(
        "--every",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Repeat the sweep with this delay instead of running once",
    )

    commands.add_parser("listen", help="Consume notifications from the Pub/Sub pull subscription")
    return parser


def run_sweep_command(args: argparse.Namespace) -> int:
    try:
        config = get_config(args.config)
        services = build_services(config.settings)
    except (ConfigurationError, BillingAuthError) as e:
        print(f"Failed to start sweep: {e}", file=sys.stderr)
        return 1

    horizon_days = args.days if args.days is not None else config.sweep.horizon_days
    if horizon_days <= 0:
        print("--days must be positive", file=sys.stderr)
        return 1

    print(f"Checking Google Play subscriptions expiring within {horizon_days} days...")

    if args.every:
        stop_event = threading.Event()
        try:
            services.sweeper.run_periodically(args.every, horizon_days, stop_event)
        except KeyboardInterrupt:
            stop_event.set()
        return 0

    report = services.sweeper.run_sweep(horizon_days)
    if report.checked == 0:
        print("No subscriptions to check.")
    print(report.summary())
    return 0


def run_listen_command(args: argparse.Namespace) -> int:
    from renewal_sync.services.pubsub_listener import PubSubListener

    try:
        config = get_config(args.config)
        services = build_services(config.settings)
    except (ConfigurationError, BillingAuthError) as e:
        print(f"Failed to start listener: {e}", file=sys.stderr)
        return 1

    pubsub = config.pubsub
    if not pubsub.enabled or not pubsub.project_id or not pubsub.subscription:
        print("Pub/Sub pull delivery is disabled or incomplete in settings", file=sys.stderr)
        return 1

    listener = PubSubListener(
        handler=services.handler,
        project_id=pubsub.project_id,
        subscription=pubsub.subscription,
        max_messages=pubsub.max_messages,
    )
    listener.run()
    return 0


def run_serve_command(args: argparse.Namespace) -> int:
    if args.log_format == "console":
        print("=" * 60)
        print("Renewal Sync")
        print("=" * 60)
        print(f"Host: {args.host}")
        print(f"Port: {args.port}")
        print(f"Config: {args.config}")
        print("=" * 60)

    try:
        uvicorn.run(
            "renewal_sync.main:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,  # RequestLoggingMiddleware logs requests
        )
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config
    configure_logging(log_level=args.log_level, json_format=args.log_format == "json")

    if args.command == "sweep":
        return run_sweep_command(args)
    if args.command == "listen":
        return run_listen_command(args)
    return run_serve_command(args)


if __name__ == "__main__":
    sys.exit(main())
