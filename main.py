#!/usr/bin/env python3
"""
ClaimDesk - Main Entry Point

Runs the ClaimDesk API server, or a single cron pass for deployments where
an external scheduler invokes the sweeps from the command line.

Usage:
    claimdesk serve [--host HOST] [--port PORT] [--debug]
    claimdesk cron {check-scheduled,execute,follow-ups,rd-follow-ups}
    claimdesk credentials {set,delete,list} [PROVIDER] [TYPE]
"""

import argparse
import asyncio
import getpass
import json
import sys

import uvicorn

from claimdesk.settings import settings
from claimdesk.logging_conf import setup_logging, get_logger

CRON_JOBS = ("check-scheduled", "execute", "follow-ups", "rd-follow-ups")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="claimdesk", description="Insurance claims automation backend")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default=None, help="Bind address (default from config)")
    serve.add_argument("--port", type=int, default=None, help="Port (default from config)")
    serve.add_argument("--debug", action="store_true", help="Enable debug logging")

    cron = subparsers.add_parser("cron", help="Run one cron pass and print the JSON result")
    cron.add_argument("job", choices=CRON_JOBS)
    cron.add_argument("--debug", action="store_true", help="Enable debug logging")

    credentials = subparsers.add_parser("credentials", help="Manage encrypted vendor credentials")
    credentials.add_argument("action", choices=("set", "delete", "list"))
    credentials.add_argument("provider", nargs="?", help="Vendor name, e.g. resend or telnyx")
    credentials.add_argument("credential_type", nargs="?", default="api_key", help="Credential name (default api_key)")
    credentials.add_argument("--value", default=None, help="Secret value (prompted when omitted)")
    credentials.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def run_server(host: str, port: int) -> None:
    """Start the FastAPI backend under uvicorn."""
    from claimdesk.api import create_app

    config = uvicorn.Config(
        create_app(),
        host=host,
        port=port,
        log_level="info",
        access_log=False
    )
    server = uvicorn.Server(config)
    server.run()


async def run_cron(job: str) -> dict:
    """Run one sweep against the configured services."""
    from claimdesk.api import create_app

    state = create_app().state
    if job == "check-scheduled":
        result = await state.runner.check_scheduled()
    elif job == "execute":
        result = await state.runner.execute_pending()
    elif job == "follow-ups":
        result = await state.follow_ups.process_follow_ups()
    else:
        result = await state.follow_ups.process_rd_follow_ups()
    return result.model_dump(mode="json")


def manage_credentials(args) -> int:
    """Store, delete or list credentials in the encrypted store."""
    if args.action == "list":
        print(json.dumps(settings.list_stored_credentials(), indent=2))
        return 0

    if not args.provider:
        print("Error: provider is required", file=sys.stderr)
        return 2

    if args.action == "delete":
        return 0 if settings.delete_credential(args.provider, args.credential_type) else 1

    value = args.value or getpass.getpass(f"{args.provider} {args.credential_type}: ")
    if not value:
        print("Error: empty credential value", file=sys.stderr)
        return 2
    return 0 if settings.store_credential(args.provider, args.credential_type, value) else 1


def main(argv=None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    config = settings.global_config

    setup_logging(debug=args.debug)
    logger = get_logger(__name__)

    if args.command == "serve":
        config.data_root.mkdir(parents=True, exist_ok=True)
        host = args.host or config.server_host
        port = args.port or config.server_port
        logger.info("Starting ClaimDesk", host=host, port=port, data_root=str(config.data_root))
        try:
            run_server(host, port)
        except KeyboardInterrupt:
            logger.info("Application interrupted by user")
        return 0

    if args.command == "credentials":
        return manage_credentials(args)

    try:
        result = asyncio.run(run_cron(args.job))
    except Exception as e:
        logger.error("Cron job failed", job=args.job, error=str(e))
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
