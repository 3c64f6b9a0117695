#!/usr/bin/env python3
"""
Command-line interface for the Account service.

Usage:
    python cli.py [command] [options]

Commands:
    serve       Start the API server
    outbox      List the integration events waiting to be republished
    test        Run the test suite

Examples:
    python cli.py serve --reload
    python cli.py outbox --path data/integration_events.json
    python cli.py test -v
"""

import argparse
import json
import subprocess
import sys
from pathlib import Path
from typing import Optional


def run_server(host: Optional[str], port: Optional[int], reload: bool) -> None:
    """Start the API server. Host and port default to the service settings."""
    from settings import Settings

    settings = Settings()
    host = host or settings.host
    port = port or settings.port
    cmd = [sys.executable, "-m", "uvicorn", "api.main:app", f"--host={host}", f"--port={port}"]
    if reload:
        cmd.append("--reload")

    print(f"Starting server at http://{host}:{port}")
    print(f"API docs available at http://{host}:{port}/docs")
    subprocess.run(cmd)


def show_outbox(path: Optional[Path], as_json: bool) -> int:
    """Print the stored events of a JSON event store. Returns the process exit code."""
    from messaging.event_store import IntegrationEventStore
    from messaging.exceptions import RepositoryError
    from settings import Settings

    path = path or Settings().event_store_path
    if path is None:
        print("No event store configured (set ACCOUNT_EVENT_STORE_PATH or pass --path)")
        return 1

    try:
        pending = IntegrationEventStore(path=path).find_all()
    except RepositoryError as e:
        print(f"Could not read event store: {e}")
        return 1

    if as_json:
        print(json.dumps([p.model_dump(mode="json") for p in pending], indent=2))
        return 0

    print(f"{len(pending)} event(s) waiting in {path}")
    for stored in pending:
        print(f"  {stored.id}  {stored.created_at.isoformat()}  {stored.event_name:<32} -> {stored.routing_key}")
    return 0


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = [sys.executable, "-m", "pytest"] + args
    subprocess.run(cmd)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Account Service CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s serve --reload
  %(prog)s outbox --path data/integration_events.json
  %(prog)s outbox --json
  %(prog)s test -v
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to (default: ACCOUNT_HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to (default: ACCOUNT_PORT)")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    # Outbox command
    outbox_parser = subparsers.add_parser("outbox", help="List events waiting to be republished")
    outbox_parser.add_argument("--path", type=Path, default=None, help="Event store JSON file")
    outbox_parser.add_argument("--json", action="store_true", help="Print the raw records")

    # Test command
    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    args = parser.parse_args()

    if args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "outbox":
        sys.exit(show_outbox(args.path, args.json))
    elif args.command == "test":
        run_tests(args.pytest_args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
