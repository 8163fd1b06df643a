#!/usr/bin/env python3
"""
Command-line interface for the notification dispatch service.

Usage:
    uv run python cli.py [command] [options]

Commands:
    demo        Run demo scenarios
    test        Run the test suite
    serve       Start the API server
    worker      Start a Celery delivery worker

Examples:
    uv run python cli.py demo retry
    uv run python cli.py demo all
    uv run python cli.py serve --reload
    uv run python cli.py worker --concurrency 5
"""

import argparse
import subprocess
import sys


def run_demo(scenario: str) -> None:
    """Run a demo scenario."""
    from dispatch.demo import run_delivered_demo, run_exhausted_demo, run_retry_demo

    scenarios = {
        "delivered": [run_delivered_demo],
        "retry": [run_retry_demo],
        "exhausted": [run_exhausted_demo],
        "all": [run_delivered_demo, run_retry_demo, run_exhausted_demo],
    }
    if scenario not in scenarios:
        print(f"Unknown scenario: {scenario}")
        sys.exit(1)
    for demo in scenarios[scenario]:
        demo()


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = ["uv", "run", "pytest"] + args
    subprocess.run(cmd)


def run_server(host: str, port: int, reload: bool) -> None:
    """Start the API server."""
    cmd = ["uv", "run", "uvicorn", "api.main:app", f"--host={host}", f"--port={port}"]
    if reload:
        cmd.append("--reload")

    print(f"Starting server at http://{host}:{port}")
    print(f"API docs available at http://{host}:{port}/docs")
    subprocess.run(cmd)


def run_worker(queue_name: str, concurrency: int, loglevel: str) -> None:
    """Start a Celery worker consuming the dispatch queue."""
    cmd = [
        "uv", "run", "celery", "-A", "dispatch.celery_worker", "worker",
        "-Q", queue_name, f"--concurrency={concurrency}", f"--loglevel={loglevel}",
    ]
    print(f"Starting delivery worker on queue '{queue_name}' (concurrency={concurrency})")
    subprocess.run(cmd)


def main() -> None:
    """Main CLI entry point."""
    from notifications.config import get_settings

    parser = argparse.ArgumentParser(
        description="Notification Dispatch Service CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s demo delivered
  %(prog)s demo all
  %(prog)s test -v
  %(prog)s serve --reload
  %(prog)s worker
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Run demo scenarios")
    demo_parser.add_argument(
        "scenario",
        choices=["delivered", "retry", "exhausted", "all"],
        help="Which scenario to run",
    )

    # Test command
    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=get_settings().NOTIFICATIONS_SERVICE_PORT,
        help="Port to bind to",
    )
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    # Worker command
    worker_parser = subparsers.add_parser("worker", help="Start a Celery delivery worker")
    worker_parser.add_argument(
        "--queue",
        default=get_settings().NOTIFICATIONS_QUEUE_NAME,
        help="Queue to consume",
    )
    worker_parser.add_argument(
        "--concurrency",
        type=int,
        default=get_settings().NOTIFICATIONS_WORKER_CONCURRENCY,
        help="Parallel delivery slots",
    )
    worker_parser.add_argument("--loglevel", default=get_settings().LOG_LEVEL, help="Log level")

    args = parser.parse_args()

    if args.command == "demo":
        run_demo(args.scenario)
    elif args.command == "test":
        run_tests(args.pytest_args)
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "worker":
        run_worker(args.queue, args.concurrency, args.loglevel)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
