#!/usr/bin/env python3
"""
Command-line interface for the trigger core.

Usage:
    uv run python cli.py [command] [options]

Commands:
    trigger     Resolve recipients and trigger a workflow (in-process engine)
    broadcast   Trigger a workflow for every subscriber of the tenant
    topics      List the tenant's topics and members
    test        Run the test suite
    serve       Start the API server

Examples:
    uv run python cli.py trigger welcome --to sub-001 --topic engineering
    uv run python cli.py trigger digest --topic design --actor sub-002 --transaction-id tx-1
    uv run python cli.py broadcast maintenance-window
    uv run python cli.py serve --reload
"""

import argparse
import json
import subprocess
import sys

from dispatch.trigger_service import build_trigger_service
from shared.config import configure_logging, get_settings
from shared.data_store import DataStore
from shared.exceptions import TriggerError
from shared.models import BroadcastRequest, TenantContext, TriggerRequest


def _tenant(args: argparse.Namespace) -> TenantContext:
    return TenantContext(
        environment_id=args.environment,
        organization_id=args.organization,
        user_id=args.user,
    )


def _payload(raw: str) -> dict:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        print(f"Invalid --payload JSON: {e}")
        sys.exit(2)
    if not isinstance(payload, dict):
        print("--payload must be a JSON object")
        sys.exit(2)
    return payload


def run_trigger(args: argparse.Namespace) -> None:
    """Trigger a workflow against the in-process engine and print the outcome."""
    recipients: list = list(args.to)
    recipients.extend({"type": "Topic", "topicId": topic_id} for topic_id in args.topic)

    service = build_trigger_service()
    request = TriggerRequest(
        name=args.name,
        payload=_payload(args.payload),
        to=recipients,
        actor=args.actor,
        transaction_id=args.transaction_id,
    )

    try:
        result = service.trigger(request, _tenant(args))
    except TriggerError as e:
        print(f"Trigger failed: {e}")
        sys.exit(1)

    jobs = service.workflow_engine.get_jobs(result.transaction_id)
    print(json.dumps(result.model_dump(by_alias=True), indent=2))
    print(f"Recipients ({len(jobs)}): {', '.join(job.subscriber_id or '<pass-through>' for job in jobs) or '-'}")

    failures = service.recipient_resolver.log_sink.get_records(result.transaction_id)
    for failure in failures:
        print(f"Skipped topic {failure.topic_id!r}: {failure.reason}")


def run_broadcast(args: argparse.Namespace) -> None:
    """Broadcast a workflow to the whole tenant and print the outcome."""
    service = build_trigger_service()
    request = BroadcastRequest(
        name=args.name,
        payload=_payload(args.payload),
        actor=args.actor,
        transaction_id=args.transaction_id,
    )

    try:
        result = service.trigger_broadcast(request, _tenant(args))
    except TriggerError as e:
        print(f"Broadcast failed: {e}")
        sys.exit(1)

    jobs = service.workflow_engine.get_jobs(result.transaction_id)
    print(json.dumps(result.model_dump(by_alias=True), indent=2))
    print(f"Fanned out to {len(jobs)} subscriber(s)")


def run_topics(args: argparse.Namespace) -> None:
    """List the tenant's topics."""
    data_store = DataStore(data_dir=get_settings().data_dir)
    topics = data_store.get_topics(args.environment, args.organization)
    if not topics:
        print("No topics")
        return
    for topic in topics:
        print(f"{topic.topic_id:<16} {topic.name:<20} {', '.join(topic.subscribers) or '-'}")


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


def _add_tenant_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--environment", default="env-001", help="Environment id of the tenant")
    parser.add_argument("--organization", default="org-001", help="Organization id of the tenant")
    parser.add_argument("--user", default="user-cli", help="User id of the caller")


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Notification Trigger CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s trigger welcome --to sub-001 --topic engineering
  %(prog)s trigger digest --topic design --topic missing-topic
  %(prog)s broadcast maintenance-window --actor sub-001
  %(prog)s topics
  %(prog)s test -v
  %(prog)s serve --reload
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Trigger command
    trigger_parser = subparsers.add_parser("trigger", help="Trigger a workflow")
    trigger_parser.add_argument("name", help="Workflow trigger identifier")
    trigger_parser.add_argument("--to", action="append", default=[], help="Subscriber id (repeatable)")
    trigger_parser.add_argument("--topic", action="append", default=[], help="Topic key (repeatable)")
    trigger_parser.add_argument("--actor", default=None, help="Subscriber id of the actor")
    trigger_parser.add_argument("--payload", default="{}", help="JSON object passed to the workflow")
    trigger_parser.add_argument("--transaction-id", default=None, help="Explicit transaction id")
    _add_tenant_arguments(trigger_parser)

    # Broadcast command
    broadcast_parser = subparsers.add_parser("broadcast", help="Trigger a workflow for all subscribers")
    broadcast_parser.add_argument("name", help="Workflow trigger identifier")
    broadcast_parser.add_argument("--actor", default=None, help="Subscriber id of the actor")
    broadcast_parser.add_argument("--payload", default="{}", help="JSON object passed to the workflow")
    broadcast_parser.add_argument("--transaction-id", default=None, help="Explicit transaction id")
    _add_tenant_arguments(broadcast_parser)

    # Topics command
    topics_parser = subparsers.add_parser("topics", help="List topics of a tenant")
    _add_tenant_arguments(topics_parser)

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
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()
    configure_logging(get_settings().log_level)

    if args.command == "trigger":
        run_trigger(args)
    elif args.command == "broadcast":
        run_broadcast(args)
    elif args.command == "topics":
        run_topics(args)
    elif args.command == "test":
        run_tests(args.pytest_args)
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
