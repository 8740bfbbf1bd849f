"""Command-line entry point for migration runs, checkpoints and dictionary inspection."""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import List, Optional

from .client_factory import ClientFactory
from .config import ProjectConfig, load_config
from .connector import LiveConnector
from .dictionary import ConnectionPool, GatewayConnection, TableIntelligence, create_fixture_pool
from .errors import FabricError
from .models.migration import MigrationConfig, RunState
from .odata import create_auth_provider
from .orchestrator import MigrationOrchestrator
from .services.checkpoint import CheckpointManager

logger = logging.getLogger(__name__)


def build_dictionary_pool(project: ProjectConfig) -> Optional[ConnectionPool]:
    """Gateway-backed pool when a gateway URL is configured, fixture pool when only the section exists."""
    settings = project.dictionary
    if settings is None:
        return None
    if not settings.base_url:
        return create_fixture_pool(size=settings.pool_size)

    auth = create_auth_provider(settings.auth.to_provider_config() if settings.auth else None)
    return ConnectionPool(
        lambda: GatewayConnection(settings.base_url, auth_provider=auth),
        size=settings.pool_size,
        acquire_timeout=settings.acquire_timeout,
    )


def build_orchestrator(project: ProjectConfig, cancel_event: Optional[threading.Event] = None) -> MigrationOrchestrator:
    """Wire factory, connector and orchestrator from a project configuration."""
    cancel_event = cancel_event or threading.Event()
    config = MigrationConfig.from_project(project)
    factory = ClientFactory(project.systems, client_options={"cancel_event": cancel_event})
    connector = LiveConnector(
        factory,
        dictionary_pool=build_dictionary_pool(project),
        batch_size=config.batch_size,
        max_records=project.max_records,
        cancel_event=cancel_event,
    )
    return MigrationOrchestrator(config, connector, cancel_event=cancel_event)


def print_run_summary(orchestrator: MigrationOrchestrator, state: RunState) -> None:
    summary = orchestrator.get_summary()
    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE" if state.status != "cancelled" else "MIGRATION CANCELLED")
    print("=" * 60)
    print(f"Run ID: {state.run_id}")
    print(f"Status: {summary['status']}")
    print(f"Objects: {summary['total']}")
    print(f"Completed: {summary['completed']}")
    print(f"Failed: {summary['failed']}")
    for result in state.results:
        line = f"  {result['objectId']}: {result['status']}"
        if result.get("error"):
            line += f" ({result['error']})"
        print(line)
    if orchestrator.reconciliation_report:
        print(f"Reconciliation: {orchestrator.reconciliation_report['summary']['overallStatus']}")


def _run_with_cancel(orchestrator: MigrationOrchestrator, action):
    """Run ``action`` with Ctrl-C mapped to cooperative cancellation."""
    previous = signal.signal(signal.SIGINT, lambda signum, frame: orchestrator.cancel())
    try:
        return action()
    finally:
        signal.signal(signal.SIGINT, previous)


def run_migration(args) -> int:
    """Run a migration from a config file."""
    project = load_config(args.config)
    if args.dry_run:
        project.dry_run = True
    if args.max_records:
        project.max_records = args.max_records

    orchestrator = build_orchestrator(project)
    object_ids = [o.strip() for o in args.objects.split(",") if o.strip()] if args.objects else None
    state = _run_with_cancel(orchestrator, lambda: orchestrator.run(object_ids, run_id=args.run_id))

    print_run_summary(orchestrator, state)
    return 0 if state.status in ("completed", "completed_with_errors") else 1


def resume_migration(args) -> int:
    """Resume a run from its checkpoint."""
    project = load_config(args.config)
    orchestrator = build_orchestrator(project)
    state = _run_with_cancel(orchestrator, lambda: orchestrator.resume(args.run_id))

    print_run_summary(orchestrator, state)
    return 0 if state.status in ("completed", "completed_with_errors") else 1


def manage_checkpoints(args) -> int:
    """List or clean up checkpoints."""
    manager = CheckpointManager(args.dir)

    if args.action == "list":
        entries = manager.list()
        if not entries:
            print(f"No checkpoints in {args.dir}")
        for entry in entries:
            print(f"{entry['runId']}  {entry['timestamp']}  {entry['path']}")
    else:
        removed = manager.cleanup(args.max_age_days)
        print(f"Removed {removed} checkpoints older than {args.max_age_days} days")
    return 0


def check_connection(args) -> int:
    """Probe a configured system."""
    project = load_config(args.config)
    connector = LiveConnector(ClientFactory(project.systems))
    result = connector.test_connection(args.system)
    print(json.dumps(result, indent=2))
    return 0 if result["status"] == "connected" else 1


def show_graph(args) -> int:
    """Print the relationship graph of a table from the bundled dictionary fixtures."""
    with create_fixture_pool() as pool:
        intelligence = TableIntelligence(pool)
        graph = intelligence.get_relationship_graph(args.table, depth=args.depth)
    print(json.dumps(graph, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Migration Fabric - OData migration runs with checkpoints and reconciliation"
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    run_parser = subparsers.add_parser("run", parents=[common], help="Run a migration")
    run_parser.add_argument("--config", required=True, help="Path to project config file")
    run_parser.add_argument("--objects", help="Comma-separated object ids (config objects by default)")
    run_parser.add_argument("--run-id", help="Run identifier (generated by default)")
    run_parser.add_argument("--max-records", type=int, help="Record cap per object")
    run_parser.add_argument("--dry-run", action="store_true", help="Skip the load phase")

    # Resume
    resume_parser = subparsers.add_parser("resume", parents=[common], help="Resume a run from its checkpoint")
    resume_parser.add_argument("run_id", help="Run identifier")
    resume_parser.add_argument("--config", required=True, help="Path to project config file")

    # Checkpoints
    checkpoint_parser = subparsers.add_parser("checkpoints", parents=[common], help="List or clean up checkpoints")
    checkpoint_parser.add_argument("action", choices=["list", "cleanup"])
    checkpoint_parser.add_argument("--dir", default="./checkpoints", help="Checkpoint directory")
    checkpoint_parser.add_argument("--max-age-days", type=float, default=7, help="Age threshold for cleanup")

    # Connection test
    conn_parser = subparsers.add_parser("test-connection", parents=[common], help="Test connectivity to a configured system")
    conn_parser.add_argument("system", help="System name from the config")
    conn_parser.add_argument("--config", required=True, help="Path to project config file")

    # Relationship graph
    graph_parser = subparsers.add_parser("graph", parents=[common], help="Show a table's relationship graph (fixture dictionary)")
    graph_parser.add_argument("table", help="Table name")
    graph_parser.add_argument("--depth", type=int, default=1, help="Traversal depth (1-5)")

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    commands = {
        "run": run_migration,
        "resume": resume_migration,
        "checkpoints": manage_checkpoints,
        "test-connection": check_connection,
        "graph": show_graph,
    }
    if args.command not in commands:
        parser.print_help()
        return 1

    try:
        return commands[args.command](args)
    except FabricError as e:
        logger.error(f"{e.kind}: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
