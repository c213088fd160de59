#!/usr/bin/env python
"""Command line entry point for the Sparklog sync engine."""
import argparse
import asyncio
import atexit
import logging
import os
import sys
from pathlib import Path

from sparklog_sync import __version__, observability
from sparklog_sync.config import config
from sparklog_sync.exceptions import SparklogError
from sparklog_sync.models.db_models import init_db
from sparklog_sync.observability import configure_logging
from sparklog_sync.services.build_pipeline import BuildPipelineClient
from sparklog_sync.services.draft_log import DraftLog
from sparklog_sync.services.edit_cache import EditCache
from sparklog_sync.services.reconciler import BuildMonitor, Reconciler
from sparklog_sync.services.snapshot_client import SnapshotClient
from sparklog_sync.storage.kv_store import SqliteStore

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="sparklog-sync", description="Sparklog note sync engine"
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--state-db",
        help="SQLite file holding pending drafts",
        type=str,
        default=os.environ.get("SPARKLOG_STATE_DB"),
    )
    parser.add_argument(
        "--snapshot-url",
        help="Base URL of the compiled snapshot",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("SPARKLOG_LOG_LEVEL", "WARNING"),
    )
    sub = parser.add_subparsers(dest="command", required=True)
    list_cmd = sub.add_parser("list", help="Show the merged note list")
    list_cmd.add_argument("--private", action="store_true", help="Include private notes")
    sub.add_parser("drafts", help="Show pending drafts")
    sub.add_parser("status", help="Show draft statistics and build status")
    sweep_cmd = sub.add_parser(
        "sweep", help="Settle finished builds and expire old drafts and cached edits"
    )
    sweep_cmd.add_argument(
        "--rounds",
        type=int,
        default=1,
        help="Rounds to run, sweep_interval_seconds apart (0 runs until interrupted)",
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.state_db:
        config.state_db_path = Path(args.state_db)
    if args.snapshot_url:
        config.snapshot_url = args.snapshot_url


def _save_metrics_on_exit():
    """Save metrics to disk on shutdown."""
    if observability.metrics.save_metrics():
        logger.debug("Metrics saved to disk on shutdown")


async def _list(draft_log: DraftLog, snapshot: SnapshotClient, include_private: bool) -> int:
    snapshot_notes = await snapshot.list_notes(include_private=include_private)
    if snapshot_notes is None:
        print("Snapshot unavailable; showing pending drafts only", file=sys.stderr)
        snapshot_notes = []
    notes = await Reconciler(draft_log).list_notes(snapshot_notes)
    for note in notes:
        marker = "*" if note.is_draft else " "
        updated = note.updated_at.isoformat() if note.updated_at else "-"
        tags = ",".join(note.tags)
        print(f"{marker} {note.id}  {updated}  [{tags}]  {note.content_preview[:60]}")
    return 0


def _drafts(draft_log: DraftLog) -> int:
    for entry in draft_log.get_all_drafts():
        compiled = " (compiled)" if entry.snapshot_compiled else ""
        print(
            f"{entry.operation.value:<7} {entry.note_id}  "
            f"{entry.created_at.isoformat()}{compiled}"
        )
    return 0


async def _status(draft_log: DraftLog) -> int:
    stats = draft_log.get_draft_stats()
    print(
        f"drafts: {stats.total} (create {stats.creates}, "
        f"update {stats.updates}, delete {stats.deletes})"
    )
    if not (config.repo_owner and config.repo_name):
        print("build: remote repository not configured")
        return 0
    pipeline = BuildPipelineClient()
    try:
        build = await pipeline.status()
    finally:
        await pipeline.aclose()
    state = "running" if build.is_running else "idle"
    conclusion = build.last_run.conclusion if build.last_run else None
    print(f"build: {state}" + (f" (last run: {conclusion})" if conclusion else ""))
    return 0


async def _sweep(draft_log: DraftLog, snapshot: SnapshotClient, rounds: int) -> int:
    pipeline = None
    if config.repo_owner and config.repo_name:
        pipeline = BuildPipelineClient()
    monitor = BuildMonitor(EditCache(), draft_log, pipeline, snapshot)
    try:
        completed = 0
        while True:
            counts = await monitor.sweep()
            print(
                f"removed {counts.drafts_removed} expired drafts, "
                f"settled {counts.settled} cached edits"
            )
            completed += 1
            if rounds and completed >= rounds:
                return 0
            await asyncio.sleep(config.sweep_interval_seconds)
    finally:
        if pipeline is not None:
            await pipeline.aclose()


async def run(args) -> int:
    """Execute one subcommand against the local state database."""
    engine = init_db()
    snapshot = SnapshotClient()
    try:
        draft_log = DraftLog(SqliteStore(engine), snapshot=snapshot)
        if args.command == "list":
            return await _list(draft_log, snapshot, args.private)
        if args.command == "drafts":
            return _drafts(draft_log)
        if args.command == "status":
            return await _status(draft_log)
        return await _sweep(draft_log, snapshot, args.rounds)
    finally:
        await snapshot.aclose()
        engine.dispose()


def main(argv=None):
    """Run the sparklog-sync command line."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        configure_logging(level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    atexit.register(_save_metrics_on_exit)

    try:
        code = asyncio.run(run(args))
    except SparklogError as e:
        logger.error(str(e))
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
