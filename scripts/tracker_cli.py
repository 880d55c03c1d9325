"""CLI tool for tracking LeetCode users and syncing their solutions."""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

from leetcode import LeetCodeClient
from tracker import (
    AuthResolver,
    AutoSyncScheduler,
    SolutionSyncer,
    SolutionViewer,
    TrackerStorage,
    TrackingError,
    TrackingService,
)
from utils.config import ConfigManager, get_config, set_config
from utils.database import TrackerDatabaseManager
from utils.logger import get_core_logger

logger = get_core_logger()


@dataclass
class Tracker:
    db: TrackerDatabaseManager
    client: LeetCodeClient
    storage: TrackerStorage
    viewer: SolutionViewer
    syncer: SolutionSyncer
    scheduler: AutoSyncScheduler
    tracking: TrackingService

    async def close(self) -> None:
        self.scheduler.shutdown()
        await self.client.close()
        self.db.close()


def build_tracker(config: ConfigManager) -> Tracker:
    leetcode_config = config.get_leetcode_config()
    db = TrackerDatabaseManager(db_path=config.database_path)
    storage = TrackerStorage(db)
    client = LeetCodeClient(leetcode_config, config.get_crawler_config("leetcode"))
    viewer = SolutionViewer(client, storage, AuthResolver.from_config(storage, leetcode_config))
    sync_config = config.get_sync_config()
    syncer = SolutionSyncer(client, storage, viewer, sync_config)
    scheduler = AutoSyncScheduler(
        storage,
        syncer,
        sync_config=sync_config,
        scheduler_config=config.get_scheduler_config(),
        environment=config.environment,
    )
    tracking = TrackingService(client, storage, viewer)
    return Tracker(db, client, storage, viewer, syncer, scheduler, tracking)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=4, ensure_ascii=False, default=str))


async def serve(tracker: Tracker) -> None:
    """Start the daily jobs and block until cancelled."""
    tracker.scheduler.start()
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Shutting down scheduler...")
        raise


async def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="LeetCode tracker CLI tool")
    parser.add_argument("--config", type=str, help="Path to config.toml", default=None)
    parser.add_argument("--account", type=str, help="Owning account id", default=None)
    parser.add_argument("--track", type=str, metavar="USERNAME", help="Start tracking a LeetCode user")
    parser.add_argument("--untrack", type=str, metavar="USERNAME", help="Stop tracking a user and delete its data")
    parser.add_argument("--list", action="store_true", help="List tracked users of the account")
    parser.add_argument("--set-session", type=str, metavar="USERNAME", help="Store a LeetCode session for a user")
    parser.add_argument("--session", type=str, help="LEETCODE_SESSION value for --set-session", default=None)
    parser.add_argument("--csrf-token", type=str, help="csrftoken value for --set-session", default=None)
    parser.add_argument("--sync", type=str, metavar="USERNAME", help="Sync recent solutions of a tracked user")
    parser.add_argument("--view", type=str, metavar="SUBMISSION_ID", help="Show a submission with its code")
    parser.add_argument("--username", type=str, help="Username hint for --view", default=None)
    parser.add_argument("--solutions", type=str, metavar="USERNAME", help="List cached solutions of a user")
    parser.add_argument("--limit", type=int, default=100, help="Page size for --solutions")
    parser.add_argument("--skip", type=int, default=0, help="Offset for --solutions")
    parser.add_argument("--refresh-profile", type=str, metavar="USERNAME", help="Refresh profile stats")
    parser.add_argument("--run-batch", action="store_true", help="Run the auto-sync batch now (non-production)")
    parser.add_argument("--cleanup", action="store_true", help="Clear stale sync errors")
    parser.add_argument("--serve", action="store_true", help="Run the daily scheduler")
    args = parser.parse_args(argv)

    if args.config:
        set_config(ConfigManager(args.config))
    config = get_config()

    account_actions = (
        args.track,
        args.untrack,
        args.list,
        args.set_session,
        args.sync,
        args.view,
        args.solutions,
        args.refresh_profile,
    )
    if not (any(account_actions) or args.run_batch or args.cleanup or args.serve):
        parser.print_help()
        return 0
    if any(account_actions) and not args.account:
        parser.error("--account is required for this action")

    tracker = build_tracker(config)
    account = args.account
    try:
        if args.track:
            _print_json(await tracker.tracking.add_tracked_user(account, args.track, added_by=account))

        if args.set_session:
            await tracker.tracking.set_leetcode_session(account, args.set_session, args.session, args.csrf_token)
            print(f"LeetCode session updated for {args.set_session}")

        if args.refresh_profile:
            _print_json(await tracker.tracking.refresh_profile(account, args.refresh_profile))

        if args.sync:
            if await tracker.storage.get_tracked_user(account, args.sync) is None:
                raise TrackingError(f"User {args.sync} is not tracked by this account", code="not_tracked")
            _print_json(await tracker.syncer.sync_user_solutions(args.sync, account))

        if args.view:
            _print_json(await tracker.tracking.view_submission(account, args.view, args.username))

        if args.solutions:
            _print_json(await tracker.tracking.list_solutions(account, args.solutions, args.limit, args.skip))

        if args.list:
            _print_json(await tracker.tracking.list_tracked_users(account))

        if args.untrack:
            _print_json(await tracker.tracking.remove_tracked_user(account, args.untrack))

        if args.cleanup:
            cleared = await tracker.scheduler.cleanup_stale_errors()
            print(f"Cleared sync errors on {cleared} profiles")

        if args.run_batch:
            summary = await tracker.scheduler.trigger_manual_sync()
            if summary is None:
                print("Batch not run (production environment or a batch is already running)")
            else:
                _print_json(summary)

        if args.serve:
            await serve(tracker)
    except TrackingError as e:
        logger.error(f"{e.code}: {e}")
        print(f"Error ({e.code}): {e}")
        return 1
    finally:
        await tracker.close()
    return 0


def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
