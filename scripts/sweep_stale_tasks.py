from __future__ import annotations

import argparse
import logging

from advisor_orchestrator.config.settings import get_settings
from advisor_orchestrator.storage import PostgresTaskStorage
from advisor_orchestrator.workflow.sweeper import sweep_stale_waiting


def _parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Fail tasks that have been waiting on an external event for too long."
    )
    parser.add_argument(
        "--database-url",
        default=settings.resolved_database_url(),
        help="Postgres URL (defaults to ADVISOR_AGENT_DATABASE_URL / ORCHESTRATOR_DATABASE_URL).",
    )
    parser.add_argument(
        "--hours",
        type=float,
        default=settings.stale_waiting_after_hours,
        help="Waiting age in hours after which a task is expired.",
    )
    parser.add_argument("--log-level", default=settings.log_level)
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    logging.basicConfig(level=args.log_level)
    if not args.database_url:
        raise SystemExit("Missing database URL.")
    if args.hours is None:
        print("Stale sweep disabled: pass --hours or set ADVISOR_AGENT_STALE_WAITING_AFTER_HOURS.")
        return

    storage = PostgresTaskStorage(args.database_url)
    storage.migrate()
    expired = sweep_stale_waiting(storage, stale_after_hours=args.hours)
    print(f"Expired {len(expired)} waiting task(s) older than {args.hours:g}h")
    for task in expired:
        print(f"  {task.task_id}  user={task.user_id}  {task.failure_reason}")


if __name__ == "__main__":
    main()
