"""Command-line entry point for inbox-sync."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
from datetime import timedelta
from pathlib import Path

from inbox_sync.core import AppSettings, configure_logging, load_app_settings
from inbox_sync.core.datetime_utils import display_datetime, utc_now
from inbox_sync.core.errors import StorageError
from inbox_sync.core.models import Account, Provider, SyncStatus, new_record_id
from inbox_sync.sync import SyncEngine, build_engine


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Synchronize mail, calendars, and tasks into a local replica"
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("info", help="Show configuration and queue state.")

    add_account = subparsers.add_parser("add-account", help="Register an account.")
    add_account.add_argument(
        "--provider", required=True, choices=[item.value for item in Provider]
    )
    add_account.add_argument("--email", required=True, help="Account email address.")
    add_account.add_argument("--name", default=None, help="Display name.")
    add_account.add_argument(
        "--settings-file",
        type=Path,
        required=True,
        help="JSON file with protocol settings for the account.",
    )
    add_account.add_argument(
        "--id", dest="account_id", default=None, help="Explicit account id."
    )

    remove_account = subparsers.add_parser(
        "remove-account", help="Delete an account and its local data."
    )
    remove_account.add_argument("account")

    subparsers.add_parser("schedule", help="Enqueue jobs for idle accounts.")
    subparsers.add_parser("run", help="Run one scheduling and sync cycle.")
    subparsers.add_parser("daemon", help="Run sync cycles until interrupted.")

    jobs = subparsers.add_parser("jobs", help="List recent sync jobs.")
    jobs.add_argument(
        "--status", choices=[item.value for item in SyncStatus], default=None
    )
    jobs.add_argument("--limit", type=int, default=20)

    search = subparsers.add_parser("search", help="Search stored mail.")
    search.add_argument("query")
    search.add_argument("--account", default=None)
    search.add_argument("--limit", type=int, default=20)

    import_ics = subparsers.add_parser("import-ics", help="Import an .ics file.")
    import_ics.add_argument("account")
    import_ics.add_argument("calendar")
    import_ics.add_argument("file", type=Path)

    export_ics = subparsers.add_parser("export-ics", help="Export stored events.")
    export_ics.add_argument("account")
    export_ics.add_argument("--days", type=int, default=365)
    export_ics.add_argument("--output", type=Path, default=None)

    subparsers.add_parser("reindex", help="Rebuild the mail search index.")
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return an exit code."""
    command = args.command or "info"
    engine, container = build_engine(settings)
    try:
        if command == "info":
            _show_info(engine, settings)
        elif command == "add-account":
            _add_account(engine, args)
        elif command == "remove-account":
            _remove_account(engine, args.account)
        elif command == "schedule":
            created = engine.schedule_sync_jobs()
            print(f"Scheduled {created} job(s).")
        elif command == "run":
            _run_cycle(engine)
        elif command == "daemon":
            asyncio.run(_run_daemon(engine))
        elif command == "jobs":
            _list_jobs(engine, args.status, args.limit)
        elif command == "search":
            _search(engine, args.query, args.account, args.limit)
        elif command == "import-ics":
            text = args.file.read_text(encoding="utf-8")
            count = engine.calendar.import_ics(args.account, args.calendar, text)
            print(f"Imported {count} event(s).")
        elif command == "export-ics":
            _export_ics(engine, args.account, args.days, args.output)
        elif command == "reindex":
            total = engine.store.rebuild_search_index()
            print(f"Indexed {total} message(s).")
    except StorageError as exc:
        print(f"Storage error: {exc}")
        return 1
    finally:
        container.close()
    return 0


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    raise SystemExit(execute(args, settings))


def _show_info(engine: SyncEngine, settings: AppSettings) -> None:
    accounts = engine.store.list_accounts()
    print("inbox-sync is ready.")
    print(f"Database path: {settings.storage.db_path}")
    print(f"Search index: {settings.storage.index_dir}")
    print(f"Parallel jobs: {settings.sync.max_parallel_jobs}")
    print(f"Accounts: {len(accounts)}")
    for account in accounts:
        print(f"  {account.id}  {account.provider.value:<14} {account.email_address}")
    print(f"Pending jobs: {engine.jobs.count_pending()}")


def _add_account(engine: SyncEngine, args: argparse.Namespace) -> None:
    blob = json.loads(args.settings_file.read_text(encoding="utf-8"))
    if not isinstance(blob, dict):
        raise SystemExit("Settings file must contain a JSON object.")
    account = Account(
        id=args.account_id or new_record_id(),
        provider=Provider(args.provider),
        display_name=args.name or args.email,
        email_address=args.email,
    )
    engine.store.upsert_account(account)
    engine.store.upsert_protocol_settings(account.id, blob)
    print(f"Added account {account.id} ({account.provider.value}).")


def _remove_account(engine: SyncEngine, account_id: str) -> None:
    if engine.store.get_account(account_id) is None:
        print(f"Account {account_id} not found.")
        return
    removed = engine.delete_account(account_id)
    print(f"Removed account {account_id} and {removed} message(s).")


def _run_cycle(engine: SyncEngine) -> None:
    engine.recover_stale_jobs()
    engine.schedule_sync_jobs()
    summary = asyncio.run(engine.run_due_jobs())
    print(
        f"Completed {summary.completed_jobs}, retried {summary.retried_jobs}, "
        f"failed {summary.failed_jobs} job(s)."
    )
    print(
        f"Synced {summary.email_messages_synced} message(s), "
        f"{summary.calendar_events_synced} event(s), {summary.tasks_synced} task(s)."
    )


async def _run_daemon(engine: SyncEngine) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers.
            pass
    print("Sync daemon running; press Ctrl-C to stop.")
    await engine.run_forever(stop_event)


def _list_jobs(engine: SyncEngine, status: str | None, limit: int) -> None:
    jobs = engine.jobs.list_jobs(SyncStatus(status) if status else None, limit)
    if not jobs:
        print("No jobs found.")
        return
    header = (
        f"{'Status':<10}  {'Domain':<8}  {'Attempts':>8}  "
        f"{'Run after':<20}  Account"
    )
    print(header)
    print("-" * len(header))
    for job in jobs:
        run_after = display_datetime(job.run_after) or "-"
        print(
            f"{job.status.value:<10}  {job.domain.value:<8}  "
            f"{job.attempt_count:>8}  {run_after:<20}  {job.account_id}"
        )
        if job.last_error:
            print(f"{'':<10}  last error: {job.last_error}")


def _search(
    engine: SyncEngine, query: str, account_id: str | None, limit: int
) -> None:
    result = engine.search_mail(query, limit, account_id)
    if not result.items:
        print("No messages matched.")
        return
    print(f"Showing {result.total} message(s):")
    for message in result.items:
        received = display_datetime(message.received_at) or "-"
        print(f"{received:<20}  {message.sender.formatted():<32}  {message.subject}")


def _export_ics(
    engine: SyncEngine, account_id: str, days: int, output: Path | None
) -> None:
    now = utc_now()
    window = timedelta(days=days)
    events = engine.list_events(account_id, now - window, now + window)
    text = engine.calendar.export_ics(events)
    if output is None:
        print(text, end="")
        return
    output.write_text(text, encoding="utf-8")
    print(f"Wrote {len(events)} event(s) to {output}.")


if __name__ == "__main__":
    main()
