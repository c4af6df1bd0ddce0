"""CLI entry point for the npmsync background processes.

Sub-commands::

    npmsync-worker listen            follow the registry change feed
    npmsync-worker work              run the sync, backfill, delivery and digest pools
    npmsync-worker backfill ACTION   start | pause | resume | reset | status
    npmsync-worker install-size NAME [--version V]
    npmsync-worker init-db           create tables directly (local mode)

Fatal component errors exit with status 1 so a supervisor restarts the process.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="npmsync-worker", description="npmsync background processes")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Local dev mode: SQLite database, no Redis required",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("listen", help="Follow the registry change feed and queue sync jobs")
    sub.add_parser("work", help="Consume the sync, backfill, delivery and digest queues")

    backfill = sub.add_parser("backfill", help="Control the full-registry backfill")
    backfill.add_argument("action", choices=["start", "pause", "resume", "reset", "status"])
    backfill.add_argument(
        "--inline",
        action="store_true",
        help="With start: list the registry in this process instead of via ticks",
    )

    install_size = sub.add_parser("install-size", help="Compute a package's install size")
    install_size.add_argument("name")
    install_size.add_argument("--version", dest="package_version", default=None)

    sub.add_parser("init-db", help="Create all tables without Alembic")
    return parser


async def _listen(runtime) -> None:
    from npmsync.workers.listener import ChangeListener

    listener = ChangeListener(
        runtime.change_feed,
        runtime.registry_client,
        runtime.sync_queue,
        runtime.session_factory,
        commit_every=runtime.settings.changes_cursor_commit_every,
    )
    await listener.run()


async def _backfill(runtime, action: str, inline: bool) -> int:
    orchestrator = runtime.orchestrator
    if action in ("start", "resume") and runtime.settings.local_mode:
        # Local queues live in this process and vanish when the command exits
        print(
            f"Error: backfill {action} needs Redis. In local mode run `npmsync-server --local` "
            f"and POST /api/v1/backfill/{action} instead.",
            file=sys.stderr,
        )
        return 2
    if action == "start":
        state = await (orchestrator.start_backfill_process() if inline else orchestrator.start())
        print(f"Backfill {state.status}: {state.total} packages listed")
    elif action == "pause":
        await orchestrator.pause()
        print("Backfill paused")
    elif action == "resume":
        await orchestrator.resume()
        print("Backfill resumed")
    elif action == "reset":
        await orchestrator.reset()
        print("Backfill reset to idle")
    else:
        report = await orchestrator.status_report()
        print(json.dumps(report.model_dump(mode="json"), indent=2))
    return 0


async def _install_size(runtime, name: str, version: str | None) -> int:
    result = await runtime.install_size.get(name, version)
    if result is None:
        print(f"Package {name}{'@' + version if version else ''} not found", file=sys.stderr)
        return 1
    print(json.dumps(result.model_dump(by_alias=True), indent=2))
    return 0


async def _run(args) -> int:
    from npmsync.config import Settings
    from npmsync.db.engine import create_all_tables
    from npmsync.errors.exceptions import NpmSyncError, UpstreamError
    from npmsync.runtime import Runtime

    settings = Settings()
    runtime = await Runtime.create(settings)
    try:
        if args.command == "listen":
            await _listen(runtime)
        elif args.command == "work":
            await runtime.run_workers()
        elif args.command == "backfill":
            return await _backfill(runtime, args.action, args.inline)
        elif args.command == "install-size":
            return await _install_size(runtime, args.name, args.package_version)
        elif args.command == "init-db":
            await create_all_tables(runtime.engine)
            print("Tables created")
        return 0
    except UpstreamError as exc:
        logger.error("Fatal upstream error: %s", exc.message)
        return 1
    except NpmSyncError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 2
    finally:
        await runtime.aclose()


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    if args.local:
        os.environ["NPMSYNC_LOCAL_MODE"] = "1"

    from npmsync.config import Settings
    from npmsync.logging_config import configure_logging

    settings = Settings()
    configure_logging(log_level=settings.log_level, json_output=not settings.local_mode, role=args.command)

    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
