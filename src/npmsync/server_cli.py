"""CLI entry point for the npmsync API server."""

import argparse
import os


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="npmsync-server",
        description="npmsync API server: backfill control, install sizes, notifications",
    )
    parser.add_argument("--host", default=None, help="Bind host (default: settings.host)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: settings.port)")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Local dev mode: SQLite database, no Redis required",
    )
    args = parser.parse_args(argv)

    if args.local:
        os.environ["NPMSYNC_LOCAL_MODE"] = "1"

    import uvicorn

    from npmsync.config import Settings

    settings = Settings()
    uvicorn.run(
        "npmsync.main:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
