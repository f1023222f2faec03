"""Command-line interface for the journal service."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Sequence

from journal_backend.config import Settings, load_settings, with_overrides
from journal_backend.database import Database, resolve_database_path

logger = logging.getLogger("journal.main")

_LOG_LEVELS = ("debug", "info", "warning", "error")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Journal service utilities")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=_LOG_LEVELS,
        help="Logging verbosity (default: info)",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to JOURNAL_DB_PATH or data/journal.sqlite3)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the journal database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port for the HTTP API (default: 8080)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db"}

    # Global options may precede the subcommand; a missing subcommand means "serve".
    index = 0
    while index < len(args_list) and args_list[index] in ("--log-level", "--db"):
        index += 2
    remaining = args_list[index:]
    if not remaining:
        args_list = [*args_list, "serve"]
    elif remaining[0] not in known_commands and remaining[0] not in ("-h", "--help"):
        args_list = [*args_list[:index], "serve", *remaining]

    return parser.parse_args(args_list)


def _load_settings(db_path: str | None) -> Settings:
    try:
        settings = load_settings()
    except ValueError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc
    if db_path:
        settings = with_overrides(settings, database_path=db_path)
    return settings


def _initialise_database(settings: Settings) -> Database:
    db_path = resolve_database_path(settings.database_path)
    database = Database(
        db_path,
        retry_attempts=settings.storage_retry_attempts,
        retry_delay=settings.storage_retry_delay,
    )
    database.initialize()
    logger.info("Database initialised at %s", db_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str, port: int, log_level: str) -> None:
    from journal_backend.api import create_app
    import uvicorn

    logger.info("Starting journal API on http://%s:%s", host, port)
    app = create_app(settings=settings, database=database)
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    settings = _load_settings(args.db_path)
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(
            settings=settings,
            database=database,
            host=args.host,
            port=args.port,
            log_level=args.log_level,
        )
    elif args.command == "init-db":
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
