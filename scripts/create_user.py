import argparse
import getpass
import sys
from pathlib import Path
from typing import Optional, Sequence

import anyio

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from journal_backend.accounts import AccountService
from journal_backend.config import load_settings, with_overrides
from journal_backend.database import Database, resolve_database_path
from journal_backend.errors import JournalError
from journal_backend.passwords import PasswordHasher
from journal_backend.tokens import TokenAuthority


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a journal user")
    parser.add_argument("username", help="Unique login name")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to JOURNAL_DB_PATH or data/journal.sqlite3)",
    )
    return parser.parse_args(argv)


MIN_PASSWORD_LENGTH = 12


def read_new_password(attempts: int = 3) -> str:
    """Ask for the account password on the terminal, twice, without echoing it."""
    for _ in range(attempts):
        password = getpass.getpass(f"Password (at least {MIN_PASSWORD_LENGTH} characters): ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print(f"Too short: {len(password)} characters.", file=sys.stderr)
        elif getpass.getpass("Repeat password: ") != password:
            print("The passwords differ.", file=sys.stderr)
        else:
            return password
    raise SystemExit(f"No usable password after {attempts} attempts; no user created.")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1
    if args.db_path:
        settings = with_overrides(settings, database_path=args.db_path)

    password = read_new_password()

    database = Database(resolve_database_path(settings.database_path))
    database.initialize()
    accounts = AccountService(
        database,
        PasswordHasher.from_settings(settings),
        TokenAuthority.from_settings(settings),
    )

    try:
        user = anyio.run(accounts.register, args.username, args.email, password)
    except JournalError as exc:  # duplicates, invalid email, etc.
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created user {user.id}: {user.username} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
