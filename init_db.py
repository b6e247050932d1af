"""
Tiny helper script to create the SQLite database before running the app.
Usage: python init_db.py [--db PATH] [--sql PATH] [--sqlite-bin sqlite3]
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from bootstrap import bootstrap_database
from config import load_settings


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = load_settings()

    parser = argparse.ArgumentParser(description="Create the demo SQLite database if it does not exist yet.")
    parser.add_argument("--db", default=str(settings.db_file), help="Database file to create")
    parser.add_argument("--sql", default=str(settings.sql_file), help="Seed script to run")
    parser.add_argument(
        "--sqlite-bin",
        default=settings.sqlite_bin,
        help="Pipe the script into this command line tool instead of running it in-process",
    )
    args = parser.parse_args(argv)

    result = bootstrap_database(args.db, args.sql, sqlite_bin=args.sqlite_bin)
    return result.returncode


if __name__ == "__main__":
    sys.exit(main())
