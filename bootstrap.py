"""Create the demo SQLite database from its seed script when it is missing."""

from __future__ import annotations

import enum
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from database import execute_script, make_engine


class BootstrapStatus(enum.Enum):
    SKIPPED = "skipped"
    CREATED = "created"
    FAILED = "failed"


@dataclass(frozen=True)
class BootstrapResult:
    status: BootstrapStatus
    returncode: int = 0


def _run_builtin(db_file: Path, sql_file: Path) -> int:
    engine = make_engine(db_file)
    try:
        execute_script(engine, sql_file.read_text(encoding="utf-8"))
    finally:
        engine.dispose()
    return 0


def _run_external(sqlite_bin: str, db_file: Path, sql_file: Path) -> int:
    with sql_file.open("rb") as stdin:
        completed = subprocess.run([sqlite_bin, str(db_file)], stdin=stdin, check=False)
    return completed.returncode


def bootstrap_database(
    db_file: Path | str,
    sql_file: Path | str,
    *,
    sqlite_bin: Optional[str] = None,
    echo: Callable[[str], None] = print,
) -> BootstrapResult:
    """Initialize ``db_file`` from ``sql_file`` unless the file already exists.

    With ``sqlite_bin`` set, the script is piped into that command line tool
    and its exit status is reported back unchanged. Otherwise the script runs
    in-process and driver errors propagate to the caller.
    """

    db_path = Path(db_file)
    sql_path = Path(sql_file)

    if db_path.is_file():
        echo(f"Nothing to do! DB file already exists {db_path}")
        return BootstrapResult(BootstrapStatus.SKIPPED)

    echo(f"Creating DB {db_path}")

    if sqlite_bin:
        returncode = _run_external(sqlite_bin, db_path, sql_path)
    else:
        returncode = _run_builtin(db_path, sql_path)

    if returncode != 0:
        return BootstrapResult(BootstrapStatus.FAILED, returncode)

    echo("Done")
    return BootstrapResult(BootstrapStatus.CREATED)
