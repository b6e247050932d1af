from __future__ import annotations

import stat
from pathlib import Path

import pytest

from app import create_app
from config import Settings, load_specs

ROOT = Path(__file__).resolve().parents[1]
SEED_SQL = ROOT / "examples" / "db-sqlite.sql"
SPECS_DIR = ROOT / "specs"


def make_stub_tool(directory: Path, body: str) -> str:
    """Write an executable shell script standing in for the sqlite3 CLI."""

    script = directory / "fake-sqlite"
    script.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


@pytest.fixture
def db_file(tmp_path: Path) -> Path:
    return tmp_path / "db.sqlite3"


@pytest.fixture
def settings(db_file: Path) -> Settings:
    return Settings(db_file=db_file, sql_file=SEED_SQL, specs_dir=SPECS_DIR)


@pytest.fixture
def app(settings: Settings):
    flask_app = create_app(settings, load_specs(SPECS_DIR, environ={}))
    flask_app.config["TESTING"] = True
    yield flask_app
    flask_app.extensions["sqlshelf_engine"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()
