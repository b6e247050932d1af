from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import text

from bootstrap import bootstrap_database
from database import make_engine, run_query

from conftest import SEED_SQL


@pytest.fixture
def engine(db_file: Path):
    bootstrap_database(db_file, SEED_SQL, echo=lambda _: None)
    seeded = make_engine(db_file)
    yield seeded
    seeded.dispose()


def test_run_query_binds_named_parameters(engine):
    rows = run_query(engine, "SELECT username FROM users WHERE id = :user_id", {"user_id": 2})
    assert rows == [{"username": "user2"}]


def test_run_query_paginates_any_statement(engine):
    rows = run_query(engine, "SELECT id FROM posts ORDER BY id DESC;", limit=2, offset=1)
    assert rows == [{"id": 4}, {"id": 3}]


def test_wal_mode(db_file: Path):
    bootstrap_database(db_file, SEED_SQL, echo=lambda _: None)
    wal_engine = make_engine(db_file, wal=True)
    try:
        with wal_engine.connect() as connection:
            assert connection.execute(text("PRAGMA journal_mode")).scalar() == "wal"
    finally:
        wal_engine.dispose()
