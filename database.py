"""SQLAlchemy-powered data layer for the sqlshelf demo database."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Mapping, Optional

from sqlalchemy import Engine, String, Text, create_engine, event, func, select, text
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

# --------------------------------------------------------------------------------------
# Engine setup
# --------------------------------------------------------------------------------------


def make_engine(db_file: Path | str, *, wal: bool = False) -> Engine:
    """Create an engine bound to a SQLite file."""

    engine = create_engine(
        f"sqlite:///{db_file}",
        future=True,
        connect_args={"check_same_thread": False},
    )

    if wal:

        @event.listens_for(engine, "connect")
        def _enable_wal(dbapi_connection, connection_record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String, nullable=False)


class Post(Base):
    __tablename__ = "posts"
    # The seed schema ships the owner column commented out, so there is no
    # relationship to users here.

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)


# --------------------------------------------------------------------------------------
# Session helper
# --------------------------------------------------------------------------------------


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# --------------------------------------------------------------------------------------
# Scripts
# --------------------------------------------------------------------------------------


def execute_script(engine: Engine, sql_text: str) -> None:
    """Run a multi-statement SQL script on a raw driver connection.

    SQLAlchemy's ``text()`` executes a single statement, so the script goes
    through the sqlite3 driver's ``executescript``. Driver errors propagate
    untouched.
    """

    raw = engine.raw_connection()
    try:
        raw.driver_connection.executescript(sql_text)
        raw.commit()
    finally:
        raw.close()


# --------------------------------------------------------------------------------------
# Read helpers
# --------------------------------------------------------------------------------------


def count_rows(engine: Engine) -> dict[str, int]:
    """Return row counts for the seeded tables."""

    with session_scope(engine) as session:
        return {
            "users": session.scalar(select(func.count(User.id))) or 0,
            "posts": session.scalar(select(func.count(Post.id))) or 0,
        }


def fetch_users(engine: Engine) -> list[dict[str, object]]:
    # Credentials stay in the table.
    with session_scope(engine) as session:
        rows = session.execute(select(User.id, User.username).order_by(User.id)).all()
        return [{"id": row.id, "username": row.username} for row in rows]


def fetch_posts(engine: Engine) -> list[dict[str, object]]:
    with session_scope(engine) as session:
        posts = session.execute(select(Post).order_by(Post.id)).scalars().all()
        return [{"id": post.id, "title": post.title, "content": post.content} for post in posts]


def run_query(
    engine: Engine,
    sql: str,
    params: Optional[Mapping[str, object]] = None,
    *,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> list[dict[str, object]]:
    """Execute a parameterized query and return rows as plain dicts.

    When ``limit`` is given the query is wrapped in a sub-select so the
    pagination applies to whatever the original statement returns.
    """

    bound = dict(params or {})
    statement = sql.strip().rstrip(";")
    if limit is not None:
        statement = f"SELECT * FROM ({statement}) LIMIT :_shelf_limit OFFSET :_shelf_offset"
        bound["_shelf_limit"] = limit
        bound["_shelf_offset"] = offset or 0

    with engine.connect() as connection:
        result = connection.execute(text(statement), bound)
        return [dict(row) for row in result.mappings()]
