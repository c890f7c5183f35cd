"""
core/database.py -- Shared SQLAlchemy Core schema and engine factory.

Every table lives on one MetaData so foreign keys (comments -> users,
users_permissions -> permissions) resolve across the credential and catalog
stores. The stores share one Engine and therefore one connection pool.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in auth/models.py and
catalog/models.py remain the authoritative domain representation. Swapping
SQLite for PostgreSQL is a connection string change.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision) so lexicographic comparison in SQL matches chronological order.

Layer rule: no imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("name", Text, nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),  # bcrypt, utf-8 decoded
    Column("activated", Boolean, nullable=False, server_default="0"),
    Column("version", Integer, nullable=False, server_default="1"),
)

tokens = Table(
    "tokens",
    metadata,
    Column("hash", LargeBinary(32), primary_key=True),  # SHA-256 of the plaintext
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("expiry", String(32), nullable=False),
    Column("scope", String(20), nullable=False),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(50), nullable=False, unique=True),
)

users_permissions = Table(
    "users_permissions",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    PrimaryKeyConstraint("user_id", "permission_id", name="users_permissions_pkey"),
)

movies = Table(
    "movies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("title", Text, nullable=False),
    Column("year", Integer, nullable=False),
    Column("runtime", Integer, nullable=False),  # minutes
    Column("genres", Text, nullable=False),  # JSON array serialized as text
    Column("version", Integer, nullable=False, server_default="1"),
)

comments = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("body", Text, nullable=False),
    Column("movie_id", Integer, ForeignKey("movies.id", ondelete="CASCADE"), nullable=False),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def is_foreign_key_violation(exc: Exception) -> bool:
    """True when an IntegrityError was caused by a foreign key, not a unique key.

    SQLite reports "FOREIGN KEY constraint failed"; PostgreSQL reports
    "violates foreign key constraint". Both contain the phrase.
    """
    return "foreign key" in str(getattr(exc, "orig", exc)).lower()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign key enforcement on every pooled connection.

    SQLite PRAGMAs are per-connection, so they are set on connect rather than
    once at startup. Without foreign_keys=ON the cascade deletes and the
    movie/user existence checks on insert are silently skipped.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str, timeout_seconds: float = 3.0) -> Engine:
    """Create the shared engine and make sure every table exists.

    timeout_seconds bounds each statement: SQLite waits at most that long for
    a lock, PostgreSQL cancels statements that run longer. A timed-out store
    call surfaces as an unhandled driver error (HTTP 500); it is not retried.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # TestClient and uvicorn's threadpool use connections across threads.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
    elif db_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(timeout_seconds * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _sqlite_pragmas)
    metadata.create_all(engine)
    return engine
