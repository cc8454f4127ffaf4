"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Route and dependency
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  update_user() only accepts column names from _UPDATABLE; anything else is a
  programming error and raises ValueError.

Emails are stored lower-cased and trimmed; lookups normalize the same way, so
"Ada@Example.com" and "ada@example.com" are one account.

DB path: auth/slidingauth_users.db by default (see core/config.py).

Layer rule: no imports from api/, web/, or cache/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import USER_ROLES, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("salt", String(64), nullable=False),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_UPDATABLE = {"name", "email", "password_hash", "salt", "role", "email_verified"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore(get_settings().database_url)
        user = store.create_user(User(name="Ada", email="ada@example.com", password_hash=h, salt=s))
        store.get_by_email("ada@example.com")
        store.close()

    Tests pass a named shared-memory URI
    (sqlite:///file:name?mode=memory&cache=shared&uri=true) so every pooled
    connection sees the same in-memory database.
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps assigned.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken.
        Callers check get_by_email() first; the constraint settles the race
        between two concurrent registrations.
        """
        if user.role not in USER_ROLES:
            raise ValueError(f"Unknown role: {user.role!r}")
        now = _now_iso()
        user_id = uuid.uuid4().hex
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=user.name,
                    email=normalize_email(user.email),
                    password_hash=user.password_hash,
                    salt=user.salt,
                    role=user.role,
                    email_verified=user.email_verified,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return self.get_by_id(user_id)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> User | None:
        """Update mutable fields and return the updated record.

        Accepted fields: name, email, password_hash, salt, role, email_verified.
        updated_at is stamped on every call. Returns None if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields and fields["role"] not in USER_ROLES:
            raise ValueError(f"Unknown role: {fields['role']!r}")
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_by_id(user_id)

    def ping(self) -> bool:
        """Cheap liveness probe for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        salt=row.salt,
        role=row.role,
        email_verified=bool(row.email_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
