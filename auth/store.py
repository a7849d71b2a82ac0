"""
auth/store.py -- SQLAlchemy Core persistence layer for profiles.

Pattern: Repository + Data Mapper (same as catalog/store.py).
ProfileStore is the repository; _row_to_identity is the mapper.
Provider and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email is stored lower-cased and carries a UNIQUE index, so the duplicate
  check in sign-up is backed by the database even when two sign-ups race.

Timestamps are stored as fixed-width ISO 8601 UTC strings (always with
microseconds), which makes the "expires >= now" comparison a plain string
comparison that SQLite and PostgreSQL both index.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_USER, Identity
from core.clock import utc_now
from core.errors import Conflict, InternalError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_profiles = Table(
    "profiles",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("full_name", String(255)),
    Column("role", String(20), nullable=False, server_default=ROLE_USER),
    Column("hashed_password", Text),  # NULL for externally managed identities
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("verify_token", String(64), index=True),
    Column("verify_expires", String(32)),
    Column("reset_token", String(64), index=True),
    Column("reset_expires", String(32)),
    Column("refresh_token", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns update() accepts. Anything else is a programming error.
_UPDATABLE = {
    "full_name",
    "role",
    "hashed_password",
    "email_verified",
    "verify_token",
    "verify_expires",
    "reset_token",
    "reset_expires",
    "refresh_token",
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _encode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    encoded: dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = to_iso(value)
        elif isinstance(value, bool):
            value = 1 if value else 0
        encoded[key] = value
    return encoded


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ProfileStore:
    """Repository for Identity records.

    Usage:
        store = ProfileStore("sqlite:///shopfront.db")
        identity = store.create(Identity(email="a@b.c", hashed_password=...))
        store.update(identity.id, refresh_token=token)
        store.close()
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
    # Lookups
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.email == email.strip().lower())).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_id(self, identity_id: str) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_verification_token(self, token: str, now: datetime) -> Identity | None:
        """Exact token match whose expiry is still at or after now."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _profiles.select().where(
                    (_profiles.c.verify_token == token) & (_profiles.c.verify_expires >= to_iso(now))
                )
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_reset_token(self, token: str, now: datetime) -> Identity | None:
        """Exact token match whose expiry is still at or after now."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _profiles.select().where(
                    (_profiles.c.reset_token == token) & (_profiles.c.reset_expires >= to_iso(now))
                )
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, identity: Identity) -> Identity:
        """Insert a profile and return it as stored.

        Raises Conflict if the email is already registered. The UNIQUE index
        is the authority here: a lookup-then-insert in the caller can race.
        """
        now = to_iso(utc_now())
        identity_id = identity.id or str(uuid.uuid4())
        values = _encode_fields(
            {
                "id": identity_id,
                "email": identity.email.strip().lower(),
                "full_name": identity.full_name,
                "role": identity.role,
                "hashed_password": identity.hashed_password,
                "email_verified": identity.email_verified,
                "verify_token": identity.verify_token,
                "verify_expires": identity.verify_expires,
                "reset_token": identity.reset_token,
                "reset_expires": identity.reset_expires,
                "refresh_token": identity.refresh_token,
            }
        )
        values["created_at"] = now
        values["updated_at"] = now
        try:
            with self.engine.connect() as conn:
                conn.execute(_profiles.insert().values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise Conflict("Email already registered", code="email_taken") from exc
        created = self.find_by_id(identity_id)
        if created is None:
            raise InternalError("Profile not found after write.")
        return created

    def update(self, identity_id: str, **fields) -> bool:
        """Update fields on a profile in one statement.

        Returns True if a row was updated, False if the id was not found.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown profile fields: {unknown!r}")
        values = _encode_fields(fields)
        values["updated_at"] = to_iso(utc_now())
        with self.engine.connect() as conn:
            result = conn.execute(_profiles.update().where(_profiles.c.id == identity_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def set_role(self, email: str, role: str) -> bool:
        """Change a profile's role. Only the admin CLI calls this."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _profiles.update()
                .where(_profiles.c.email == email.strip().lower())
                .values(role=role, updated_at=to_iso(utc_now()))
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        role=row.role,
        hashed_password=row.hashed_password,
        email_verified=bool(row.email_verified),
        verify_token=row.verify_token,
        verify_expires=from_iso(row.verify_expires),
        reset_token=row.reset_token,
        reset_expires=from_iso(row.reset_expires),
        refresh_token=row.refresh_token,
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )
