"""
Single-slot credential store backed by SQLAlchemy.

Holds at most one credential row. Each operation opens its own session from the
injected session factory and releases it before returning, including on errors.
Writes are one transaction each, so the access token, refresh token and expiry
are persisted together or not at all.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from upwork_broker.models import SINGLETON_SLOT, CredentialRecord, utc_now

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the database cannot be read or written."""


class NoCredentialError(Exception):
    """Raised when an operation needs a stored credential and none exists."""


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: str
    expires_at: int  # ms since epoch
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _to_credential(row: CredentialRecord) -> Credential:
    return Credential(
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _upsert_statement(dialect_name: str, values: dict):
    """INSERT ... ON CONFLICT (slot) DO UPDATE for dialects that support it; None otherwise."""
    if dialect_name == "postgresql":
        insert = postgresql.insert
    elif dialect_name == "sqlite":
        insert = sqlite.insert
    else:
        return None
    stmt = insert(CredentialRecord).values(slot=SINGLETON_SLOT, **values)
    return stmt.on_conflict_do_update(index_elements=["slot"], set_=values)


def _latest_row_query():
    return select(CredentialRecord).order_by(CredentialRecord.created_at.desc(), CredentialRecord.id.desc()).limit(1)


class CredentialStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def put(self, *, access_token: str, refresh_token: str, expires_at: int) -> Credential:
        """
        Replace whatever is stored with this credential.
        Stray rows outside the singleton slot are removed in the same transaction.
        """
        now = utc_now()
        values = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": expires_at,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with self._sessions.begin() as db:
                db.execute(delete(CredentialRecord).where(CredentialRecord.slot != SINGLETON_SLOT))
                stmt = _upsert_statement(db.get_bind().dialect.name, values)
                if stmt is not None:
                    db.execute(stmt)
                else:
                    row = db.scalars(
                        select(CredentialRecord).where(CredentialRecord.slot == SINGLETON_SLOT).with_for_update()
                    ).first()
                    if row is None:
                        db.add(CredentialRecord(slot=SINGLETON_SLOT, **values))
                    else:
                        for key, value in values.items():
                            setattr(row, key, value)
                    db.flush()
                row = db.scalars(
                    select(CredentialRecord)
                    .where(CredentialRecord.slot == SINGLETON_SLOT)
                    .execution_options(populate_existing=True)
                ).one()
                saved = _to_credential(row)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to save credentials") from exc
        logger.info("Stored new credentials (expires_at=%s)", expires_at)
        return saved

    def get(self) -> Credential | None:
        """Most recently created credential, or None when the store is empty."""
        try:
            with self._sessions() as db:
                row = db.scalars(_latest_row_query()).first()
                return _to_credential(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise StorageError("Failed to read credentials") from exc

    def update(self, *, access_token: str, refresh_token: str, expires_at: int) -> Credential:
        """
        Overwrite the most recent credential in place and bump updated_at.
        Raises NoCredentialError when nothing is stored; an update never creates a row.
        """
        try:
            with self._sessions.begin() as db:
                row = db.scalars(_latest_row_query().with_for_update()).first()
                if row is None:
                    raise NoCredentialError("No stored credentials to update")
                row.access_token = access_token
                row.refresh_token = refresh_token
                row.expires_at = expires_at
                row.updated_at = utc_now()
                db.flush()
                saved = _to_credential(row)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to update credentials") from exc
        logger.info("Updated credentials (expires_at=%s)", expires_at)
        return saved

    def count(self) -> int:
        try:
            with self._sessions() as db:
                return db.scalar(select(func.count()).select_from(CredentialRecord)) or 0
        except SQLAlchemyError as exc:
            raise StorageError("Failed to count credentials") from exc
