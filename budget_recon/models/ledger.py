"""SQLAlchemy models for ledger persistence."""

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class UserLedger(Base):
    """A user's full transaction ledger, stored as one document."""

    __tablename__ = "user_ledgers"

    user_id: Mapped[str] = mapped_column(String(100), primary_key=True)

    # List of LedgerTransaction.to_dict() payloads
    transactions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    # Bumped on every save; used for optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # UPDATEs carry "WHERE version = <loaded>" and bump it
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<UserLedger {self.user_id} v{self.version} ({len(self.transactions or [])} txns)>"


class LinkedAccountRecord(Base):
    """Bank account linked through Plaid."""

    __tablename__ = "linked_accounts"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    external_account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Encrypted Plaid access token (one per institution login)
    credential_ref: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_linked_accounts_user", "user_id"),
        Index("idx_linked_accounts_external", "user_id", "external_account_id", unique=True),
    )

    def __repr__(self) -> str:
        return f"<LinkedAccountRecord {self.id} {self.display_name}>"


class SyncMetadata(Base):
    """Tracks the last sync run per user."""

    __tablename__ = "sync_metadata"

    user_id: Mapped[str] = mapped_column(String(100), primary_key=True)

    sync_status: Mapped[str] = mapped_column(String(20), default="idle")  # idle, syncing, error
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_sync_start_date: Mapped[date | None] = mapped_column(Date)

    # Counters from the last successful run
    last_added: Mapped[int] = mapped_column(Integer, default=0)
    last_modified: Mapped[int] = mapped_column(Integer, default=0)
    last_removed: Mapped[int] = mapped_column(Integer, default=0)
    last_warning: Mapped[str | None] = mapped_column(Text)

    error_message: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<SyncMetadata {self.user_id} {self.sync_status}>"
