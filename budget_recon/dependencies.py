"""FastAPI dependencies wiring services to their collaborators."""

from collections.abc import AsyncIterator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_session
from .services.credentials import CredentialStore
from .services.imports import ImportReconciliationService
from .services.ledger_store import AccountStore, SqlLedgerStore
from .services.locks import SyncLock, build_sync_lock
from .services.plaid import PlaidClient
from .services.report import ReconciliationReportBuilder
from .services.sync import SyncStatusTracker, TransactionSyncService


@lru_cache
def get_credential_store() -> CredentialStore:
    """One credential store per process; key derivation runs once."""
    return CredentialStore()


@lru_cache
def get_sync_lock() -> SyncLock:
    """Shared so every request sees the same per-user locks."""
    return build_sync_lock()


def get_report_builder() -> ReconciliationReportBuilder:
    return ReconciliationReportBuilder()


async def get_plaid_client() -> AsyncIterator[PlaidClient]:
    async with PlaidClient() as client:
        yield client


def get_account_store(session: Annotated[AsyncSession, Depends(get_session)]) -> AccountStore:
    return AccountStore(session)


def get_status_tracker(session: Annotated[AsyncSession, Depends(get_session)]) -> SyncStatusTracker:
    return SyncStatusTracker(session)


def get_sync_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    plaid_client: Annotated[PlaidClient, Depends(get_plaid_client)],
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
    sync_lock: Annotated[SyncLock, Depends(get_sync_lock)],
) -> TransactionSyncService:
    return TransactionSyncService(
        ledger_store=SqlLedgerStore(session),
        plaid_client=plaid_client,
        credential_store=credential_store,
        sync_lock=sync_lock,
    )


def get_import_service(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ImportReconciliationService:
    return ImportReconciliationService(SqlLedgerStore(session))
