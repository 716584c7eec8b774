"""Ledger sync and import preview endpoints."""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from budget_recon.config import settings
from budget_recon.database import get_session
from budget_recon.dependencies import (
    get_account_store,
    get_import_service,
    get_report_builder,
    get_status_tracker,
    get_sync_service,
)
from budget_recon.models.transaction import ImportCandidate, InvalidImportRowError
from budget_recon.services.imports import ImportReconciliationService
from budget_recon.services.ledger_store import AccountStore, LedgerConflictError
from budget_recon.services.locks import SyncInProgressError
from budget_recon.services.matching import MatchingOptions
from budget_recon.services.report import ImportPreviewReport, ReconciliationReportBuilder, SyncReport
from budget_recon.services.sync import SyncFailedError, SyncStatusTracker, TransactionSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ledger", tags=["ledger"])


class SyncRequest(BaseModel):
    """Request to sync a user's linked accounts."""

    start_date: date | None = None
    account_ids: list[str] | None = None


class SyncStatusResponse(BaseModel):
    """Last sync run for a user."""

    user_id: str
    sync_status: str
    last_sync_at: datetime | None
    last_sync_start_date: date | None
    last_added: int
    last_modified: int
    last_removed: int
    last_warning: str | None
    error_message: str | None


class ImportRow(BaseModel):
    """One parsed row from an uploaded export."""

    date: str
    description: str
    amount: str | float | int
    category: str | None = None
    merchant_name: str | None = None
    account_name: str | None = None
    notes: str | None = None


class MatchingOptionsRequest(BaseModel):
    date_window_days: int | None = Field(None, ge=0, le=31)
    amount_tolerance: Decimal | None = Field(None, ge=0)
    description_similarity_threshold: float | None = Field(None, gt=0, le=1)


class ImportPreviewRequest(BaseModel):
    candidates: list[ImportRow]
    options: MatchingOptionsRequest | None = None


def _matching_options(request: MatchingOptionsRequest | None) -> MatchingOptions:
    options = MatchingOptions.from_settings()
    if request is None:
        return options
    if request.date_window_days is not None:
        options.date_window_days = request.date_window_days
    if request.amount_tolerance is not None:
        options.amount_tolerance = request.amount_tolerance
    if request.description_similarity_threshold is not None:
        options.description_similarity_threshold = request.description_similarity_threshold
    return options


@router.post("/{user_id}/sync", response_model=SyncReport)
async def sync_ledger(
    user_id: str,
    request: SyncRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    accounts_store: Annotated[AccountStore, Depends(get_account_store)],
    tracker: Annotated[SyncStatusTracker, Depends(get_status_tracker)],
    sync_service: Annotated[TransactionSyncService, Depends(get_sync_service)],
    reports: Annotated[ReconciliationReportBuilder, Depends(get_report_builder)],
):
    """Sync transactions from Plaid into the user's ledger."""
    accounts = await accounts_store.list_accounts(user_id, request.account_ids)
    if not accounts:
        raise HTTPException(status_code=404, detail=f"No linked accounts for user {user_id}")

    start_date = request.start_date or settings.default_sync_start_date
    await tracker.mark_started(user_id, start_date)

    try:
        outcome = await sync_service.sync_transactions(user_id, accounts, start_date)
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except LedgerConflictError as e:
        logger.warning(f"Ledger conflict during sync: {e}")
        raise HTTPException(status_code=409, detail="Ledger changed during sync, retry") from e
    except SyncFailedError as e:
        await tracker.mark_failed(user_id, str(e))
        # Keep the error status even though the request fails
        await session.commit()
        report = reports.sync_failure_report(e)
        raise HTTPException(status_code=502, detail=report.model_dump()) from e

    await tracker.mark_succeeded(user_id, outcome)
    return reports.sync_report(outcome)


@router.get("/{user_id}/sync-status", response_model=SyncStatusResponse)
async def get_sync_status(
    user_id: str,
    tracker: Annotated[SyncStatusTracker, Depends(get_status_tracker)],
):
    """Get the last sync run for a user."""
    metadata = await tracker.get(user_id)
    if metadata is None:
        raise HTTPException(status_code=404, detail=f"No sync recorded for user {user_id}")

    return SyncStatusResponse(
        user_id=metadata.user_id,
        sync_status=metadata.sync_status,
        last_sync_at=metadata.last_sync_at,
        last_sync_start_date=metadata.last_sync_start_date,
        last_added=metadata.last_added,
        last_modified=metadata.last_modified,
        last_removed=metadata.last_removed,
        last_warning=metadata.last_warning,
        error_message=metadata.error_message,
    )


@router.post("/{user_id}/import/preview", response_model=ImportPreviewReport)
async def preview_import(
    user_id: str,
    request: ImportPreviewRequest,
    import_service: Annotated[ImportReconciliationService, Depends(get_import_service)],
    reports: Annotated[ReconciliationReportBuilder, Depends(get_report_builder)],
):
    """Compare uploaded transactions with the ledger before importing."""
    try:
        candidates = [
            ImportCandidate.from_row(row.model_dump(), row_number=i)
            for i, row in enumerate(request.candidates, start=1)
        ]
    except InvalidImportRowError as e:
        raise HTTPException(status_code=422, detail=f"Row {e.row_number}: {e}") from e

    result, grouping = await import_service.preview(
        user_id, candidates, _matching_options(request.options)
    )
    return reports.import_preview(result, grouping)
