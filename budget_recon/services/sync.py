"""Transaction sync service - merges Plaid transactions into a user's ledger."""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from budget_recon.config import settings
from budget_recon.models.ledger import SyncMetadata
from budget_recon.models.transaction import LedgerTransaction, LinkedAccount, TransactionStatus
from budget_recon.services.credentials import CredentialError, CredentialStore, LegacyCredentialError
from budget_recon.services.ledger_store import LedgerStore
from budget_recon.services.locks import LocalSyncLock, SyncLock
from budget_recon.services.plaid import AggregatorTransaction, PlaidAPIError, PlaidClient

logger = logging.getLogger(__name__)


@dataclass
class FailedGroup:
    """Accounts sharing one credential that could not be synced."""

    account_names: list[str]
    reason: str
    needs_reconnect: bool = False
    legacy_credential: bool = False


@dataclass
class SyncOutcome:
    """Summary of one sync run."""

    added: int = 0
    modified: int = 0
    removed: int = 0
    fetched: int = 0
    warning: str | None = None
    failed_groups: list[FailedGroup] = field(default_factory=list)
    # Accounts whose fetch hit the record cap; removal detection was skipped
    incomplete_accounts: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.removed)

    @property
    def needs_reconnect_accounts(self) -> list[str]:
        return [name for g in self.failed_groups if g.needs_reconnect for name in g.account_names]

    @property
    def retry_accounts(self) -> list[str]:
        return [name for g in self.failed_groups if not g.needs_reconnect for name in g.account_names]


class SyncFailedError(Exception):
    """No account group could be synced."""

    def __init__(self, message: str, failed_groups: list[FailedGroup]):
        super().__init__(message)
        self.failed_groups = failed_groups

    @property
    def needs_reconnect(self) -> bool:
        return bool(self.failed_groups) and all(g.needs_reconnect for g in self.failed_groups)


@dataclass
class _FetchedGroup:
    accounts: list[LinkedAccount]
    transactions: list[AggregatorTransaction]
    complete: bool = True


class TransactionSyncService:
    """Keeps a user's ledger consistent with Plaid.

    Flow per call:
    1. Group accounts by credential and decrypt each credential
    2. Fetch the full transaction window for every decryptable group
    3. Load the ledger once, add/modify by external id
    4. Mark rows missing from the fetch as removed (fully fetched accounts only)
    5. Save the ledger once
    """

    def __init__(
        self,
        ledger_store: LedgerStore,
        plaid_client: PlaidClient,
        credential_store: CredentialStore,
        sync_lock: SyncLock | None = None,
    ):
        self.ledger_store = ledger_store
        self.plaid_client = plaid_client
        self.credential_store = credential_store
        self.sync_lock = sync_lock or LocalSyncLock()

    async def sync_transactions(
        self,
        user_id: str,
        accounts: list[LinkedAccount],
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> SyncOutcome:
        """Sync transactions for a user's accounts.

        Args:
            user_id: Ledger owner
            accounts: Accounts to refresh; removal detection is limited to these
            start_date: First day to fetch (defaults to settings.default_sync_start_date)
            end_date: Last day to fetch (defaults to today)

        Returns:
            SyncOutcome with counters and a warning if some groups failed

        Raises:
            SyncFailedError: If every account group failed
            SyncInProgressError: If another sync holds the user's ledger
        """
        start_date = start_date or settings.default_sync_start_date
        end_date = end_date or date.today()

        accounts = [a for a in accounts if a.user_id == user_id]
        if not accounts:
            logger.info(f"No accounts to sync for user {user_id}")
            return SyncOutcome()

        groups = self._group_by_credential(accounts)
        logger.info(
            f"Syncing {len(accounts)} accounts in {len(groups)} credential groups "
            f"for user {user_id} from {start_date} to {end_date}"
        )

        async with self.sync_lock.hold(user_id):
            results = await asyncio.gather(
                *(
                    self._fetch_group(credential_ref, group_accounts, start_date, end_date)
                    for credential_ref, group_accounts in groups.items()
                )
            )

            fetched = [r for r in results if isinstance(r, _FetchedGroup)]
            failed = [r for r in results if isinstance(r, FailedGroup)]

            if not fetched:
                message = (
                    "All accounts need reconnection. Please reconnect your bank accounts."
                    if all(g.needs_reconnect for g in failed)
                    else "Failed to sync transactions for all accounts."
                )
                logger.error(f"Sync failed for user {user_id}: {message}")
                raise SyncFailedError(message, failed)

            outcome = await self._merge_into_ledger(user_id, fetched)

        outcome.failed_groups = failed
        outcome.warning = self._build_warning(failed, outcome.incomplete_accounts)

        logger.info(
            f"Sync complete for user {user_id}: {outcome.added} added, "
            f"{outcome.modified} modified, {outcome.removed} removed"
        )
        return outcome

    def _group_by_credential(self, accounts: list[LinkedAccount]) -> dict[str, list[LinkedAccount]]:
        """Accounts at one institution share a credential and are fetched together."""
        groups: dict[str, list[LinkedAccount]] = defaultdict(list)
        for account in accounts:
            groups[account.credential_ref].append(account)
        return dict(groups)

    async def _fetch_group(
        self,
        credential_ref: str,
        accounts: list[LinkedAccount],
        start_date: date,
        end_date: date,
    ) -> _FetchedGroup | FailedGroup:
        """Decrypt and fetch one credential group. Never raises."""
        names = [a.display_name for a in accounts]

        try:
            # decrypt runs PBKDF2, so it goes to a worker thread
            access_token = await asyncio.to_thread(self.credential_store.decrypt, credential_ref)
        except CredentialError as e:
            logger.warning(f"Skipping {len(accounts)} accounts - token needs reconnection: {e}")
            return FailedGroup(
                account_names=names,
                reason=str(e),
                needs_reconnect=True,
                legacy_credential=isinstance(e, LegacyCredentialError),
            )

        try:
            fetch = await self.plaid_client.get_transactions(
                access_token, start_date, end_date, include_pending=True
            )
        except PlaidAPIError as e:
            logger.error(f"Failed to fetch transactions for {', '.join(names)}: {e}")
            return FailedGroup(account_names=names, reason=str(e), needs_reconnect=e.requires_reauth)
        except Exception as e:
            logger.error(f"Unexpected error fetching transactions for {', '.join(names)}: {e}")
            return FailedGroup(account_names=names, reason=str(e))

        logger.info(
            f"Received {len(fetch.transactions)} transactions for {', '.join(names)} "
            f"(total available: {fetch.total_transactions})"
        )
        complete = not fetch.truncated and len(fetch.transactions) >= fetch.total_transactions
        if not complete:
            logger.warning(
                f"Incomplete fetch for {', '.join(names)}: got {len(fetch.transactions)} of "
                f"{fetch.total_transactions}; removal detection skipped for these accounts"
            )
        return _FetchedGroup(accounts=accounts, transactions=fetch.transactions, complete=complete)

    async def _merge_into_ledger(self, user_id: str, groups: list[_FetchedGroup]) -> SyncOutcome:
        """Apply every fetched group to the ledger and save it once."""
        snapshot = await self.ledger_store.load_ledger(user_id)
        ledger = snapshot.transactions
        outcome = SyncOutcome()

        by_external_id: dict[str, LedgerTransaction] = {
            t.external_id: t for t in ledger if t.external_id
        }
        seen_ids: set[str] = set()
        synced_account_ids: set[str] = set()

        for group in groups:
            account_lookup = {a.external_account_id: a for a in group.accounts}
            if group.complete:
                synced_account_ids.update(a.id for a in group.accounts)
            else:
                outcome.incomplete_accounts.extend(a.display_name for a in group.accounts)

            for record in group.transactions:
                outcome.fetched += 1
                seen_ids.add(record.transaction_id)

                account = account_lookup.get(record.account_id)
                if account is None:
                    continue

                existing = by_external_id.get(record.transaction_id)
                if existing is not None:
                    if self._apply_update(existing, record):
                        outcome.modified += 1
                else:
                    new_txn = self._create_transaction(user_id, account, record)
                    ledger.append(new_txn)
                    by_external_id[record.transaction_id] = new_txn
                    outcome.added += 1

        outcome.removed = self._mark_removed(ledger, synced_account_ids, seen_ids)

        if outcome.has_changes:
            await self.ledger_store.save_ledger(user_id, ledger, expected_version=snapshot.version)

        return outcome

    def _create_transaction(
        self,
        user_id: str,
        account: LinkedAccount,
        record: AggregatorTransaction,
    ) -> LedgerTransaction:
        """Build a new ledger row from a Plaid record."""
        return LedgerTransaction(
            user_id=user_id,
            account_id=account.id,
            external_id=record.transaction_id,
            external_account_id=record.account_id,
            amount=record.amount,
            date=record.date,
            name=record.name,
            merchant_name=record.merchant_name,
            category=record.category,
            category_id=record.category_id,
            user_category_id=None,
            status=TransactionStatus.PENDING if record.pending else TransactionStatus.POSTED,
            pending=record.pending,
            currency_code=record.currency_code,
            is_hidden=False,
            location=record.location,
        )

    def _apply_update(self, existing: LedgerTransaction, record: AggregatorTransaction) -> bool:
        """Copy changed Plaid fields onto an existing row.

        user_category_id is never written here, and category_id only while the
        user has not chosen a category.

        Returns:
            True if anything changed
        """
        changed = False

        if existing.amount != record.amount:
            existing.amount = record.amount
            changed = True

        if existing.pending != record.pending or existing.status == TransactionStatus.REMOVED:
            existing.pending = record.pending
            existing.status = TransactionStatus.PENDING if record.pending else TransactionStatus.POSTED
            changed = True

        if existing.name != record.name:
            existing.name = record.name
            changed = True

        if existing.merchant_name != record.merchant_name:
            existing.merchant_name = record.merchant_name
            changed = True

        if existing.category != record.category:
            existing.category = record.category
            changed = True

        if existing.user_category_id is None and existing.category_id != record.category_id:
            existing.category_id = record.category_id
            changed = True

        if changed:
            existing.touch()

        return changed

    def _mark_removed(
        self,
        ledger: list[LedgerTransaction],
        synced_account_ids: set[str],
        seen_ids: set[str],
    ) -> int:
        """Flag rows Plaid no longer returns. Rows are kept for history."""
        removed = 0
        for txn in ledger:
            if (
                txn.account_id in synced_account_ids
                and txn.external_id
                and txn.external_id not in seen_ids
                and txn.status != TransactionStatus.REMOVED
            ):
                txn.status = TransactionStatus.REMOVED
                txn.touch()
                removed += 1
        return removed

    def _build_warning(self, failed: list[FailedGroup], incomplete: list[str]) -> str | None:
        if not failed and not incomplete:
            return None

        parts = []
        reconnect = [n for g in failed if g.needs_reconnect for n in g.account_names]
        retry = [n for g in failed if not g.needs_reconnect for n in g.account_names]
        if reconnect:
            parts.append(f"Some accounts need reconnection: {', '.join(reconnect)}")
        if retry:
            parts.append(f"Some accounts could not be synced: {', '.join(retry)}")
        if incomplete:
            parts.append(f"Some accounts were only partially synced: {', '.join(incomplete)}")
        return "; ".join(parts)


class SyncStatusTracker:
    """Records sync runs in the sync_metadata table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> SyncMetadata | None:
        result = await self.session.execute(
            select(SyncMetadata).where(SyncMetadata.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def _get_or_create(self, user_id: str) -> SyncMetadata:
        metadata = await self.get(user_id)
        if metadata is None:
            metadata = SyncMetadata(user_id=user_id)
            self.session.add(metadata)
            await self.session.flush()
        return metadata

    async def mark_started(self, user_id: str, start_date: date) -> None:
        metadata = await self._get_or_create(user_id)
        metadata.sync_status = "syncing"
        metadata.last_sync_start_date = start_date
        metadata.error_message = None
        await self.session.flush()

    async def mark_succeeded(self, user_id: str, outcome: SyncOutcome) -> None:
        metadata = await self._get_or_create(user_id)
        metadata.sync_status = "idle"
        metadata.last_sync_at = datetime.now(UTC)
        metadata.last_added = outcome.added
        metadata.last_modified = outcome.modified
        metadata.last_removed = outcome.removed
        metadata.last_warning = outcome.warning
        metadata.error_message = None
        await self.session.flush()

    async def mark_failed(self, user_id: str, error: str) -> None:
        metadata = await self._get_or_create(user_id)
        metadata.sync_status = "error"
        metadata.error_message = error
        await self.session.flush()
