"""Services for ledger reconciliation."""

from .credentials import CredentialStore
from .imports import ImportReconciliationService
from .ledger_store import AccountStore, SqlLedgerStore
from .locks import LocalSyncLock, RedisSyncLock
from .plaid import PlaidClient
from .report import ReconciliationReportBuilder
from .sync import SyncStatusTracker, TransactionSyncService

__all__ = [
    "PlaidClient",
    "CredentialStore",
    "SqlLedgerStore",
    "AccountStore",
    "LocalSyncLock",
    "RedisSyncLock",
    "TransactionSyncService",
    "SyncStatusTracker",
    "ImportReconciliationService",
    "ReconciliationReportBuilder",
]
