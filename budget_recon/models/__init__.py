"""Database models and ledger records."""

from .ledger import Base, LinkedAccountRecord, SyncMetadata, UserLedger
from .transaction import (
    ImportCandidate,
    InvalidImportRowError,
    LedgerTransaction,
    LinkedAccount,
    Location,
    TransactionStatus,
)

__all__ = [
    "Base",
    "UserLedger",
    "LinkedAccountRecord",
    "SyncMetadata",
    "ImportCandidate",
    "InvalidImportRowError",
    "LedgerTransaction",
    "LinkedAccount",
    "Location",
    "TransactionStatus",
]
