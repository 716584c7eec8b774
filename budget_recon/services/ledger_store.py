"""Ledger and linked-account persistence."""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from budget_recon.models.ledger import LinkedAccountRecord, UserLedger
from budget_recon.models.transaction import LedgerTransaction, LinkedAccount

logger = logging.getLogger(__name__)


class LedgerConflictError(Exception):
    """The ledger changed between load and save."""

    def __init__(self, user_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Ledger for {user_id} is at version {actual_version}, expected {expected_version}"
        )
        self.user_id = user_id
        self.expected_version = expected_version
        self.actual_version = actual_version


@dataclass
class LedgerSnapshot:
    """A user's ledger as loaded, with the version it was read at."""

    transactions: list[LedgerTransaction] = field(default_factory=list)
    version: int = 0


class LedgerStore(Protocol):
    """Full-read, full-write storage of a user's ledger."""

    async def load_ledger(self, user_id: str) -> LedgerSnapshot: ...

    async def save_ledger(
        self,
        user_id: str,
        transactions: list[LedgerTransaction],
        expected_version: int | None = None,
    ) -> int: ...


class SqlLedgerStore:
    """Ledger store backed by the user_ledgers table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get(self, user_id: str) -> UserLedger | None:
        result = await self.session.execute(select(UserLedger).where(UserLedger.user_id == user_id))
        return result.scalar_one_or_none()

    async def load_ledger(self, user_id: str) -> LedgerSnapshot:
        """Load every stored transaction for a user."""
        ledger = await self._get(user_id)
        if ledger is None:
            return LedgerSnapshot()

        transactions = []
        for row in ledger.transactions or []:
            txn = LedgerTransaction.from_dict(row)
            if txn.user_id != user_id:
                logger.error(f"Skipping transaction {txn.id} owned by another user in {user_id}'s ledger")
                continue
            transactions.append(txn)

        return LedgerSnapshot(transactions=transactions, version=ledger.version)

    async def save_ledger(
        self,
        user_id: str,
        transactions: list[LedgerTransaction],
        expected_version: int | None = None,
    ) -> int:
        """Replace a user's ledger.

        Args:
            user_id: Ledger owner
            transactions: Complete ledger to store
            expected_version: Version returned by load_ledger; None skips the check

        Returns:
            The new ledger version

        Raises:
            LedgerConflictError: If the ledger was saved by someone else since loading
        """
        ledger = await self._get(user_id)
        current_version = ledger.version if ledger is not None else 0

        if expected_version is not None and expected_version != current_version:
            raise LedgerConflictError(user_id, expected_version, current_version)

        payload = [t.to_dict() for t in transactions if t.user_id == user_id]

        if ledger is None:
            ledger = UserLedger(user_id=user_id, transactions=payload)
            self.session.add(ledger)
        else:
            # Reassign so the JSON column is flagged dirty
            ledger.transactions = payload

        try:
            await self.session.flush()
        except StaleDataError as e:
            raise LedgerConflictError(user_id, current_version, current_version + 1) from e

        return ledger.version


class AccountStore:
    """Read access to linked accounts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_accounts(
        self, user_id: str, account_ids: list[str] | None = None
    ) -> list[LinkedAccount]:
        """List a user's linked accounts, optionally restricted to some ids."""
        query = select(LinkedAccountRecord).where(LinkedAccountRecord.user_id == user_id)
        if account_ids:
            query = query.where(LinkedAccountRecord.id.in_(account_ids))

        result = await self.session.execute(query.order_by(LinkedAccountRecord.display_name))
        return [
            LinkedAccount(
                id=r.id,
                user_id=r.user_id,
                external_account_id=r.external_account_id,
                display_name=r.display_name,
                credential_ref=r.credential_ref,
            )
            for r in result.scalars().all()
        ]
