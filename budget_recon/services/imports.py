"""Import preview - checks uploaded transactions against the stored ledger."""

import logging

from budget_recon.models.transaction import ImportCandidate, TransactionStatus
from budget_recon.services.ledger_store import LedgerStore
from budget_recon.services.matching import (
    DuplicateGrouping,
    FuzzyMatcher,
    MatchingOptions,
    MatchingResult,
)

logger = logging.getLogger(__name__)


class ImportReconciliationService:
    """Runs the fuzzy matcher over a user's current ledger.

    Read-only: the ledger is loaded but never saved, and Plaid is never called.
    """

    def __init__(self, ledger_store: LedgerStore, matcher: FuzzyMatcher | None = None):
        self.ledger_store = ledger_store
        self.matcher = matcher or FuzzyMatcher(MatchingOptions.from_settings())

    async def preview(
        self,
        user_id: str,
        candidates: list[ImportCandidate],
        options: MatchingOptions | None = None,
    ) -> tuple[MatchingResult, DuplicateGrouping]:
        """Match import candidates and split them into duplicates and new rows."""
        snapshot = await self.ledger_store.load_ledger(user_id)
        ledger = [t for t in snapshot.transactions if t.status != TransactionStatus.REMOVED]
        logger.info(
            f"Previewing {len(candidates)} import rows against {len(ledger)} ledger "
            f"transactions for user {user_id}"
        )

        result = self.matcher.find_matches(candidates, ledger, options)
        grouping = self.matcher.group_by_duplicates(result.matches, candidates)
        return result, grouping
