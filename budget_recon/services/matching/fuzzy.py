"""Fuzzy matching of imported transactions against the ledger."""

import logging
import re
from datetime import date, datetime

from budget_recon.models.transaction import ImportCandidate, LedgerTransaction, TransactionStatus

from .confidence import (
    DuplicateGrouping,
    MatchingOptions,
    MatchingResult,
    MatchResult,
    MatchType,
    classify_similarity,
)

logger = logging.getLogger(__name__)

# Bank export noise: originator ids, descriptors, masked account numbers
NOISE_PATTERNS = [
    re.compile(r"\s+co id:\w+"),
    re.compile(r"\s+id:\w+"),
    re.compile(r"\s+des:\w+"),
    re.compile(r"\s+indn:\w+"),
    re.compile(r"x{2,}"),
]

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")

WORD_OVERLAP_CEILING = 0.79


def normalize_date(value: str | date | None) -> date | None:
    """Parse an import date. Supports M/D/YYYY and YYYY-MM-DD.

    Returns None for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = value.strip()
    try:
        if "/" in text:
            return datetime.strptime(text, "%m/%d/%Y").date()
        if ISO_DATE.match(text):
            return date.fromisoformat(text[:10])
    except ValueError:
        return None
    return None


def clean_description(description: str) -> str:
    """Lowercase and strip noise tokens for comparison."""
    cleaned = description.lower().strip()
    for pattern in NOISE_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def description_similarity(first: str, second: str) -> float:
    """Similarity of two descriptions in [0, 1].

    1.0 for equal cleaned text, 0.8 when one contains the other,
    otherwise Jaccard overlap of words longer than two characters.
    A description that is all noise cleans to "", which any other contains.
    """
    if not first or not second:
        return 0.0

    clean1 = clean_description(first)
    clean2 = clean_description(second)

    if clean1 == clean2:
        return 1.0

    if clean1 in clean2 or clean2 in clean1:
        return 0.8

    words1 = {w for w in clean1.split() if len(w) > 2}
    words2 = {w for w in clean2.split() if len(w) > 2}

    if not words1 and not words2:
        return 1.0
    if not words1 or not words2:
        return 0.0

    # Word overlap must rank below containment, even for reordered words
    return min(len(words1 & words2) / len(words1 | words2), WORD_OVERLAP_CEILING)


class FuzzyMatcher:
    """Finds ledger transactions that an imported row probably duplicates.

    A pair is eligible when:
    - absolute amounts differ by no more than amount_tolerance
    - dates are at most date_window_days apart
    and is then scored on description similarity.
    """

    def __init__(self, options: MatchingOptions | None = None):
        self.options = options or MatchingOptions()

    def find_matches(
        self,
        candidates: list[ImportCandidate],
        ledger: list[LedgerTransaction],
        options: MatchingOptions | None = None,
    ) -> MatchingResult:
        """Find the best ledger match for each import candidate.

        Args:
            candidates: Parsed import rows
            ledger: The user's ledger; removed rows are ignored
            options: Overrides for this call

        Returns:
            MatchingResult with one MatchResult per matched candidate
        """
        opts = options or self.options
        active = [t for t in ledger if t.status != TransactionStatus.REMOVED]
        result = MatchingResult(total_processed=len(candidates))

        for candidate in candidates:
            matches = self._match_candidate(candidate, active, opts)
            if not matches:
                result.count(MatchType.NONE)
                continue

            best = matches[0]
            result.matches.append(best)
            result.count(best.match_type)

        logger.info(
            f"Matched {result.total_processed} import rows: {result.exact_matches} exact, "
            f"{result.high_confidence_matches} high, {result.potential_matches} potential, "
            f"{result.no_matches} new"
        )
        return result

    def _match_candidate(
        self,
        candidate: ImportCandidate,
        ledger: list[LedgerTransaction],
        options: MatchingOptions,
    ) -> list[MatchResult]:
        """All eligible pairs for one candidate, best first."""
        import_date = normalize_date(candidate.date)
        if import_date is None:
            logger.debug(f"Unparseable import date {candidate.date!r}; no match possible")
            return []

        matches = []
        for existing in ledger:
            if not self._amount_matches(candidate, existing, options):
                continue
            if abs((import_date - existing.date).days) > options.date_window_days:
                continue

            similarity = description_similarity(
                candidate.description, existing.name or existing.user_description or ""
            )
            match_type = classify_similarity(similarity, options.description_similarity_threshold)
            if match_type == MatchType.NONE:
                continue

            matches.append(
                MatchResult(
                    candidate=candidate,
                    transaction=existing,
                    confidence=similarity,
                    reason=(
                        f"Amount: {abs(candidate.amount)}, "
                        f"Date: {import_date.isoformat()} vs {existing.date.isoformat()}, "
                        f"Description similarity: {similarity:.2f}"
                    ),
                    match_type=match_type,
                )
            )

        # Stable sort keeps ledger order among equal scores
        matches.sort(key=lambda m: m.confidence, reverse=True)
        return matches

    def _amount_matches(
        self,
        candidate: ImportCandidate,
        existing: LedgerTransaction,
        options: MatchingOptions,
    ) -> bool:
        # Sign conventions differ between exports and the ledger
        return abs(abs(candidate.amount) - abs(existing.amount)) <= options.amount_tolerance

    def group_by_duplicates(
        self,
        matches: list[MatchResult],
        candidates: list[ImportCandidate],
    ) -> DuplicateGrouping:
        """Split candidates into likely duplicates and transactions to import.

        Only exact and high matches count as duplicates; potential matches are
        imported so that a real transaction is never silently dropped.
        """
        duplicates = [m for m in matches if m.match_type.is_duplicate]
        duplicate_ids = {id(m.candidate) for m in duplicates}

        return DuplicateGrouping(
            duplicates=duplicates,
            new_transactions=[c for c in candidates if id(c) not in duplicate_ids],
        )
