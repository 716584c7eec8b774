"""Match results and confidence classification for imported transactions."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from budget_recon.config import settings
from budget_recon.models.transaction import ImportCandidate, LedgerTransaction

# Similarity at or above this is treated as the same description
EXACT_THRESHOLD = 0.8


class MatchType(str, Enum):
    """Confidence buckets for an import/ledger pairing."""

    EXACT = "exact"
    HIGH = "high"
    POTENTIAL = "potential"
    NONE = "none"

    @property
    def is_duplicate(self) -> bool:
        """Whether the import can be skipped as already in the ledger."""
        return self in (MatchType.EXACT, MatchType.HIGH)


@dataclass
class MatchingOptions:
    """Tunables for the fuzzy matcher."""

    date_window_days: int = 3
    amount_tolerance: Decimal = Decimal("0.01")
    description_similarity_threshold: float = 0.4

    @classmethod
    def from_settings(cls) -> "MatchingOptions":
        return cls(
            date_window_days=settings.match_date_window_days,
            amount_tolerance=settings.match_amount_tolerance,
            description_similarity_threshold=settings.match_similarity_threshold,
        )


def classify_similarity(similarity: float, high_threshold: float = 0.4) -> MatchType:
    """Map a description similarity to a confidence bucket."""
    if similarity >= EXACT_THRESHOLD:
        return MatchType.EXACT
    if similarity >= high_threshold:
        return MatchType.HIGH
    if similarity > 0:
        return MatchType.POTENTIAL
    return MatchType.NONE


@dataclass
class MatchResult:
    """Best ledger transaction found for one import candidate."""

    candidate: ImportCandidate
    transaction: LedgerTransaction
    confidence: float
    reason: str
    match_type: MatchType

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "candidate": self.candidate.to_dict(),
            "transaction_id": self.transaction.id,
            "transaction_date": self.transaction.date.isoformat(),
            "transaction_description": self.transaction.display_description,
            "transaction_amount": str(self.transaction.amount),
            "confidence": round(self.confidence, 4),
            "reason": self.reason,
            "match_type": self.match_type.value,
        }


@dataclass
class MatchingResult:
    """Matches for a batch of import candidates, with bucket counts."""

    matches: list[MatchResult] = field(default_factory=list)
    total_processed: int = 0
    exact_matches: int = 0
    high_confidence_matches: int = 0
    potential_matches: int = 0
    no_matches: int = 0

    def count(self, match_type: MatchType) -> None:
        if match_type == MatchType.EXACT:
            self.exact_matches += 1
        elif match_type == MatchType.HIGH:
            self.high_confidence_matches += 1
        elif match_type == MatchType.POTENTIAL:
            self.potential_matches += 1
        else:
            self.no_matches += 1


@dataclass
class DuplicateGrouping:
    """Import candidates split into likely duplicates and new transactions."""

    duplicates: list[MatchResult] = field(default_factory=list)
    new_transactions: list[ImportCandidate] = field(default_factory=list)
