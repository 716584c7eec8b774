"""Projections of sync and matching results into API response shapes."""

from pydantic import BaseModel

from budget_recon.services.matching import DuplicateGrouping, MatchingResult, MatchType
from budget_recon.services.sync import SyncFailedError, SyncOutcome


class FailedGroupReport(BaseModel):
    account_names: list[str]
    reason: str
    needs_reconnect: bool
    legacy_credential: bool = False


class SyncReport(BaseModel):
    """Response for a sync run."""

    success: bool
    added: int = 0
    modified: int = 0
    removed: int = 0
    warning: str | None = None
    error: str | None = None
    needs_reconnect: list[str] = []
    incomplete_accounts: list[str] = []
    failed_groups: list[FailedGroupReport] = []


class MatchReport(BaseModel):
    import_date: str
    import_description: str
    import_amount: str
    transaction_id: str
    transaction_date: str
    transaction_description: str
    transaction_amount: str
    confidence: float
    match_type: str
    reason: str


class ImportRowReport(BaseModel):
    date: str
    description: str
    amount: str
    category: str | None = None
    merchant_name: str | None = None


class ImportSummary(BaseModel):
    total: int
    exact_matches: int
    high_confidence_matches: int
    potential_matches: int
    no_matches: int
    duplicates: int
    new_transactions: int


class ImportPreviewReport(BaseModel):
    """Response for an import preview."""

    summary: ImportSummary
    duplicates: list[MatchReport]
    potential_matches: list[MatchReport]
    new_transactions: list[ImportRowReport]


class ReconciliationReportBuilder:
    """Stateless conversion of service results into reports."""

    def sync_report(self, outcome: SyncOutcome) -> SyncReport:
        return SyncReport(
            success=True,
            added=outcome.added,
            modified=outcome.modified,
            removed=outcome.removed,
            warning=outcome.warning,
            needs_reconnect=outcome.needs_reconnect_accounts,
            incomplete_accounts=outcome.incomplete_accounts,
            failed_groups=[self._failed_group(g) for g in outcome.failed_groups],
        )

    def sync_failure_report(self, error: SyncFailedError) -> SyncReport:
        return SyncReport(
            success=False,
            error=str(error),
            needs_reconnect=[
                name for g in error.failed_groups if g.needs_reconnect for name in g.account_names
            ],
            failed_groups=[self._failed_group(g) for g in error.failed_groups],
        )

    def import_preview(
        self, result: MatchingResult, grouping: DuplicateGrouping
    ) -> ImportPreviewReport:
        potential = [m for m in result.matches if m.match_type == MatchType.POTENTIAL]
        return ImportPreviewReport(
            summary=ImportSummary(
                total=result.total_processed,
                exact_matches=result.exact_matches,
                high_confidence_matches=result.high_confidence_matches,
                potential_matches=result.potential_matches,
                no_matches=result.no_matches,
                duplicates=len(grouping.duplicates),
                new_transactions=len(grouping.new_transactions),
            ),
            duplicates=[self._match(m) for m in grouping.duplicates],
            potential_matches=[self._match(m) for m in potential],
            new_transactions=[
                ImportRowReport(
                    date=str(row["date"]),
                    description=row["description"],
                    amount=row["amount"],
                    category=row["category"],
                    merchant_name=row["merchant_name"],
                )
                for row in (c.to_dict() for c in grouping.new_transactions)
            ],
        )

    def _failed_group(self, group) -> FailedGroupReport:
        return FailedGroupReport(
            account_names=group.account_names,
            reason=group.reason,
            needs_reconnect=group.needs_reconnect,
            legacy_credential=group.legacy_credential,
        )

    def _match(self, match) -> MatchReport:
        data = match.to_dict()
        candidate = data["candidate"]
        return MatchReport(
            import_date=str(candidate["date"]),
            import_description=candidate["description"],
            import_amount=candidate["amount"],
            transaction_id=data["transaction_id"],
            transaction_date=data["transaction_date"],
            transaction_description=data["transaction_description"],
            transaction_amount=data["transaction_amount"],
            confidence=data["confidence"],
            match_type=data["match_type"],
            reason=data["reason"],
        )
