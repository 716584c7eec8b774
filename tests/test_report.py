"""Tests for import preview and report building."""

from datetime import date
from decimal import Decimal

import pytest
from conftest import FakeLedgerStore, make_transaction

from budget_recon.models.transaction import ImportCandidate, TransactionStatus
from budget_recon.services.imports import ImportReconciliationService
from budget_recon.services.matching import FuzzyMatcher, MatchingOptions
from budget_recon.services.report import ReconciliationReportBuilder
from budget_recon.services.sync import FailedGroup, SyncFailedError, SyncOutcome


@pytest.fixture
def ledger():
    return [
        make_transaction("Starbucks", "4.50", date(2025, 1, 16)),
        make_transaction("Amazon Marketplace Purchase Order", "25.00", date(2025, 1, 20)),
        make_transaction("Rent", "1500.00", date(2025, 1, 1), status=TransactionStatus.REMOVED),
    ]


@pytest.fixture
def candidates():
    return [
        ImportCandidate(date="2025-01-15", description="STARBUCKS #4521 ID:998877", amount=Decimal("-4.50")),
        ImportCandidate(date="01/21/2025", description="Amazon Prime Video Rental", amount=Decimal("-25.00")),
        ImportCandidate(date="2025-01-01", description="Rent", amount=Decimal("-1500.00")),
        ImportCandidate(date="2025-01-03", description="Farmers Market", amount=Decimal("-18.00"), category="Groceries"),
    ]


@pytest.fixture
def import_service(ledger):
    store = FakeLedgerStore(ledger)
    return ImportReconciliationService(store, FuzzyMatcher(MatchingOptions()))


class TestImportReconciliationService:
    """Tests for ImportReconciliationService."""

    @pytest.mark.asyncio
    async def test_preview(self, import_service, candidates):
        result, grouping = await import_service.preview("user-1", candidates)

        assert result.total_processed == 4
        assert result.exact_matches == 1
        assert result.potential_matches == 1
        assert result.no_matches == 2
        assert [m.candidate.description for m in grouping.duplicates] == ["STARBUCKS #4521 ID:998877"]
        # Removed ledger rows never hide an import
        assert [c.description for c in grouping.new_transactions] == [
            "Amazon Prime Video Rental",
            "Rent",
            "Farmers Market",
        ]

    @pytest.mark.asyncio
    async def test_preview_does_not_save(self, ledger, candidates):
        store = FakeLedgerStore(ledger)
        await ImportReconciliationService(store).preview("user-1", candidates)

        assert store.loads == 1
        assert store.saves == []

    @pytest.mark.asyncio
    async def test_preview_other_user(self, import_service, candidates):
        result, grouping = await import_service.preview("user-2", candidates)

        assert result.no_matches == 4
        assert len(grouping.new_transactions) == 4


class TestReconciliationReportBuilder:
    """Tests for ReconciliationReportBuilder."""

    @pytest.mark.asyncio
    async def test_import_preview_report(self, import_service, candidates):
        result, grouping = await import_service.preview("user-1", candidates)

        report = ReconciliationReportBuilder().import_preview(result, grouping)

        assert report.summary.total == 4
        assert report.summary.duplicates == 1
        assert report.summary.new_transactions == 3
        assert report.duplicates[0].import_description == "STARBUCKS #4521 ID:998877"
        assert report.duplicates[0].transaction_description == "Starbucks"
        assert report.duplicates[0].match_type == "exact"
        assert report.potential_matches[0].import_date == "01/21/2025"
        assert report.new_transactions[-1].category == "Groceries"
        assert report.new_transactions[-1].amount == "-18.00"

    def test_sync_report(self):
        outcome = SyncOutcome(
            added=2,
            modified=1,
            removed=0,
            warning="Some accounts need reconnection: Savings",
            failed_groups=[FailedGroup(["Savings"], "decrypt failed", needs_reconnect=True)],
            incomplete_accounts=["Brokerage"],
        )

        report = ReconciliationReportBuilder().sync_report(outcome)

        assert report.success is True
        assert report.added == 2
        assert report.modified == 1
        assert report.needs_reconnect == ["Savings"]
        assert report.failed_groups[0].reason == "decrypt failed"
        assert report.incomplete_accounts == ["Brokerage"]

    def test_sync_failure_report(self):
        error = SyncFailedError(
            "Failed to sync transactions for all accounts.",
            [
                FailedGroup(["Checking"], "API error: 500", needs_reconnect=False),
                FailedGroup(["Old Bank"], "legacy", needs_reconnect=True, legacy_credential=True),
            ],
        )

        report = ReconciliationReportBuilder().sync_failure_report(error)

        assert report.success is False
        assert report.error == "Failed to sync transactions for all accounts."
        assert report.needs_reconnect == ["Old Bank"]
        assert report.failed_groups[1].legacy_credential is True
