"""Tests for ledger and account persistence."""

from datetime import date
from decimal import Decimal

import pytest
from conftest import make_transaction

from budget_recon.models.ledger import LinkedAccountRecord, UserLedger
from budget_recon.models.transaction import Location, TransactionStatus
from budget_recon.services.ledger_store import AccountStore, LedgerConflictError, SqlLedgerStore


class TestSqlLedgerStore:
    """Tests for SqlLedgerStore."""

    @pytest.mark.asyncio
    async def test_empty_ledger(self, async_session):
        snapshot = await SqlLedgerStore(async_session).load_ledger("user-1")

        assert snapshot.transactions == []
        assert snapshot.version == 0

    @pytest.mark.asyncio
    async def test_save_and_load(self, async_session):
        store = SqlLedgerStore(async_session)
        txn = make_transaction(
            "Coffee Shop",
            "-12.34",
            date(2026, 3, 2),
            external_id="txn-1",
            status=TransactionStatus.PENDING,
            pending=True,
            category=["FOOD_AND_DRINK"],
            user_category_id="cat-1",
            tags=["work"],
            location=Location(city="Austin", region="TX"),
        )

        version = await store.save_ledger("user-1", [txn], expected_version=0)
        snapshot = await store.load_ledger("user-1")

        assert version == 1
        assert snapshot.version == 1
        loaded = snapshot.transactions[0]
        assert loaded.id == txn.id
        assert loaded.amount == Decimal("-12.34")
        assert loaded.date == date(2026, 3, 2)
        assert loaded.status == TransactionStatus.PENDING
        assert loaded.category == ["FOOD_AND_DRINK"]
        assert loaded.user_category_id == "cat-1"
        assert loaded.tags == ["work"]
        assert loaded.location.city == "Austin"

    @pytest.mark.asyncio
    async def test_save_bumps_version(self, async_session):
        store = SqlLedgerStore(async_session)
        await store.save_ledger("user-1", [make_transaction()])

        snapshot = await store.load_ledger("user-1")
        snapshot.transactions.append(make_transaction("Bakery"))
        version = await store.save_ledger("user-1", snapshot.transactions, snapshot.version)

        assert version == 2
        assert len((await store.load_ledger("user-1")).transactions) == 2

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, async_session):
        store = SqlLedgerStore(async_session)
        await store.save_ledger("user-1", [make_transaction()])

        with pytest.raises(LedgerConflictError) as exc_info:
            await store.save_ledger("user-1", [make_transaction("Bakery")], expected_version=0)

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1

    @pytest.mark.asyncio
    async def test_rows_of_other_users_are_dropped(self, async_session):
        store = SqlLedgerStore(async_session)
        mine = make_transaction("Mine")
        theirs = make_transaction("Theirs", user_id="user-2")
        async_session.add(
            UserLedger(user_id="user-1", transactions=[mine.to_dict(), theirs.to_dict()])
        )
        await async_session.flush()

        snapshot = await store.load_ledger("user-1")
        assert [t.name for t in snapshot.transactions] == ["Mine"]

        await store.save_ledger("user-1", [mine, theirs], snapshot.version)
        ledger = await async_session.get(UserLedger, "user-1")
        assert [row["name"] for row in ledger.transactions] == ["Mine"]


class TestAccountStore:
    """Tests for AccountStore."""

    @pytest.fixture
    async def accounts(self, async_session):
        async_session.add_all(
            [
                LinkedAccountRecord(
                    id="acc-2",
                    user_id="user-1",
                    external_account_id="plaid-2",
                    display_name="Savings",
                    credential_ref="token-a",
                ),
                LinkedAccountRecord(
                    id="acc-1",
                    user_id="user-1",
                    external_account_id="plaid-1",
                    display_name="Checking",
                    credential_ref="token-a",
                ),
                LinkedAccountRecord(
                    id="acc-3",
                    user_id="user-2",
                    external_account_id="plaid-3",
                    display_name="Card",
                    credential_ref="token-b",
                ),
            ]
        )
        await async_session.flush()

    @pytest.mark.asyncio
    async def test_list_accounts(self, async_session, accounts):
        result = await AccountStore(async_session).list_accounts("user-1")

        assert [a.display_name for a in result] == ["Checking", "Savings"]
        assert result[0].external_account_id == "plaid-1"
        assert result[0].credential_ref == "token-a"

    @pytest.mark.asyncio
    async def test_list_selected_accounts(self, async_session, accounts):
        result = await AccountStore(async_session).list_accounts("user-1", ["acc-2", "acc-3"])

        assert [a.id for a in result] == ["acc-2"]
