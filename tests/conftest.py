"""Pytest configuration and fixtures."""

from datetime import date
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from budget_recon.main import app
from budget_recon.models.ledger import Base
from budget_recon.models.transaction import LedgerTransaction, LinkedAccount
from budget_recon.services.credentials import CredentialError, LegacyCredentialError
from budget_recon.services.ledger_store import LedgerSnapshot
from budget_recon.services.plaid import AggregatorTransaction, PlaidAPIError, TransactionFetch


@pytest.fixture
async def client():
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def async_db_engine():
    """Create async SQLite database for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_db_engine):
    """Create async database session for testing."""
    async_session_maker = async_sessionmaker(
        async_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        yield session


class FakeLedgerStore:
    """In-memory ledger store that records every save."""

    def __init__(self, transactions: list[LedgerTransaction] | None = None, version: int = 0):
        self.transactions = list(transactions or [])
        self.version = version
        self.loads = 0
        self.saves: list[list[LedgerTransaction]] = []

    async def load_ledger(self, user_id: str) -> LedgerSnapshot:
        self.loads += 1
        return LedgerSnapshot(
            transactions=[t for t in self.transactions if t.user_id == user_id],
            version=self.version,
        )

    async def save_ledger(self, user_id, transactions, expected_version=None) -> int:
        self.saves.append(list(transactions))
        self.transactions = list(transactions)
        self.version += 1
        return self.version


class FakeCredentialStore:
    """Credential refs are the plain token; a few refs simulate broken credentials."""

    def decrypt(self, token: str) -> str:
        if token.startswith("access-"):
            raise LegacyCredentialError("Invalid access token format. Please reconnect your bank account.")
        if token.startswith("broken"):
            raise CredentialError("Failed to decrypt access token. Please reconnect your bank account.")
        return f"decrypted-{token}"


class FakePlaidClient:
    """Returns canned transactions per decrypted access token."""

    def __init__(self):
        self.responses: dict[str, list[AggregatorTransaction]] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []

    def set_transactions(self, credential_ref: str, transactions: list[AggregatorTransaction]) -> None:
        self.responses[f"decrypted-{credential_ref}"] = transactions

    def set_error(self, credential_ref: str, error: Exception) -> None:
        self.errors[f"decrypted-{credential_ref}"] = error

    async def get_transactions(self, access_token, start_date, end_date, include_pending=True):
        self.calls.append(access_token)
        if access_token in self.errors:
            raise self.errors[access_token]
        transactions = self.responses.get(access_token, [])
        return TransactionFetch(transactions=list(transactions), total_transactions=len(transactions))


def make_account(
    account_id: str = "acc-1",
    user_id: str = "user-1",
    external_account_id: str | None = None,
    display_name: str = "Checking",
    credential_ref: str = "token-a",
) -> LinkedAccount:
    return LinkedAccount(
        id=account_id,
        user_id=user_id,
        external_account_id=external_account_id or f"plaid-{account_id}",
        display_name=display_name,
        credential_ref=credential_ref,
    )


def make_record(
    transaction_id: str,
    account_id: str = "plaid-acc-1",
    amount: str = "12.50",
    txn_date: date = date(2026, 3, 2),
    name: str = "Coffee Shop",
    pending: bool = False,
    **kwargs,
) -> AggregatorTransaction:
    return AggregatorTransaction(
        transaction_id=transaction_id,
        account_id=account_id,
        amount=Decimal(amount),
        date=txn_date,
        name=name,
        pending=pending,
        **kwargs,
    )


def make_transaction(
    name: str = "Coffee Shop",
    amount: str = "12.50",
    txn_date: date = date(2026, 3, 2),
    user_id: str = "user-1",
    account_id: str = "acc-1",
    **kwargs,
) -> LedgerTransaction:
    return LedgerTransaction(
        user_id=user_id,
        account_id=account_id,
        amount=Decimal(amount),
        date=txn_date,
        name=name,
        **kwargs,
    )


@pytest.fixture
def ledger_store():
    return FakeLedgerStore()


@pytest.fixture
def credential_store():
    return FakeCredentialStore()


@pytest.fixture
def plaid_client():
    return FakePlaidClient()


@pytest.fixture
def reauth_error():
    return PlaidAPIError(
        "API error: 400 - the login details of this item have changed",
        status_code=400,
        error_code="ITEM_LOGIN_REQUIRED",
    )
