"""Plaid API client for fetching account transactions."""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

import httpx

from budget_recon.config import settings
from budget_recon.models.transaction import Location

logger = logging.getLogger(__name__)

# Plaid error codes that can only be fixed by the user relinking the item
REAUTH_ERROR_CODES = frozenset(
    {
        "ITEM_LOGIN_REQUIRED",
        "INVALID_ACCESS_TOKEN",
        "INVALID_CREDENTIALS",
        "INVALID_MFA",
        "ITEM_LOCKED",
        "USER_SETUP_REQUIRED",
        "PENDING_EXPIRATION",
        "ACCESS_NOT_GRANTED",
    }
)


@dataclass
class AggregatorTransaction:
    """Transaction record from Plaid /transactions/get."""

    transaction_id: str
    account_id: str
    amount: Decimal  # positive = money out
    date: date
    name: str
    pending: bool = False
    merchant_name: str | None = None
    category: list[str] | None = None
    category_id: str | None = None
    currency_code: str | None = None
    location: Location | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "AggregatorTransaction":
        """Parse transaction from Plaid API response."""
        # Prefer personal_finance_category, fall back to the legacy category list
        category = data.get("category") or None
        pfc = data.get("personal_finance_category") or {}
        if pfc.get("primary"):
            category = [pfc["primary"]]
            if pfc.get("detailed"):
                category.append(pfc["detailed"])

        location = None
        loc = data.get("location")
        if loc and any(loc.get(k) for k in ("address", "city", "region", "postal_code", "country")):
            location = Location(
                address=loc.get("address"),
                city=loc.get("city"),
                region=loc.get("region"),
                postal_code=loc.get("postal_code"),
                country=loc.get("country"),
                lat=loc.get("lat"),
                lon=loc.get("lon"),
            )

        return cls(
            transaction_id=data["transaction_id"],
            account_id=data["account_id"],
            amount=Decimal(str(data["amount"])),
            date=date.fromisoformat(data["date"]),
            name=data.get("name") or "",
            pending=bool(data.get("pending", False)),
            merchant_name=data.get("merchant_name") or None,
            category=category,
            category_id=data.get("category_id") or None,
            currency_code=data.get("iso_currency_code") or data.get("unofficial_currency_code"),
            location=location,
        )


@dataclass
class TransactionFetch:
    """All transactions for one access token over a date window."""

    transactions: list[AggregatorTransaction] = field(default_factory=list)
    total_transactions: int = 0
    item_id: str | None = None
    truncated: bool = False


class PlaidClientError(Exception):
    """Base exception for Plaid client errors."""

    pass


class PlaidAPIError(PlaidClientError):
    """API request failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code

    @property
    def requires_reauth(self) -> bool:
        """Whether the user must reconnect the institution to recover."""
        return self.error_code in REAUTH_ERROR_CODES


class PlaidClient:
    """Async client for the Plaid transactions API."""

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        base_url: str | None = None,
        page_size: int | None = None,
        max_records: int | None = None,
    ):
        self.client_id = client_id or settings.plaid_client_id
        self.secret = secret or settings.plaid_secret
        self.base_url = base_url or settings.plaid_base_url
        self.page_size = page_size or settings.plaid_page_size
        self.max_records = max_records or settings.plaid_max_records
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "PlaidClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "PLAID-CLIENT-ID": self.client_id,
                "PLAID-SECRET": self.secret,
                "Content-Type": "application/json",
            },
            timeout=settings.plaid_timeout_seconds,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, path: str, json: dict[str, Any]) -> dict[str, Any]:
        """POST to the Plaid API.

        Raises:
            PlaidAPIError: If the request fails
        """
        if self._client is None:
            raise PlaidClientError("Client not initialized. Use async with context manager.")

        try:
            response = await self._client.post(path, json=json)
        except httpx.HTTPError as e:
            raise PlaidAPIError(f"Request to {path} failed: {e}") from e

        if response.status_code >= 400:
            error_code = None
            message = response.text
            try:
                body = response.json()
                error_code = body.get("error_code")
                message = body.get("error_message") or message
            except ValueError:
                pass
            raise PlaidAPIError(
                f"API error: {response.status_code} - {message}",
                status_code=response.status_code,
                error_code=error_code,
            )

        return response.json()

    async def get_transactions(
        self,
        access_token: str,
        start_date: date,
        end_date: date,
        include_pending: bool = True,
    ) -> TransactionFetch:
        """Get every transaction in a date window, following pagination.

        Pagination stops once the reported total is reached, on an empty page,
        or when max_records have been requested.

        Args:
            access_token: Decrypted Plaid access token
            start_date: First day of the window
            end_date: Last day of the window
            include_pending: Keep transactions Plaid still reports as pending

        Returns:
            TransactionFetch with the records and Plaid's total count
        """
        result = TransactionFetch()
        offset = 0

        while True:
            data = await self._request(
                "/transactions/get",
                {
                    "access_token": access_token,
                    "start_date": start_date.isoformat(),
                    "end_date": end_date.isoformat(),
                    "options": {
                        "include_personal_finance_category": True,
                        "offset": offset,
                        "count": self.page_size,
                    },
                },
            )

            page = data.get("transactions", [])
            for tx in page:
                try:
                    result.transactions.append(AggregatorTransaction.from_api_response(tx))
                except (KeyError, ValueError, ArithmeticError) as e:
                    logger.warning(f"Failed to parse transaction: {e}")

            result.total_transactions = data.get("total_transactions", 0)
            result.item_id = (data.get("item") or {}).get("item_id")

            fetched = offset + len(page)
            logger.debug(
                f"Fetched {len(page)} transactions ({fetched}/{result.total_transactions} total)"
            )

            if not page or fetched >= result.total_transactions:
                break

            offset += self.page_size
            if offset >= self.max_records:
                logger.warning(
                    f"Stopping pagination at {offset} transactions "
                    f"(total reported: {result.total_transactions})"
                )
                result.truncated = True
                break

        if not include_pending:
            result.transactions = [t for t in result.transactions if not t.pending]

        return result
