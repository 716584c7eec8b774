"""Ledger and import records used by the reconciliation services."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import uuid4


class TransactionStatus(str, Enum):
    """Lifecycle status of a ledger transaction."""

    POSTED = "posted"
    PENDING = "pending"
    REMOVED = "removed"


class InvalidImportRowError(ValueError):
    """An import row could not be turned into an ImportCandidate."""

    def __init__(self, message: str, row_number: int | None = None):
        super().__init__(message)
        self.row_number = row_number


@dataclass
class Location:
    """Where a transaction took place, as reported by the aggregator."""

    address: str | None = None
    city: str | None = None
    region: str | None = None
    postal_code: str | None = None
    country: str | None = None
    lat: float | None = None
    lon: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "city": self.city,
            "region": self.region,
            "postal_code": self.postal_code,
            "country": self.country,
            "lat": self.lat,
            "lon": self.lon,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Location | None":
        if not data:
            return None
        return cls(
            address=data.get("address"),
            city=data.get("city"),
            region=data.get("region"),
            postal_code=data.get("postal_code"),
            country=data.get("country"),
            lat=data.get("lat"),
            lon=data.get("lon"),
        )


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class LedgerTransaction:
    """A transaction stored in a user's ledger.

    Amounts follow the aggregator convention: positive is money leaving the
    account, negative is money coming in.
    """

    user_id: str
    account_id: str
    amount: Decimal
    date: date
    name: str
    id: str = field(default_factory=lambda: str(uuid4()))
    external_id: str | None = None
    external_account_id: str | None = None
    currency_code: str | None = None
    status: TransactionStatus = TransactionStatus.POSTED
    pending: bool = False
    user_description: str | None = None
    merchant_name: str | None = None
    notes: str | None = None
    tags: list[str] = field(default_factory=list)
    category: list[str] | None = None
    category_id: str | None = None
    user_category_id: str | None = None
    is_hidden: bool = False
    is_split: bool = False
    parent_transaction_id: str | None = None
    split_transaction_ids: list[str] = field(default_factory=list)
    location: Location | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def effective_category_id(self) -> str | None:
        """Category used for budgeting; a user choice always wins."""
        return self.user_category_id or self.category_id

    @property
    def display_description(self) -> str:
        return self.user_description or self.name

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "account_id": self.account_id,
            "external_id": self.external_id,
            "external_account_id": self.external_account_id,
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "name": self.name,
            "currency_code": self.currency_code,
            "status": self.status.value,
            "pending": self.pending,
            "user_description": self.user_description,
            "merchant_name": self.merchant_name,
            "notes": self.notes,
            "tags": list(self.tags),
            "category": list(self.category) if self.category is not None else None,
            "category_id": self.category_id,
            "user_category_id": self.user_category_id,
            "is_hidden": self.is_hidden,
            "is_split": self.is_split,
            "parent_transaction_id": self.parent_transaction_id,
            "split_transaction_ids": list(self.split_transaction_ids),
            "location": self.location.to_dict() if self.location else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerTransaction":
        """Parse a stored ledger row."""
        created_at = data.get("created_at")
        updated_at = data.get("updated_at")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            account_id=data["account_id"],
            external_id=data.get("external_id"),
            external_account_id=data.get("external_account_id"),
            amount=Decimal(str(data["amount"])),
            date=date.fromisoformat(data["date"]),
            name=data.get("name") or "",
            currency_code=data.get("currency_code"),
            status=TransactionStatus(data.get("status", TransactionStatus.POSTED.value)),
            pending=bool(data.get("pending", False)),
            user_description=data.get("user_description"),
            merchant_name=data.get("merchant_name"),
            notes=data.get("notes"),
            tags=list(data.get("tags") or []),
            category=data.get("category"),
            category_id=data.get("category_id"),
            user_category_id=data.get("user_category_id"),
            is_hidden=bool(data.get("is_hidden", False)),
            is_split=bool(data.get("is_split", False)),
            parent_transaction_id=data.get("parent_transaction_id"),
            split_transaction_ids=list(data.get("split_transaction_ids") or []),
            location=Location.from_dict(data.get("location")),
            created_at=datetime.fromisoformat(created_at) if created_at else _utcnow(),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else _utcnow(),
        )


@dataclass
class LinkedAccount:
    """A bank account linked through the aggregator."""

    id: str
    user_id: str
    external_account_id: str
    display_name: str
    credential_ref: str  # encrypted access token, shared by accounts at one institution


def parse_amount(value: Any) -> Decimal:
    """Parse an amount from a spreadsheet cell.

    Handles currency symbols, thousands separators and accounting-style
    parentheses for negatives.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int | float):
        return Decimal(str(value))

    text = str(value or "").strip().replace("$", "").replace(",", "")
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    try:
        amount = Decimal(text)
    except InvalidOperation as e:
        raise InvalidImportRowError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise InvalidImportRowError(f"Invalid amount: {value!r}")
    return -amount if negative else amount


@dataclass
class ImportCandidate:
    """A transaction parsed from a user-supplied export.

    The date is kept as it appeared in the source; the matcher normalizes it.
    """

    date: str | date
    description: str
    amount: Decimal
    category: str | None = None
    merchant_name: str | None = None
    account_name: str | None = None
    notes: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any], row_number: int | None = None) -> "ImportCandidate":
        """Validate a parsed import row."""
        description = str(row.get("description") or "").strip()
        if not description:
            raise InvalidImportRowError("Description is required", row_number)

        raw_date = row.get("date")
        if not raw_date:
            raise InvalidImportRowError("Date is required", row_number)

        try:
            amount = parse_amount(row.get("amount"))
        except InvalidImportRowError as e:
            e.row_number = row_number
            raise

        return cls(
            date=raw_date if isinstance(raw_date, date) else str(raw_date).strip(),
            description=description,
            amount=amount,
            category=row.get("category") or None,
            merchant_name=row.get("merchant_name") or None,
            account_name=row.get("account_name") or None,
            notes=row.get("notes") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat() if isinstance(self.date, date) else self.date,
            "description": self.description,
            "amount": str(self.amount),
            "category": self.category,
            "merchant_name": self.merchant_name,
            "account_name": self.account_name,
            "notes": self.notes,
        }
