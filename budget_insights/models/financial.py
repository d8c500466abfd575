"""
Ledger-side models: transactions, aggregates and query filters.
"""
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.validators import validate_currency_code
from .base import IdentifiedModel


class Transaction(IdentifiedModel):
    """
    Ledger transaction.

    Amounts are signed cents: negative is an expense, positive is income.
    A transaction with a transfer_account_id moves money between the
    household's own accounts.
    """

    household_id: str = Field(..., min_length=1)
    account_id: str = Field(..., min_length=1)
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    merchant: Optional[str] = Field(None, max_length=200)
    description: str = Field(default="", max_length=500)
    amount_cents: int
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    date: datetime
    transfer_account_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("amount_cents")
    @classmethod
    def validate_amount(cls, v):
        """Validate amount is non-zero."""
        if v == 0:
            raise ValueError("Amount cannot be zero")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v):
        """Validate currency code."""
        return validate_currency_code(v)

    @property
    def is_expense(self) -> bool:
        return self.amount_cents < 0

    @property
    def is_income(self) -> bool:
        return self.amount_cents > 0

    @property
    def is_transfer(self) -> bool:
        return self.transfer_account_id is not None

    @property
    def absolute_amount(self) -> int:
        return abs(self.amount_cents)


class TransactionAggregate(BaseModel):
    """Summed ledger rows for one (bucket, category, currency) tuple."""

    bucket: date
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    currency: str
    income_cents: int = 0
    expense_cents: int = Field(default=0, description="Absolute sum of expenses")
    transaction_count: int = 0
    average_cents: float = Field(default=0.0, description="Average absolute amount")


class DateRange(BaseModel):
    """Inclusive date range."""

    start_date: date
    end_date: date

    def contains(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date


class AmountRange(BaseModel):
    """Bounds on the absolute transaction amount, in cents."""

    min_cents: Optional[int] = Field(None, ge=0)
    max_cents: Optional[int] = Field(None, ge=0)

    def contains(self, amount_cents: int) -> bool:
        amount = abs(amount_cents)
        if self.min_cents is not None and amount < self.min_cents:
            return False
        if self.max_cents is not None and amount > self.max_cents:
            return False
        return True


class TransactionFilters(BaseModel):
    """Ledger query filters. Empty lists and None mean no restriction."""

    category_ids: List[str] = Field(default_factory=list)
    account_ids: List[str] = Field(default_factory=list)
    merchants: List[str] = Field(default_factory=list)
    currency: Optional[str] = None
    amount_range: Optional[AmountRange] = None
    tags: List[str] = Field(default_factory=list)
    include_transfers: bool = False

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v):
        """Validate currency code."""
        if v is None:
            return v
        return validate_currency_code(v)

    def matches(self, transaction: Transaction) -> bool:
        """Check whether a transaction passes every filter."""
        if transaction.is_transfer and not self.include_transfers:
            return False
        if self.category_ids and transaction.category_id not in self.category_ids:
            return False
        if self.account_ids and transaction.account_id not in self.account_ids:
            return False
        if self.merchants and transaction.merchant not in self.merchants:
            return False
        if self.currency and transaction.currency != self.currency:
            return False
        if self.amount_range and not self.amount_range.contains(transaction.amount_cents):
            return False
        if self.tags and not set(self.tags).intersection(transaction.tags):
            return False
        return True


class AnalyticsFilters(TransactionFilters):
    """Transaction filters bound to a date range."""

    date_range: DateRange

    def transaction_filters(self) -> TransactionFilters:
        """Return the filters without the date range."""
        return TransactionFilters(**self.model_dump(exclude={"date_range"}))
