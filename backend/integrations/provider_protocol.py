"""Provider protocol definitions for the account-aggregation gateway.

Normalized shapes returned by the gateway so the reconciliation services
never touch SDK model objects directly.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol


@dataclass
class TokenExchangeResult:
    """Long-lived credentials obtained from a Link public token."""

    access_token: str
    item_id: str  # Provider's external item id


@dataclass
class ProviderItem:
    """Item metadata as reported by the provider."""

    item_id: str
    institution_id: str | None = None
    institution_name: str | None = None
    consent_expiration_time: datetime | None = None
    error_code: str | None = None


@dataclass
class ProviderAccount:
    """Normalized account data from the provider."""

    account_id: str  # Provider's external ID for the account
    name: str
    official_name: str | None = None
    type: str | None = None  # e.g., "depository", "credit"
    subtype: str | None = None  # e.g., "checking", "credit card"
    mask: str | None = None
    current_balance: Decimal | None = None
    available_balance: Decimal | None = None
    limit: Decimal | None = None
    iso_currency_code: str | None = None


@dataclass
class ProviderTransaction:
    """Normalized transaction from the cursor sync endpoint."""

    transaction_id: str
    account_id: str
    date: date
    amount: Decimal
    name: str = ""
    merchant_name: str | None = None
    authorized_date: date | None = None
    iso_currency_code: str | None = None
    payment_channel: str | None = None
    transaction_code: str | None = None
    pending: bool = False
    pending_transaction_id: str | None = None
    primary_category: str | None = None
    detailed_category: str | None = None


@dataclass
class TransactionSyncPage:
    """One page of ``/transactions/sync`` output."""

    next_cursor: str
    has_more: bool
    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)  # transaction ids


@dataclass
class LinkTokenResult:
    """Link token issued for a new or update-mode session."""

    link_token: str
    expiration: datetime | None = None
    hosted_link_url: str | None = None


class AggregationProvider(Protocol):
    """Remote calls the reconciliation core makes against the provider.

    Implementations raise :class:`~integrations.exceptions.ProviderError`
    subclasses for every failure, including timeouts.
    """

    def exchange_public_token(self, public_token: str) -> TokenExchangeResult:
        ...

    def get_item(self, access_token: str) -> ProviderItem:
        ...

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        ...

    def sync_transactions(self, access_token: str, cursor: str | None = None) -> TransactionSyncPage:
        ...

    def remove_item(self, access_token: str) -> None:
        ...

    def create_link_token(
        self,
        client_user_id: str,
        access_token: str | None = None,
        account_selection_enabled: bool = False,
    ) -> LinkTokenResult:
        ...

    def refresh_transactions(self, access_token: str) -> None:
        ...
