"""Mock implementations for external services."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
)
from integrations.provider_protocol import (
    LinkTokenResult,
    ProviderAccount,
    ProviderItem,
    ProviderTransaction,
    TokenExchangeResult,
    TransactionSyncPage,
)
from services.transaction_sync_service import MUTATION_DURING_PAGINATION


@dataclass
class MockLinkedItem:
    """What the mock provider returns for one public token."""

    access_token: str
    item_id: str
    institution_id: str | None = "ins_1"
    institution_name: str | None = "First Platypus Bank"
    accounts: list[ProviderAccount] = field(default_factory=list)


class MockPlaidClient:
    """Mock Plaid gateway for testing.

    Implements the AggregationProvider protocol. Public tokens map to
    scripted items; tokens listed in ``failing_tokens`` raise on exchange.
    Sync pages are served per access token in order, and an entry that is
    an exception instance is raised instead of returned.
    """

    def __init__(
        self,
        items: dict[str, MockLinkedItem] | None = None,
        should_fail: bool = False,
        failure_type: str = "api",
        failing_tokens: set[str] | None = None,
        sync_pages: dict[str, list] | None = None,
        remove_should_fail: bool = False,
        link_token: str = "link-sandbox-test-token",
    ):
        self._items = dict(items or {})
        self._should_fail = should_fail
        self._failure_type = failure_type
        self._failing_tokens = set(failing_tokens or ())
        self._sync_pages = {token: list(pages) for token, pages in (sync_pages or {}).items()}
        self._remove_should_fail = remove_should_fail
        self._link_token = link_token
        self.removed_items: list[str] = []
        self.sync_calls: list[tuple[str, str | None]] = []
        self.link_token_requests: list[dict] = []

    @property
    def provider_name(self) -> str:
        return "Plaid"

    def is_configured(self) -> bool:
        """Mock is always configured unless set to fail."""
        return not self._should_fail

    def add_item(self, public_token: str, item: MockLinkedItem) -> None:
        self._items[public_token] = item

    def queue_sync_pages(self, access_token: str, pages: list) -> None:
        self._sync_pages.setdefault(access_token, []).extend(pages)

    def _raise_failure(self) -> None:
        """Raise the appropriate exception based on failure_type."""
        if self._failure_type == "auth":
            raise ProviderAuthError("Mock Plaid error", provider_name="Plaid")
        elif self._failure_type == "connection":
            raise ProviderConnectionError("Mock Plaid error", provider_name="Plaid")
        else:
            raise ProviderAPIError(
                "Mock Plaid error",
                provider_name="Plaid",
                status_code=400,
                error_code="INVALID_PUBLIC_TOKEN",
                error_type="INVALID_INPUT",
            )

    def _item_for_access_token(self, access_token: str) -> MockLinkedItem:
        for item in self._items.values():
            if item.access_token == access_token:
                return item
        raise ProviderAPIError(
            "the provided access token is not valid",
            provider_name="Plaid",
            status_code=400,
            error_code="INVALID_ACCESS_TOKEN",
            error_type="INVALID_INPUT",
        )

    def create_link_token(
        self,
        client_user_id: str,
        access_token: str | None = None,
        account_selection_enabled: bool = False,
    ) -> LinkTokenResult:
        if self._should_fail:
            self._raise_failure()
        self.link_token_requests.append(
            {
                "client_user_id": client_user_id,
                "access_token": access_token,
                "account_selection_enabled": account_selection_enabled,
            }
        )
        return LinkTokenResult(
            link_token=self._link_token,
            hosted_link_url=f"https://hosted.plaid.com/link/{self._link_token}",
        )

    def exchange_public_token(self, public_token: str) -> TokenExchangeResult:
        if self._should_fail or public_token in self._failing_tokens:
            self._raise_failure()
        item = self._items.get(public_token)
        if item is None:
            raise ProviderAPIError(
                "provided public token is expired",
                provider_name="Plaid",
                status_code=400,
                error_code="INVALID_PUBLIC_TOKEN",
            )
        return TokenExchangeResult(access_token=item.access_token, item_id=item.item_id)

    def get_item(self, access_token: str) -> ProviderItem:
        if self._should_fail:
            self._raise_failure()
        item = self._item_for_access_token(access_token)
        return ProviderItem(
            item_id=item.item_id,
            institution_id=item.institution_id,
            institution_name=item.institution_name,
        )

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        if self._should_fail:
            self._raise_failure()
        return list(self._item_for_access_token(access_token).accounts)

    def sync_transactions(self, access_token: str, cursor: str | None = None) -> TransactionSyncPage:
        if self._should_fail:
            self._raise_failure()
        self.sync_calls.append((access_token, cursor))
        pages = self._sync_pages.get(access_token)
        if not pages:
            return TransactionSyncPage(next_cursor=cursor or "cursor-empty", has_more=False)
        page = pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page

    def remove_item(self, access_token: str) -> None:
        if self._should_fail or self._remove_should_fail:
            self._raise_failure()
        self.removed_items.append(access_token)

    def refresh_transactions(self, access_token: str) -> None:
        if self._should_fail:
            self._raise_failure()


def mutation_error() -> ProviderAPIError:
    """The error Plaid returns when data changes mid-pagination."""
    return ProviderAPIError(
        "Underlying transaction data changed since last page was fetched",
        provider_name="Plaid",
        status_code=400,
        error_code=MUTATION_DURING_PAGINATION,
        error_type="TRANSACTIONS_ERROR",
    )


def make_provider_account(account_id: str, name: str = "Plaid Checking", **kwargs) -> ProviderAccount:
    values = {
        "official_name": f"{name} Account",
        "type": "depository",
        "subtype": "checking",
        "mask": account_id[-4:],
        "current_balance": Decimal("110.00"),
        "available_balance": Decimal("100.00"),
        "iso_currency_code": "USD",
    }
    values.update(kwargs)
    return ProviderAccount(account_id=account_id, name=name, **values)


def make_provider_transaction(
    transaction_id: str,
    account_id: str,
    amount: str = "12.50",
    **kwargs,
) -> ProviderTransaction:
    values = {
        "date": date(2024, 3, 1),
        "name": "Coffee Shop",
        "merchant_name": "Coffee Shop",
        "iso_currency_code": "USD",
        "payment_channel": "in store",
        "primary_category": "FOOD_AND_DRINK",
        "detailed_category": "FOOD_AND_DRINK_COFFEE",
    }
    values.update(kwargs)
    return ProviderTransaction(
        transaction_id=transaction_id,
        account_id=account_id,
        amount=Decimal(amount),
        **values,
    )


# Sample Plaid test data
SAMPLE_PLAID_ACCOUNTS = [
    make_provider_account("plaid_acc_0001", "Plaid Checking"),
    make_provider_account(
        "plaid_acc_0002",
        "Plaid Credit Card",
        type="credit",
        subtype="credit card",
        current_balance=Decimal("410.00"),
        available_balance=None,
        limit=Decimal("2000.00"),
    ),
]



def make_linked_item(
    suffix: str = "new",
    institution_id: str | None = "ins_1",
    accounts: list[ProviderAccount] | None = None,
) -> MockLinkedItem:
    return MockLinkedItem(
        access_token=f"access-sandbox-{suffix}",
        item_id=f"item-sandbox-{suffix}",
        institution_id=institution_id,
        institution_name="First Platypus Bank",
        accounts=list(SAMPLE_PLAID_ACCOUNTS if accounts is None else accounts),
    )


SAMPLE_WEBHOOK_TIME = datetime(2024, 3, 1, 12, 0, 30, tzinfo=timezone.utc)
