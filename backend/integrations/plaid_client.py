"""Plaid API client.

This module implements the AggregationProvider protocol over the
plaid-python SDK: Link token creation, public token exchange, item and
account lookups, cursor-based transaction sync and item removal.

The client is a pure adapter. It holds no per-item state, applies
``PLAID_TIMEOUT_SECONDS`` to every outbound call and translates SDK and
transport failures into the :mod:`integrations.exceptions` hierarchy.
"""

import json
import logging
import threading
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

import urllib3
from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_by_id_request import InstitutionsGetByIdRequest
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.link_token_create_hosted_link import LinkTokenCreateHostedLink
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_update import LinkTokenCreateRequestUpdate
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_refresh_request import TransactionsRefreshRequest
from plaid.model.transactions_sync_request import TransactionsSyncRequest

from config import settings
from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderDataError,
    ProviderError,
)
from integrations.provider_protocol import (
    LinkTokenResult,
    ProviderAccount,
    ProviderItem,
    ProviderTransaction,
    TokenExchangeResult,
    TransactionSyncPage,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Plaid"

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
# Plaid's Development environment is deprecated; only sandbox and production
# are supported.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}


def _as_dict(response) -> dict:
    """Plain-dict view of an SDK response model."""
    if hasattr(response, "to_dict"):
        return response.to_dict()
    return response


def _mask_token(token: str) -> str:
    """Keep only the environment prefix and last four characters."""
    if not token:
        return "<empty>"
    prefix = token.split("-", 2)[:2]
    return f"{'-'.join(prefix)}-...{token[-4:]}"


class PlaidClient:
    """Wrapper around the Plaid API.

    Constructed once per process and shared through dependency injection.
    The underlying ``PlaidApi`` is created on first use so the app can
    start without credentials.
    """

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
        timeout: float | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT
        self._timeout = timeout or settings.PLAID_TIMEOUT_SECONDS

        # Lazily created on first use; one instance serves every request thread
        self._api: PlaidApi | None = None
        self._api_lock = threading.Lock()

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is not None:
            return self._api
        with self._api_lock:
            if self._api is None:
                self._api = self._build_api()
        return self._api

    def _build_api(self) -> PlaidApi:
        env_key = self._environment.lower()
        host = _ENVIRONMENT_MAP.get(env_key)
        if host is None:
            logger.warning(
                "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                "Valid values: sandbox, production",
                self._environment,
            )
            host = Environment.Sandbox
        logger.info(
            "Plaid API client: environment=%s, host=%s, client_id=<configured>",
            env_key,
            host,
        )
        configuration = Configuration(
            host=host,
            api_key={
                "clientId": self._client_id,
                "secret": self._secret,
            },
        )
        return PlaidApi(ApiClient(configuration))

    @property
    def provider_name(self) -> str:
        return PROVIDER_NAME

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    def _call(self, operation: str, request) -> dict:
        """Invoke one SDK endpoint with the configured timeout.

        Raises:
            ProviderError: For every HTTP, transport or timeout failure.
        """
        api = self._get_api()
        try:
            response = getattr(api, operation)(request, _request_timeout=self._timeout)
        except ApiException as exc:
            raise self._map_plaid_error(exc, operation) from exc
        except urllib3.exceptions.HTTPError as exc:
            raise ProviderConnectionError(
                f"Plaid {operation} failed: {exc}", PROVIDER_NAME
            ) from exc
        return _as_dict(response)

    # ------------------------------------------------------------------
    # Link tokens
    # ------------------------------------------------------------------

    def create_link_token(
        self,
        client_user_id: str,
        access_token: str | None = None,
        account_selection_enabled: bool = False,
    ) -> LinkTokenResult:
        """Create a Hosted Link token.

        With ``access_token`` the token opens Link in update mode for that
        Item (no products requested). Otherwise a new-connection token for
        the transactions product is created.
        """
        kwargs = {
            "user": LinkTokenCreateRequestUser(client_user_id=client_user_id),
            "client_name": settings.PLAID_CLIENT_NAME,
            "country_codes": [CountryCode("US")],
            "language": "en",
            "hosted_link": LinkTokenCreateHostedLink(
                url_lifetime_seconds=settings.PLAID_LINK_URL_LIFETIME_SECONDS,
            ),
        }
        if settings.PLAID_WEBHOOK_URL:
            kwargs["webhook"] = settings.PLAID_WEBHOOK_URL
        if access_token:
            kwargs["access_token"] = access_token
            if account_selection_enabled:
                kwargs["update"] = LinkTokenCreateRequestUpdate(account_selection_enabled=True)
        else:
            kwargs["products"] = [Products("transactions")]

        response = self._call("link_token_create", LinkTokenCreateRequest(**kwargs))
        try:
            return LinkTokenResult(
                link_token=response["link_token"],
                expiration=response.get("expiration"),
                hosted_link_url=response.get("hosted_link_url"),
            )
        except KeyError as exc:
            raise ProviderDataError(f"link_token_create response missing {exc}", PROVIDER_NAME) from exc

    # ------------------------------------------------------------------
    # Token exchange & item metadata
    # ------------------------------------------------------------------

    def exchange_public_token(self, public_token: str) -> TokenExchangeResult:
        """Exchange a Link public_token for a permanent access_token."""
        logger.debug("Exchanging public token %s", _mask_token(public_token))
        response = self._call(
            "item_public_token_exchange",
            ItemPublicTokenExchangeRequest(public_token=public_token),
        )
        try:
            return TokenExchangeResult(
                access_token=response["access_token"],
                item_id=response["item_id"],
            )
        except KeyError as exc:
            raise ProviderDataError(f"token exchange response missing {exc}", PROVIDER_NAME) from exc

    def get_item(self, access_token: str) -> ProviderItem:
        """Fetch item metadata, resolving the institution name when absent."""
        response = self._call("item_get", ItemGetRequest(access_token=access_token))
        item = response.get("item") or {}
        if not item.get("item_id"):
            raise ProviderDataError("item_get response missing item", PROVIDER_NAME)

        institution_id = item.get("institution_id")
        institution_name = item.get("institution_name")
        if institution_id and not institution_name:
            institution_name = self._get_institution_name(institution_id)

        error = item.get("error") or {}
        return ProviderItem(
            item_id=item["item_id"],
            institution_id=institution_id,
            institution_name=institution_name,
            consent_expiration_time=item.get("consent_expiration_time"),
            error_code=error.get("error_code"),
        )

    def _get_institution_name(self, institution_id: str) -> str | None:
        request = InstitutionsGetByIdRequest(
            institution_id=institution_id,
            country_codes=[CountryCode("US")],
        )
        try:
            response = self._call("institutions_get_by_id", request)
        except ProviderError:
            logger.warning("Could not resolve name for institution %s", institution_id, exc_info=True)
            return None
        return (response.get("institution") or {}).get("name")

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Fetch the Item's currently shared accounts with balances."""
        response = self._call("accounts_get", AccountsGetRequest(access_token=access_token))
        accounts: list[ProviderAccount] = []
        for acct in response.get("accounts", []) or []:
            account = self._map_account(acct)
            if account:
                accounts.append(account)
        return accounts

    def _map_account(self, acct: dict) -> ProviderAccount | None:
        account_id = acct.get("account_id")
        if not account_id:
            return None
        balances = acct.get("balances") or {}
        return ProviderAccount(
            account_id=account_id,
            name=acct.get("name") or acct.get("official_name") or "Plaid Account",
            official_name=acct.get("official_name"),
            type=self._to_str(acct.get("type")),
            subtype=self._to_str(acct.get("subtype")),
            mask=acct.get("mask"),
            current_balance=self._to_decimal(balances.get("current")),
            available_balance=self._to_decimal(balances.get("available")),
            limit=self._to_decimal(balances.get("limit")),
            iso_currency_code=balances.get("iso_currency_code"),
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def sync_transactions(self, access_token: str, cursor: str | None = None) -> TransactionSyncPage:
        """Fetch one page of transaction updates after ``cursor``."""
        if cursor:
            request = TransactionsSyncRequest(access_token=access_token, cursor=cursor)
        else:
            request = TransactionsSyncRequest(access_token=access_token)
        response = self._call("transactions_sync", request)

        return TransactionSyncPage(
            next_cursor=response.get("next_cursor") or "",
            has_more=bool(response.get("has_more")),
            added=self._map_transactions(response.get("added")),
            modified=self._map_transactions(response.get("modified")),
            removed=[
                r["transaction_id"]
                for r in response.get("removed", []) or []
                if r.get("transaction_id")
            ],
        )

    def _map_transactions(self, rows) -> list[ProviderTransaction]:
        transactions = []
        for txn in rows or []:
            mapped = self._map_transaction(txn)
            if mapped:
                transactions.append(mapped)
        return transactions

    def _map_transaction(self, txn: dict) -> ProviderTransaction | None:
        """Map a Plaid transaction dict, skipping rows without id or date.

        Plaid sign convention is kept: positive amount = money leaving
        the account.
        """
        transaction_id = txn.get("transaction_id")
        txn_date = self._to_date(txn.get("date"))
        if not transaction_id or txn_date is None:
            logger.warning("Skipping malformed transaction %r", transaction_id)
            return None

        pfc = txn.get("personal_finance_category") or {}
        return ProviderTransaction(
            transaction_id=transaction_id,
            account_id=txn.get("account_id", ""),
            date=txn_date,
            amount=self._to_decimal(txn.get("amount")) or Decimal("0"),
            name=txn.get("name") or txn.get("original_description") or "",
            merchant_name=txn.get("merchant_name"),
            authorized_date=self._to_date(txn.get("authorized_date")),
            iso_currency_code=txn.get("iso_currency_code"),
            payment_channel=self._to_str(txn.get("payment_channel")),
            transaction_code=self._to_str(txn.get("transaction_code")),
            pending=bool(txn.get("pending")),
            pending_transaction_id=txn.get("pending_transaction_id"),
            primary_category=pfc.get("primary"),
            detailed_category=pfc.get("detailed"),
        )

    def refresh_transactions(self, access_token: str) -> None:
        """Ask Plaid to poll the institution for new transactions now."""
        self._call("transactions_refresh", TransactionsRefreshRequest(access_token=access_token))

    def remove_item(self, access_token: str) -> None:
        """Revoke an access token by calling Plaid's /item/remove endpoint."""
        self._call("item_remove", ItemRemoveRequest(access_token=access_token))

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _map_plaid_error(exc: ApiException, operation: str = "") -> ProviderError:
        """Map a Plaid ApiException to the provider exception hierarchy."""
        status = exc.status or 0
        message = str(exc)

        # Try to extract error_code from the body
        error_code = None
        error_type = None
        try:
            body = json.loads(exc.body) if exc.body else {}
        except (TypeError, ValueError):
            body = {}
        if isinstance(body, dict):
            error_code = body.get("error_code") or None
            error_type = body.get("error_type") or None
            error_message = body.get("error_message", "")
            if error_message:
                message = f"Plaid error ({error_code}): {error_message}"

        if operation:
            logger.info("Plaid %s failed: status=%s error_code=%s", operation, status, error_code)

        if status in (401, 403):
            return ProviderAuthError(message, PROVIDER_NAME)
        return ProviderAPIError(
            message,
            PROVIDER_NAME,
            status_code=status or None,
            error_code=error_code,
            error_type=error_type,
        )

    @staticmethod
    def is_retriable(exc: Exception) -> bool:
        """Whether a failed call may succeed if simply repeated."""
        return isinstance(exc, ProviderError) and exc.retriable

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_decimal(value) -> Decimal | None:
        """Convert a value to Decimal, returning None on failure."""
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None

    @staticmethod
    def _to_date(value) -> date | None:
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.astimezone(timezone.utc).date() if value.tzinfo else value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            return None

    @staticmethod
    def _to_str(value) -> str | None:
        """SDK enums arrive as model objects or plain strings."""
        if value is None:
            return None
        return str(getattr(value, "value", value))
