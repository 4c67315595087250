"""Link session completion - turns a finished Hosted Link session into Items.

Handles LINK / SESSION_FINISHED webhooks:

1. Resolve the LinkToken (unknown -> NotFoundError, already used -> no-op)
2. Record the attempt in link session history (non-fatal on failure)
3. Stop unless the session succeeded
4. For each public token, independently:
   exchange -> fetch item metadata -> resolve duplicates -> store the
   encrypted token -> upsert/deactivate accounts -> kick initial sync
5. Mark the LinkToken used once, whatever happened to individual tokens

Each token's Item/Account work is committed on its own, so a failure on
one token is rolled back without touching another token's rows.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from integrations.exceptions import ProviderError
from integrations.provider_protocol import (
    AggregationProvider,
    ProviderAccount,
    ProviderItem,
    TokenExchangeResult,
)
from models import (
    LINK_TOKEN_USED,
    Account,
    Item,
    ItemStatus,
    LinkSession,
    LinkToken,
    utcnow,
)
from services.best_effort import attempt
from services.exceptions import (
    CipherError,
    DuplicateConflictError,
    NotFoundError,
    ReconciliationError,
)
from services.secret_cipher import SecretCipher
from services.sync_trigger import TransactionSyncTrigger

logger = logging.getLogger(__name__)

SESSION_SUCCESS = "SUCCESS"

SESSION_STATUS_REASONS: dict[str, str] = {
    "EXITED": "User exited Link without connecting",
    "REQUIRES_CREDENTIALS": "User did not finish entering credentials",
    "REQUIRES_QUESTIONS": "User did not answer security questions",
    "REQUIRES_SELECTIONS": "User did not finish selecting accounts",
    "INSTITUTION_NOT_FOUND": "User could not find their institution",
    "INSTITUTION_NOT_SUPPORTED": "Institution is not supported",
}


# ----------------------------------------------------------------------
# Duplicate resolution
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class UpdateModeMatch:
    """Same provider item id on file: update-mode re-authentication."""

    item: Item


@dataclass(frozen=True)
class LiveDuplicate:
    """Non-archived Item already linked at this institution for the client."""

    item: Item


@dataclass(frozen=True)
class RestoreArchived:
    """Client re-linked an institution whose Item was archived."""

    item: Item


@dataclass(frozen=True)
class NewItem:
    pass


ItemResolution = UpdateModeMatch | LiveDuplicate | RestoreArchived | NewItem


def resolve_item(
    db: Session,
    client_id: str,
    plaid_item_id: str,
    institution_id: str | None,
) -> ItemResolution:
    """Decide which Item a freshly exchanged token belongs to.

    Raises:
        DuplicateConflictError: An update-mode match reports a different
            institution than the one on file.
    """
    existing = db.query(Item).filter(Item.plaid_item_id == plaid_item_id).first()
    if existing is not None:
        if existing.institution_id and institution_id and existing.institution_id != institution_id:
            raise DuplicateConflictError(
                f"Item {existing.id} is linked to institution {existing.institution_id} "
                f"but re-authentication returned {institution_id}",
                item_id=existing.id,
            )
        return UpdateModeMatch(existing)

    if not institution_id:
        return NewItem()

    same_institution = db.query(Item).filter(
        Item.client_id == client_id,
        Item.institution_id == institution_id,
    )
    live = same_institution.filter(Item.is_archived.is_(False)).first()
    if live is not None:
        return LiveDuplicate(live)

    archived = (
        same_institution.filter(Item.is_archived.is_(True))
        .order_by(Item.updated_at.desc())
        .first()
    )
    if archived is not None:
        return RestoreArchived(archived)
    return NewItem()


# ----------------------------------------------------------------------
# Outcome
# ----------------------------------------------------------------------


@dataclass
class TokenFailure:
    """One public token that could not be linked."""

    token_hint: str
    error: Exception

    @property
    def message(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"


@dataclass
class LinkSessionOutcome:
    """Result of processing one SESSION_FINISHED event."""

    link_token: str
    session_status: str
    item_ids: list[str] = field(default_factory=list)
    failures: list[TokenFailure] = field(default_factory=list)
    already_used: bool = False
    marked_used: bool = False

    @property
    def error_summary(self) -> str | None:
        if not self.failures:
            return None
        return "; ".join(f"{f.token_hint}: {f.message}" for f in self.failures)


def extract_public_tokens(payload: dict) -> list[str]:
    """Public tokens from either the multi-item array or the legacy field."""
    tokens = list(payload.get("public_tokens") or [])
    if payload.get("public_token"):
        tokens.append(payload["public_token"])
    seen: set[str] = set()
    unique = []
    for token in tokens:
        if token and token not in seen:
            seen.add(token)
            unique.append(token)
    return unique


def _token_hint(token: str) -> str:
    return f"...{token[-6:]}" if len(token) > 6 else "<short>"


class LinkSessionCompleter:
    """Completes Hosted Link sessions into Items and Accounts."""

    def __init__(
        self,
        provider: AggregationProvider,
        cipher: SecretCipher,
        sync_trigger: TransactionSyncTrigger,
    ):
        self._provider = provider
        self._cipher = cipher
        self._sync_trigger = sync_trigger

    def complete(self, db: Session, payload: dict) -> LinkSessionOutcome:
        """Process a SESSION_FINISHED event.

        Raises:
            NotFoundError: The LinkToken is unknown.
        """
        token_string = payload.get("link_token")
        session_status = (payload.get("status") or "UNKNOWN").upper()
        outcome = LinkSessionOutcome(link_token=token_string or "", session_status=session_status)

        link = db.get(LinkToken, token_string) if token_string else None
        if link is None:
            raise NotFoundError(f"Link token not found: {token_string}")
        if link.is_used:
            logger.info("Link token for client %s already used, ignoring session", link.client_id)
            outcome.already_used = True
            return outcome

        client_id = link.client_id
        attempt("record link session", self._record_session, db, link, payload, session_status)

        if session_status != SESSION_SUCCESS:
            reason = SESSION_STATUS_REASONS.get(session_status, "Unknown session status")
            logger.info("Link session for client %s ended with %s: %s", client_id, session_status, reason)
            return outcome

        public_tokens = extract_public_tokens(payload)
        if not public_tokens:
            logger.warning("SESSION_FINISHED SUCCESS for client %s but no public tokens", client_id)
            return outcome

        logger.info("Processing %d public token(s) for client %s", len(public_tokens), client_id)
        for public_token in public_tokens:
            hint = _token_hint(public_token)
            try:
                item = self.link_public_token(db, client_id, public_token)
                db.commit()
            except DuplicateConflictError as e:
                db.rollback()
                logger.error("Institution mismatch for token %s: %s", hint, e)
                outcome.failures.append(TokenFailure(hint, e))
                continue
            except (ReconciliationError, ProviderError, CipherError, SQLAlchemyError) as e:
                db.rollback()
                logger.warning("Failed to link public token %s: %s", hint, e, exc_info=True)
                outcome.failures.append(TokenFailure(hint, e))
                continue

            outcome.item_ids.append(item.id)
            self._sync_trigger.kick_initial_sync(db, item)

        self._mark_used(db, token_string)
        outcome.marked_used = True
        logger.info(
            "Link session complete for client %s: %d item(s) linked, %d failed",
            client_id, len(outcome.item_ids), len(outcome.failures),
        )
        return outcome

    # ------------------------------------------------------------------
    # Session history
    # ------------------------------------------------------------------

    @staticmethod
    def _record_session(db: Session, link: LinkToken, payload: dict, session_status: str) -> None:
        error = payload.get("error") or {}
        try:
            db.add(
                LinkSession(
                    link_token=link.link_token,
                    link_session_id=payload.get("link_session_id"),
                    status=session_status,
                    error_code=error.get("error_code"),
                    error_type=error.get("error_type"),
                    error_message=error.get("error_message"),
                )
            )
            link.link_session_id = payload.get("link_session_id") or link.link_session_id
            link.last_session_status = session_status
            link.last_session_error_code = error.get("error_code")
            link.last_session_error_message = error.get("error_message")
            link.attempt_count = (link.attempt_count or 0) + 1
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise

    def _mark_used(self, db: Session, token_string: str) -> None:
        link = db.get(LinkToken, token_string)
        link.status = LINK_TOKEN_USED
        link.used_at = utcnow()
        db.commit()

    # ------------------------------------------------------------------
    # Per-token work
    # ------------------------------------------------------------------

    def link_public_token(self, db: Session, client_id: str, public_token: str) -> Item:
        """Exchange one public token and reconcile its Item and Accounts.

        Flushes but does not commit.
        """
        exchange = self._provider.exchange_public_token(public_token)
        metadata = self._provider.get_item(exchange.access_token)
        resolution = resolve_item(db, client_id, exchange.item_id, metadata.institution_id)
        item = self._apply_resolution(db, resolution, client_id, exchange, metadata)
        db.flush()

        accounts = self._provider.get_accounts(exchange.access_token)
        self.sync_accounts(db, item, accounts)
        return item

    def _apply_resolution(
        self,
        db: Session,
        resolution: ItemResolution,
        client_id: str,
        exchange: TokenExchangeResult,
        metadata: ProviderItem,
    ) -> Item:
        ciphertext, key_id = self._cipher.encrypt(db, exchange.access_token)

        match resolution:
            case UpdateModeMatch(item=item):
                logger.info("Update mode re-auth for item %s", item.id)
            case LiveDuplicate(item=item):
                logger.info(
                    "Duplicate link for client %s at %s, replacing provider item %s with %s",
                    client_id, metadata.institution_id, item.plaid_item_id, exchange.item_id,
                )
                attempt("revoke duplicate provider item", self._revoke_provider_item, db, item)
                self._rebind(item, exchange.item_id)
            case RestoreArchived(item=item):
                logger.info("Restoring archived item %s for client %s", item.id, client_id)
                self._rebind(item, exchange.item_id)
            case NewItem():
                item = Item(
                    client_id=client_id,
                    plaid_item_id=exchange.item_id,
                    institution_id=metadata.institution_id,
                    status=ItemStatus.ACTIVE.value,
                    is_archived=False,
                    has_sync_updates=False,
                )
                db.add(item)
                logger.info("Created item for client %s at %s", client_id, metadata.institution_name)

        item.access_token = ciphertext
        item.access_token_key_id = key_id
        item.institution_id = metadata.institution_id or item.institution_id
        item.institution_name = metadata.institution_name or item.institution_name
        if metadata.consent_expiration_time is not None:
            item.consent_expiration_time = metadata.consent_expiration_time
        item.activate()
        return item

    @staticmethod
    def _rebind(item: Item, plaid_item_id: str) -> None:
        """Point an existing row at a new provider item; the old cursor is void."""
        item.plaid_item_id = plaid_item_id
        item.transactions_cursor = None
        item.transactions_cursor_updated_at = None
        item.has_sync_updates = False

    def _revoke_provider_item(self, db: Session, item: Item) -> None:
        old_token = self._cipher.decrypt(db, item.access_token, item.access_token_key_id)
        self._provider.remove_item(old_token)

    @staticmethod
    def sync_accounts(db: Session, item: Item, accounts: list[ProviderAccount]) -> None:
        """Upsert returned accounts and deactivate the ones no longer shared.

        An empty response is treated as a provider hiccup: nothing is
        deactivated.
        """
        if not accounts:
            logger.warning("Provider returned no accounts for item %s, skipping deactivation", item.id)
            return

        now = utcnow()
        returned_ids: set[str] = set()
        created = updated = 0
        for remote in accounts:
            returned_ids.add(remote.account_id)
            account = (
                db.query(Account)
                .filter(Account.plaid_account_id == remote.account_id)
                .first()
            )
            if account is None:
                account = Account(item_id=item.id, plaid_account_id=remote.account_id)
                db.add(account)
                created += 1
            else:
                if account.item_id != item.id:
                    logger.warning(
                        "Account %s moved from item %s to %s",
                        remote.account_id, account.item_id, item.id,
                    )
                    account.item_id = item.id
                updated += 1

            account.name = remote.name
            account.official_name = remote.official_name
            account.account_type = remote.type
            account.account_subtype = remote.subtype
            account.mask = remote.mask
            account.current_balance = remote.current_balance
            account.available_balance = remote.available_balance
            account.credit_limit = remote.limit
            account.iso_currency_code = remote.iso_currency_code
            account.is_active = True
            account.last_updated_datetime = now
        db.flush()

        stale = (
            db.query(Account)
            .filter(
                Account.item_id == item.id,
                Account.is_active.is_(True),
                Account.plaid_account_id.notin_(sorted(returned_ids)),
            )
            .all()
        )
        for account in stale:
            account.is_active = False
        db.flush()
        logger.info(
            "Item %s accounts: %d created, %d updated, %d deactivated",
            item.id, created, updated, len(stale),
        )
