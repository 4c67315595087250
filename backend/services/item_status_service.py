"""Item status reconciliation for ITEM and TRANSACTIONS webhooks.

Maps an inbound event to an Item status transition and applies it.
Transitions converge: replaying the same event leaves the same row state.

    ERROR (sub-code ITEM_LOGIN_REQUIRED)  -> login_required
    ERROR (any other sub-code)            -> error
    LOGIN_REPAIRED                        -> active, error fields cleared
    PENDING_DISCONNECT                    -> login_required, reason logged only
    PENDING_EXPIRATION                    -> login_required, consent expiry stored
    ITEM_LOGIN_REQUIRED (legacy code)     -> login_required
    NEW_ACCOUNTS_AVAILABLE                -> needs_update
    USER_PERMISSION_REVOKED               -> archived, accounts deactivated,
                                             transactions archived (best effort)
    USER_ACCOUNT_REVOKED                  -> named account deactivated
    SYNC_UPDATES_AVAILABLE                -> TransactionSyncTrigger
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Account, Item, ItemStatus, Transaction, utcnow
from services.best_effort import attempt
from services.exceptions import NotFoundError
from services.sync_trigger import TransactionSyncTrigger

logger = logging.getLogger(__name__)

REAUTH_ERROR_CODES = frozenset({"ITEM_LOGIN_REQUIRED"})

ARCHIVE_REASON_REVOKED = "item_archived"


@dataclass(frozen=True)
class StatusTransition:
    """Status change planned for one event."""

    status: ItemStatus
    error_code: str | None = None
    error_message: str | None = None
    records_error: bool = False
    clears_error: bool = False


def plan_transition(payload: dict) -> StatusTransition | None:
    """Status transition for a plain status event, or None.

    Events with side effects beyond the status column (revocations,
    sync updates) are handled by :class:`ItemStatusReconciler` directly.
    """
    code = payload.get("webhook_code")
    error = payload.get("error") or {}

    if code == "ERROR":
        error_code = error.get("error_code")
        status = ItemStatus.LOGIN_REQUIRED if error_code in REAUTH_ERROR_CODES else ItemStatus.ERROR
        return StatusTransition(
            status=status,
            error_code=error_code,
            error_message=error.get("error_message"),
            records_error=True,
        )
    if code == "LOGIN_REPAIRED":
        return StatusTransition(status=ItemStatus.ACTIVE, clears_error=True)
    if code in ("PENDING_DISCONNECT", "PENDING_EXPIRATION"):
        return StatusTransition(status=ItemStatus.LOGIN_REQUIRED)
    if code == "ITEM_LOGIN_REQUIRED":
        # Pre-ERROR-envelope form of the re-auth event
        return StatusTransition(
            status=ItemStatus.LOGIN_REQUIRED,
            error_code=error.get("error_code") or "ITEM_LOGIN_REQUIRED",
            error_message=error.get("error_message"),
            records_error=True,
        )
    if code == "NEW_ACCOUNTS_AVAILABLE":
        return StatusTransition(status=ItemStatus.NEEDS_UPDATE)
    return None


def _parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring unparseable consent_expiration_time %r", value)
        return None


class ItemStatusReconciler:
    """Applies ITEM and TRANSACTIONS webhooks to Item and Account rows."""

    def __init__(self, sync_trigger: TransactionSyncTrigger):
        self._sync_trigger = sync_trigger

    def apply(self, db: Session, payload: dict) -> Item | None:
        """Reconcile one event against its Item.

        Returns the Item acted on, or None for informational and unhandled
        events.

        Raises:
            NotFoundError: The event names an Item or Account we do not have.
        """
        webhook_type = payload.get("webhook_type")
        code = payload.get("webhook_code")
        plaid_item_id = payload.get("item_id")

        if webhook_type == "TRANSACTIONS" and code != "SYNC_UPDATES_AVAILABLE":
            logger.info("Ignoring TRANSACTIONS/%s webhook", code)
            return None
        if code == "WEBHOOK_UPDATE_ACKNOWLEDGED":
            logger.info("Webhook URL updated for item %s", plaid_item_id)
            return None

        transition = plan_transition(payload)
        if transition is None and code not in (
            "USER_PERMISSION_REVOKED",
            "USER_ACCOUNT_REVOKED",
            "SYNC_UPDATES_AVAILABLE",
        ):
            logger.info("Unhandled %s webhook_code: %s", webhook_type, code)
            return None

        item = self._get_item(db, plaid_item_id)

        if code == "SYNC_UPDATES_AVAILABLE":
            self._sync_trigger.on_sync_updates_available(db, item, payload)
            return item
        if code == "USER_ACCOUNT_REVOKED":
            self.revoke_account(db, item, payload["account_id"])
            return item
        if item.is_archived:
            logger.info("Item %s is archived, ignoring %s", item.plaid_item_id, code)
            return item
        if code == "USER_PERMISSION_REVOKED":
            self.revoke_item(db, item, payload)
            return item

        if code == "PENDING_DISCONNECT":
            logger.info("Item %s pending disconnect. Reason: %s", item.plaid_item_id, payload.get("reason"))
        elif code == "PENDING_EXPIRATION":
            logger.info(
                "Item %s consent expires at %s",
                item.plaid_item_id, payload.get("consent_expiration_time"),
            )
        self._apply_transition(db, item, transition, payload)
        return item

    def _get_item(self, db: Session, plaid_item_id: str | None) -> Item:
        item = None
        if plaid_item_id:
            item = db.query(Item).filter(Item.plaid_item_id == plaid_item_id).first()
        if item is None:
            raise NotFoundError(f"Item not found: {plaid_item_id}")
        return item

    def _apply_transition(
        self,
        db: Session,
        item: Item,
        transition: StatusTransition,
        payload: dict,
    ) -> None:
        item.status = transition.status.value
        if transition.records_error:
            item.record_error(transition.error_code, transition.error_message)
        elif transition.clears_error:
            item.clear_error()

        consent_expiration = _parse_timestamp(payload.get("consent_expiration_time"))
        if consent_expiration is not None:
            item.consent_expiration_time = consent_expiration
        db.flush()
        logger.info(
            "Updated item %s status to: %s (error_code=%s)",
            item.plaid_item_id, item.status, item.last_error_code,
        )

    def revoke_account(self, db: Session, item: Item, plaid_account_id: str) -> Account:
        """Deactivate one account; the Item itself is untouched."""
        account = (
            db.query(Account)
            .filter(Account.plaid_account_id == plaid_account_id, Account.item_id == item.id)
            .first()
        )
        if account is None:
            raise NotFoundError(f"Account not found: {plaid_account_id} on item {item.plaid_item_id}")
        account.is_active = False
        db.flush()
        logger.info("Marked account %s as inactive", plaid_account_id)
        return account

    def revoke_item(self, db: Session, item: Item, payload: dict | None = None) -> None:
        """Archive the Item and deactivate its accounts, then archive transactions.

        The status change is committed first so the transaction archive can
        fail without undoing it.
        """
        error = (payload or {}).get("error") or {}
        item.archive()
        if error.get("error_code"):
            item.record_error(error.get("error_code"), error.get("error_message"))
        deactivated = (
            db.query(Account)
            .filter(Account.item_id == item.id, Account.is_active.is_(True))
            .update({Account.is_active: False}, synchronize_session="fetch")
        )
        db.commit()
        logger.info(
            "Item %s permission revoked: archived, %d account(s) deactivated",
            item.plaid_item_id, deactivated,
        )
        attempt("archive revoked item transactions", self._archive_transactions, db, item.id)

    @staticmethod
    def _archive_transactions(db: Session, item_id: str) -> int:
        account_ids = select(Account.id).where(Account.item_id == item_id)
        try:
            archived = (
                db.query(Transaction)
                .filter(
                    Transaction.account_id.in_(account_ids),
                    Transaction.is_archived.is_(False),
                )
                .update(
                    {
                        Transaction.is_archived: True,
                        Transaction.archived_at: utcnow(),
                        Transaction.archive_reason: ARCHIVE_REASON_REVOKED,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("Archived %d transaction(s) for item %s", archived, item_id)
        return archived
