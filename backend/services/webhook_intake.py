"""Idempotent webhook intake.

Every delivery is fingerprinted and written to ``webhook_log`` before
anything else happens. The unique constraint on ``webhook_id`` is the
source of truth for exactly-once-effective processing: the pre-insert
lookup only short-circuits the common case, and an ``IntegrityError`` on
insert means a concurrent delivery won the race.
"""

import hashlib
import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models import Item, WebhookLogEntry, utcnow
from services.exceptions import TransientStorageError, WebhookValidationError

logger = logging.getLogger(__name__)

# Fields that must be present for the event to be routable, by (type, code).
REQUIRED_FIELDS: dict[tuple[str, str], tuple[str, ...]] = {
    ("ITEM", "ERROR"): ("item_id",),
    ("ITEM", "LOGIN_REPAIRED"): ("item_id",),
    ("ITEM", "PENDING_DISCONNECT"): ("item_id",),
    ("ITEM", "PENDING_EXPIRATION"): ("item_id",),
    ("ITEM", "ITEM_LOGIN_REQUIRED"): ("item_id",),
    ("ITEM", "USER_PERMISSION_REVOKED"): ("item_id",),
    ("ITEM", "USER_ACCOUNT_REVOKED"): ("item_id", "account_id"),
    ("ITEM", "NEW_ACCOUNTS_AVAILABLE"): ("item_id",),
    ("TRANSACTIONS", "SYNC_UPDATES_AVAILABLE"): ("item_id",),
    ("LINK", "SESSION_FINISHED"): ("link_token",),
}


@dataclass
class IntakeResult:
    """Outcome of logging one delivery."""

    webhook_id: str
    is_new: bool
    entry: WebhookLogEntry | None = None

    @property
    def log_id(self) -> int | None:
        return self.entry.id if self.entry is not None else None


def validate_payload(payload) -> None:
    """Reject events that carry nothing to act on.

    Raises:
        WebhookValidationError: Missing type/code or a routing field.
    """
    if not isinstance(payload, dict):
        raise WebhookValidationError("Webhook body must be a JSON object")
    webhook_type = payload.get("webhook_type")
    webhook_code = payload.get("webhook_code")
    if not webhook_type or not webhook_code:
        raise WebhookValidationError("Missing webhook_type or webhook_code")

    for name in REQUIRED_FIELDS.get((webhook_type, webhook_code), ()):
        if not payload.get(name):
            raise WebhookValidationError(f"{webhook_type}/{webhook_code} webhook missing {name}")


def compute_fingerprint(payload: dict, received_at: datetime, window_seconds: int) -> str:
    """Deterministic id for a delivery within a time bucket.

    Two deliveries of the same event inside the same
    ``window_seconds`` bucket produce the same id.
    """
    error = payload.get("error")
    error_code = error.get("error_code") if isinstance(error, dict) else None
    bucket = math.floor(received_at.timestamp() / window_seconds)
    components = [
        payload.get("webhook_type") or "",
        payload.get("webhook_code") or "",
        payload.get("item_id") or "no-item",
        payload.get("account_id") or "",
        payload.get("link_session_id") or "",
        payload.get("link_token") or "",
        error_code or "",
        str(bucket),
    ]
    digest = hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()
    return f"wh_{digest}"


class WebhookIntake:
    """Fingerprints, deduplicates and durably logs webhook deliveries."""

    def __init__(self, dedup_window_seconds: int):
        self._window = dedup_window_seconds

    def record(self, db: Session, payload: dict, received_at: datetime | None = None) -> IntakeResult:
        """Log a delivery and report whether it is new.

        Commits the log row so it survives any later processing failure.

        Raises:
            WebhookValidationError: Payload is malformed.
            TransientStorageError: The log row could not be written.
        """
        validate_payload(payload)
        received_at = received_at or utcnow()
        webhook_id = compute_fingerprint(payload, received_at, self._window)

        try:
            existing = self._find_existing(db, webhook_id)
            if existing is not None:
                logger.info(
                    "Duplicate webhook %s/%s (%s), log_id=%s",
                    payload["webhook_type"], payload["webhook_code"], webhook_id, existing.id,
                )
                return IntakeResult(webhook_id=webhook_id, is_new=False, entry=existing)

            plaid_item_id = payload.get("item_id")
            internal_item_id = None
            if plaid_item_id:
                internal_item_id = (
                    db.query(Item.id).filter(Item.plaid_item_id == plaid_item_id).scalar()
                )

            entry = WebhookLogEntry(
                webhook_id=webhook_id,
                webhook_type=payload["webhook_type"],
                webhook_code=payload["webhook_code"],
                item_id=internal_item_id,
                plaid_item_id=plaid_item_id,
                payload=payload,
                processed=False,
            )
            db.add(entry)
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("Concurrent duplicate webhook %s lost the insert race", webhook_id)
            winner = self._find_existing(db, webhook_id)
            return IntakeResult(webhook_id=webhook_id, is_new=False, entry=winner)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to log webhook %s: %s", webhook_id, e)
            raise TransientStorageError(f"Could not log webhook: {e}") from e

        logger.info(
            "Logged webhook %s/%s as %s (log_id=%s)",
            entry.webhook_type, entry.webhook_code, webhook_id, entry.id,
        )
        return IntakeResult(webhook_id=webhook_id, is_new=True, entry=entry)

    @staticmethod
    def _find_existing(db: Session, webhook_id: str) -> WebhookLogEntry | None:
        return db.query(WebhookLogEntry).filter(WebhookLogEntry.webhook_id == webhook_id).first()

    def mark_processed(self, db: Session, entry: WebhookLogEntry, error_message: str | None = None) -> None:
        """Flag the log row processed, recording the failure if any.

        Raises:
            TransientStorageError: The update could not be committed.
        """
        try:
            entry.processed = True
            entry.processed_at = utcnow()
            entry.error_message = error_message
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to mark webhook log %s processed: %s", entry.id, e)
            raise TransientStorageError(f"Could not update webhook log: {e}") from e
