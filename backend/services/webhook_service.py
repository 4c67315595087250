"""Webhook processing - log, route and acknowledge provider events."""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import ProviderError
from integrations.provider_protocol import AggregationProvider
from services.exceptions import CipherError, ReconciliationError
from services.item_status_service import ItemStatusReconciler
from services.link_session_service import LinkSessionCompleter
from services.secret_cipher import SecretCipher
from services.sync_trigger import TransactionSyncTrigger
from services.transaction_sync_service import TransactionSyncService
from services.webhook_intake import WebhookIntake

logger = logging.getLogger(__name__)

ACK_SUCCESS = "success"
ACK_DUPLICATE = "duplicate"
ACK_ERROR = "error"


@dataclass
class WebhookAckResult:
    status: str
    message: str
    webhook_id: str
    log_id: int | None = None


class WebhookProcessor:
    """Runs one delivery through intake, routing and the processed mark.

    Once the delivery is logged the result is always an acknowledgement;
    processing failures are recorded on the log row and reported as
    ``status="error"`` so the provider does not redeliver forever.
    """

    def __init__(
        self,
        intake: WebhookIntake,
        reconciler: ItemStatusReconciler,
        link_completer: LinkSessionCompleter,
    ):
        self._intake = intake
        self._reconciler = reconciler
        self._link_completer = link_completer

    def handle(self, db: Session, payload: dict, received_at: datetime | None = None) -> WebhookAckResult:
        """Process one webhook delivery.

        Raises:
            WebhookValidationError: Malformed payload, nothing was logged.
            TransientStorageError: The delivery could not be logged or
                marked processed.
        """
        intake = self._intake.record(db, payload, received_at)
        if not intake.is_new:
            return WebhookAckResult(
                status=ACK_DUPLICATE,
                message="Webhook already processed",
                webhook_id=intake.webhook_id,
                log_id=intake.log_id,
            )

        log_id = intake.entry.id
        error = None
        try:
            error = self._route(db, payload)
            db.commit()
        except (ReconciliationError, ProviderError, CipherError, SQLAlchemyError) as e:
            db.rollback()
            error = f"{type(e).__name__}: {e}"
            logger.error("Error processing webhook %s (log_id=%s): %s", intake.webhook_id, log_id, error)
        except Exception as e:
            db.rollback()
            error = f"{type(e).__name__}: {e}"
            logger.exception("Unexpected error processing webhook %s (log_id=%s)", intake.webhook_id, log_id)

        self._intake.mark_processed(db, intake.entry, error)
        return WebhookAckResult(
            status=ACK_ERROR if error else ACK_SUCCESS,
            message=error or "Webhook processed",
            webhook_id=intake.webhook_id,
            log_id=log_id,
        )

    def _route(self, db: Session, payload: dict) -> str | None:
        """Dispatch by webhook type; returns an error summary for partial failures."""
        webhook_type = payload["webhook_type"]
        code = payload["webhook_code"]
        logger.info("Webhook: %s / %s", webhook_type, code)

        if webhook_type in ("ITEM", "TRANSACTIONS"):
            self._reconciler.apply(db, payload)
            return None
        if webhook_type == "LINK" and code == "SESSION_FINISHED":
            outcome = self._link_completer.complete(db, payload)
            return outcome.error_summary
        logger.info("Unhandled webhook %s / %s", webhook_type, code)
        return None


def build_webhook_processor(provider: AggregationProvider, cipher: SecretCipher) -> WebhookProcessor:
    """Wire the reconciliation services around one provider and cipher."""
    sync_service = TransactionSyncService(provider, cipher, settings.TRANSACTION_SYNC_MAX_RETRIES)
    trigger = TransactionSyncTrigger(sync_service, settings.INITIAL_SYNC_ON_LINK)
    return WebhookProcessor(
        intake=WebhookIntake(settings.WEBHOOK_DEDUP_WINDOW_SECONDS),
        reconciler=ItemStatusReconciler(trigger),
        link_completer=LinkSessionCompleter(provider, cipher, trigger),
    )
