"""Cursor-aware policy for when an Item becomes eligible for transaction sync."""

import logging

from sqlalchemy.orm import Session

from models import Item
from services.best_effort import BestEffortResult, attempt

logger = logging.getLogger(__name__)


class TransactionSyncTrigger:
    """Flags Items for pull-based sync and kicks the initial sync after linking."""

    def __init__(self, sync_service, initial_sync_on_link: bool = True):
        self._sync_service = sync_service
        self._initial_sync_on_link = initial_sync_on_link

    @staticmethod
    def should_flag(item: Item, payload: dict) -> bool:
        """Decide whether a SYNC_UPDATES_AVAILABLE event marks the Item.

        An Item with a cursor is established and is always flagged. A new
        Item (no cursor) is flagged only once Plaid reports the historical
        backfill complete, so a partial first window is never exposed.
        """
        if item.transactions_cursor is not None:
            return True
        return bool(payload.get("historical_update_complete"))

    def on_sync_updates_available(self, db: Session, item: Item, payload: dict) -> bool:
        if not self.should_flag(item, payload):
            logger.info(
                "Item %s has no cursor and history is incomplete, not flagging",
                item.plaid_item_id,
            )
            return False
        item.has_sync_updates = True
        db.flush()
        logger.info("Item %s has sync updates available", item.plaid_item_id)
        return True

    def kick_initial_sync(self, db: Session, item: Item) -> BestEffortResult | None:
        """Run the first sync for a freshly linked Item, never raising."""
        if not self._initial_sync_on_link:
            return None
        result = attempt("initial transaction sync", self._sync_service.sync_item, db, item.id)
        if result.ok and not result.value.success:
            logger.info("Initial sync for item %s deferred: %s", item.id, result.value.error)
        return result
