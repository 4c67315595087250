"""Transaction sync service - pulls cursor-based transaction updates for an Item."""

import logging
import threading
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from integrations.exceptions import ProviderAPIError, ProviderError
from integrations.provider_protocol import AggregationProvider, ProviderTransaction
from models import Account, Item, ItemStatus, Transaction, utcnow
from services.exceptions import CipherError
from services.secret_cipher import SecretCipher

logger = logging.getLogger(__name__)

MUTATION_DURING_PAGINATION = "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"

TRANSFER_CATEGORIES = frozenset({"TRANSFER_IN", "TRANSFER_OUT"})
TRANSFER_TRANSACTION_CODES = frozenset({"transfer", "ach", "wire"})

# Statuses that need the client to re-authenticate before Plaid will answer.
_BLOCKED_STATUSES = frozenset({ItemStatus.ERROR.value, ItemStatus.LOGIN_REQUIRED.value})


@dataclass
class TransactionSyncResult:
    """Outcome of syncing one Item."""

    item_id: str
    success: bool
    plaid_item_id: str = ""
    added: int = 0
    modified: int = 0
    removed: int = 0
    cursor: str | None = None
    is_initial_sync: bool = False
    error: str | None = None


@dataclass
class _SyncBatch:
    cursor: str | None
    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


def is_transfer(txn: ProviderTransaction) -> bool:
    """Detect transfers from the personal finance category or transaction code."""
    if txn.primary_category in TRANSFER_CATEGORIES:
        return True
    return bool(txn.transaction_code) and txn.transaction_code.lower() in TRANSFER_TRANSACTION_CODES


class TransactionSyncService:
    """Service for applying Plaid ``/transactions/sync`` output to the ledger.

    The cursor is only advanced after every page has been fetched and
    applied, so a failed sync leaves the Item exactly where it was.
    """

    # Shared across instances so overlapping sweeps in one process do not
    # pull the same Items twice.
    _sweep_lock = threading.Lock()

    def __init__(self, provider: AggregationProvider, cipher: SecretCipher, max_retries: int = 3):
        self._provider = provider
        self._cipher = cipher
        self._max_retries = max_retries

    def sync_item(self, db: Session, item_id: str) -> TransactionSyncResult:
        """Sync transactions for one Item and commit the result.

        Failures are rolled back and reported on the returned result rather
        than raised.
        """
        item = db.get(Item, item_id)
        if item is None:
            return TransactionSyncResult(item_id=item_id, success=False, error="Item not found")

        result = TransactionSyncResult(
            item_id=item.id,
            success=False,
            plaid_item_id=item.plaid_item_id,
            cursor=item.transactions_cursor,
        )
        if item.is_archived:
            result.error = "Item is archived"
            return result
        if item.status in _BLOCKED_STATUSES:
            result.error = f"Item is in {item.status} state. Re-authentication required."
            return result

        account_map = {
            plaid_account_id: account_id
            for account_id, plaid_account_id in db.query(Account.id, Account.plaid_account_id)
            .filter(Account.item_id == item.id, Account.is_active.is_(True))
            .all()
        }
        if not account_map:
            result.error = "No active accounts for this item"
            return result

        logger.info("Starting transaction sync for item %s", item.id)
        result.is_initial_sync = item.transactions_cursor is None
        try:
            access_token = self._cipher.decrypt(db, item.access_token, item.access_token_key_id)
            batch = self._fetch_all_updates(access_token, item.transactions_cursor)
            added, modified, removed = self._apply_updates(db, batch, account_map)

            now = utcnow()
            item.transactions_cursor = batch.cursor or item.transactions_cursor
            item.transactions_cursor_updated_at = now
            item.transactions_last_successful_update = now
            item.has_sync_updates = False
            db.commit()
        except (ProviderError, CipherError, SQLAlchemyError) as e:
            db.rollback()
            logger.error("Transaction sync failed for item %s: %s", item_id, e)
            result.error = str(e)
            return result

        result.success = True
        result.added, result.modified, result.removed = added, modified, removed
        result.cursor = batch.cursor
        logger.info(
            "Transaction sync complete for item %s: %d added, %d modified, %d removed",
            item_id, added, modified, removed,
        )
        return result

    @classmethod
    def is_sweep_in_progress(cls) -> bool:
        acquired = cls._sweep_lock.acquire(blocking=False)
        if acquired:
            cls._sweep_lock.release()
            return False
        return True

    def sync_pending_items(self, db: Session) -> list[TransactionSyncResult]:
        """Sync every active Item flagged by a SYNC_UPDATES_AVAILABLE webhook.

        Raises:
            ValueError: Another sweep is already running.
        """
        if not self._sweep_lock.acquire(blocking=False):
            raise ValueError("Pending item sync already in progress")
        try:
            return self._sync_pending_items(db)
        finally:
            self._sweep_lock.release()

    def _sync_pending_items(self, db: Session) -> list[TransactionSyncResult]:
        item_ids = [
            item_id
            for (item_id,) in db.query(Item.id)
            .filter(
                Item.has_sync_updates.is_(True),
                Item.is_archived.is_(False),
                Item.status == ItemStatus.ACTIVE.value,
            )
            .order_by(Item.updated_at)
            .all()
        ]
        logger.info("Found %d item(s) with pending sync updates", len(item_ids))
        return [self.sync_item(db, item_id) for item_id in item_ids]

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def _fetch_all_updates(self, access_token: str, cursor: str | None) -> _SyncBatch:
        """Page until ``has_more`` is false.

        On a mutation-during-pagination error every page is discarded and
        the walk restarts from the original cursor.
        """
        retries = 0
        while True:
            try:
                return self._fetch_pages(access_token, cursor)
            except ProviderAPIError as e:
                if e.error_code != MUTATION_DURING_PAGINATION:
                    raise
                retries += 1
                logger.warning(
                    "%s, restarting from original cursor (attempt %d/%d)",
                    MUTATION_DURING_PAGINATION, retries, self._max_retries,
                )
                if retries >= self._max_retries:
                    raise

    def _fetch_pages(self, access_token: str, cursor: str | None) -> _SyncBatch:
        batch = _SyncBatch(cursor=cursor)
        has_more = True
        page_count = 0
        while has_more:
            page_count += 1
            page = self._provider.sync_transactions(access_token, batch.cursor)
            batch.added.extend(page.added)
            batch.modified.extend(page.modified)
            batch.removed.extend(page.removed)
            batch.cursor = page.next_cursor or batch.cursor
            has_more = page.has_more
            logger.debug(
                "Page %d: +%d added, %d modified, %d removed, has_more=%s",
                page_count, len(page.added), len(page.modified), len(page.removed), has_more,
            )
        return batch

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def _apply_updates(
        self,
        db: Session,
        batch: _SyncBatch,
        account_map: dict[str, str],
    ) -> tuple[int, int, int]:
        """Write added/modified/removed transactions.

        When a pending transaction posts, Plaid removes the pending id and
        adds a posted row whose ``pending_transaction_id`` points back to
        it. The pending row is rewritten in place as the posted one.
        """
        added_count = modified_count = removed_count = 0
        removed_ids = set(batch.removed)
        replaced_ids: set[str] = set()

        for txn in batch.added:
            account_id = account_map.get(txn.account_id)
            if account_id is None:
                logger.warning("Unknown account %s for transaction %s", txn.account_id, txn.transaction_id)
                continue
            if txn.pending_transaction_id and txn.pending_transaction_id in removed_ids:
                self._replace_pending(db, txn, account_id)
                replaced_ids.add(txn.pending_transaction_id)
                modified_count += 1
            else:
                self._upsert(db, txn, account_id, "added")
                added_count += 1

        for txn in batch.modified:
            account_id = account_map.get(txn.account_id)
            if account_id is None:
                logger.warning("Unknown account %s for transaction %s", txn.account_id, txn.transaction_id)
                continue
            self._upsert(db, txn, account_id, "modified")
            modified_count += 1

        for transaction_id in batch.removed:
            if transaction_id in replaced_ids:
                continue
            row = (
                db.query(Transaction)
                .filter(Transaction.plaid_transaction_id == transaction_id)
                .first()
            )
            if row is not None:
                row.is_removed = True
                row.sync_status = "removed"
            removed_count += 1

        db.flush()
        return added_count, modified_count, removed_count

    def _replace_pending(self, db: Session, txn: ProviderTransaction, account_id: str) -> None:
        posted = (
            db.query(Transaction)
            .filter(Transaction.plaid_transaction_id == txn.transaction_id)
            .first()
        )
        pending = (
            db.query(Transaction)
            .filter(Transaction.plaid_transaction_id == txn.pending_transaction_id)
            .first()
        )
        if posted is not None:
            # Posted row already stored by an earlier run; retire the pending one.
            self._fill(posted, txn, account_id, "modified")
            if pending is not None:
                pending.is_removed = True
                pending.sync_status = "removed"
            return
        if pending is None:
            self._upsert(db, txn, account_id, "added")
            return
        logger.debug("Replacing pending transaction %s with posted %s", txn.pending_transaction_id, txn.transaction_id)
        pending.plaid_transaction_id = txn.transaction_id
        self._fill(pending, txn, account_id, "modified")

    def _upsert(self, db: Session, txn: ProviderTransaction, account_id: str, status: str) -> None:
        row = (
            db.query(Transaction)
            .filter(Transaction.plaid_transaction_id == txn.transaction_id)
            .first()
        )
        if row is None:
            row = Transaction(plaid_transaction_id=txn.transaction_id)
            db.add(row)
            db.flush()
        self._fill(row, txn, account_id, status)

    @staticmethod
    def _fill(row: Transaction, txn: ProviderTransaction, account_id: str, status: str) -> None:
        row.account_id = account_id
        row.transaction_date = txn.date
        row.authorized_date = txn.authorized_date
        row.posted_date = None if txn.pending else txn.date
        row.description = txn.name
        row.merchant_name = txn.merchant_name
        row.amount = txn.amount
        row.iso_currency_code = txn.iso_currency_code
        row.payment_channel = txn.payment_channel
        row.pending = txn.pending
        row.is_transfer = is_transfer(txn)
        row.primary_category = txn.primary_category
        row.detailed_category = txn.detailed_category
        row.sync_status = status
        row.is_removed = False
