"""Unit tests for ItemStatusReconciler."""

from datetime import datetime
from unittest.mock import patch

import pytest

from models import Account, Item, ItemStatus, Transaction
from services.exceptions import NotFoundError
from services.item_status_service import ARCHIVE_REASON_REVOKED, plan_transition
from tests.fixtures import create_account, create_transaction


def _event(code, webhook_type="ITEM", item_id="item-sandbox-old", **kwargs):
    return {"webhook_type": webhook_type, "webhook_code": code, "item_id": item_id, **kwargs}


def _error_event(error_code, message="something went wrong"):
    return _event(
        "ERROR",
        error={"error_code": error_code, "error_message": message, "error_type": "ITEM_ERROR"},
    )


class TestPlanTransition:
    def test_login_required(self):
        transition = plan_transition(_error_event("ITEM_LOGIN_REQUIRED"))
        assert transition.status == ItemStatus.LOGIN_REQUIRED
        assert transition.records_error is True

    def test_other_error(self):
        transition = plan_transition(_error_event("INSTITUTION_DOWN"))
        assert transition.status == ItemStatus.ERROR
        assert transition.error_code == "INSTITUTION_DOWN"

    def test_pending_expiration(self):
        transition = plan_transition(_event("PENDING_EXPIRATION"))
        assert transition.status == ItemStatus.LOGIN_REQUIRED
        assert transition.records_error is False

    def test_legacy_login_required_code(self):
        transition = plan_transition(_event("ITEM_LOGIN_REQUIRED"))
        assert transition.status == ItemStatus.LOGIN_REQUIRED
        assert transition.error_code == "ITEM_LOGIN_REQUIRED"

    def test_unhandled_code(self):
        assert plan_transition(_event("WEBHOOK_UPDATE_ACKNOWLEDGED")) is None


class TestStatusTransitions:
    def test_login_required_error(self, db, item, reconciler):
        reconciler.apply(db, _error_event("ITEM_LOGIN_REQUIRED", "credentials changed"))
        db.commit()

        db.refresh(item)
        assert item.status == ItemStatus.LOGIN_REQUIRED.value
        assert item.last_error_code == "ITEM_LOGIN_REQUIRED"
        assert item.last_error_message == "credentials changed"
        assert item.last_error_timestamp is not None

    def test_other_error(self, db, item, reconciler):
        reconciler.apply(db, _error_event("INSTITUTION_NOT_RESPONDING"))
        db.commit()

        db.refresh(item)
        assert item.status == ItemStatus.ERROR.value
        assert item.last_error_code == "INSTITUTION_NOT_RESPONDING"

    def test_login_repaired_clears_error(self, db, item, reconciler):
        reconciler.apply(db, _error_event("ITEM_LOGIN_REQUIRED"))
        reconciler.apply(db, _event("LOGIN_REPAIRED"))
        db.commit()

        db.refresh(item)
        assert item.status == ItemStatus.ACTIVE.value
        assert item.last_error_code is None
        assert item.last_error_message is None
        assert item.last_error_timestamp is None

    def test_pending_disconnect(self, db, item, reconciler):
        reconciler.apply(
            db,
            _event(
                "PENDING_DISCONNECT",
                reason="INSTITUTION_MIGRATION",
                consent_expiration_time="2024-06-01T00:00:00Z",
            ),
        )
        db.commit()

        db.refresh(item)
        assert item.status == ItemStatus.LOGIN_REQUIRED.value
        assert item.last_error_code is None
        assert item.consent_expiration_time is not None
        assert item.consent_expiration_time.year == 2024

    def test_pending_expiration_stores_consent_expiry(self, db, item, reconciler):
        reconciler.apply(
            db, _event("PENDING_EXPIRATION", consent_expiration_time="2026-12-01T00:00:00Z")
        )
        db.commit()

        db.refresh(item)
        assert item.status == ItemStatus.LOGIN_REQUIRED.value
        assert item.last_error_code is None
        assert item.consent_expiration_time.replace(tzinfo=None) == datetime(2026, 12, 1)

    def test_legacy_login_required_code(self, db, item, reconciler):
        reconciler.apply(db, _event("ITEM_LOGIN_REQUIRED"))
        db.commit()

        db.refresh(item)
        assert item.status == ItemStatus.LOGIN_REQUIRED.value
        assert item.last_error_code == "ITEM_LOGIN_REQUIRED"

    def test_new_accounts_available(self, db, item, reconciler):
        reconciler.apply(db, _event("NEW_ACCOUNTS_AVAILABLE"))
        db.commit()

        db.refresh(item)
        assert item.status == ItemStatus.NEEDS_UPDATE.value

    def test_replay_converges(self, db, item, reconciler):
        event = _error_event("ITEM_LOGIN_REQUIRED", "credentials changed")
        reconciler.apply(db, event)
        db.commit()
        first = (item.status, item.last_error_code, item.last_error_message)

        reconciler.apply(db, event)
        db.commit()

        db.refresh(item)
        assert (item.status, item.last_error_code, item.last_error_message) == first

    def test_unknown_item(self, db, reconciler):
        with pytest.raises(NotFoundError):
            reconciler.apply(db, _error_event("ITEM_LOGIN_REQUIRED") | {"item_id": "item-missing"})

    def test_unhandled_code_is_ignored(self, db, reconciler):
        assert reconciler.apply(db, _event("NEW_FEATURE_AVAILABLE", item_id="item-missing")) is None

    def test_webhook_update_acknowledged_is_ignored(self, db, item, reconciler):
        assert reconciler.apply(db, _event("WEBHOOK_UPDATE_ACKNOWLEDGED")) is None

    def test_archived_item_ignores_status_events(self, db, item, reconciler):
        item.archive()
        db.commit()

        reconciler.apply(db, _event("LOGIN_REPAIRED"))
        db.commit()

        db.refresh(item)
        assert item.status == ItemStatus.ARCHIVED.value
        assert item.is_archived is True


class TestRevocation:
    def test_permission_revoked_archives_everything(self, db, item, reconciler):
        checking = create_account(db, item, "plaid_acc_0001")
        savings = create_account(db, item, "plaid_acc_0002", name="Savings")
        create_transaction(db, checking, "txn_0001")
        create_transaction(db, savings, "txn_0002")

        reconciler.apply(
            db,
            _event("USER_PERMISSION_REVOKED", error={"error_code": "USER_PERMISSION_REVOKED"}),
        )

        db.expire_all()
        item = db.get(Item, item.id)
        assert item.status == ItemStatus.ARCHIVED.value
        assert item.is_archived is True
        assert item.last_error_code == "USER_PERMISSION_REVOKED"
        assert db.query(Account).filter(Account.is_active.is_(True)).count() == 0
        txns = db.query(Transaction).all()
        assert len(txns) == 2
        assert all(t.is_archived for t in txns)
        assert all(t.archive_reason == ARCHIVE_REASON_REVOKED for t in txns)
        assert all(t.archived_at is not None for t in txns)

    def test_transaction_archive_failure_keeps_revocation(self, db, item, reconciler):
        account = create_account(db, item)
        create_transaction(db, account)

        with patch(
            "services.item_status_service.ItemStatusReconciler._archive_transactions",
            side_effect=RuntimeError("disk full"),
        ):
            reconciler.apply(db, _event("USER_PERMISSION_REVOKED"))

        db.expire_all()
        assert db.get(Item, item.id).is_archived is True
        assert db.get(Account, account.id).is_active is False
        assert db.query(Transaction).one().is_archived is False

    def test_permission_revoked_replay_is_noop(self, db, item, reconciler):
        create_account(db, item)
        reconciler.apply(db, _event("USER_PERMISSION_REVOKED"))
        reconciler.apply(db, _event("USER_PERMISSION_REVOKED"))

        db.expire_all()
        assert db.get(Item, item.id).status == ItemStatus.ARCHIVED.value

    def test_account_revoked(self, db, item, reconciler):
        kept = create_account(db, item, "plaid_acc_0001")
        revoked = create_account(db, item, "plaid_acc_0002", name="Savings")

        reconciler.apply(db, _event("USER_ACCOUNT_REVOKED", account_id="plaid_acc_0002"))
        db.commit()

        db.expire_all()
        assert db.get(Account, kept.id).is_active is True
        assert db.get(Account, revoked.id).is_active is False
        assert db.get(Item, item.id).status == ItemStatus.ACTIVE.value

    def test_account_revoked_unknown_account(self, db, item, reconciler):
        with pytest.raises(NotFoundError):
            reconciler.apply(db, _event("USER_ACCOUNT_REVOKED", account_id="plaid_acc_missing"))


class TestSyncUpdates:
    def test_sync_updates_flags_item(self, db, item, reconciler):
        item.transactions_cursor = "cursor-1"
        db.commit()

        reconciler.apply(
            db, _event("SYNC_UPDATES_AVAILABLE", webhook_type="TRANSACTIONS")
        )
        db.commit()

        db.refresh(item)
        assert item.has_sync_updates is True

    def test_other_transactions_codes_ignored(self, db, item, reconciler):
        result = reconciler.apply(db, _event("DEFAULT_UPDATE", webhook_type="TRANSACTIONS"))

        assert result is None
        db.refresh(item)
        assert item.has_sync_updates is False
