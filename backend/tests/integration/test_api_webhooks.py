"""Integration tests for the Plaid webhook endpoint."""

from unittest.mock import patch

import pytest

from models import LINK_TOKEN_USED, Account, Item, ItemStatus, LinkToken, WebhookLogEntry
from services.exceptions import TransientStorageError
from services.webhook_intake import WebhookIntake
from tests.fixtures import create_account
from tests.fixtures.mocks import SAMPLE_WEBHOOK_TIME

WEBHOOK_URL = "/api/plaid/webhook"


@pytest.fixture(autouse=True)
def fixed_clock():
    """Pin the intake clock so repeated deliveries share a dedup bucket."""
    with patch("services.webhook_intake.utcnow", return_value=SAMPLE_WEBHOOK_TIME):
        yield


def _item_error(code="ITEM_LOGIN_REQUIRED"):
    return {
        "webhook_type": "ITEM",
        "webhook_code": "ERROR",
        "item_id": "item-sandbox-old",
        "error": {"error_type": "ITEM_ERROR", "error_code": code, "error_message": "login needed"},
        "environment": "sandbox",
    }


class TestItemWebhooks:
    def test_item_error_updates_status(self, client, db, item):
        response = client.post(WEBHOOK_URL, json=_item_error())

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["webhook_id"].startswith("wh_")
        assert body["log_id"] is not None
        db.refresh(item)
        assert item.status == ItemStatus.LOGIN_REQUIRED.value
        assert item.last_error_code == "ITEM_LOGIN_REQUIRED"

    def test_duplicate_delivery_applied_once(self, client, db, item):
        first = client.post(WEBHOOK_URL, json=_item_error())
        # Operator fixes the item between deliveries; the replay must not undo it
        item.status = ItemStatus.ACTIVE.value
        db.commit()

        second = client.post(WEBHOOK_URL, json=_item_error())

        assert first.json()["status"] == "success"
        assert second.status_code == 200
        assert second.json()["status"] == "duplicate"
        assert second.json()["webhook_id"] == first.json()["webhook_id"]
        assert db.query(WebhookLogEntry).count() == 1
        db.refresh(item)
        assert item.status == ItemStatus.ACTIVE.value

    def test_login_repaired(self, client, db, item):
        client.post(WEBHOOK_URL, json=_item_error())
        response = client.post(
            WEBHOOK_URL,
            json={"webhook_type": "ITEM", "webhook_code": "LOGIN_REPAIRED", "item_id": "item-sandbox-old"},
        )

        assert response.json()["status"] == "success"
        db.refresh(item)
        assert item.status == ItemStatus.ACTIVE.value
        assert item.last_error_code is None

    def test_permission_revoked(self, client, db, item):
        account = create_account(db, item)

        response = client.post(
            WEBHOOK_URL,
            json={"webhook_type": "ITEM", "webhook_code": "USER_PERMISSION_REVOKED", "item_id": "item-sandbox-old"},
        )

        assert response.json()["status"] == "success"
        db.expire_all()
        assert db.get(Item, item.id).is_archived is True
        assert db.get(Account, account.id).is_active is False

    def test_unknown_item_acknowledged_with_error(self, client, db):
        response = client.post(WEBHOOK_URL, json=_item_error())

        assert response.status_code == 200
        assert response.json()["status"] == "error"
        entry = db.query(WebhookLogEntry).one()
        assert entry.processed is True
        assert "Item not found" in entry.error_message

    def test_sync_updates_available_flags_item(self, client, db, item):
        item.transactions_cursor = "cursor-1"
        db.commit()

        response = client.post(
            WEBHOOK_URL,
            json={
                "webhook_type": "TRANSACTIONS",
                "webhook_code": "SYNC_UPDATES_AVAILABLE",
                "item_id": "item-sandbox-old",
                "initial_update_complete": True,
                "historical_update_complete": False,
            },
        )

        assert response.json()["status"] == "success"
        db.refresh(item)
        assert item.has_sync_updates is True


class TestMalformedWebhooks:
    def test_invalid_json(self, client, db):
        response = client.post(
            WEBHOOK_URL, content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert db.query(WebhookLogEntry).count() == 0

    def test_missing_webhook_code(self, client, db):
        response = client.post(WEBHOOK_URL, json={"webhook_type": "ITEM", "item_id": "x"})
        assert response.status_code == 400
        assert db.query(WebhookLogEntry).count() == 0

    def test_missing_routing_field(self, client, db):
        response = client.post(WEBHOOK_URL, json={"webhook_type": "ITEM", "webhook_code": "ERROR"})
        assert response.status_code == 400
        assert db.query(WebhookLogEntry).count() == 0

    def test_non_object_body(self, client):
        response = client.post(WEBHOOK_URL, json=["ITEM", "ERROR"])
        assert response.status_code == 400


class TestStorageFailure:
    def test_log_write_failure_returns_503(self, client, item):
        with patch.object(WebhookIntake, "record", side_effect=TransientStorageError("db locked")):
            response = client.post(WEBHOOK_URL, json=_item_error())

        assert response.status_code == 503


class TestLinkSessionWebhook:
    def test_session_finished_links_item(self, client, db, link_token, mock_plaid_client, cipher):
        response = client.post(
            WEBHOOK_URL,
            json={
                "webhook_type": "LINK",
                "webhook_code": "SESSION_FINISHED",
                "link_token": link_token.link_token,
                "link_session_id": "session-1",
                "status": "SUCCESS",
                "public_tokens": ["public-sandbox-new"],
                "environment": "sandbox",
            },
        )

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        item = db.query(Item).one()
        assert item.plaid_item_id == "item-sandbox-new"
        assert cipher.decrypt(db, item.access_token, item.access_token_key_id) == "access-sandbox-new"
        assert db.query(Account).filter_by(item_id=item.id).count() == 2
        assert db.get(LinkToken, link_token.link_token).status == LINK_TOKEN_USED

    def test_unknown_link_token(self, client, db):
        response = client.post(
            WEBHOOK_URL,
            json={
                "webhook_type": "LINK",
                "webhook_code": "SESSION_FINISHED",
                "link_token": "link-sandbox-missing",
                "status": "SUCCESS",
                "public_tokens": ["public-sandbox-new"],
            },
        )

        assert response.status_code == 200
        assert response.json()["status"] == "error"
        assert db.query(Item).count() == 0
