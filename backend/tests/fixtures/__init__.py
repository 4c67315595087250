"""Test fixtures and sample data."""
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from models import (
    LINK_TOKEN_PENDING,
    Account,
    Client,
    Item,
    ItemStatus,
    LinkToken,
    Transaction,
)
from services.secret_cipher import SecretCipher
from services.webhook_intake import WebhookIntake

TEST_KEY_NAME = "plaid_access_token_v1"


def create_client(db: Session, first_name: str = "Ada", last_name: str = "Lovelace") -> Client:
    client = Client(first_name=first_name, last_name=last_name, email="ada@example.com")
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


def create_link_token(
    db: Session,
    client: Client,
    token: str = "link-sandbox-abc123",
    status: str = LINK_TOKEN_PENDING,
) -> LinkToken:
    link = LinkToken(
        link_token=token,
        client_id=client.id,
        hosted_link_url=f"https://hosted.plaid.com/link/{token}",
        status=status,
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    return link


def create_item(
    db: Session,
    cipher: SecretCipher,
    client: Client,
    plaid_item_id: str = "item-sandbox-old",
    institution_id: str | None = "ins_1",
    access_token: str = "access-sandbox-old",
    status: str = ItemStatus.ACTIVE.value,
    cursor: str | None = None,
    is_archived: bool = False,
) -> Item:
    """Create an Item whose access token is sealed with ``cipher``."""
    ciphertext, key_id = cipher.encrypt(db, access_token)
    item = Item(
        client_id=client.id,
        plaid_item_id=plaid_item_id,
        institution_id=institution_id,
        institution_name="First Platypus Bank",
        status=status,
        access_token=ciphertext,
        access_token_key_id=key_id,
        transactions_cursor=cursor,
        is_archived=is_archived,
        has_sync_updates=False,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def create_account(
    db: Session,
    item: Item,
    plaid_account_id: str = "plaid_acc_0001",
    name: str = "Plaid Checking",
    is_active: bool = True,
) -> Account:
    account = Account(
        item_id=item.id,
        plaid_account_id=plaid_account_id,
        name=name,
        account_type="depository",
        account_subtype="checking",
        mask=plaid_account_id[-4:],
        is_active=is_active,
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def create_transaction(
    db: Session,
    account: Account,
    plaid_transaction_id: str = "txn_0001",
    amount: str = "12.50",
    pending: bool = False,
) -> Transaction:
    txn = Transaction(
        account_id=account.id,
        plaid_transaction_id=plaid_transaction_id,
        transaction_date=date(2024, 3, 1),
        description="Coffee Shop",
        amount=Decimal(amount),
        iso_currency_code="USD",
        pending=pending,
        sync_status="added",
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


@contextmanager
def concurrent_log_insert():
    """Make the first webhook_log lookup miss, as if another worker
    inserted the same delivery after it ran.

    The row must already exist; the insert then trips the unique constraint.
    """
    real_lookup = WebhookIntake._find_existing
    calls = []

    def lookup(db, webhook_id):
        calls.append(webhook_id)
        if len(calls) == 1:
            return None
        return real_lookup(db, webhook_id)

    with patch.object(WebhookIntake, "_find_existing", staticmethod(lookup)):
        yield calls

@pytest.fixture
def cipher(db):
    """SecretCipher with one active key seeded in the test database."""
    secret_cipher = SecretCipher(TEST_KEY_NAME)
    secret_cipher.create_key(db)
    db.commit()
    return secret_cipher


@pytest.fixture
def client_record(db):
    return create_client(db)


@pytest.fixture
def link_token(db, client_record):
    return create_link_token(db, client_record)


@pytest.fixture
def item(db, cipher, client_record):
    return create_item(db, cipher, client_record)


@pytest.fixture
def account(db, item):
    return create_account(db, item)
