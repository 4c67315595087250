"""SQLAlchemy ORM models."""

from .account import Account
from .client import Client
from .encryption_key import EncryptionKey
from .item import Item, ItemStatus
from .link_token import LINK_TOKEN_PENDING, LINK_TOKEN_USED, LinkSession, LinkToken
from .transaction import Transaction
from .utils import generate_uuid, utcnow
from .webhook_log import WebhookLogEntry

__all__ = ["Account", "Client", "EncryptionKey", "Item", "ItemStatus", "LINK_TOKEN_PENDING", "LINK_TOKEN_USED", "LinkSession", "LinkToken", "Transaction", "WebhookLogEntry", "generate_uuid", "utcnow"]
