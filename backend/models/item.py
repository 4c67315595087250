"""Item model - one Plaid bank connection owned by a client."""

from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class ItemStatus(str, Enum):
    """Lifecycle status of an Item."""

    ACTIVE = "active"
    LOGIN_REQUIRED = "login_required"
    NEEDS_UPDATE = "needs_update"
    ERROR = "error"
    ARCHIVED = "archived"


class Item(Base):
    """A Plaid Item representing one linked financial institution for a client.

    The access token is stored encrypted (``nonce || tag || ciphertext``)
    together with the numeric id of the EncryptionKey that sealed it.
    At most one non-archived Item exists per (client, institution).
    """

    __tablename__ = "items"
    __table_args__ = (
        Index(
            "uix_items_client_institution_live",
            "client_id",
            "institution_id",
            unique=True,
            sqlite_where=text("is_archived = 0"),
            postgresql_where=text("is_archived = false"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    plaid_item_id = Column(String, unique=True, index=True, nullable=False)
    institution_id = Column(String, nullable=True)
    institution_name = Column(String, nullable=True)
    status = Column(String, nullable=False, default=ItemStatus.ACTIVE.value)

    last_error_code = Column(String, nullable=True)
    last_error_message = Column(Text, nullable=True)
    last_error_timestamp = Column(DateTime, nullable=True)
    consent_expiration_time = Column(DateTime, nullable=True)

    access_token = Column(LargeBinary, nullable=False)
    access_token_key_id = Column(Integer, ForeignKey("encryption_keys.id"), nullable=False)

    transactions_cursor = Column(Text, nullable=True)
    transactions_cursor_updated_at = Column(DateTime, nullable=True)
    transactions_last_successful_update = Column(DateTime, nullable=True)
    has_sync_updates = Column(Boolean, nullable=False, default=False)

    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    client = relationship("Client", back_populates="items")
    accounts = relationship("Account", back_populates="item")

    def record_error(self, code: str | None, message: str | None) -> None:
        self.last_error_code = code
        self.last_error_message = message
        self.last_error_timestamp = utcnow() if code else self.last_error_timestamp

    def clear_error(self) -> None:
        self.last_error_code = None
        self.last_error_message = None
        self.last_error_timestamp = None

    def archive(self) -> None:
        self.status = ItemStatus.ARCHIVED.value
        self.is_archived = True

    def activate(self) -> None:
        """Set ``active``, clear errors and lift any archive."""
        self.status = ItemStatus.ACTIVE.value
        self.is_archived = False
        self.clear_error()
