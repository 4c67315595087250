"""WebhookLogEntry model - audit and idempotency record for webhook deliveries."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from database import Base
from models.utils import utcnow


class WebhookLogEntry(Base):
    """One row per distinct webhook delivery.

    ``webhook_id`` is the dedup fingerprint; its unique constraint is what
    makes concurrent duplicate deliveries collapse to a single row. Rows
    are only ever updated to mark them processed.
    """

    __tablename__ = "webhook_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_id = Column(String, unique=True, index=True, nullable=False)
    webhook_type = Column(String, nullable=False)
    webhook_code = Column(String, nullable=False)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=True)
    plaid_item_id = Column(String, nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
