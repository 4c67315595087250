"""Transaction model - a synced bank transaction."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Transaction(Base):
    """A transaction pulled from Plaid's cursor sync endpoint.

    Removed transactions are flagged rather than deleted, and transactions
    of a revoked Item are archived so they drop out of client reporting.
    """

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    plaid_transaction_id = Column(String, unique=True, index=True, nullable=False)
    transaction_date = Column(Date, nullable=False)
    authorized_date = Column(Date, nullable=True)
    posted_date = Column(Date, nullable=True)
    description = Column(String, nullable=False, default="")
    merchant_name = Column(String, nullable=True)
    amount = Column(Numeric(18, 2), nullable=False)
    iso_currency_code = Column(String(3), nullable=True)
    payment_channel = Column(String, nullable=True)
    pending = Column(Boolean, nullable=False, default=False)
    is_transfer = Column(Boolean, nullable=False, default=False)
    primary_category = Column(String, nullable=True)
    detailed_category = Column(String, nullable=True)
    sync_status = Column(String, nullable=False, default="added")  # "added" | "modified" | "removed"
    is_removed = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime, nullable=True)
    archive_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    account = relationship("Account", back_populates="transactions")
