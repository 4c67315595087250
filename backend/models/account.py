"""Account model - a bank account exposed by a Plaid Item."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Account(Base):
    """An account belonging to exactly one Item.

    ``plaid_account_id`` never changes once the row exists. Accounts the
    user deselects (or revokes) are kept with ``is_active = False``.
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=False, index=True)
    plaid_account_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    official_name = Column(String, nullable=True)
    account_type = Column(String, nullable=True)  # e.g., "depository", "credit"
    account_subtype = Column(String, nullable=True)  # e.g., "checking"
    mask = Column(String, nullable=True)
    current_balance = Column(Numeric(18, 2), nullable=True)
    available_balance = Column(Numeric(18, 2), nullable=True)
    credit_limit = Column(Numeric(18, 2), nullable=True)
    iso_currency_code = Column(String(3), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_updated_datetime = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    item = relationship("Item", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account")
