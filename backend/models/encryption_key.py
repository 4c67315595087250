"""EncryptionKey model - versioned symmetric keys for access token encryption."""

from sqlalchemy import Boolean, Column, DateTime, Integer, LargeBinary, String

from database import Base
from models.utils import utcnow


class EncryptionKey(Base):
    """A 256-bit symmetric key used by the SecretCipher.

    At most one row per ``key_name`` is active at a time. Rotated keys stay
    in the table (inactive) so ciphertext written under them can still be
    decrypted by numeric id. Rows are never deleted.
    """

    __tablename__ = "encryption_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key_name = Column(String, nullable=False, index=True)
    key_value = Column(LargeBinary(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    deactivated_at = Column(DateTime, nullable=True)
