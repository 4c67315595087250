"""Client model - a CPA-managed client who owns bank connections."""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Client(Base):
    """A CPA client record.

    Clients are maintained by the CRUD surface; this core only reads them
    as the owner of Items and LinkTokens.
    """

    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    items = relationship("Item", back_populates="client")
    link_tokens = relationship("LinkToken", back_populates="client")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
