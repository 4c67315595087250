"""LinkToken and LinkSession models - pending and historical Link attempts."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import utcnow

LINK_TOKEN_PENDING = "pending"
LINK_TOKEN_USED = "used"


class LinkToken(Base):
    """A Hosted Link token issued to a client.

    Keyed by the token string itself. Moves from ``pending`` to ``used``
    once a successful session has been processed. The ``last_session_*``
    columns mirror the most recent LinkSession for the CPA dashboard.
    """

    __tablename__ = "link_tokens"

    link_token = Column(String, primary_key=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    hosted_link_url = Column(String, nullable=True)
    status = Column(String, nullable=False, default=LINK_TOKEN_PENDING)
    expires_at = Column(DateTime, nullable=True)
    used_at = Column(DateTime, nullable=True)
    link_session_id = Column(String, nullable=True)
    last_session_status = Column(String, nullable=True)
    last_session_error_code = Column(String, nullable=True)
    last_session_error_message = Column(Text, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)

    client = relationship("Client", back_populates="link_tokens")
    sessions = relationship("LinkSession", back_populates="link")

    @property
    def is_used(self) -> bool:
        return self.status == LINK_TOKEN_USED


class LinkSession(Base):
    """Append-only history row for one Link session attempt."""

    __tablename__ = "link_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    link_token = Column(String, ForeignKey("link_tokens.link_token"), nullable=False, index=True)
    link_session_id = Column(String, nullable=True)
    status = Column(String, nullable=False)
    error_code = Column(String, nullable=True)
    error_type = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    link = relationship("LinkToken", back_populates="sessions")
