"""
Refresh token model backing long-lived sessions.

Tokens form a single-use chain per session: each refresh marks the presented
token rotated and issues a child. Presenting a rotated token again is a reuse
signal.
"""

import uuid
from sqlalchemy import Column, String, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship
from authcore.core.database import Base, UTCDateTime, utcnow


class RefreshToken(Base):
    __tablename__ = "auth_refresh_tokens"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    session_id = Column(Uuid(as_uuid=True), ForeignKey("auth_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Uuid(as_uuid=True), nullable=True)

    secret_hash = Column(String(64), nullable=False)

    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)
    expiration_time = Column(UTCDateTime(timezone=True), nullable=False)
    rotated_at = Column(UTCDateTime(timezone=True), nullable=True)  # Set once, on first use

    session = relationship("AuthSession", back_populates="refresh_tokens")

    __table_args__ = (
        Index("ix_auth_refresh_tokens_expiration_time", "expiration_time"),
    )

    @property
    def is_rotated(self) -> bool:
        return self.rotated_at is not None

    def __repr__(self):
        return f"<RefreshToken(id={self.id}, session_id={self.session_id}, rotated={self.is_rotated})>"
