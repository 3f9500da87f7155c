"""
Verifier model for in-flight OAuth / PKCE round trips and same-browser
magic links.
"""

import uuid
from sqlalchemy import Column, String, Index, Uuid
from authcore.core.database import Base, UTCDateTime, utcnow


class Verifier(Base):
    """
    Short-lived record consumed exactly once per round trip.

    `signature` is the OAuth state / PKCE value bound after the redirect is
    built; the callback must present the same value.
    """
    __tablename__ = "auth_verifiers"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    signature = Column(String, nullable=True)
    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)
    expiration_time = Column(UTCDateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_auth_verifiers_expiration_time", "expiration_time"),
    )

    def __repr__(self):
        return f"<Verifier(id={self.id}, signed={self.signature is not None}, expiration_time={self.expiration_time})>"
