"""
Account model: one row per (provider, provider_account_id).

Links an external identity (OAuth subject, email address, phone number,
credentials login) to the user that owns it.
"""

import uuid
from sqlalchemy import Column, String, ForeignKey, Index, JSON, Uuid
from sqlalchemy.orm import relationship
from authcore.core.database import Base, UTCDateTime, utcnow


class Account(Base):
    """
    External identity linked to a user.

    - (provider, provider_account_id) is unique: exactly one account per
      external identity per provider
    - `secret` holds the bcrypt hash for credentials providers only
    - `provider_data` keeps provider-specific metadata
    """
    __tablename__ = "auth_accounts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    # Provider information
    provider = Column(String, nullable=False)
    provider_account_id = Column(String, nullable=False)

    # Credentials providers only (hashed)
    secret = Column(String, nullable=True)

    # Provider-specific metadata
    provider_data = Column(JSON, nullable=True, default=dict)

    # Timestamps
    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(timezone=True), nullable=True, onupdate=utcnow)

    # Relationships
    user = relationship("User", back_populates="accounts")

    __table_args__ = (
        Index("uq_auth_accounts_provider_account", "provider", "provider_account_id", unique=True),
    )

    def __repr__(self):
        return f"<Account(provider={self.provider}, provider_account_id={self.provider_account_id}, user_id={self.user_id})>"
