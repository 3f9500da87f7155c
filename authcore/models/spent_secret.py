"""
Tombstones for redeemed or superseded codes and consumed verifiers.

Live rows are deleted the moment they are used, so a second attempt would
otherwise look like an unknown code. A tombstone lets that attempt be
reported as "already used" until the sweep removes it.
"""

import enum
import uuid
from sqlalchemy import Column, String, Enum, Index, Uuid
from authcore.core.database import Base, UTCDateTime, utcnow


class SpentReason(str, enum.Enum):
    REDEEMED = "redeemed"
    INVALIDATED = "invalidated"
    CONSUMED = "consumed"


class SpentSecret(Base):
    __tablename__ = "auth_spent_secrets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Provider id for codes, "verifier" for verifiers
    scope = Column(String, nullable=False)
    secret_hash = Column(String(64), nullable=False)
    identifier = Column(String, nullable=True)
    reason = Column(Enum(SpentReason, values_callable=lambda x: [e.value for e in x]), nullable=False)
    spent_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_auth_spent_secrets_scope_hash", "scope", "secret_hash"),
        Index("ix_auth_spent_secrets_spent_at", "spent_at"),
    )

    def __repr__(self):
        return f"<SpentSecret(scope={self.scope}, reason={self.reason.value})>"
