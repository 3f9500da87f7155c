"""
CRUD operations for accounts.

Accounts are looked up by (provider, provider_account_id), which is unique.
None of these commit; callers own the transaction boundary.
"""

from typing import Optional
from uuid import UUID
from sqlalchemy.orm import Session

from authcore.models.account import Account


def get_account(db: Session, account_id: UUID) -> Optional[Account]:
    """Get account by id."""
    return db.query(Account).filter(Account.id == account_id).first()


def get_by_provider_account(db: Session, provider: str, provider_account_id: str) -> Optional[Account]:
    """
    Get the account for an external identity.

    Args:
        db: Database session
        provider: Provider id (e.g. "github")
        provider_account_id: Identity at the provider (OAuth subject, email, phone)

    Returns:
        Account or None
    """
    return db.query(Account).filter(
        Account.provider == provider,
        Account.provider_account_id == provider_account_id
    ).first()


def create_account(
    db: Session,
    user_id: UUID,
    provider: str,
    provider_account_id: str,
    secret_hash: Optional[str] = None,
    provider_data: Optional[dict] = None
) -> Account:
    """
    Link a new external identity to a user.

    A concurrent insert of the same (provider, provider_account_id) fails the
    flush with IntegrityError.
    """
    account = Account(
        user_id=user_id,
        provider=provider,
        provider_account_id=provider_account_id,
        secret=secret_hash,
        provider_data=provider_data or {},
    )
    db.add(account)
    db.flush()
    return account


def set_secret(db: Session, account: Account, secret_hash: str) -> Account:
    """Replace the stored credentials hash."""
    account.secret = secret_hash
    db.flush()
    return account
