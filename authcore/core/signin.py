"""
Sign-in flows.

Composes the code engine, the account linker and the session issuer:

- OAuth: start_oauth -> bind_oauth_state -> complete_oauth_sign_in
- Email / phone: send_code -> sign_in_with_code
- Credentials: sign_up_with_credentials / sign_in_with_credentials
- Any already-verified attempt: sign_in_with_attempt

Calls to external collaborators (provider adapters, code delivery) happen
outside the store transactions.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from authcore.core import sessions, verification
from authcore.core.config import Settings, settings
from authcore.core.database import run_in_transaction
from authcore.core.exceptions import (
    AccountAlreadyExistsError,
    InvalidCredentialsError,
    PostHookError,
    ProviderConfigError,
)
from authcore.core.linking import LinkingCallbacks, link_account
from authcore.core.providers import (
    AuthMethod,
    CredentialsProviderConfig,
    Profile,
    ProviderAdapter,
    ProviderRegistry,
    ProviderType,
    SignInAttempt,
    VerificationRequest,
)
from authcore.core.security import hash_secret, verify_secret
from authcore.core.sessions import SessionTokens
from authcore.crud import account as account_crud
from authcore.models.verifier import Verifier

logger = logging.getLogger(__name__)

# Compared against when the account does not exist, so both failure paths pay for a bcrypt check
_DUMMY_SECRET_HASH = None


@dataclass
class AuthConfig:
    registry: ProviderRegistry
    callbacks: LinkingCallbacks = field(default_factory=LinkingCallbacks)


@dataclass
class SignInResult:
    user_id: UUID
    account_id: UUID
    is_new_user: bool
    tokens: SessionTokens
    hook_error: Optional[PostHookError] = None


@dataclass(frozen=True)
class CodeSent:
    provider: str
    expiration_time: datetime
    expires_in_seconds: int


def build_auth_config(app_settings: Settings = settings, callbacks: Optional[LinkingCallbacks] = None) -> AuthConfig:
    """
    Build the auth configuration from settings.

    Raises:
        ProviderConfigError: Misconfigured AUTH_PROVIDERS (fatal at startup)
    """
    registry = ProviderRegistry.from_entries(app_settings.AUTH_PROVIDERS)
    return AuthConfig(registry=registry, callbacks=callbacks or LinkingCallbacks())


def normalize_identifier(provider, identifier: str) -> str:
    """Emails are compared lower-cased, phone numbers without separators."""
    if provider.type is ProviderType.PHONE:
        return Profile(phone=identifier).phone or ""
    return Profile(email=identifier).email or ""


def _method_for_code_provider(provider) -> AuthMethod:
    if provider.type is ProviderType.PHONE:
        return AuthMethod.PHONE
    return AuthMethod.EMAIL


def sign_in_with_attempt(db: Session, config: AuthConfig, attempt: SignInAttempt) -> SignInResult:
    """
    Link a verified sign-in attempt and start a session.

    A post-hook failure is carried on the result; the session is still created.
    """
    link = link_account(db, config.registry, attempt, config.callbacks)
    tokens = sessions.create_session(db, link.user_id)
    return SignInResult(
        user_id=link.user_id,
        account_id=link.account_id,
        is_new_user=link.is_new_user,
        tokens=tokens,
        hook_error=link.hook_error,
    )


def start_oauth(db: Session) -> Verifier:
    """Create the verifier that guards one OAuth round trip."""
    return verification.create_verifier(db)


def bind_oauth_state(db: Session, verifier_id: UUID, state: str) -> Verifier:
    """Attach the OAuth state / PKCE value sent to the provider."""
    return verification.sign_verifier(db, verifier_id, state)


def complete_oauth_sign_in(
    db: Session,
    config: AuthConfig,
    adapter: ProviderAdapter,
    verifier_id: UUID,
    state: str,
    params: Mapping[str, Any],
) -> SignInResult:
    """
    Finish an OAuth callback.

    1. Consume the verifier (exactly once, state must match)
    2. Ask the adapter for the verified profile (outside any transaction)
    3. Link and start a session

    Raises:
        CodeNotFoundError / CodeExpiredError / CodeAlreadyUsedError: bad verifier
        ProviderConfigError: adapter is not an OAuth provider
    """
    provider = config.registry.get(adapter.provider_id)
    if provider.type is not ProviderType.OAUTH:
        raise ProviderConfigError(f"Provider {provider.id} is not an OAuth provider")

    verification.consume_verifier(db, verifier_id, state)

    attempt = adapter.verified_attempt(params)
    if attempt.provider != provider.id:
        raise ProviderConfigError(f"Adapter for {provider.id} produced an attempt for {attempt.provider}")
    return sign_in_with_attempt(db, config, attempt)


def send_code(
    db: Session,
    config: AuthConfig,
    provider_id: str,
    identifier: str,
    verifier_id: Optional[UUID] = None,
) -> CodeSent:
    """
    Issue a code and hand it to the provider's delivery channel.

    Delivery runs after the code is committed. A delivery failure propagates
    to the caller; the code stays valid and can simply be reissued.
    """
    provider = config.registry.get_code_provider(provider_id)
    identifier = normalize_identifier(provider, identifier)

    issued = verification.issue_code(db, provider, identifier, verifier_id=verifier_id)

    if provider.send_verification_request is None:
        logger.warning(f"Provider {provider.id} has no delivery channel configured; code was not sent")
    else:
        provider.send_verification_request(VerificationRequest(
            provider=provider.id,
            identifier=identifier,
            code=issued.code,
            expires_in_seconds=issued.expires_in_seconds,
        ))

    return CodeSent(
        provider=provider.id,
        expiration_time=issued.expiration_time,
        expires_in_seconds=issued.expires_in_seconds,
    )


def sign_in_with_code(
    db: Session,
    config: AuthConfig,
    provider_id: str,
    code: str,
    identifier: Optional[str] = None,
    verifier_id: Optional[UUID] = None,
) -> SignInResult:
    """
    Redeem a code and sign the owner of the verified email/phone in.

    Raises:
        MalformedCodeError, CodeNotFoundError, CodeExpiredError, CodeAlreadyUsedError
    """
    provider = config.registry.get_code_provider(provider_id)
    if identifier is not None:
        identifier = normalize_identifier(provider, identifier)

    redeemed = verification.redeem_code(db, provider, code, identifier=identifier, verifier_id=verifier_id)

    if provider.type is ProviderType.CREDENTIALS:
        # Email verification for a password account: the account must exist
        account = account_crud.get_by_provider_account(db, provider.id, redeemed.identifier)
        if account is None:
            raise InvalidCredentialsError(f"No {provider.id} account for the redeemed code")
        tokens = sessions.create_session(db, account.user_id)
        return SignInResult(user_id=account.user_id, account_id=account.id, is_new_user=False, tokens=tokens)

    attempt = SignInAttempt(
        provider=provider.id,
        provider_account_id=redeemed.identifier,
        profile=redeemed.profile,
        auth_method_type=_method_for_code_provider(provider),
    )
    return sign_in_with_attempt(db, config, attempt)


def _credentials_provider(config: AuthConfig, provider_id: str) -> CredentialsProviderConfig:
    provider = config.registry.get(provider_id)
    if not isinstance(provider, CredentialsProviderConfig):
        raise ProviderConfigError(f"Provider {provider_id} is not a credentials provider")
    return provider


def sign_up_with_credentials(
    db: Session,
    config: AuthConfig,
    provider_id: str,
    account_id: str,
    secret: str,
    profile: Optional[Profile] = None,
) -> SignInResult:
    """
    Create a credentials account (and its user) and start a session.

    The user is linked per the provider's trust: an untrusted provider always
    creates a new user.

    Raises:
        AccountAlreadyExistsError: The account id is taken
    """
    provider = _credentials_provider(config, provider_id)
    account_id = normalize_identifier(provider, account_id)
    profile = profile or Profile(email=account_id)

    if account_crud.get_by_provider_account(db, provider.id, account_id) is not None:
        raise AccountAlreadyExistsError(f"{provider.id} account already exists")

    secret_hash = hash_secret(secret)
    attempt = SignInAttempt(
        provider=provider.id,
        provider_account_id=account_id,
        profile=profile,
        auth_method_type=AuthMethod.CREDENTIALS,
    )
    link = link_account(db, config.registry, attempt, config.callbacks, secret_hash=secret_hash)
    tokens = sessions.create_session(db, link.user_id)
    return SignInResult(
        user_id=link.user_id,
        account_id=link.account_id,
        is_new_user=link.is_new_user,
        tokens=tokens,
        hook_error=link.hook_error,
    )


def sign_in_with_credentials(
    db: Session,
    config: AuthConfig,
    provider_id: str,
    account_id: str,
    secret: str,
) -> SignInResult:
    """
    Check a secret and start a session.

    Unknown account and wrong secret raise the same InvalidCredentialsError.
    """
    global _DUMMY_SECRET_HASH
    provider = _credentials_provider(config, provider_id)
    account_id = normalize_identifier(provider, account_id)

    account = account_crud.get_by_provider_account(db, provider.id, account_id)
    if account is None or account.secret is None:
        if _DUMMY_SECRET_HASH is None:
            _DUMMY_SECRET_HASH = hash_secret("authcore-dummy-secret")
        verify_secret(secret, _DUMMY_SECRET_HASH)
        raise InvalidCredentialsError("Invalid credentials")

    if not verify_secret(secret, account.secret):
        logger.info(f"Wrong secret for {provider.id} account {account.id}")
        raise InvalidCredentialsError("Invalid credentials")

    tokens = sessions.create_session(db, account.user_id)
    return SignInResult(user_id=account.user_id, account_id=account.id, is_new_user=False, tokens=tokens)


def modify_account_credentials(
    db: Session,
    config: AuthConfig,
    provider_id: str,
    account_id: str,
    new_secret: str,
    keep_session_id: Optional[UUID] = None,
    invalidate_other_sessions: bool = False,
) -> None:
    """
    Replace the secret of a credentials account.

    Optionally revokes every other session of the owner (e.g. after a reset).
    """
    provider = _credentials_provider(config, provider_id)
    account_id = normalize_identifier(provider, account_id)
    secret_hash = hash_secret(new_secret)

    def update():
        account = account_crud.get_by_provider_account(db, provider.id, account_id)
        if account is None:
            raise InvalidCredentialsError("Invalid credentials")
        account_crud.set_secret(db, account, secret_hash)
        return account.user_id

    user_id = run_in_transaction(db, update)
    logger.info(f"Updated credentials for {provider.id} account of user {user_id}")

    if invalidate_other_sessions:
        sessions.invalidate_user_sessions(db, user_id, except_session_id=keep_session_id)


def sign_out(db: Session, session_id: UUID) -> bool:
    """End a session."""
    return sessions.invalidate_session(db, session_id)


def refresh_session(db: Session, refresh_token: str) -> SessionTokens:
    """Rotate a refresh token. See sessions.refresh."""
    return sessions.refresh(db, refresh_token)
