"""
Error taxonomy for the auth core.

Every failure raised by linking, code redemption and session handling derives
from AuthError. The detailed class is for server-side logs and callers; HTTP
responses only ever carry `public_message`.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for all auth core errors."""

    public_message = "Authentication failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)


class ProviderConfigError(AuthError):
    """Unknown or misconfigured provider. Fatal when raised at startup."""

    public_message = "Unknown or misconfigured provider"


class AmbiguousLinkError(AuthError):
    """More than one existing user matches a trusted identity. Data invariant broken."""


class AuthorizationError(AuthError):
    """The caller was denied (custom linking callback, missing session, bad credentials)."""


class InvalidCredentialsError(AuthorizationError):
    """Unknown credentials account or wrong secret. Deliberately indistinguishable."""


class AccountAlreadyExistsError(AuthorizationError):
    """A credentials sign-up hit an existing (provider, provider_account_id)."""


class SessionNotFoundError(AuthorizationError):
    """The session referenced by a token no longer exists or has expired."""


class CodeError(AuthError):
    """Base class for verification code and verifier failures."""

    public_message = "Invalid or expired code"


class CodeNotFoundError(CodeError):
    """No live code or verifier matches."""


class MalformedCodeError(CodeNotFoundError):
    """Empty or malformed code, rejected before any store lookup."""


class CodeExpiredError(CodeError):
    """The code or verifier was found but its expiration time has passed."""


class CodeAlreadyUsedError(CodeError):
    """The code or verifier was already redeemed or superseded by a newer one."""


class RefreshTokenError(AuthError):
    """Base class for refresh token failures."""

    public_message = "Invalid refresh token"


class InvalidRefreshTokenError(RefreshTokenError):
    """Malformed, unknown, expired, or belonging to a session that is gone."""


class RefreshTokenReuseError(RefreshTokenError):
    """An already rotated refresh token was presented again. Possible token theft."""


class PostHookError(AuthError):
    """
    The after-user hook failed.

    Reported alongside a successful link; the user and account rows it
    followed stay committed.
    """

    def __init__(self, user_id, cause: BaseException):
        super().__init__(f"after_user_created_or_updated failed for user {user_id}: {cause!r}")
        self.user_id = user_id
        self.cause = cause
