"""
Trust classification for identity claims.

Decides whether the email / phone carried by a sign-in attempt may be used
to link the attempt to an existing user. Pure: no store access, no side
effects.
"""

from authcore.core.exceptions import ProviderConfigError
from authcore.core.providers import (
    AuthMethod,
    CredentialsProviderConfig,
    OAuthProviderConfig,
    ProviderConfig,
)


def is_trusted(provider: ProviderConfig, method: AuthMethod) -> bool:
    """
    Whether `provider`'s contact claim is trusted for `method`.

    - email (magic link) and phone (OTP): always trusted, the code proved
      control of the channel
    - oauth: trusted unless allow_dangerous_email_account_linking is False
    - credentials: trusted only when the provider declares emails pre-verified

    Raises:
        ProviderConfigError: provider/method mismatch or unknown method
    """
    try:
        method = AuthMethod(method)
    except ValueError:
        raise ProviderConfigError(f"Unknown auth method {method!r}")

    if method in (AuthMethod.EMAIL, AuthMethod.PHONE):
        return True

    if method is AuthMethod.OAUTH:
        if not isinstance(provider, OAuthProviderConfig):
            raise ProviderConfigError(f"Provider {provider.id} is not an OAuth provider")
        return provider.allow_dangerous_email_account_linking

    if not isinstance(provider, CredentialsProviderConfig):
        raise ProviderConfigError(f"Provider {provider.id} is not a credentials provider")
    return provider.email_verified
