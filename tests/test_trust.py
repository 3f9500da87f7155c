"""
Unit tests for trust classification.

Tests:
- Code-based methods are always trusted
- OAuth trust follows allow_dangerous_email_account_linking
- Credentials trust follows email_verified
- Provider / method mismatches are configuration errors
"""

import pytest

from authcore.core.exceptions import ProviderConfigError
from authcore.core.providers import (
    AuthMethod,
    CredentialsProviderConfig,
    EmailProviderConfig,
    OAuthProviderConfig,
    PhoneProviderConfig,
)
from authcore.core.trust import is_trusted


class TestCodeMethods:
    """Magic link and OTP prove control of the channel"""

    def test_email_is_trusted(self):
        assert is_trusted(EmailProviderConfig(id="resend"), AuthMethod.EMAIL) is True

    def test_phone_is_trusted(self):
        assert is_trusted(PhoneProviderConfig(id="sms"), AuthMethod.PHONE) is True

    def test_method_given_as_string(self):
        assert is_trusted(EmailProviderConfig(id="resend"), "email") is True


class TestOAuth:
    """OAuth profile emails"""

    def test_oauth_trusted_by_default(self):
        assert is_trusted(OAuthProviderConfig(id="github"), AuthMethod.OAUTH) is True

    def test_oauth_untrusted_when_linking_disabled(self):
        provider = OAuthProviderConfig(id="github", allow_dangerous_email_account_linking=False)
        assert is_trusted(provider, AuthMethod.OAUTH) is False

    def test_oauth_method_on_non_oauth_provider(self):
        with pytest.raises(ProviderConfigError):
            is_trusted(EmailProviderConfig(id="resend"), AuthMethod.OAUTH)


class TestCredentials:
    """Password accounts"""

    def test_credentials_untrusted_by_default(self):
        assert is_trusted(CredentialsProviderConfig(id="password"), AuthMethod.CREDENTIALS) is False

    def test_credentials_trusted_when_email_verified(self):
        provider = CredentialsProviderConfig(id="password", email_verified=True)
        assert is_trusted(provider, AuthMethod.CREDENTIALS) is True

    def test_credentials_method_on_oauth_provider(self):
        with pytest.raises(ProviderConfigError):
            is_trusted(OAuthProviderConfig(id="github"), AuthMethod.CREDENTIALS)


def test_unknown_method():
    with pytest.raises(ProviderConfigError):
        is_trusted(OAuthProviderConfig(id="github"), "carrier-pigeon")
