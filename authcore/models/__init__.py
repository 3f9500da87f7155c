"""
Database models package.
"""

from authcore.models.user import User
from authcore.models.account import Account
from authcore.models.verifier import Verifier
from authcore.models.verification_code import VerificationCode
from authcore.models.spent_secret import SpentSecret, SpentReason
from authcore.models.auth_session import AuthSession
from authcore.models.refresh_token import RefreshToken

__all__ = [
    "User",
    "Account",
    "Verifier",
    "VerificationCode",
    "SpentSecret",
    "SpentReason",
    "AuthSession",
    "RefreshToken",
]
