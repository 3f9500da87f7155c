"""
CRUD operations (Create, Read, Update, Delete) for the identity record store.

This layer keeps query details out of the linking, code and session logic,
following the Repository pattern.
"""

from authcore.crud import account, user

__all__ = ["account", "user"]
