"""Authentication for the capture API."""

from .credential_cache import (
    CredentialCache,
    get_credential_cache,
    reset_credential_cache,
)

__all__ = ["CredentialCache", "get_credential_cache", "reset_credential_cache"]
