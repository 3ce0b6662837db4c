"""
Persistence Module — On-disk credential storage.
"""

from .credential_store import CredentialStore

__all__ = ["CredentialStore"]
