"""
Exception classes for field encryption operations.

Every exception carries optional ``field`` and ``key_id`` attributes so callers
can attribute a failure without the message ever containing secret material.
"""

from __future__ import annotations

from typing import Optional


class EncryptionError(Exception):
    """Base exception for all field encryption operations."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        key_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.key_id = key_id


class ConfigError(EncryptionError):
    """Required configuration is missing or invalid."""

    pass


class CryptoError(EncryptionError):
    """Cryptographic operation failed (encryption, decryption, authentication)."""

    pass


class KeyNotFoundError(EncryptionError):
    """Key id is not registered."""

    pass


class EnvelopeFormatError(EncryptionError):
    """Envelope JSON, fields or hex encoding are malformed."""

    pass


class EnvVarError(EncryptionError):
    """An element of an environment variable list could not be processed."""

    def __init__(
        self,
        message: str,
        *,
        name: Optional[str] = None,
        field: Optional[str] = None,
        key_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, field=field, key_id=key_id)
        self.name = name


class StorageError(EncryptionError):
    """Storage backend error (database, in-memory, etc.)."""

    pass
