"""
Field-aware encryption service.

EncryptionService combines the key registry, the envelope codec and the
AES-256-GCM primitives. Build one per process with ``from_settings`` /
``from_env`` and pass it to the code that needs it; ``get_encryption_service``
returns a lazily built process-wide instance for call sites that cannot be
handed one.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from .config import EncryptionSettings
from .crypto import decrypt, encrypt
from .envelope import EncryptedEnvelope, PlainText, parse_stored_value
from .errors import EncryptionError
from .keys import KeyRegistry

logger = logging.getLogger(__name__)

FieldValue = Union[str, EncryptedEnvelope, Mapping[str, Any]]


class EncryptionService:
    """
    Encrypt and decrypt named fields.

    The field name never changes the cryptographic operation; it is carried
    into errors and logs so failures can be attributed.
    """

    def __init__(self, registry: KeyRegistry) -> None:
        self._registry = registry

    @classmethod
    def from_settings(cls, settings: EncryptionSettings) -> EncryptionService:
        return cls(KeyRegistry.from_settings(settings))

    @classmethod
    def from_env(cls, env_file: Optional[Union[str, Path]] = None) -> EncryptionService:
        """Build from TOKEN_ENCRYPTION_KEY / TOKEN_ENCRYPTION_KEY_ID (raises ConfigError)."""
        return cls.from_settings(EncryptionSettings.from_env(env_file))

    @property
    def registry(self) -> KeyRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Key management
    # ------------------------------------------------------------------

    def set_key(self, key_id: str, key_hex: str) -> None:
        self._registry.set_key(key_id, key_hex)

    def set_active_key_id(self, key_id: str) -> None:
        self._registry.set_active_key_id(key_id)

    def get_active_key_id(self) -> Optional[str]:
        return self._registry.get_active_key_id()

    # ------------------------------------------------------------------
    # Field operations
    # ------------------------------------------------------------------

    def encrypt_field(self, field_name: str, plaintext: str) -> EncryptedEnvelope:
        """
        Encrypt a field value with the active key.

        Args:
            field_name: Logical field name (bookkeeping only)
            plaintext: Value to encrypt

        Returns:
            EncryptedEnvelope tagged with the active key id
        """
        key_id = self._registry.get_active_key_id()
        return self._encrypt(field_name, plaintext, key_id)

    def encrypt_field_with_key_id(
        self, field_name: str, plaintext: str, key_id: str
    ) -> EncryptedEnvelope:
        """
        Encrypt a field value with a specific registered key.

        Raises:
            KeyNotFoundError: If ``key_id`` is not registered
        """
        return self._encrypt(field_name, plaintext, key_id)

    def encrypt_field_to_json(self, field_name: str, plaintext: str) -> str:
        """Encrypt with the active key and return the JSON string for a text column."""
        return self.encrypt_field(field_name, plaintext).to_json()

    def decrypt_field(self, field_name: str, value: FieldValue) -> str:
        """
        Decrypt a stored field value.

        Strings that are not envelopes are legacy plaintext and are returned
        unchanged. Envelopes are decrypted with the key named by their key id
        (the active key when none is recorded).

        Args:
            field_name: Logical field name (bookkeeping only)
            value: JSON envelope string, EncryptedEnvelope, or envelope dict

        Returns:
            Decrypted plaintext

        Raises:
            KeyNotFoundError: If the envelope's key id is not registered
            CryptoError: If authentication fails
            EnvelopeFormatError: If the envelope is structurally invalid
        """
        try:
            parsed = parse_stored_value(value)
        except EncryptionError as e:
            raise self._attributed(e, field_name) from e

        if isinstance(parsed, PlainText):
            logger.debug("Field %s holds unencrypted legacy value; returning as-is", field_name)
            return parsed.value

        try:
            key = self._registry.resolve(parsed.key_id)
            return decrypt(parsed, key)
        except EncryptionError as e:
            raise self._attributed(e, field_name, parsed.key_id) from e

    # ------------------------------------------------------------------
    # Rotation support
    # ------------------------------------------------------------------

    def needs_rotation(self, value: FieldValue) -> bool:
        """True for envelopes whose key id is missing or not the active key id."""
        parsed = parse_stored_value(value)
        if isinstance(parsed, PlainText):
            return False
        return not parsed.key_id or parsed.key_id != self._registry.get_active_key_id()

    def reencrypt_field(self, field_name: str, value: FieldValue) -> EncryptedEnvelope:
        """Decrypt a stored value and encrypt it again under the active key id."""
        return self.encrypt_field(field_name, self.decrypt_field(field_name, value))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _encrypt(
        self, field_name: str, plaintext: str, key_id: Optional[str]
    ) -> EncryptedEnvelope:
        if not isinstance(plaintext, str):
            raise EncryptionError(
                f"Cannot encrypt non-string value for field: {field_name}",
                field=field_name,
            )
        try:
            key = self._registry.get_key(key_id)
            return encrypt(plaintext, key, key_id)
        except EncryptionError as e:
            raise self._attributed(e, field_name, key_id) from e

    @staticmethod
    def _attributed(
        error: EncryptionError, field_name: str, key_id: Optional[str] = None
    ) -> EncryptionError:
        """Copy of ``error`` (same type) with field and key id attached."""
        return type(error)(
            f"Field {field_name}: {error}",
            field=field_name,
            key_id=error.key_id or key_id,
        )


_service: Optional[EncryptionService] = None
_service_lock = threading.Lock()


def get_encryption_service() -> EncryptionService:
    """Process-wide service built from the environment on first use."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = EncryptionService.from_env()
    return _service


def set_encryption_service(service: Optional[EncryptionService]) -> None:
    """Install (or clear, with None) the process-wide service."""
    global _service
    with _service_lock:
        _service = service


def reset_encryption_service() -> None:
    set_encryption_service(None)
