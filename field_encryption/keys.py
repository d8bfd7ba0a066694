"""
Process-wide key registry.

Maps key ids to key material and tracks the active key id used for new
encryptions. Updates are copy-on-write under a lock, so readers always see a
complete mapping without taking the lock.
"""

from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import TYPE_CHECKING, List, Mapping, Optional

from .crypto import SecureKey
from .errors import ConfigError, CryptoError, KeyNotFoundError

if TYPE_CHECKING:
    from .config import EncryptionSettings

logger = logging.getLogger(__name__)


class KeyRegistry:
    """
    Key id -> SecureKey mapping with a designated active key id.

    Seeded with a primary key at construction; further keys can be registered
    at runtime for rotation and stay registered for the registry's lifetime.
    """

    def __init__(self, primary_key_hex: str, primary_key_id: str) -> None:
        """
        Create a registry seeded with the primary key.

        Args:
            primary_key_hex: 64 hex chars (32 bytes)
            primary_key_id: Id of the primary key; becomes the active key id

        Raises:
            ConfigError: If either value is missing or the key is invalid
        """
        if not primary_key_hex:
            raise ConfigError("Primary encryption key is required")
        if not primary_key_id:
            raise ConfigError("Primary encryption key id is required")

        self._lock = threading.Lock()
        self._keys: Mapping[str, SecureKey] = MappingProxyType({})
        self._active_key_id: Optional[str] = None

        self.set_key(primary_key_id, primary_key_hex)
        self._active_key_id = primary_key_id

    @classmethod
    def from_settings(cls, settings: EncryptionSettings) -> KeyRegistry:
        """Build a registry from settings, including retired rotation keys."""
        registry = cls(settings.primary_key_hex, settings.primary_key_id)
        for key_id, key_hex in settings.old_keys.items():
            if key_id == settings.primary_key_id:
                continue
            registry.set_key(key_id, key_hex)
        return registry

    def set_key(self, key_id: str, key_hex: str) -> None:
        """
        Register or overwrite a key.

        Raises:
            ConfigError: If the key id is empty or the key is not 32 bytes of hex
        """
        if not key_id or not isinstance(key_id, str):
            raise ConfigError("Key id must be a non-empty string")
        try:
            key = SecureKey.from_hex(key_hex)
        except CryptoError as e:
            raise ConfigError(f"Invalid key for key id '{key_id}': {e}", key_id=key_id) from None

        with self._lock:
            updated = dict(self._keys)
            replaced = key_id in updated
            updated[key_id] = key
            self._keys = MappingProxyType(updated)

        logger.info("%s encryption key %s", "Replaced" if replaced else "Registered", key_id)

    def get_key(self, key_id: Optional[str] = None) -> SecureKey:
        """
        Look up a key.

        Args:
            key_id: Registered id, or None for the active key

        Returns:
            The matching SecureKey

        Raises:
            KeyNotFoundError: If ``key_id`` is given but not registered
        """
        keys = self._keys
        if key_id is None:
            active = self._active_key_id
            if active is None or active not in keys:
                raise KeyNotFoundError("No active encryption key configured")
            return keys[active]

        key = keys.get(key_id)
        if key is None:
            raise KeyNotFoundError(f"Encryption key not found: {key_id}", key_id=key_id)
        return key

    def resolve(self, key_id: Optional[str]) -> SecureKey:
        """
        Resolve the key for an envelope.

        Envelopes written before key ids were recorded carry no id; those
        resolve to the active key. Any explicit id must be registered.
        """
        return self.get_key(key_id)

    def get_active_key_id(self) -> Optional[str]:
        """Id tagged onto newly created envelopes."""
        return self._active_key_id

    def set_active_key_id(self, key_id: str) -> None:
        """
        Switch the key used for new encryptions.

        Raises:
            KeyNotFoundError: If the id is not registered
        """
        with self._lock:
            if key_id not in self._keys:
                raise KeyNotFoundError(
                    f"Cannot activate unregistered key: {key_id}", key_id=key_id
                )
            previous = self._active_key_id
            self._active_key_id = key_id

        if previous != key_id:
            logger.info("Active encryption key changed from %s to %s", previous, key_id)

    def key_ids(self) -> List[str]:
        """All registered key ids, sorted."""
        return sorted(self._keys)

    def __contains__(self, key_id: object) -> bool:
        return key_id in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"KeyRegistry(active={self._active_key_id!r}, keys={self.key_ids()!r})"
