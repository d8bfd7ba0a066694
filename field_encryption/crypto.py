"""
Cryptographic primitives for AES-256-GCM field encryption.

This module provides:
- SecureKey: Secure key wrapper with automatic zeroization
- EncryptedData: Raw IV, ciphertext and authentication tag
- AesGcmCipher: AES-256-GCM encryption/decryption operations on bytes
- encrypt / decrypt: String <-> EncryptedEnvelope primitives
- is_encrypted: Envelope detection for stored values
- Hex helpers and HMAC-SHA256 for webhook signatures
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .envelope import ENVELOPE_VERSION, EncryptedEnvelope, utc_timestamp
from .errors import CryptoError, EnvelopeFormatError

# Cryptographic constants
AES_256_KEY_SIZE: int = 32  # 256 bits
IV_SIZE: int = 16  # 128 bits
TAG_SIZE: int = 16  # 128 bits (authentication tag)


class SecureKey:
    """
    Secure key wrapper with automatic memory cleanup on deletion.

    Uses bytearray internally for mutable zeroing in __del__.
    Note: Python's garbage collector doesn't guarantee immediate cleanup,
    so this is best-effort zeroization.
    """

    __slots__ = ("_bytes",)

    def __init__(self, key_bytes: bytes | bytearray) -> None:
        """
        Create a SecureKey from raw bytes.

        Args:
            key_bytes: Raw key material (should be 32 bytes for AES-256)
        """
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise CryptoError("Key must be bytes or bytearray")
        self._bytes = bytearray(key_bytes)

    @classmethod
    def generate(cls) -> SecureKey:
        """Generate a cryptographically secure random 32-byte key."""
        return cls(secrets.token_bytes(AES_256_KEY_SIZE))

    @classmethod
    def from_hex(cls, key_hex: str) -> SecureKey:
        """
        Create a SecureKey from a hex string.

        Raises:
            CryptoError: If the string is not hex or does not decode to 32 bytes
        """
        try:
            key_bytes = hex_to_bytes(key_hex)
        except EnvelopeFormatError:
            raise CryptoError("Key must be a hex string") from None
        if len(key_bytes) != AES_256_KEY_SIZE:
            raise CryptoError(
                f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(key_bytes)}"
            )
        return cls(key_bytes)

    def as_bytes(self) -> bytes:
        """Return key as immutable bytes."""
        return bytes(self._bytes)

    def to_hex(self) -> str:
        """Return key as lowercase hex (for key generation output only)."""
        return bytes_to_hex(self.as_bytes())

    def __len__(self) -> int:
        """Return key length in bytes."""
        return len(self._bytes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecureKey):
            return NotImplemented
        return hmac.compare_digest(self._bytes, other._bytes)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        """Redacted representation to prevent accidental key disclosure."""
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        """Zero memory on deletion (best-effort)."""
        if hasattr(self, "_bytes"):
            for i in range(len(self._bytes)):
                self._bytes[i] = 0


@dataclass(frozen=True)
class EncryptedData:
    """Encrypted payload with its IV and detached authentication tag."""

    iv: bytes  # 16 bytes
    ciphertext: bytes
    tag: bytes  # 16 bytes


class AesGcmCipher:
    """
    AES-256-GCM authenticated encryption.

    Provides static methods for encryption and decryption with optional
    Additional Authenticated Data (AAD) for binding.
    """

    @staticmethod
    def encrypt(
        key: SecureKey,
        plaintext: bytes,
        aad: Optional[bytes] = None,
    ) -> EncryptedData:
        """
        Encrypt plaintext with AES-256-GCM.

        Args:
            key: 32-byte encryption key
            plaintext: Data to encrypt
            aad: Optional Additional Authenticated Data for binding

        Returns:
            EncryptedData with a fresh IV, ciphertext and tag

        Raises:
            CryptoError: If key size is invalid or encryption fails
        """
        if len(key) != AES_256_KEY_SIZE:
            raise CryptoError(
                f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(key)}"
            )

        iv = secrets.token_bytes(IV_SIZE)
        aesgcm = AESGCM(key.as_bytes())

        try:
            ct_and_tag = aesgcm.encrypt(iv, plaintext, aad)
        except (TypeError, ValueError, OverflowError) as e:
            raise CryptoError(f"Encryption error: {e}") from e

        return EncryptedData(
            iv=iv,
            ciphertext=ct_and_tag[:-TAG_SIZE],
            tag=ct_and_tag[-TAG_SIZE:],
        )

    @staticmethod
    def decrypt(
        key: SecureKey,
        encrypted: EncryptedData,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Decrypt ciphertext with AES-256-GCM.

        The tag is verified before any plaintext is released.

        Args:
            key: 32-byte decryption key
            encrypted: EncryptedData with IV, ciphertext and tag
            aad: Optional Additional Authenticated Data (must match encryption)

        Returns:
            Decrypted plaintext bytes

        Raises:
            CryptoError: If key/IV/tag size is invalid or authentication fails
        """
        if len(key) != AES_256_KEY_SIZE:
            raise CryptoError(
                f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(key)}"
            )

        if len(encrypted.iv) != IV_SIZE:
            raise CryptoError(
                f"Invalid IV size: expected {IV_SIZE}, got {len(encrypted.iv)}"
            )

        if len(encrypted.tag) != TAG_SIZE:
            raise CryptoError(
                f"Invalid tag size: expected {TAG_SIZE}, got {len(encrypted.tag)}"
            )

        aesgcm = AESGCM(key.as_bytes())

        try:
            return aesgcm.decrypt(encrypted.iv, encrypted.ciphertext + encrypted.tag, aad)
        except InvalidTag:
            # Generic error to prevent oracle attacks
            raise CryptoError("Decryption failed") from None


KeyLike = Union[SecureKey, bytes, bytearray]


def _as_secure_key(key: KeyLike) -> SecureKey:
    if isinstance(key, SecureKey):
        return key
    return SecureKey(key)


def encrypt(plaintext: str, key: KeyLike, key_id: Optional[str] = None) -> EncryptedEnvelope:
    """
    Encrypt a string into a version 1 envelope.

    Args:
        plaintext: UTF-8 text to encrypt (may be empty)
        key: 32-byte key
        key_id: Optional registry id recorded in the envelope

    Returns:
        EncryptedEnvelope with hex iv/tag/data and an encryptedAt timestamp
    """
    if not isinstance(plaintext, str):
        raise CryptoError(f"Plaintext must be a string, got {type(plaintext).__name__}")

    encrypted = AesGcmCipher.encrypt(_as_secure_key(key), plaintext.encode("utf-8"))

    return EncryptedEnvelope(
        version=ENVELOPE_VERSION,
        key_id=key_id,
        iv=bytes_to_hex(encrypted.iv),
        tag=bytes_to_hex(encrypted.tag),
        data=bytes_to_hex(encrypted.ciphertext),
        encrypted_at=utc_timestamp(),
    )


def decrypt(
    envelope: Union[EncryptedEnvelope, Mapping[str, Any], str],
    key: KeyLike,
) -> str:
    """
    Decrypt an envelope back to its original string.

    Args:
        envelope: EncryptedEnvelope, its dict form, or its JSON string
        key: The 32-byte key the envelope was encrypted with

    Returns:
        The decrypted string

    Raises:
        EnvelopeFormatError: If the envelope or its hex fields are malformed,
            or its version is not supported
        CryptoError: If authentication fails (wrong key or tampered data)
    """
    parsed = EncryptedEnvelope.coerce(envelope)
    if parsed.version != ENVELOPE_VERSION:
        raise EnvelopeFormatError(f"Unsupported envelope version: {parsed.version!r}")

    encrypted = EncryptedData(
        iv=hex_to_bytes(parsed.iv),
        ciphertext=hex_to_bytes(parsed.data),
        tag=hex_to_bytes(parsed.tag),
    )
    plaintext = AesGcmCipher.decrypt(_as_secure_key(key), encrypted)

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise CryptoError("Decryption failed") from None


def is_encrypted(value: Any) -> bool:
    """
    Check whether a value has the shape of an encrypted envelope.

    Accepts an EncryptedEnvelope, a mapping, or a JSON string. Plain text,
    malformed JSON and objects missing version/iv/tag/data return False.
    """
    if isinstance(value, EncryptedEnvelope):
        return True
    if not isinstance(value, (str, Mapping)):
        return False
    try:
        EncryptedEnvelope.coerce(value)
    except EnvelopeFormatError:
        return False
    return True


def generate_key() -> SecureKey:
    """Generate a random 32-byte key (tests and rotation; production keys come from config)."""
    return SecureKey.generate()


def hex_to_bytes(hex_str: str) -> bytes:
    """
    Decode a hex string.

    Raises:
        EnvelopeFormatError: On odd length or non-hex characters
    """
    if not isinstance(hex_str, str):
        raise EnvelopeFormatError("Hex value must be a string")
    try:
        return binascii.unhexlify(hex_str)
    except (binascii.Error, ValueError):
        raise EnvelopeFormatError("Invalid hex encoding") from None


def bytes_to_hex(data: bytes) -> str:
    """Encode bytes as lowercase hex."""
    return binascii.hexlify(data).decode("ascii")


def compute_hmac_sha256_hex(secret: str, body: str) -> str:
    """HMAC-SHA256 of ``body`` keyed by ``secret``, as lowercase hex (webhook signatures)."""
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_hmac_sha256_hex(secret: str, body: str, signature: str) -> bool:
    """
    Constant-time check of a hex HMAC-SHA256 signature.

    A ``sha256=`` prefix (GitHub style) is accepted.
    """
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    expected = compute_hmac_sha256_hex(secret, body)
    return hmac.compare_digest(expected.encode("ascii"), signature.lower().encode("utf-8"))
