"""
Versioned ciphertext envelope and its JSON codec.

This module provides:
- EncryptedEnvelope: Immutable envelope (version, keyId, iv, tag, data, encryptedAt)
- PlainText: Legacy value stored before encryption was introduced
- parse_stored_value: Tagged-union parse of a stored column value

Wire format (stored as a JSON string in a text column):

    {"version": "1", "keyId": "k-test", "iv": "<hex>", "tag": "<hex>",
     "data": "<hex>", "encryptedAt": "2024-01-01T00:00:00.000Z"}

``keyId`` is omitted when the envelope was produced without a key id, and
``encryptedAt`` when the stored envelope never carried one.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from .errors import EnvelopeFormatError

ENVELOPE_VERSION: str = "1"

_REQUIRED_FIELDS = ("version", "iv", "tag", "data")


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


@dataclass(frozen=True)
class EncryptedEnvelope:
    """
    Encrypted field value.

    All binary fields are lowercase hex strings. ``encrypted_at`` is audit
    metadata only and is not covered by the authentication tag.
    """

    iv: str
    tag: str
    data: str
    key_id: Optional[str] = None
    version: str = ENVELOPE_VERSION
    encrypted_at: Optional[str] = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON wire shape (camelCase keys)."""
        result: Dict[str, Any] = {"version": self.version}
        if self.key_id is not None:
            result["keyId"] = self.key_id
        result["iv"] = self.iv
        result["tag"] = self.tag
        result["data"] = self.data
        if self.encrypted_at is not None:
            result["encryptedAt"] = self.encrypted_at
        return result

    def to_json(self) -> str:
        """Serialize envelope to a JSON string for storage."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EncryptedEnvelope:
        """
        Strictly parse the wire shape.

        Args:
            data: Mapping with at least version, iv, tag and data as strings

        Returns:
            EncryptedEnvelope instance

        Raises:
            EnvelopeFormatError: If a required field is missing or mistyped
        """
        if not isinstance(data, Mapping):
            raise EnvelopeFormatError(
                f"Envelope must be a JSON object, got {type(data).__name__}"
            )

        for name in _REQUIRED_FIELDS:
            if not isinstance(data.get(name), str):
                raise EnvelopeFormatError(f"Envelope field '{name}' missing or not a string")

        key_id = data.get("keyId")
        if key_id is not None and not isinstance(key_id, str):
            raise EnvelopeFormatError("Envelope field 'keyId' must be a string")

        encrypted_at = data.get("encryptedAt")
        if encrypted_at is not None and not isinstance(encrypted_at, str):
            raise EnvelopeFormatError("Envelope field 'encryptedAt' must be a string")

        return cls(
            version=data["version"],
            key_id=key_id,
            iv=data["iv"],
            tag=data["tag"],
            data=data["data"],
            encrypted_at=encrypted_at,
        )

    @classmethod
    def from_json(cls, json_str: str) -> EncryptedEnvelope:
        """Deserialize envelope from a JSON string."""
        try:
            data = json.loads(json_str)
        except (TypeError, ValueError, RecursionError) as e:
            raise EnvelopeFormatError(f"Envelope is not valid JSON: {e.__class__.__name__}") from e
        return cls.from_dict(data)

    @classmethod
    def coerce(cls, value: Union[EncryptedEnvelope, Mapping[str, Any], str]) -> EncryptedEnvelope:
        """Accept any of the representations a stored value may arrive in."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls.from_json(value)
        return cls.from_dict(value)


@dataclass(frozen=True)
class PlainText:
    """A stored value that is not wrapped in an envelope."""

    value: str


StoredValue = Union[EncryptedEnvelope, PlainText]


def parse_stored_value(value: Union[EncryptedEnvelope, Mapping[str, Any], str]) -> StoredValue:
    """
    Classify a stored value as an envelope or legacy plain text.

    Strings that do not parse strictly as an envelope become ``PlainText``.
    Mappings must be valid envelopes.

    Raises:
        EnvelopeFormatError: If a non-string value is not a valid envelope
    """
    if isinstance(value, EncryptedEnvelope):
        return value
    if isinstance(value, str):
        try:
            return EncryptedEnvelope.from_json(value)
        except EnvelopeFormatError:
            return PlainText(value)
    return EncryptedEnvelope.from_dict(value)
