"""
Bulk helpers for ordered environment variable lists.

Lists are ``[{"name": ..., "value": ...}, ...]`` as stored in a JSON column.
Order and length are preserved; a failing element raises EnvVarError naming
the variable instead of being dropped.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import EncryptionError, EnvVarError
from .service import EncryptionService, get_encryption_service

ENV_VARS_FIELD = "environmentVariables"


def _split(item: Mapping[str, Any]) -> Tuple[Any, Any]:
    if not isinstance(item, Mapping) or "name" not in item or "value" not in item:
        raise EnvVarError("Environment variable entries need 'name' and 'value'")
    return item["name"], item["value"]


def encrypt_env_vars(
    env_vars: Iterable[Mapping[str, Any]],
    service: Optional[EncryptionService] = None,
) -> List[Dict[str, Any]]:
    """
    Encrypt every value with the active key.

    Returns:
        ``[{"name": name, "value": envelope_dict}, ...]`` in input order

    Raises:
        EnvVarError: If an entry is malformed or cannot be encrypted
    """
    service = service or get_encryption_service()
    result: List[Dict[str, Any]] = []
    for item in env_vars:
        name, value = _split(item)
        try:
            envelope = service.encrypt_field(ENV_VARS_FIELD, value)
        except EncryptionError as e:
            raise EnvVarError(
                f"Failed to encrypt environment variable {name!r}: {e}", name=name
            ) from e
        result.append({"name": name, "value": envelope.to_dict()})
    return result


def decrypt_env_vars(
    env_vars: Iterable[Mapping[str, Any]],
    service: Optional[EncryptionService] = None,
) -> List[Dict[str, str]]:
    """
    Decrypt every value.

    Values may be envelope dicts, EncryptedEnvelope objects, JSON strings or
    legacy plain strings (returned unchanged).

    Raises:
        EnvVarError: If an entry is malformed or cannot be decrypted
    """
    service = service or get_encryption_service()
    result: List[Dict[str, str]] = []
    for item in env_vars:
        name, value = _split(item)
        try:
            plaintext = service.decrypt_field(ENV_VARS_FIELD, value)
        except EncryptionError as e:
            raise EnvVarError(
                f"Failed to decrypt environment variable {name!r}: {e}", name=name
            ) from e
        result.append({"name": name, "value": plaintext})
    return result
