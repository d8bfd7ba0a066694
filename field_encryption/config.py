"""
Environment configuration for field encryption.

Settings are read from the process environment after loading a ``.env`` file
with python-dotenv. Values already present in the environment win.

Variables:
    TOKEN_ENCRYPTION_KEY      64 hex chars (32 bytes), required
    TOKEN_ENCRYPTION_KEY_ID   id of that key, becomes the active key id, required
    ROTATION_OLD_KEYS         JSON object {"keyId": "hex", ...}, optional
    DATABASE_URL              PostgreSQL DSN, needed by migrate/rotate only
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from dotenv import load_dotenv

from .errors import ConfigError

ENV_KEY = "TOKEN_ENCRYPTION_KEY"
ENV_KEY_ID = "TOKEN_ENCRYPTION_KEY_ID"
ENV_OLD_KEYS = "ROTATION_OLD_KEYS"
ENV_DATABASE_URL = "DATABASE_URL"


@dataclass
class EncryptionSettings:
    """Key material and connection settings consumed by the registry and tooling."""

    primary_key_hex: str
    primary_key_id: str
    old_keys: Dict[str, str] = field(default_factory=dict)
    database_url: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"EncryptionSettings(primary_key_id={self.primary_key_id!r}, "
            f"old_key_ids={sorted(self.old_keys)!r}, "
            f"database_url={'set' if self.database_url else None!r})"
        )

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> EncryptionSettings:
        """
        Load settings from the environment.

        Args:
            env_file: Optional .env path (default: python-dotenv's lookup)
            environ: Mapping to read instead of os.environ (dotenv is skipped)

        Returns:
            EncryptionSettings instance

        Raises:
            ConfigError: If the key or key id is missing, or ROTATION_OLD_KEYS is invalid
        """
        if environ is None:
            if env_file is not None:
                load_dotenv(env_file)
            else:
                load_dotenv()
            environ = os.environ

        key_hex = (environ.get(ENV_KEY) or "").strip()
        key_id = (environ.get(ENV_KEY_ID) or "").strip()

        if not key_hex:
            raise ConfigError(f"{ENV_KEY} environment variable is required")
        if not key_id:
            raise ConfigError(f"{ENV_KEY_ID} environment variable is required")

        return cls(
            primary_key_hex=key_hex,
            primary_key_id=key_id,
            old_keys=_parse_old_keys(environ.get(ENV_OLD_KEYS)),
            database_url=environ.get(ENV_DATABASE_URL) or None,
        )

    def require_database_url(self) -> str:
        """Return DATABASE_URL or raise ConfigError."""
        if not self.database_url:
            raise ConfigError(f"{ENV_DATABASE_URL} must be set in environment or .env file")
        return self.database_url


def _parse_old_keys(raw: Optional[str]) -> Dict[str, str]:
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        raise ConfigError(f"{ENV_OLD_KEYS} must be valid JSON mapping {{keyId: hex}}") from None

    if not isinstance(parsed, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in parsed.items()
    ):
        raise ConfigError(f"{ENV_OLD_KEYS} must be valid JSON mapping {{keyId: hex}}")
    return parsed
