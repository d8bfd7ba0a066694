"""
Field Encryption Library

AES-256-GCM field-level encryption for secrets stored at rest, with key ids
for rotation and a versioned JSON envelope.

Quick Start
-----------
```python
from field_encryption import EncryptionService, KeyRegistry

registry = KeyRegistry(
    "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff",
    "k-test",
)
service = EncryptionService(registry)

envelope = service.encrypt_field("poolApiKey", "pool-secret")
stored = envelope.to_json()  # persist in a text column

plaintext = service.decrypt_field("poolApiKey", stored)
```

In an application, build the service once from the environment
(``EncryptionService.from_env()``, reading TOKEN_ENCRYPTION_KEY and
TOKEN_ENCRYPTION_KEY_ID) and share it, or use ``get_encryption_service()``.

Key Features
------------
- **AES-256-GCM**: Authenticated encryption; tampering fails decryption
- **Key Ids**: Every envelope records the key it was encrypted with
- **Rotation**: Register old keys, switch the active id, re-encrypt in bulk
- **Legacy Passthrough**: Unencrypted values are returned unchanged on read
- **PostgreSQL Tooling**: Encrypt existing plaintext and rotate columns in place

Modules
-------
- `crypto`: AES-256-GCM primitives, envelope detection, hex and HMAC helpers
- `envelope`: Envelope dataclass and JSON codec
- `keys`: Key registry
- `service`: Field encryption service
- `env_vars`: Bulk helpers for environment variable lists
- `config`: Environment configuration
- `storage` / `postgres`: Column stores for migration and rotation
- `migration`: Encrypt-existing and rotation runs
- `errors`: Error types and exception classes
"""

__version__ = "0.1.0"

# =============================================================================
# Crypto Exports
# =============================================================================

from .crypto import (
    AES_256_KEY_SIZE,
    IV_SIZE,
    TAG_SIZE,
    AesGcmCipher,
    EncryptedData,
    SecureKey,
    bytes_to_hex,
    compute_hmac_sha256_hex,
    decrypt,
    encrypt,
    generate_key,
    hex_to_bytes,
    is_encrypted,
    verify_hmac_sha256_hex,
)

# =============================================================================
# Envelope Exports
# =============================================================================

from .envelope import (
    ENVELOPE_VERSION,
    EncryptedEnvelope,
    PlainText,
    parse_stored_value,
)

# =============================================================================
# Error Exports
# =============================================================================

from .errors import (
    ConfigError,
    CryptoError,
    EncryptionError,
    EnvelopeFormatError,
    EnvVarError,
    KeyNotFoundError,
    StorageError,
)

# =============================================================================
# Service Exports (Primary API)
# =============================================================================

from .config import EncryptionSettings
from .env_vars import decrypt_env_vars, encrypt_env_vars
from .keys import KeyRegistry
from .service import (
    EncryptionService,
    get_encryption_service,
    reset_encryption_service,
    set_encryption_service,
)

# =============================================================================
# Migration Exports
# =============================================================================

from .migration import FieldMigrator, MigrationStats, RotationStats
from .postgres import PostgresFieldStore, create_pool
from .storage import ColumnKind, ColumnTarget, FieldStore, InMemoryFieldStore

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Version
    "__version__",
    # Crypto
    "AES_256_KEY_SIZE",
    "IV_SIZE",
    "TAG_SIZE",
    "AesGcmCipher",
    "EncryptedData",
    "SecureKey",
    "encrypt",
    "decrypt",
    "is_encrypted",
    "generate_key",
    "hex_to_bytes",
    "bytes_to_hex",
    "compute_hmac_sha256_hex",
    "verify_hmac_sha256_hex",
    # Envelope
    "ENVELOPE_VERSION",
    "EncryptedEnvelope",
    "PlainText",
    "parse_stored_value",
    # Errors
    "EncryptionError",
    "ConfigError",
    "CryptoError",
    "KeyNotFoundError",
    "EnvelopeFormatError",
    "EnvVarError",
    "StorageError",
    # Service (Primary API)
    "EncryptionSettings",
    "KeyRegistry",
    "EncryptionService",
    "get_encryption_service",
    "set_encryption_service",
    "reset_encryption_service",
    "encrypt_env_vars",
    "decrypt_env_vars",
    # Migration
    "FieldMigrator",
    "MigrationStats",
    "RotationStats",
    "ColumnKind",
    "ColumnTarget",
    "FieldStore",
    "InMemoryFieldStore",
    "PostgresFieldStore",
    "create_pool",
]
