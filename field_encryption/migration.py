"""
Encrypt legacy plaintext columns and rotate envelopes onto the active key.

The columns to process are injected as ColumnTarget values; this module has no
opinion about which fields are secret. Rows are processed one at a time and a
failing row is logged and counted rather than aborting the run.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from .crypto import is_encrypted
from .errors import EncryptionError
from .service import EncryptionService
from .storage import ColumnKind, ColumnTarget, FieldStore, StoredRow

logger = logging.getLogger(__name__)


@dataclass
class MigrationStats:
    """Result of encrypting existing plaintext values."""

    processed: int = 0
    encrypted: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class RotationStats:
    """Result of re-encrypting envelopes under the active key."""

    processed: int = 0
    reencrypted: int = 0
    skipped: int = 0
    errors: int = 0


def _load_env_list(value: Any) -> Optional[List[Any]]:
    """Decode an env-var column value; None when it is not a JSON array."""
    if isinstance(value, list):
        return value
    if not isinstance(value, str):
        return None
    try:
        parsed = json.loads(value)
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, list) else None


def _is_plain_env_var(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and isinstance(item.get("value"), str)
        and not is_encrypted(item["value"])
    )


class FieldMigrator:
    """
    Bulk operations over stored columns.

    Args:
        service: EncryptionService whose active key is used for writes
        store: FieldStore holding the columns
        dry_run: Compute statistics without writing
    """

    def __init__(
        self, service: EncryptionService, store: FieldStore, dry_run: bool = False
    ) -> None:
        self._service = service
        self._store = store
        self._dry_run = dry_run

    # ------------------------------------------------------------------
    # Encrypt existing plaintext
    # ------------------------------------------------------------------

    async def encrypt_existing(self, targets: Iterable[ColumnTarget]) -> MigrationStats:
        """Encrypt every plaintext value in the given columns."""
        stats = MigrationStats()
        for target in targets:
            rows = await self._store.fetch_values(target)
            for row in rows:
                stats.processed += 1
                try:
                    new_value = self._encrypt_row(target, row)
                    if new_value is None:
                        stats.skipped += 1
                        continue
                    await self._write(target, row, new_value)
                    stats.encrypted += 1
                except EncryptionError as e:
                    stats.errors += 1
                    logger.error("Failed to encrypt %s row %s: %s", target, row.row_id, e)

        logger.info(
            "Encryption migration complete: processed=%d encrypted=%d skipped=%d errors=%d",
            stats.processed, stats.encrypted, stats.skipped, stats.errors,
        )
        return stats

    def _encrypt_row(self, target: ColumnTarget, row: StoredRow) -> Optional[str]:
        if target.kind is ColumnKind.ENV_VARS:
            return self._encrypt_env_list(target, row.value)

        value = row.value
        if not isinstance(value, str) or not value.strip() or is_encrypted(value):
            return None
        return self._service.encrypt_field_to_json(target.field, value)

    def _encrypt_env_list(self, target: ColumnTarget, value: Any) -> Optional[str]:
        items = _load_env_list(value)
        if items is None:
            return None
        if not any(_is_plain_env_var(item) for item in items):
            return None

        encrypted = []
        for item in items:
            if _is_plain_env_var(item):
                envelope = self._service.encrypt_field(target.field, item["value"])
                encrypted.append({**item, "value": envelope.to_dict()})
            else:
                encrypted.append(item)
        return json.dumps(encrypted)

    # ------------------------------------------------------------------
    # Rotate onto the active key
    # ------------------------------------------------------------------

    async def rotate(self, targets: Iterable[ColumnTarget]) -> RotationStats:
        """Re-encrypt envelopes that are not under the active key id."""
        stats = RotationStats()
        active = self._service.get_active_key_id()
        for target in targets:
            rows = await self._store.fetch_values(target)
            for row in rows:
                stats.processed += 1
                try:
                    new_value = self._rotate_row(target, row)
                    if new_value is None:
                        stats.skipped += 1
                        continue
                    await self._write(target, row, new_value)
                    stats.reencrypted += 1
                except EncryptionError as e:
                    stats.errors += 1
                    logger.error("Failed to rotate %s row %s: %s", target, row.row_id, e)

        logger.info(
            "Key rotation to %s complete: processed=%d reencrypted=%d skipped=%d errors=%d",
            active, stats.processed, stats.reencrypted, stats.skipped, stats.errors,
        )
        return stats

    def _rotate_row(self, target: ColumnTarget, row: StoredRow) -> Optional[str]:
        if target.kind is ColumnKind.ENV_VARS:
            return self._rotate_env_list(target, row.value)

        value = row.value
        if not is_encrypted(value) or not self._service.needs_rotation(value):
            return None
        return self._service.reencrypt_field(target.field, value).to_json()

    def _rotate_env_list(self, target: ColumnTarget, value: Any) -> Optional[str]:
        items = _load_env_list(value)
        if items is None:
            return None

        changed = False
        rotated = []
        for item in items:
            current = item.get("value") if isinstance(item, dict) else None
            if current is not None and is_encrypted(current) and self._service.needs_rotation(current):
                envelope = self._service.reencrypt_field(target.field, current)
                rotated.append({**item, "value": envelope.to_dict()})
                changed = True
            else:
                rotated.append(item)
        return json.dumps(rotated) if changed else None

    async def _write(self, target: ColumnTarget, row: StoredRow, value: str) -> None:
        if self._dry_run:
            logger.debug("Dry run: would update %s row %s", target, row.row_id)
            return
        await self._store.update_value(target, row.row_id, value)
