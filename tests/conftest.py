"""
Pytest configuration and fixtures for field encryption tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Iterator

import asyncpg
import pytest
from dotenv import load_dotenv

from field_encryption import (
    EncryptionService,
    InMemoryFieldStore,
    KeyRegistry,
    PostgresFieldStore,
    reset_encryption_service,
)

TEST_KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TEST_KEY_ID = "k-test"
ALT_KEY_HEX = "ffeeddccbbaa99887766554433221100ffeeddccbbaa99887766554433221100"
ALT_KEY_ID = "k-alt"


@pytest.fixture
def key_hex() -> str:
    return TEST_KEY_HEX


@pytest.fixture
def registry() -> KeyRegistry:
    """Registry seeded with the k-test key (active)."""
    return KeyRegistry(TEST_KEY_HEX, TEST_KEY_ID)


@pytest.fixture
def service(registry: KeyRegistry) -> EncryptionService:
    return EncryptionService(registry)


@pytest.fixture
def memory_store() -> InMemoryFieldStore:
    """Create an in-memory store instance for testing."""
    return InMemoryFieldStore()


@pytest.fixture(autouse=True)
def _clear_process_service() -> Iterator[None]:
    reset_encryption_service()
    yield
    reset_encryption_service()


@pytest.fixture
def encryption_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Point the environment at the k-test key."""
    monkeypatch.setenv("TOKEN_ENCRYPTION_KEY", TEST_KEY_HEX)
    monkeypatch.setenv("TOKEN_ENCRYPTION_KEY_ID", TEST_KEY_ID)
    monkeypatch.delenv("ROTATION_OLD_KEYS", raising=False)


@pytest.fixture
async def pg_pool() -> AsyncGenerator[asyncpg.Pool, None]:
    """Create a PostgreSQL connection pool for testing."""
    # Load environment from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(env_path)

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set, skipping PostgreSQL tests")

    pool = await asyncpg.create_pool(database_url)
    if pool is None:
        pytest.skip("Failed to create PostgreSQL connection pool")

    await pool.execute("DROP TABLE IF EXISTS field_encryption_test")
    await pool.execute(
        """
        CREATE TABLE field_encryption_test (
            id SERIAL PRIMARY KEY,
            api_key TEXT,
            environment_variables JSONB
        )
        """
    )

    yield pool

    await pool.execute("DROP TABLE IF EXISTS field_encryption_test")
    await pool.close()


@pytest.fixture
async def postgres_store(pg_pool: asyncpg.Pool) -> PostgresFieldStore:
    """Create a PostgreSQL store instance for testing."""
    return PostgresFieldStore(pg_pool)
