"""
Tests for the key registry.
"""

from __future__ import annotations

import logging
import threading

import pytest

from field_encryption import (
    ConfigError,
    EncryptionSettings,
    KeyNotFoundError,
    KeyRegistry,
    SecureKey,
)

from conftest import ALT_KEY_HEX, ALT_KEY_ID, TEST_KEY_HEX, TEST_KEY_ID


def test_primary_key_is_active(registry: KeyRegistry) -> None:
    assert registry.get_active_key_id() == TEST_KEY_ID
    assert registry.get_key(TEST_KEY_ID) == SecureKey.from_hex(TEST_KEY_HEX)
    assert registry.key_ids() == [TEST_KEY_ID]


def test_omitted_key_id_resolves_to_active(registry: KeyRegistry) -> None:
    assert registry.get_key() == registry.get_key(TEST_KEY_ID)
    assert registry.resolve(None) == registry.get_key(TEST_KEY_ID)


def test_unknown_key_id_never_falls_back(registry: KeyRegistry) -> None:
    with pytest.raises(KeyNotFoundError) as exc_info:
        registry.get_key("k-missing")

    assert exc_info.value.key_id == "k-missing"
    assert "k-missing" in str(exc_info.value)


def test_set_key_registers_additional_key(registry: KeyRegistry) -> None:
    registry.set_key(ALT_KEY_ID, ALT_KEY_HEX)

    assert ALT_KEY_ID in registry
    assert len(registry) == 2
    assert registry.get_key(ALT_KEY_ID) == SecureKey.from_hex(ALT_KEY_HEX)
    assert registry.get_active_key_id() == TEST_KEY_ID


def test_set_key_overwrites(registry: KeyRegistry) -> None:
    registry.set_key(TEST_KEY_ID, ALT_KEY_HEX)

    assert registry.get_key(TEST_KEY_ID) == SecureKey.from_hex(ALT_KEY_HEX)


@pytest.mark.parametrize("key_hex", ["", "nothex", "0011", TEST_KEY_HEX + "00"])
def test_set_key_rejects_invalid_material(registry: KeyRegistry, key_hex: str) -> None:
    with pytest.raises(ConfigError):
        registry.set_key("k-bad", key_hex)
    assert "k-bad" not in registry


def test_set_key_rejects_empty_id(registry: KeyRegistry) -> None:
    with pytest.raises(ConfigError):
        registry.set_key("", ALT_KEY_HEX)


def test_set_active_key_id(registry: KeyRegistry) -> None:
    registry.set_key(ALT_KEY_ID, ALT_KEY_HEX)
    registry.set_active_key_id(ALT_KEY_ID)

    assert registry.get_active_key_id() == ALT_KEY_ID
    assert registry.get_key() == SecureKey.from_hex(ALT_KEY_HEX)


def test_set_active_key_id_requires_registration(registry: KeyRegistry) -> None:
    with pytest.raises(KeyNotFoundError):
        registry.set_active_key_id("k-missing")
    assert registry.get_active_key_id() == TEST_KEY_ID


@pytest.mark.parametrize("key_hex, key_id", [("", TEST_KEY_ID), (TEST_KEY_HEX, "")])
def test_constructor_requires_key_and_id(key_hex: str, key_id: str) -> None:
    with pytest.raises(ConfigError):
        KeyRegistry(key_hex, key_id)


def test_from_settings_registers_old_keys() -> None:
    settings = EncryptionSettings(
        primary_key_hex=ALT_KEY_HEX,
        primary_key_id="k-new",
        old_keys={TEST_KEY_ID: TEST_KEY_HEX, "k-new": TEST_KEY_HEX},
    )

    registry = KeyRegistry.from_settings(settings)

    assert registry.get_active_key_id() == "k-new"
    assert registry.key_ids() == ["k-new", TEST_KEY_ID]
    # the primary key wins over an old key with the same id
    assert registry.get_key("k-new") == SecureKey.from_hex(ALT_KEY_HEX)


def test_key_material_is_never_logged(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="field_encryption"):
        registry = KeyRegistry(TEST_KEY_HEX, TEST_KEY_ID)
        registry.set_key(ALT_KEY_ID, ALT_KEY_HEX)
        registry.set_active_key_id(ALT_KEY_ID)

    assert TEST_KEY_ID in caplog.text
    assert TEST_KEY_HEX not in caplog.text
    assert ALT_KEY_HEX not in caplog.text
    assert TEST_KEY_HEX not in repr(registry)


def test_concurrent_registration_keeps_every_key(registry: KeyRegistry) -> None:
    key_ids = [f"k-{i}" for i in range(50)]

    def register(key_id: str) -> None:
        registry.set_key(key_id, ALT_KEY_HEX)
        registry.get_key(key_id)

    threads = [threading.Thread(target=register, args=(key_id,)) for key_id in key_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert set(key_ids) <= set(registry.key_ids())
    assert len(registry) == 51
