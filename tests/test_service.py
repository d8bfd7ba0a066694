"""
Tests for EncryptionService field operations and the process-wide accessor.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace

import pytest

from field_encryption import (
    ConfigError,
    CryptoError,
    EncryptedEnvelope,
    EncryptionError,
    EncryptionService,
    EnvelopeFormatError,
    KeyNotFoundError,
    KeyRegistry,
    encrypt,
    get_encryption_service,
    is_encrypted,
    set_encryption_service,
)

from conftest import ALT_KEY_HEX, ALT_KEY_ID, TEST_KEY_HEX, TEST_KEY_ID


class TestEncryptField:
    def test_uses_active_key_id(self, service: EncryptionService) -> None:
        envelope = service.encrypt_field("access_token", "ghp_secret")

        assert envelope.version == "1"
        assert envelope.key_id == TEST_KEY_ID
        assert service.decrypt_field("access_token", envelope) == "ghp_secret"

    def test_field_name_does_not_affect_ciphertext_key(self, service: EncryptionService) -> None:
        envelope = service.encrypt_field("swarmApiKey", "value")

        assert service.decrypt_field("stakworkApiKey", envelope) == "value"

    def test_empty_value_round_trips(self, service: EncryptionService) -> None:
        envelope = service.encrypt_field("poolApiKey", "")
        assert service.decrypt_field("poolApiKey", envelope) == ""

    def test_rejects_non_string(self, service: EncryptionService) -> None:
        with pytest.raises(EncryptionError) as exc_info:
            service.encrypt_field("poolApiKey", None)  # type: ignore[arg-type]
        assert exc_info.value.field == "poolApiKey"

    def test_to_json(self, service: EncryptionService) -> None:
        stored = service.encrypt_field_to_json("poolApiKey", "pool-secret")

        assert json.loads(stored)["keyId"] == TEST_KEY_ID
        assert service.decrypt_field("poolApiKey", stored) == "pool-secret"


class TestEncryptFieldWithKeyId:
    def test_alt_key_scenario(self, service: EncryptionService) -> None:
        service.set_key(ALT_KEY_ID, ALT_KEY_HEX)

        envelope = service.encrypt_field_with_key_id("poolApiKey", "pool-secret", ALT_KEY_ID)

        assert envelope.key_id == ALT_KEY_ID
        assert service.get_active_key_id() == TEST_KEY_ID
        assert service.decrypt_field("poolApiKey", envelope) == "pool-secret"
        assert service.decrypt_field("poolApiKey", envelope.to_json()) == "pool-secret"

    def test_unknown_key_id(self, service: EncryptionService) -> None:
        with pytest.raises(KeyNotFoundError) as exc_info:
            service.encrypt_field_with_key_id("poolApiKey", "pool-secret", "k-missing")

        assert exc_info.value.field == "poolApiKey"
        assert exc_info.value.key_id == "k-missing"


class TestDecryptField:
    def test_legacy_plaintext_passthrough(self, service: EncryptionService) -> None:
        assert service.decrypt_field("access_token", "gho_legacy_token") == "gho_legacy_token"
        assert service.decrypt_field("access_token", "") == ""

    def test_passthrough_does_not_log_value(
        self, service: EncryptionService, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger="field_encryption"):
            service.decrypt_field("access_token", "gho_legacy_token")

        assert "access_token" in caplog.text
        assert "gho_legacy_token" not in caplog.text

    def test_envelope_dict(self, service: EncryptionService) -> None:
        envelope = service.encrypt_field("poolApiKey", "pool-secret")
        assert service.decrypt_field("poolApiKey", envelope.to_dict()) == "pool-secret"

    def test_deeply_nested_legacy_text_passes_through(self, service: EncryptionService) -> None:
        raw = "[" * 200000

        assert service.decrypt_field("poolApiKey", raw) == raw

    def test_unknown_version(self, service: EncryptionService) -> None:
        envelope = service.encrypt_field("poolApiKey", "pool-secret")

        with pytest.raises(EnvelopeFormatError) as exc_info:
            service.decrypt_field("poolApiKey", replace(envelope, version="2").to_json())
        assert exc_info.value.field == "poolApiKey"

    def test_unknown_key_id_is_not_masked(self, service: EncryptionService) -> None:
        envelope = service.encrypt_field("poolApiKey", "pool-secret")
        rewritten = replace(envelope, key_id="k-unregistered")

        with pytest.raises(KeyNotFoundError) as exc_info:
            service.decrypt_field("poolApiKey", rewritten.to_json())

        assert exc_info.value.field == "poolApiKey"
        assert exc_info.value.key_id == "k-unregistered"
        assert "pool-secret" not in str(exc_info.value)

    def test_wrong_key_under_same_id(self, service: EncryptionService) -> None:
        other = EncryptionService(KeyRegistry(ALT_KEY_HEX, TEST_KEY_ID))
        envelope = other.encrypt_field("poolApiKey", "pool-secret")

        with pytest.raises(CryptoError) as exc_info:
            service.decrypt_field("poolApiKey", envelope)
        assert exc_info.value.field == "poolApiKey"

    def test_tampered_tag(self, service: EncryptionService) -> None:
        envelope = service.encrypt_field("poolApiKey", "pool-secret")

        with pytest.raises(EncryptionError):
            service.decrypt_field("poolApiKey", replace(envelope, tag=envelope.tag[:-2]))

    def test_invalid_mapping(self, service: EncryptionService) -> None:
        with pytest.raises(EnvelopeFormatError) as exc_info:
            service.decrypt_field("poolApiKey", {"iv": "00"})
        assert exc_info.value.field == "poolApiKey"

    def test_keyless_envelope_uses_active_key(self, service: EncryptionService, registry: KeyRegistry) -> None:
        legacy = encrypt("pre-rotation", registry.get_key(TEST_KEY_ID))

        assert legacy.key_id is None
        assert service.decrypt_field("swarmApiKey", legacy.to_json()) == "pre-rotation"

    def test_old_key_still_decrypts_after_activation_change(self, service: EncryptionService) -> None:
        envelope = service.encrypt_field("poolApiKey", "pool-secret")

        service.set_key(ALT_KEY_ID, ALT_KEY_HEX)
        service.set_active_key_id(ALT_KEY_ID)

        assert service.decrypt_field("poolApiKey", envelope) == "pool-secret"
        assert service.encrypt_field("poolApiKey", "x").key_id == ALT_KEY_ID


class TestRotationHelpers:
    def test_needs_rotation(self, service: EncryptionService, registry: KeyRegistry) -> None:
        current = service.encrypt_field("poolApiKey", "a")
        keyless = encrypt("b", registry.get_key())

        assert service.needs_rotation(current) is False
        assert service.needs_rotation(keyless) is True
        assert service.needs_rotation("plain") is False

        service.set_key(ALT_KEY_ID, ALT_KEY_HEX)
        service.set_active_key_id(ALT_KEY_ID)
        assert service.needs_rotation(current.to_json()) is True

    def test_reencrypt_field(self, service: EncryptionService) -> None:
        old = service.encrypt_field("poolApiKey", "pool-secret")
        service.set_key(ALT_KEY_ID, ALT_KEY_HEX)
        service.set_active_key_id(ALT_KEY_ID)

        rotated = service.reencrypt_field("poolApiKey", old)

        assert rotated.key_id == ALT_KEY_ID
        assert service.decrypt_field("poolApiKey", rotated) == "pool-secret"


class TestProcessService:
    def test_built_once_from_env(self, encryption_env: None) -> None:
        first = get_encryption_service()
        second = get_encryption_service()

        assert first is second
        assert first.get_active_key_id() == TEST_KEY_ID
        assert is_encrypted(first.encrypt_field("poolApiKey", "x"))

    def test_missing_config_fails(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.delenv("TOKEN_ENCRYPTION_KEY", raising=False)
        monkeypatch.delenv("TOKEN_ENCRYPTION_KEY_ID", raising=False)
        monkeypatch.chdir(tmp_path)

        with pytest.raises(ConfigError):
            EncryptionService.from_env(tmp_path / "missing.env")

    def test_set_encryption_service(self, service: EncryptionService) -> None:
        set_encryption_service(service)
        assert get_encryption_service() is service


def test_envelope_type(service: EncryptionService) -> None:
    assert isinstance(service.encrypt_field("poolApiKey", "x"), EncryptedEnvelope)
