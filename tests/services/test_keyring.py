# tests/services/test_keyring.py
import json

import ecies
import pytest

from kasia_courier.services.cipher import (
    CipherScheme,
    EncryptionError,
    encrypt_raw,
    encrypt_shared,
    seal_to_public_key,
)
from kasia_courier.services.keyring import (
    EPHEMERAL_KEY_REQUIRED,
    LEGACY_CANNOT_DECRYPT,
    SHARED_KEY_REQUIRED,
    Keyring,
    KeyringError,
)
from kasia_courier.services.payloads import handshake_document
from kasia_courier.utils.address import load_public_key


@pytest.fixture()
def alice_keyring(alice, tmp_path):
    keyring = Keyring(tmp_path)
    keyring.switch_identity(alice.address)
    yield keyring
    keyring.close()


@pytest.fixture()
def bob_keyring(bob, tmp_path):
    keyring = Keyring(tmp_path)
    keyring.switch_identity(bob.address)
    yield keyring
    keyring.close()


def _establish(alice, bob, alice_keyring, bob_keyring):
    alice_keyring.establish_key("conv-1", "sig-a", bob.address, "sig-b")
    bob_keyring.establish_key("conv-1", "sig-b", alice.address, "sig-a")


def test_both_sides_share_a_key(alice, bob, alice_keyring, bob_keyring):
    _establish(alice, bob, alice_keyring, bob_keyring)

    token = alice_keyring.encrypt_content("conv-1", "hi bob")
    result = bob_keyring.try_decrypt_message("conv-1", token)

    assert result.decrypted
    assert result.content == "hi bob"
    assert result.scheme is CipherScheme.SHARED


def test_existing_key_is_never_rotated(alice, bob, alice_keyring):
    first = alice_keyring.establish_key("conv-1", "sig-a", bob.address, "sig-b")
    second = alice_keyring.establish_key("conv-1", "other", bob.address, "other")
    assert first == second


def test_missing_counterpart_signature(bob, alice_keyring):
    assert alice_keyring.establish_key("conv-1", "sig-a", bob.address, None) is None
    assert not alice_keyring.has_key("conv-1")
    with pytest.raises(EncryptionError):
        alice_keyring.encrypt_content("conv-1", "too early")


def test_shared_token_without_key_yields_sentinel(alice_keyring):
    result = alice_keyring.try_decrypt_message("conv-1", encrypt_shared(bytes(32), "secret"))

    assert not result.decrypted
    assert result.content == SHARED_KEY_REQUIRED


def test_tampered_token_yields_sentinel(alice, bob, alice_keyring, bob_keyring):
    _establish(alice, bob, alice_keyring, bob_keyring)
    token = alice_keyring.encrypt_content("conv-1", "hello")
    tampered = token[:-2] + ("00" if token[-2:] != "00" else "01")

    result = bob_keyring.try_decrypt_message("conv-1", tampered)

    assert not result.decrypted
    assert result.content == SHARED_KEY_REQUIRED


def test_legacy_and_plaintext_bodies(alice_keyring):
    legacy = alice_keyring.try_decrypt_message("conv-1", "ciph_msg:1:comm:x:y")
    plain = alice_keyring.try_decrypt_message("conv-1", "just text")

    assert legacy.content == LEGACY_CANNOT_DECRYPT
    assert not plain.decrypted
    assert plain.content == "just text"
    assert plain.scheme is CipherScheme.PLAINTEXT


class TestIdentity:
    def test_ephemeral_message_needs_identity(self, alice_keyring, bob_keyring):
        identity = bob_keyring.initialize_identity("bob-identity-sig")
        token = alice_keyring.encrypt_for_identity(identity.public_key_hex, "sealed")

        assert bob_keyring.try_decrypt_message("conv-1", token).content == "sealed"
        assert alice_keyring.try_decrypt_message("conv-1", token).content == EPHEMERAL_KEY_REQUIRED

    def test_ecies_token_from_web_client(self, bob_keyring):
        identity = bob_keyring.initialize_identity("bob-identity-sig")
        token = "ecies:" + ecies.encrypt(identity.public_key_hex, b"hello from a web client").hex()

        result = bob_keyring.try_decrypt_message("conv-1", token)

        assert result.decrypted
        assert result.scheme is CipherScheme.EPHEMERAL
        assert result.content == "hello from a web client"

    def test_raw_hex_body_is_opened_with_identity(self, bob_keyring):
        identity = bob_keyring.initialize_identity("bob-identity-sig")
        token = encrypt_raw(load_public_key(identity.public_key_bytes), "raw sealed")

        result = bob_keyring.try_decrypt_message("conv-1", token)

        assert result.decrypted
        assert result.scheme is CipherScheme.RAW_ECDH
        assert result.content == "raw sealed"

    def test_raw_hex_for_someone_else_is_shown_as_is(self, alice_keyring):
        alice_keyring.initialize_identity("alice-identity-sig")
        body = "ab" * 80

        result = alice_keyring.try_decrypt_message("conv-1", body)

        assert not result.decrypted
        assert result.content == body

    def test_identity_persists_across_sessions(self, bob, tmp_path):
        keyring = Keyring(tmp_path)
        keyring.switch_identity(bob.address)
        created = keyring.initialize_identity("bob-identity-sig")
        keyring.close()

        restored = Keyring(tmp_path)
        restored.switch_identity(bob.address)
        try:
            assert restored.identity == created
        finally:
            restored.close()

    def test_encrypt_for_address(self, bob, alice_keyring):
        token = alice_keyring.encrypt_for_address(bob.address, "to your address")
        assert token.startswith("ecies:")
        with pytest.raises(EncryptionError):
            alice_keyring.encrypt_for_address("kaspa:invalid", "x")
        with pytest.raises(EncryptionError):
            alice_keyring.encrypt_for_identity("zz", "x")

    def test_open_sealed_handshake(self, bob_keyring):
        identity = bob_keyring.initialize_identity("bob-identity-sig")
        document = handshake_document("alice", bob_keyring.wallet_address, "conv-9")
        sealed = seal_to_public_key(load_public_key(identity.public_key_bytes), json.dumps(document))

        opened = bob_keyring.open_sealed_handshake("ciph_msg:" + sealed.hex())

        assert opened is not None
        assert opened.conversation_id == "conv-9"
        assert opened.alias == "alice"


class TestSwitchIdentity:
    def test_switching_drops_previous_keys(self, alice, bob, carol, tmp_path):
        keyring = Keyring(tmp_path)
        try:
            keyring.switch_identity(alice.address)
            keyring.establish_key("conv-1", "sig-a", bob.address, "sig-b")
            assert keyring.has_key("conv-1")

            keyring.switch_identity(carol.address)
            assert keyring.wallet_address == carol.address
            assert not keyring.has_key("conv-1")
            assert len(keyring.cache) == 0

            keyring.switch_identity(alice.address)
            assert keyring.has_key("conv-1")
        finally:
            keyring.close()

    def test_operations_require_identity(self, bob, tmp_path):
        keyring = Keyring(tmp_path)
        with pytest.raises(KeyringError):
            keyring.initialize_identity("sig")
        with pytest.raises(KeyringError):
            keyring.establish_key("conv-1", "sig-a", bob.address, "sig-b")
        assert keyring.open_sealed_handshake("ciph_msg:00") is None
