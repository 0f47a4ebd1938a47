# tests/test_cipher.py
import os

import ecies
import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from kasia_courier.services.cipher import (
    CipherScheme,
    DecryptionError,
    EncryptedMessage,
    EncryptionError,
    decrypt_ephemeral,
    decrypt_raw,
    decrypt_shared,
    detect_scheme,
    encrypt_ephemeral,
    encrypt_raw,
    encrypt_shared,
    open_sealed,
    seal,
    seal_to_public_key,
    unseal,
)
from kasia_courier.services.key_derivation import compressed_public_key, ecdh_key

SHARED_KEY = bytes(range(32))


def _flip_last_byte(token: str) -> str:
    last = int(token[-2:], 16) ^ 0x01
    return f"{token[:-2]}{last:02x}"


class TestSharedScheme:
    def test_round_trip(self):
        token = encrypt_shared(SHARED_KEY, "hello, world")

        assert token.startswith("sym:")
        assert decrypt_shared(SHARED_KEY, token) == "hello, world"

    def test_prefix_is_optional_on_decrypt(self):
        token = encrypt_shared(SHARED_KEY, "no prefix")
        assert decrypt_shared(SHARED_KEY, token.removeprefix("sym:")) == "no prefix"

    def test_nonces_are_fresh(self):
        first = encrypt_shared(SHARED_KEY, "same text")
        second = encrypt_shared(SHARED_KEY, "same text")
        assert first != second
        assert first[4:28] != second[4:28]

    def test_tampering_fails_authentication(self):
        token = encrypt_shared(SHARED_KEY, "integrity")
        with pytest.raises(DecryptionError):
            decrypt_shared(SHARED_KEY, _flip_last_byte(token))

    def test_wrong_key_fails(self):
        token = encrypt_shared(SHARED_KEY, "secret")
        with pytest.raises(DecryptionError):
            decrypt_shared(os.urandom(32), token)

    def test_short_and_malformed_tokens(self):
        with pytest.raises(DecryptionError):
            decrypt_shared(SHARED_KEY, "sym:00ff")
        with pytest.raises(DecryptionError):
            decrypt_shared(SHARED_KEY, "sym:not-hex")

    def test_bad_key_length_raises_encryption_error(self):
        with pytest.raises(EncryptionError):
            encrypt_shared(b"short", "text")

    def test_seal_layout(self):
        message = seal(SHARED_KEY, b"abc")
        assert len(message.nonce) == 12
        assert len(message.ciphertext) == 3 + 16
        assert unseal(SHARED_KEY, message) == b"abc"


class TestEphemeralScheme:
    def test_round_trip(self):
        recipient = ec.generate_private_key(ec.SECP256K1())
        token = encrypt_ephemeral(recipient.public_key(), "sealed note")

        assert token.startswith("ecies:")
        assert decrypt_ephemeral(recipient, token) == "sealed note"

    def test_reads_tokens_written_by_web_clients(self):
        recipient = ec.generate_private_key(ec.SECP256K1())
        public_hex = compressed_public_key(recipient.public_key()).hex()
        token = "ecies:" + ecies.encrypt(public_hex, "hello from a web client".encode()).hex()

        assert decrypt_ephemeral(recipient, token) == "hello from a web client"

    def test_tokens_open_with_the_ecies_library(self):
        recipient = ec.generate_private_key(ec.SECP256K1())
        token = encrypt_ephemeral(recipient.public_key(), "to a web client")
        private_hex = format(recipient.private_numbers().private_value, "064x")

        assert ecies.decrypt(private_hex, bytes.fromhex(token.removeprefix("ecies:"))) == b"to a web client"

    def test_malformed_token(self):
        recipient = ec.generate_private_key(ec.SECP256K1())
        with pytest.raises(DecryptionError):
            decrypt_ephemeral(recipient, "ecies:00ff")

    def test_other_recipient_cannot_open(self):
        recipient = ec.generate_private_key(ec.SECP256K1())
        stranger = ec.generate_private_key(ec.SECP256K1())
        token = encrypt_ephemeral(recipient.public_key(), "for recipient only")

        with pytest.raises(DecryptionError):
            decrypt_ephemeral(stranger, token)

    def test_raw_hex_round_trip(self):
        recipient = ec.generate_private_key(ec.SECP256K1())
        token = encrypt_raw(recipient.public_key(), "raw body")

        assert detect_scheme(token) is CipherScheme.RAW_ECDH
        assert decrypt_raw(recipient, token) == "raw body"

    def test_sealed_bytes_carry_compressed_ephemeral_key(self):
        recipient = ec.generate_private_key(ec.SECP256K1())
        data = seal_to_public_key(recipient.public_key(), b"payload")

        message = EncryptedMessage.from_bytes(data, ephemeral=True)
        assert len(message.ephemeral_public_key) == 33
        assert open_sealed(recipient, data) == b"payload"

    def test_x_only_ephemeral_key_is_accepted(self):
        recipient = ec.generate_private_key(ec.SECP256K1())
        for secret in range(1, 64):
            ephemeral = ec.derive_private_key(secret, ec.SECP256K1())
            x_only = compressed_public_key(ephemeral.public_key())[1:]
            if x_only[0] not in (2, 3):
                break

        sealed = seal(ecdh_key(ephemeral, recipient.public_key()), "x-only")
        data = EncryptedMessage(
            nonce=sealed.nonce,
            ciphertext=sealed.ciphertext,
            ephemeral_public_key=x_only,
        ).to_bytes()

        assert open_sealed(recipient, data) == b"x-only"

    def test_truncated_sealed_bytes(self):
        recipient = ec.generate_private_key(ec.SECP256K1())
        with pytest.raises(DecryptionError):
            open_sealed(recipient, b"\x00" * 20)


@pytest.mark.parametrize(
    ("content", "scheme"),
    [
        ("sym:abcd", CipherScheme.SHARED),
        ("ecies:abcd", CipherScheme.EPHEMERAL),
        ("ciph_msg:1:comm:x:y", CipherScheme.LEGACY),
        ("ab" * 60, CipherScheme.RAW_ECDH),
        ("ab" * 10, CipherScheme.PLAINTEXT),
        ("just a note", CipherScheme.PLAINTEXT),
    ],
)
def test_detect_scheme(content, scheme):
    assert detect_scheme(content) is scheme
