"""Tests for the encryption envelope and engine."""

from __future__ import annotations

import os

import pytest

from cloudstore.core import crypto
from cloudstore.core.errors import DecryptionError, KeyNotFoundError, UsageError
from cloudstore.core.types import ObjectDescriptor, StoredObject
from cloudstore.encryption import (
    META_CHUNK_SIZE,
    META_KEY_NAMES,
    META_PLAINTEXT_LENGTH,
    META_WRAPPED_KEYS,
    EncryptionEngine,
    EncryptionEnvelope,
    strip_envelope,
    with_plaintext_size,
)
from cloudstore.keys import InMemoryKeyProvider


@pytest.fixture
def engine(key_provider: InMemoryKeyProvider) -> EncryptionEngine:
    """Engine over the shared test key provider."""
    return EncryptionEngine(key_provider)


def _legacy_payload(key: bytes, data: bytes, chunk_size: int) -> bytes:
    return b"".join(
        crypto.encrypt_chunk(data[offset : offset + chunk_size], key, index)
        for index, offset in enumerate(range(0, len(data), chunk_size))
    )


class TestEncryptionEnvelope:
    """Tests for envelope metadata serialization."""

    def test_metadata_roundtrip(self) -> None:
        """to_metadata() and from_metadata() are inverse."""
        envelope = EncryptionEnvelope(("k1", "k2"), (b"w1", b"w2"), 1024, 5000)
        assert EncryptionEnvelope.from_metadata(envelope.to_metadata()) == envelope

    def test_unencrypted_metadata(self) -> None:
        """Objects without an envelope parse as None."""
        assert EncryptionEnvelope.from_metadata({"owner": "me"}) is None

    def test_legacy_envelope(self) -> None:
        """An envelope without wrapped keys is legacy."""
        envelope = EncryptionEnvelope.from_metadata(
            {META_KEY_NAMES: "old", META_CHUNK_SIZE: "16", META_PLAINTEXT_LENGTH: "40"}
        )
        assert envelope is not None
        assert envelope.is_legacy
        assert envelope.wrapped_key is None
        assert META_WRAPPED_KEYS not in envelope.to_metadata()

    def test_mismatched_counts(self) -> None:
        """Key names and wrapped keys must pair up."""
        with pytest.raises(DecryptionError, match="Malformed"):
            EncryptionEnvelope.from_metadata(
                {META_KEY_NAMES: "k1,k2", META_WRAPPED_KEYS: "d3JhcA=="}
            )

    def test_malformed_numbers(self) -> None:
        """Non-numeric sizes are malformed."""
        with pytest.raises(DecryptionError, match="Malformed"):
            EncryptionEnvelope.from_metadata({META_KEY_NAMES: "k1", META_CHUNK_SIZE: "big"})

    def test_encrypted_length(self) -> None:
        """Each chunk adds the GCM overhead."""
        envelope = EncryptionEnvelope(("k1",), (b"w",), 10, 25)
        assert envelope.encrypted_length() == 25 + 3 * crypto.CHUNK_OVERHEAD
        assert EncryptionEnvelope(("k1",), (b"w",), 10, 0).encrypted_length() == 0

    def test_strip_envelope(self) -> None:
        """strip_envelope() keeps only user entries."""
        envelope = EncryptionEnvelope(("k1",), (b"w",), 10, 25)
        metadata = {"owner": "me", **envelope.to_metadata()}
        assert strip_envelope(metadata) == {"owner": "me"}

    def test_with_plaintext_size(self) -> None:
        """Encrypted descriptors report the plaintext length."""
        envelope = EncryptionEnvelope(("k1",), (b"w",), 10, 25)
        descriptor = ObjectDescriptor(
            ref=StoredObject("b", "k"),
            size=envelope.encrypted_length(),
            metadata=envelope.to_metadata(),
        )
        assert with_plaintext_size(descriptor).size == 25
        plain = ObjectDescriptor(ref=StoredObject("b", "k"), size=7)
        assert with_plaintext_size(plain) is plain


class TestEncryptionEngine:
    """Tests for EncryptionEngine."""

    def test_roundtrip(self, engine: EncryptionEngine) -> None:
        """A payload encrypted under k1 decrypts back."""
        data = os.urandom(2500)
        ciphertext, envelope = engine.encrypt_for_upload(data, "k1", chunk_size=1000)

        assert envelope.key_names == ("k1",)
        assert len(ciphertext) == envelope.encrypted_length() == 2500 + 3 * crypto.CHUNK_OVERHEAD
        assert engine.decrypt_for_download(ciphertext, envelope) == data

    def test_empty_payload(self, engine: EncryptionEngine) -> None:
        """An empty payload has no chunks and decrypts to empty."""
        ciphertext, envelope = engine.encrypt_for_upload(b"", "k1", chunk_size=1000)
        assert ciphertext == b""
        assert engine.decrypt_for_download(ciphertext, envelope) == b""

    def test_unencrypted_passthrough(self, engine: EncryptionEngine) -> None:
        """Without an envelope the data passes through."""
        assert engine.decrypt_for_download(b"plain", None) == b"plain"

    def test_unknown_key_name(self, engine: EncryptionEngine) -> None:
        """Encrypting under an unknown name raises KeyNotFoundError."""
        with pytest.raises(KeyNotFoundError, match="nope"):
            engine.encrypt_for_upload(b"data", "nope")

    def test_encrypt_only_key_cannot_decrypt(self, engine: EncryptionEngine) -> None:
        """A recipient with only a public key cannot decrypt."""
        ciphertext, envelope = engine.encrypt_for_upload(b"secret", "k3")
        with pytest.raises(KeyNotFoundError):
            engine.decrypt_for_download(ciphertext, envelope)

    def test_tampered_chunk(self, engine: EncryptionEngine) -> None:
        """A modified chunk fails with DecryptionError."""
        ciphertext, envelope = engine.encrypt_for_upload(b"secret data", "k1")
        tampered = ciphertext[:-1] + bytes([ciphertext[-1] ^ 1])
        with pytest.raises(DecryptionError, match="authentication"):
            engine.decrypt_for_download(tampered, envelope)

    def test_truncated_chunk(self, engine: EncryptionEngine) -> None:
        """A chunk shorter than the GCM overhead is rejected."""
        with pytest.raises(DecryptionError, match="truncated"):
            engine.decrypt_chunk(b"short", crypto.generate_symmetric_key(), 0)

    def test_wrong_private_key(self, engine: EncryptionEngine) -> None:
        """A wrapped key that does not match the private key fails to unwrap."""
        _, envelope = engine.new_envelope("k1", 1000, 10)
        swapped = EncryptionEnvelope(("k2",), envelope.wrapped_keys, 1000, 10)
        with pytest.raises(DecryptionError, match="unwrap"):
            engine.unwrap(swapped)

    def test_legacy_key_found_by_trial(self) -> None:
        """Legacy objects decrypt with whichever legacy key authenticates."""
        right, wrong = crypto.generate_symmetric_key(), crypto.generate_symmetric_key()
        engine = EncryptionEngine(InMemoryKeyProvider(legacy_keys=[wrong, right]))
        data = os.urandom(40)
        envelope = EncryptionEnvelope(("old",), (), 16, len(data))

        assert engine.decrypt_for_download(_legacy_payload(right, data, 16), envelope) == data

    def test_legacy_without_matching_key(self) -> None:
        """No matching legacy key is a DecryptionError."""
        engine = EncryptionEngine(InMemoryKeyProvider(legacy_keys=[os.urandom(32)]))
        envelope = EncryptionEnvelope(("old",), (), 16, 10)
        payload = _legacy_payload(os.urandom(32), os.urandom(10), 16)
        with pytest.raises(DecryptionError, match="legacy"):
            engine.decrypt_for_download(payload, envelope)


class TestKeyManagement:
    """Tests for add_key() and remove_key()."""

    def test_add_key(self, engine: EncryptionEngine) -> None:
        """A second recipient can decrypt after add_key()."""
        data = b"shared secret"
        ciphertext, envelope = engine.encrypt_for_upload(data, "k1")

        updated = engine.add_key(envelope, "k2")
        assert updated.key_names == ("k1", "k2")

        only_k2 = EncryptionEnvelope(
            ("k2",), (updated.wrapped_keys[1],), updated.chunk_size, updated.plaintext_length
        )
        assert engine.decrypt_for_download(ciphertext, only_k2) == data

    def test_add_existing_key(self, engine: EncryptionEngine) -> None:
        """Adding a name twice is a usage error."""
        _, envelope = engine.encrypt_for_upload(b"x", "k1")
        with pytest.raises(UsageError, match="already"):
            engine.add_key(envelope, "k1")

    def test_add_unknown_key(self, engine: EncryptionEngine) -> None:
        """Adding an unknown name raises KeyNotFoundError."""
        _, envelope = engine.encrypt_for_upload(b"x", "k1")
        with pytest.raises(KeyNotFoundError):
            engine.add_key(envelope, "nope")

    def test_add_key_upgrades_legacy(self, rsa_keys: dict) -> None:
        """Adding a key to a legacy object switches it to wrapped keys."""
        legacy_key = crypto.generate_symmetric_key()
        provider = InMemoryKeyProvider(legacy_keys=[legacy_key])
        provider.add_keypair("k1", rsa_keys["k1"])
        engine = EncryptionEngine(provider)
        data = os.urandom(20)
        payload = _legacy_payload(legacy_key, data, 16)
        envelope = EncryptionEnvelope(("old",), (), 16, len(data))

        updated = engine.add_key(envelope, "k1", payload[: 16 + crypto.CHUNK_OVERHEAD])

        assert updated.key_names == ("k1",)
        assert not updated.is_legacy
        assert engine.decrypt_for_download(payload, updated) == data

    def test_remove_key(self, engine: EncryptionEngine) -> None:
        """remove_key() drops the name and its wrapped key."""
        _, envelope = engine.encrypt_for_upload(b"x", "k1")
        both = engine.add_key(envelope, "k2")

        updated = engine.remove_key(both, "k1")
        assert updated.key_names == ("k2",)
        assert updated.wrapped_keys == (both.wrapped_keys[1],)

    def test_remove_last_key(self, engine: EncryptionEngine) -> None:
        """The only recipient cannot be removed."""
        _, envelope = engine.encrypt_for_upload(b"x", "k1")
        with pytest.raises(UsageError, match="only encryption key"):
            engine.remove_key(envelope, "k1")

    def test_remove_absent_key(self, engine: EncryptionEngine) -> None:
        """Removing a name that is not a recipient is a usage error."""
        _, envelope = engine.encrypt_for_upload(b"x", "k1")
        with pytest.raises(UsageError, match="not encrypted with"):
            engine.remove_key(envelope, "k2")
