"""Client-side encryption of object payloads.

This module provides:
- EncryptionEnvelope: Per-object record stored in user metadata
- EncryptionEngine: Per-object key generation, chunk encryption and key wrapping

Each object gets a fresh 256-bit key. Payloads are encrypted chunk by chunk
with AES-256-GCM so ranged downloads can decrypt chunks independently. The
object key is wrapped with the RSA public key of every recipient key name.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace

from cryptography.exceptions import InvalidTag

from cloudstore.core import crypto
from cloudstore.core.chunking import DEFAULT_CHUNK_SIZE, compute_chunks
from cloudstore.core.errors import DecryptionError, KeyNotFoundError, UsageError
from cloudstore.core.types import ObjectDescriptor
from cloudstore.keys import KeyProvider

logger = logging.getLogger(__name__)

# User metadata keys of the envelope
META_KEY_NAMES = "cloudstore-key-names"
META_WRAPPED_KEYS = "cloudstore-wrapped-keys"
META_CHUNK_SIZE = "cloudstore-chunk-size"
META_PLAINTEXT_LENGTH = "cloudstore-plaintext-length"

ENVELOPE_METADATA_KEYS = (META_KEY_NAMES, META_WRAPPED_KEYS, META_CHUNK_SIZE, META_PLAINTEXT_LENGTH)


@dataclass(frozen=True)
class EncryptionEnvelope:
    """How an object's payload is encrypted.

    Attributes:
        key_names: Recipient key names.
        wrapped_keys: Object key wrapped under each recipient, same order as
            key_names. Empty for legacy objects, which use a raw symmetric key.
        chunk_size: Plaintext chunk size used when the payload was encrypted.
        plaintext_length: Size of the original payload.
    """

    key_names: tuple[str, ...]
    wrapped_keys: tuple[bytes, ...]
    chunk_size: int
    plaintext_length: int

    @property
    def key_name(self) -> str:
        """Primary key name."""
        return self.key_names[0]

    @property
    def wrapped_key(self) -> bytes | None:
        """Object key wrapped under the primary key name."""
        return self.wrapped_keys[0] if self.wrapped_keys else None

    @property
    def is_legacy(self) -> bool:
        """Check whether the object key is a raw legacy key rather than a wrapped one."""
        return not self.wrapped_keys

    @property
    def cipher_chunk_size(self) -> int:
        """Size of one full encrypted chunk as stored."""
        return crypto.encrypted_size(self.chunk_size)

    def encrypted_length(self) -> int:
        """Size of the stored ciphertext for this envelope's payload."""
        count = len(compute_chunks(self.plaintext_length, self.chunk_size))
        return self.plaintext_length + count * crypto.CHUNK_OVERHEAD

    def to_metadata(self) -> dict[str, str]:
        """Serialize as user metadata entries."""
        metadata = {
            META_KEY_NAMES: ",".join(self.key_names),
            META_CHUNK_SIZE: str(self.chunk_size),
            META_PLAINTEXT_LENGTH: str(self.plaintext_length),
        }
        if self.wrapped_keys:
            metadata[META_WRAPPED_KEYS] = ",".join(
                base64.b64encode(k).decode("ascii") for k in self.wrapped_keys
            )
        return metadata

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, str]) -> EncryptionEnvelope | None:
        """Parse an envelope from user metadata.

        Returns:
            The envelope, or None if the object is not encrypted.

        Raises:
            DecryptionError: If the envelope entries are present but malformed.
        """
        names = metadata.get(META_KEY_NAMES)
        if not names:
            return None

        try:
            key_names = tuple(n for n in names.split(",") if n)
            wrapped_raw = metadata.get(META_WRAPPED_KEYS, "")
            wrapped_keys = tuple(
                base64.b64decode(k, validate=True) for k in wrapped_raw.split(",") if k
            )
            chunk_size = int(metadata.get(META_CHUNK_SIZE, DEFAULT_CHUNK_SIZE))
            plaintext_length = int(metadata.get(META_PLAINTEXT_LENGTH, 0))
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Malformed encryption envelope: {e}") from e

        if wrapped_keys and len(wrapped_keys) != len(key_names):
            raise DecryptionError(
                f"Malformed encryption envelope: {len(key_names)} key names "
                f"but {len(wrapped_keys)} wrapped keys"
            )
        if chunk_size <= 0:
            raise DecryptionError(f"Malformed encryption envelope: chunk size {chunk_size}")
        return cls(key_names, wrapped_keys, chunk_size, plaintext_length)


def strip_envelope(metadata: Mapping[str, str]) -> dict[str, str]:
    """Return ``metadata`` without envelope entries."""
    return {k: v for k, v in metadata.items() if k not in ENVELOPE_METADATA_KEYS}


def with_plaintext_size(descriptor: ObjectDescriptor) -> ObjectDescriptor:
    """Report the plaintext size of an encrypted object instead of the stored size."""
    envelope = EncryptionEnvelope.from_metadata(descriptor.metadata)
    if envelope is None:
        return descriptor
    return replace(descriptor, size=envelope.plaintext_length)


class EncryptionEngine:
    """Encrypts and decrypts object payloads using keys from a KeyProvider."""

    def __init__(self, key_provider: KeyProvider) -> None:
        self.key_provider = key_provider

    # Upload path

    def new_envelope(
        self,
        key_name: str,
        chunk_size: int,
        plaintext_length: int,
    ) -> tuple[bytes, EncryptionEnvelope]:
        """Generate an object key and the envelope wrapping it under ``key_name``.

        Returns:
            Tuple of (object key, envelope).

        Raises:
            KeyNotFoundError: If ``key_name`` has no public key.
        """
        public_key = self.key_provider.resolve_public_key(key_name)
        object_key = crypto.generate_symmetric_key()
        envelope = EncryptionEnvelope(
            key_names=(key_name,),
            wrapped_keys=(crypto.wrap_key(object_key, public_key),),
            chunk_size=chunk_size,
            plaintext_length=plaintext_length,
        )
        return object_key, envelope

    def encrypt_chunk(self, data: bytes, object_key: bytes, index: int) -> bytes:
        """Encrypt the chunk at position ``index``."""
        return crypto.encrypt_chunk(data, object_key, index)

    def encrypt_for_upload(
        self,
        data: bytes,
        key_name: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> tuple[bytes, EncryptionEnvelope]:
        """Encrypt a whole payload.

        Returns:
            Tuple of (ciphertext, envelope).

        Raises:
            KeyNotFoundError: If ``key_name`` does not resolve.
        """
        object_key, envelope = self.new_envelope(key_name, chunk_size, len(data))
        parts = [
            self.encrypt_chunk(data[c.start : c.end + 1], object_key, c.index)
            for c in compute_chunks(len(data), chunk_size)
        ]
        return b"".join(parts), envelope

    # Download path

    def unwrap(self, envelope: EncryptionEnvelope, first_chunk: bytes | None = None) -> bytes:
        """Recover the object key of ``envelope``.

        Recipient key names are tried in order; the first one with a private
        key wins. Legacy envelopes are matched against ``first_chunk`` with each
        legacy symmetric key.

        Raises:
            KeyNotFoundError: If no recipient key name resolves to a private key.
            DecryptionError: If unwrapping fails or no legacy key authenticates.
        """
        if envelope.is_legacy:
            return self._find_legacy_key(envelope, first_chunk)

        missing = []
        for name, wrapped in zip(envelope.key_names, envelope.wrapped_keys):
            try:
                private_key = self.key_provider.resolve_private_key(name)
            except KeyNotFoundError:
                missing.append(name)
                continue
            try:
                return crypto.unwrap_key(wrapped, private_key)
            except ValueError as e:
                raise DecryptionError(f"Cannot unwrap object key with key '{name}': {e}") from e
        raise KeyNotFoundError(",".join(missing), "no private key for any recipient")

    def _find_legacy_key(self, envelope: EncryptionEnvelope, first_chunk: bytes | None) -> bytes:
        if first_chunk is None:
            raise DecryptionError("Legacy encrypted object needs its first chunk to find the key")
        candidates = self.key_provider.resolve_legacy_symmetric_keys()
        if not candidates:
            raise KeyNotFoundError(envelope.key_name, "no legacy symmetric keys available")
        for candidate in candidates:
            try:
                crypto.decrypt_chunk(first_chunk, candidate, 0)
            except InvalidTag:
                continue
            logger.debug(f"Legacy key matched for envelope '{envelope.key_name}'")
            return candidate
        raise DecryptionError("No legacy symmetric key decrypts this object")

    def decrypt_chunk(self, encrypted: bytes, object_key: bytes, index: int) -> bytes:
        """Decrypt the chunk at position ``index``.

        Raises:
            DecryptionError: If authentication fails.
        """
        if len(encrypted) < crypto.CHUNK_OVERHEAD:
            raise DecryptionError(f"Encrypted chunk {index} is truncated ({len(encrypted)} bytes)")
        try:
            return crypto.decrypt_chunk(encrypted, object_key, index)
        except InvalidTag as e:
            raise DecryptionError(
                f"Chunk {index} failed authentication (wrong key or tampered data)"
            ) from e

    def decrypt_for_download(self, data: bytes, envelope: EncryptionEnvelope | None) -> bytes:
        """Decrypt a whole payload; pass through when ``envelope`` is None.

        Raises:
            KeyNotFoundError: If no recipient key resolves.
            DecryptionError: If the payload does not decrypt.
        """
        if envelope is None:
            return data

        step = envelope.cipher_chunk_size
        pieces = [data[offset : offset + step] for offset in range(0, len(data), step)]
        object_key = self.unwrap(envelope, pieces[0] if pieces else None)
        plaintext = b"".join(
            self.decrypt_chunk(piece, object_key, index) for index, piece in enumerate(pieces)
        )
        if len(plaintext) != envelope.plaintext_length:
            raise DecryptionError(
                f"Decrypted length {len(plaintext)} does not match "
                f"expected {envelope.plaintext_length}"
            )
        return plaintext

    # Key management

    def add_key(
        self,
        envelope: EncryptionEnvelope,
        key_name: str,
        first_chunk: bytes | None = None,
    ) -> EncryptionEnvelope:
        """Return a copy of ``envelope`` also wrapped under ``key_name``.

        Raises:
            UsageError: If ``key_name`` is already a recipient.
            KeyNotFoundError: If the object key cannot be recovered or
                ``key_name`` has no public key.
        """
        if key_name in envelope.key_names:
            raise UsageError(f"Object is already encrypted with key '{key_name}'")
        public_key = self.key_provider.resolve_public_key(key_name)
        object_key = self.unwrap(envelope, first_chunk)

        if envelope.is_legacy:
            # Upgrade to wrapped keys for every resolvable existing recipient.
            names, wrapped = [], []
            for name in envelope.key_names:
                try:
                    existing = self.key_provider.resolve_public_key(name)
                except KeyNotFoundError:
                    logger.warning(f"Dropping legacy recipient '{name}': no public key")
                    continue
                names.append(name)
                wrapped.append(crypto.wrap_key(object_key, existing))
        else:
            names, wrapped = list(envelope.key_names), list(envelope.wrapped_keys)

        names.append(key_name)
        wrapped.append(crypto.wrap_key(object_key, public_key))
        return replace(envelope, key_names=tuple(names), wrapped_keys=tuple(wrapped))

    def remove_key(self, envelope: EncryptionEnvelope, key_name: str) -> EncryptionEnvelope:
        """Return a copy of ``envelope`` without recipient ``key_name``.

        Raises:
            UsageError: If ``key_name`` is not a recipient or is the only one.
        """
        if key_name not in envelope.key_names:
            raise UsageError(f"Object is not encrypted with key '{key_name}'")
        if len(envelope.key_names) == 1:
            raise UsageError(f"Cannot remove '{key_name}': it is the only encryption key")

        index = envelope.key_names.index(key_name)
        names = envelope.key_names[:index] + envelope.key_names[index + 1 :]
        wrapped = envelope.wrapped_keys
        if wrapped:
            wrapped = wrapped[:index] + wrapped[index + 1 :]
        return replace(envelope, key_names=names, wrapped_keys=wrapped)
