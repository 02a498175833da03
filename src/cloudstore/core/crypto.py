"""Cryptographic primitives for cloudstore.

This module provides:
- Per-object symmetric keys and AES-256-GCM chunk encryption
- RSA-OAEP wrapping of symmetric keys
- RSA key pair generation and PEM serialization
"""

import os
import struct

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

# AES-GCM constants
KEY_SIZE = 32  # 256 bits
NONCE_SIZE = 12  # 96 bits (recommended for AES-GCM)
TAG_SIZE = 16
CHUNK_OVERHEAD = NONCE_SIZE + TAG_SIZE

DEFAULT_RSA_BITS = 2048

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


def generate_symmetric_key() -> bytes:
    """Generate a fresh random 256-bit object key."""
    return os.urandom(KEY_SIZE)


def _chunk_aad(index: int) -> bytes:
    return struct.pack(">Q", index)


def encrypt_chunk(data: bytes, key: bytes, index: int) -> bytes:
    """Encrypt one chunk using AES-256-GCM with a random nonce.

    The chunk index is authenticated as associated data, so chunks cannot be
    swapped between positions without detection.

    Args:
        data: Plaintext chunk.
        key: 32-byte object key.
        index: Chunk sequence number.

    Returns:
        Encrypted data in format: nonce (12 bytes) || ciphertext || auth_tag (16 bytes)
    """
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, data, _chunk_aad(index))


def decrypt_chunk(encrypted: bytes, key: bytes, index: int) -> bytes:
    """Decrypt a chunk produced by encrypt_chunk.

    Raises:
        cryptography.exceptions.InvalidTag: If authentication fails (wrong key,
            wrong index or tampered data).
    """
    nonce = encrypted[:NONCE_SIZE]
    return AESGCM(key).decrypt(nonce, encrypted[NONCE_SIZE:], _chunk_aad(index))


def encrypted_size(plaintext_size: int) -> int:
    """Ciphertext size of a single chunk of ``plaintext_size`` bytes."""
    return plaintext_size + CHUNK_OVERHEAD


def wrap_key(symmetric_key: bytes, public_key: rsa.RSAPublicKey) -> bytes:
    """Encrypt an object key with an RSA public key (OAEP, SHA-256)."""
    return public_key.encrypt(symmetric_key, _OAEP)


def unwrap_key(wrapped: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """Decrypt an object key wrapped by wrap_key.

    Raises:
        ValueError: If the key was wrapped for a different key pair or is corrupt.
    """
    return private_key.decrypt(wrapped, _OAEP)


def generate_keypair(bits: int = DEFAULT_RSA_BITS) -> rsa.RSAPrivateKey:
    """Generate a new RSA private key (the public key is derived from it)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)


def keypair_to_pem(private_key: rsa.RSAPrivateKey) -> str:
    """Serialize a key pair as PEM: public key (X.509) followed by private key (PKCS#8)."""
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return public_pem.decode("ascii") + "\n" + private_pem.decode("ascii")
