"""Encryption key resolution.

This module provides:
- KeyProvider: Abstract interface resolving key names to RSA keys
- DirectoryKeyProvider: Loads ``<name>.pem`` key pairs from a key directory
- InMemoryKeyProvider: Holds keys in memory (embedding, tests)
- write_keypair: Save a generated key pair in the directory layout
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from cloudstore.core.crypto import KEY_SIZE, keypair_to_pem
from cloudstore.core.errors import KeyNotFoundError, UsageError

logger = logging.getLogger(__name__)

PEM_SUFFIX = ".pem"
LEGACY_KEY_SUFFIX = ".key"


class KeyProvider(ABC):
    """Resolves named encryption keys.

    Failures are always signaled with KeyNotFoundError, never by returning
    an empty key.
    """

    @abstractmethod
    def resolve_public_key(self, name: str) -> rsa.RSAPublicKey:
        """Return the public key registered under ``name``.

        Raises:
            KeyNotFoundError: If no public key is available for ``name``.
        """

    @abstractmethod
    def resolve_private_key(self, name: str) -> rsa.RSAPrivateKey:
        """Return the private key registered under ``name``.

        Raises:
            KeyNotFoundError: If no private key is available for ``name``.
        """

    def resolve_legacy_symmetric_keys(self) -> list[bytes]:
        """Return raw 256-bit keys used by objects written in legacy mode."""
        return []


class InMemoryKeyProvider(KeyProvider):
    """Key provider backed by dictionaries."""

    def __init__(
        self,
        private_keys: dict[str, rsa.RSAPrivateKey] | None = None,
        public_keys: dict[str, rsa.RSAPublicKey] | None = None,
        legacy_keys: list[bytes] | None = None,
    ) -> None:
        self._private = dict(private_keys or {})
        self._public = dict(public_keys or {})
        self._legacy = list(legacy_keys or [])
        self._lock = threading.Lock()

    def add_keypair(self, name: str, private_key: rsa.RSAPrivateKey) -> None:
        """Register a full key pair under ``name``."""
        with self._lock:
            self._private[name] = private_key
            self._public[name] = private_key.public_key()

    def add_public_key(self, name: str, public_key: rsa.RSAPublicKey) -> None:
        """Register an encrypt-only key under ``name``."""
        with self._lock:
            self._public[name] = public_key

    def resolve_public_key(self, name: str) -> rsa.RSAPublicKey:
        with self._lock:
            if name in self._public:
                return self._public[name]
            if name in self._private:
                return self._private[name].public_key()
        raise KeyNotFoundError(name)

    def resolve_private_key(self, name: str) -> rsa.RSAPrivateKey:
        with self._lock:
            if name in self._private:
                return self._private[name]
        raise KeyNotFoundError(name, "no private key available")

    def resolve_legacy_symmetric_keys(self) -> list[bytes]:
        with self._lock:
            return list(self._legacy)


class DirectoryKeyProvider(KeyProvider):
    """Loads keys from a directory.

    Layout:
        <dir>/<name>.pem   public key and/or private key in PEM
        <dir>/*.key        legacy symmetric keys, one base64 key per file

    Files are read lazily and cached.
    """

    def __init__(self, directory: Path | str) -> None:
        """Initialize the provider.

        Args:
            directory: Key directory. It does not need to exist yet.
        """
        self._directory = Path(directory).expanduser()
        self._cache: dict[str, tuple[rsa.RSAPublicKey | None, rsa.RSAPrivateKey | None]] = {}
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        """Return the key directory."""
        return self._directory

    def _load(self, name: str) -> tuple[rsa.RSAPublicKey | None, rsa.RSAPrivateKey | None]:
        with self._lock:
            if name in self._cache:
                return self._cache[name]

            path = self._directory / f"{name}{PEM_SUFFIX}"
            if not path.is_file():
                raise KeyNotFoundError(name, f"no file {path}")

            public_key, private_key = _parse_pem_file(path)
            if public_key is None and private_key is None:
                raise KeyNotFoundError(name, f"no RSA key in {path}")
            self._cache[name] = (public_key, private_key)
            logger.debug(f"Loaded encryption key '{name}' from {path}")
            return public_key, private_key

    def resolve_public_key(self, name: str) -> rsa.RSAPublicKey:
        public_key, private_key = self._load(name)
        if public_key is None:
            if private_key is None:
                raise KeyNotFoundError(name, "no RSA key")
            return private_key.public_key()
        return public_key

    def resolve_private_key(self, name: str) -> rsa.RSAPrivateKey:
        _, private_key = self._load(name)
        if private_key is None:
            raise KeyNotFoundError(name, "key file has no private key")
        return private_key

    def resolve_legacy_symmetric_keys(self) -> list[bytes]:
        if not self._directory.is_dir():
            return []
        keys = []
        for path in sorted(self._directory.glob(f"*{LEGACY_KEY_SUFFIX}")):
            try:
                key = base64.b64decode(path.read_text().strip(), validate=True)
            except (binascii.Error, ValueError):
                logger.warning(f"Ignoring malformed legacy key file {path}")
                continue
            if len(key) != KEY_SIZE:
                logger.warning(f"Ignoring legacy key file {path}: expected {KEY_SIZE} bytes")
                continue
            keys.append(key)
        return keys


def _parse_pem_file(path: Path) -> tuple[rsa.RSAPublicKey | None, rsa.RSAPrivateKey | None]:
    """Extract the RSA public and private keys from a PEM bundle."""
    text = path.read_text()
    public_key = None
    private_key = None
    for block in _pem_blocks(text):
        if "PUBLIC KEY" in block.splitlines()[0]:
            key = serialization.load_pem_public_key(block.encode("ascii"))
            if isinstance(key, rsa.RSAPublicKey):
                public_key = key
        elif "PRIVATE KEY" in block.splitlines()[0]:
            key = serialization.load_pem_private_key(block.encode("ascii"), password=None)
            if isinstance(key, rsa.RSAPrivateKey):
                private_key = key
    return public_key, private_key


def _pem_blocks(text: str) -> list[str]:
    blocks = []
    current: list[str] = []
    for line in text.splitlines():
        if line.startswith("-----BEGIN "):
            current = [line]
        elif line.startswith("-----END ") and current:
            current.append(line)
            blocks.append("\n".join(current) + "\n")
            current = []
        elif current:
            current.append(line)
    return blocks


def write_keypair(directory: Path, name: str, private_key: rsa.RSAPrivateKey) -> Path:
    """Save a key pair as ``<directory>/<name>.pem``.

    Raises:
        UsageError: If the name is invalid or the key file already exists.
    """
    if not name or "," in name or "/" in name:
        raise UsageError(f"Invalid key name '{name}'")
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}{PEM_SUFFIX}"
    if path.exists():
        raise UsageError(f"Key file already exists: {path}")
    path.write_text(keypair_to_pem(private_key))
    path.chmod(0o600)
    return path
