"""Pytest fixtures shared by the cloudstore test suite.

The client fixtures run against an in-memory backend with a small minimum
part size and no retry backoff, so multipart and retry paths are exercised
with tiny files and without sleeping.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from cloudstore.backends.memory import MemoryBackend
from cloudstore.client import CloudStoreClient
from cloudstore.core.config import ClientConfig
from cloudstore.core.crypto import generate_keypair
from cloudstore.keys import InMemoryKeyProvider

BUCKET = "bucket"
SMALL_PART = 1024


@pytest.fixture(scope="session")
def rsa_keys() -> dict[str, rsa.RSAPrivateKey]:
    """RSA key pairs generated once per session (generation is slow)."""
    return {name: generate_keypair() for name in ("k1", "k2", "k3")}


@pytest.fixture
def key_provider(rsa_keys: dict[str, rsa.RSAPrivateKey]) -> InMemoryKeyProvider:
    """Key provider holding full key pairs for k1 and k2 and only the public part of k3."""
    provider = InMemoryKeyProvider()
    provider.add_keypair("k1", rsa_keys["k1"])
    provider.add_keypair("k2", rsa_keys["k2"])
    provider.add_public_key("k3", rsa_keys["k3"].public_key())
    return provider


@pytest.fixture
def backend() -> MemoryBackend:
    """In-memory backend with one bucket and a 1 KiB minimum part size."""
    memory = MemoryBackend(min_part_size=SMALL_PART)
    memory.create_bucket(BUCKET)
    return memory


@pytest.fixture
def config(tmp_path: Path) -> ClientConfig:
    """Client configuration with small chunks and immediate retries."""
    return ClientConfig(
        chunk_size=SMALL_PART,
        max_retries=3,
        metadata_max_retries=2,
        initial_backoff=0.0,
        max_backoff=0.0,
        api_workers=4,
        internal_workers=2,
        key_dir=tmp_path / "keys",
    )


@pytest.fixture
def client(
    backend: MemoryBackend, config: ClientConfig, key_provider: InMemoryKeyProvider
) -> Generator[CloudStoreClient, None, None]:
    """Client wired to the in-memory backend."""
    store = CloudStoreClient(backend, config=config, key_provider=key_provider)
    yield store
    store.shutdown()


def write_file(path: Path, size: int, seed: int = 0) -> bytes:
    """Write ``size`` deterministic pseudo-random bytes to ``path``."""
    block = bytes((i * 31 + seed) % 251 for i in range(4096))
    data = (block * (size // len(block) + 1))[:size]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return data
