"""Tests for the client facade: pending uploads, key management and lifecycle."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cloudstore.backends.memory import MemoryBackend
from cloudstore.client import CloudStoreClient, create_client
from cloudstore.core.config import ClientConfig, TransferOptions
from cloudstore.core.errors import KeyNotFoundError, UsageError
from cloudstore.encryption import EncryptionEnvelope
from cloudstore.executor import ExecutorState
from cloudstore.keys import InMemoryKeyProvider
from tests.conftest import BUCKET, write_file


class TestPendingUploads:
    """Tests for listing and aborting pending multipart uploads."""

    def test_list(self, client: CloudStoreClient, backend: MemoryBackend) -> None:
        """Sessions under the prefix are listed."""
        upload_id = backend.initiate_multipart(BUCKET, "logs/a")
        backend.initiate_multipart(BUCKET, "other/b")

        pending = client.list_pending_uploads(BUCKET, "logs/").result(timeout=10)
        assert [(p.key, p.upload_id) for p in pending] == [("logs/a", upload_id)]

    def test_abort_all(self, client: CloudStoreClient, backend: MemoryBackend) -> None:
        """Every session under the prefix is aborted."""
        backend.initiate_multipart(BUCKET, "logs/a")
        backend.initiate_multipart(BUCKET, "logs/b")

        aborted = client.abort_pending_uploads(BUCKET, "logs/").result(timeout=10)

        assert sorted(p.key for p in aborted) == ["logs/a", "logs/b"]
        assert backend.list_multipart_uploads(BUCKET) == []

    def test_abort_one_upload_id(self, client: CloudStoreClient, backend: MemoryBackend) -> None:
        """An upload id limits the abort to that session."""
        keep = backend.initiate_multipart(BUCKET, "a")
        drop = backend.initiate_multipart(BUCKET, "b")

        aborted = client.abort_pending_uploads(BUCKET, upload_id=drop).result(timeout=10)

        assert [p.upload_id for p in aborted] == [drop]
        assert [p.upload_id for p in backend.list_multipart_uploads(BUCKET)] == [keep]

    def test_abort_older_than(self, client: CloudStoreClient, backend: MemoryBackend) -> None:
        """Only sessions initiated before the cutoff are aborted."""
        old = backend.initiate_multipart(BUCKET, "old")
        time.sleep(0.01)
        cutoff = datetime.now(timezone.utc)
        time.sleep(0.01)
        new = backend.initiate_multipart(BUCKET, "new")

        aborted = client.abort_pending_uploads(BUCKET, older_than=cutoff).result(timeout=10)

        assert [p.upload_id for p in aborted] == [old]
        assert [p.upload_id for p in backend.list_multipart_uploads(BUCKET)] == [new]

    def test_abort_future_cutoff(self, client: CloudStoreClient, backend: MemoryBackend) -> None:
        """A cutoff in the future selects every session."""
        backend.initiate_multipart(BUCKET, "x")
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        assert len(client.abort_pending_uploads(BUCKET, older_than=later).result(10)) == 1

    def test_abort_dry_run(self, client: CloudStoreClient, backend: MemoryBackend) -> None:
        """Dry runs list but abort nothing."""
        backend.initiate_multipart(BUCKET, "x")

        aborted = client.abort_pending_uploads(
            BUCKET, options=TransferOptions(dry_run=True)
        ).result(timeout=10)

        assert aborted == []
        assert backend.count_calls("abort_multipart") == 0
        assert len(backend.list_multipart_uploads(BUCKET)) == 1

    def test_unsupported_backend(self, config: ClientConfig, key_provider) -> None:
        """Backends without pending-upload support reject the operations upfront."""
        gcs = MemoryBackend(scheme="gs")
        gcs.supports_pending_uploads = False
        with CloudStoreClient(gcs, config=config, key_provider=key_provider) as gcs_client:
            with pytest.raises(UsageError, match="gs://"):
                gcs_client.list_pending_uploads(BUCKET)
            with pytest.raises(UsageError):
                gcs_client.abort_pending_uploads(BUCKET)


class TestEncryptionKeys:
    """Tests for adding and removing recipient keys."""

    @pytest.fixture
    def encrypted(
        self, client: CloudStoreClient, backend: MemoryBackend, tmp_path: Path
    ) -> bytes:
        """Payload stored at ``enc.bin`` encrypted under k1; returns the ciphertext."""
        source = tmp_path / "enc.bin"
        write_file(source, 2500)
        client.upload(
            source, BUCKET, "enc.bin", TransferOptions(encryption_key_name="k1")
        ).result(timeout=10)
        backend.calls.clear()
        return backend.get_object(BUCKET, "enc.bin")

    def _envelope(self, backend: MemoryBackend) -> EncryptionEnvelope:
        envelope = EncryptionEnvelope.from_metadata(backend.head_object(BUCKET, "enc.bin").metadata)
        assert envelope is not None
        return envelope

    def test_add_key(
        self, client: CloudStoreClient, backend: MemoryBackend, encrypted: bytes
    ) -> None:
        """A new recipient is added without touching the payload."""
        descriptor = client.add_encryption_key(BUCKET, "enc.bin", "k2").result(timeout=10)

        assert descriptor.size == 2500
        assert self._envelope(backend).key_names == ("k1", "k2")
        assert backend.get_object(BUCKET, "enc.bin") == encrypted
        assert backend.count_calls("update_metadata") == 1
        assert backend.count_calls("put_object") == 0

    def test_added_key_decrypts(
        self,
        client: CloudStoreClient,
        backend: MemoryBackend,
        config: ClientConfig,
        rsa_keys: dict,
        encrypted: bytes,
        tmp_path: Path,
    ) -> None:
        """A client holding only the added key can download the object."""
        client.add_encryption_key(BUCKET, "enc.bin", "k2").result(timeout=10)
        only_k2 = InMemoryKeyProvider(private_keys={"k2": rsa_keys["k2"]})

        with CloudStoreClient(backend, config=config, key_provider=only_k2) as other:
            other.download(BUCKET, "enc.bin", tmp_path / "out.bin").result(timeout=10)
        assert (tmp_path / "out.bin").read_bytes() == (tmp_path / "enc.bin").read_bytes()

    def test_add_public_only_key(
        self, client: CloudStoreClient, backend: MemoryBackend, encrypted: bytes
    ) -> None:
        """Keys without a private half can still be recipients."""
        client.add_encryption_key(BUCKET, "enc.bin", "k3").result(timeout=10)
        assert self._envelope(backend).key_names == ("k1", "k3")

    def test_add_existing_key(self, client: CloudStoreClient, encrypted: bytes) -> None:
        """Adding a current recipient again is a usage error."""
        with pytest.raises(UsageError, match="already encrypted"):
            client.add_encryption_key(BUCKET, "enc.bin", "k1").result(timeout=10)

    def test_add_unknown_key(self, client: CloudStoreClient, encrypted: bytes) -> None:
        """An unknown key name cannot be added."""
        with pytest.raises(KeyNotFoundError):
            client.add_encryption_key(BUCKET, "enc.bin", "nope").result(timeout=10)

    def test_remove_key(
        self, client: CloudStoreClient, backend: MemoryBackend, encrypted: bytes
    ) -> None:
        """A recipient can be removed while another remains."""
        client.add_encryption_key(BUCKET, "enc.bin", "k2").result(timeout=10)
        client.remove_encryption_key(BUCKET, "enc.bin", "k1").result(timeout=10)

        assert self._envelope(backend).key_names == ("k2",)
        assert backend.get_object(BUCKET, "enc.bin") == encrypted

    def test_remove_last_key(self, client: CloudStoreClient, encrypted: bytes) -> None:
        """The only recipient cannot be removed."""
        with pytest.raises(UsageError, match="only encryption key"):
            client.remove_encryption_key(BUCKET, "enc.bin", "k1").result(timeout=10)

    def test_dry_run(
        self, client: CloudStoreClient, backend: MemoryBackend, encrypted: bytes
    ) -> None:
        """Dry runs validate but leave the envelope unchanged."""
        result = client.add_encryption_key(
            BUCKET, "enc.bin", "k2", TransferOptions(dry_run=True)
        ).result(timeout=10)

        assert result is None
        assert self._envelope(backend).key_names == ("k1",)
        assert backend.count_calls("update_metadata") == 0

    def test_unencrypted_object(
        self, client: CloudStoreClient, backend: MemoryBackend
    ) -> None:
        """Plain objects have no envelope to change."""
        backend.put_object(BUCKET, "plain", b"data")
        with pytest.raises(UsageError, match="not encrypted"):
            client.add_encryption_key(BUCKET, "plain", "k2").result(timeout=10)

    def test_self_copy_without_metadata_update(
        self,
        client: CloudStoreClient,
        backend: MemoryBackend,
        encrypted: bytes,
    ) -> None:
        """Backends without in-place updates rewrite metadata with a self-copy."""
        backend.supports_metadata_update = False
        client.add_encryption_key(BUCKET, "enc.bin", "k2").result(timeout=10)

        assert backend.count_calls("copy_object") == 1
        assert backend.count_calls("update_metadata") == 0
        assert self._envelope(backend).key_names == ("k1", "k2")
        assert backend.get_object(BUCKET, "enc.bin") == encrypted


class TestLifecycle:
    """Tests for client creation and shutdown."""

    def test_shutdown_rejects_new_work(self, client: CloudStoreClient) -> None:
        """Operations started after shutdown fail immediately."""
        client.shutdown()
        with pytest.raises(UsageError, match="shut down"):
            client.list_objects(BUCKET)
        assert client.executor.state == ExecutorState.STOPPED

    def test_shutdown_waits_for_running_operations(
        self, client: CloudStoreClient, tmp_path: Path
    ) -> None:
        """Operations in flight at shutdown still complete."""
        source = tmp_path / "data.bin"
        data = write_file(source, 5000)
        future = client.upload(source, BUCKET, "data.bin")

        client.shutdown()

        assert future.done()
        assert future.result().size == len(data)

    def test_context_manager(self, backend: MemoryBackend, config: ClientConfig) -> None:
        """Leaving the with block shuts the client down."""
        with create_client(config, InMemoryKeyProvider(), backend=backend) as client:
            assert client.scheme == "s3"
            assert client.list_objects(BUCKET).result(timeout=10) == []
        assert client.executor.state == ExecutorState.STOPPED
