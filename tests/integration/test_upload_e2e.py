"""End-to-end tests: real HTTP client and orchestrator against a live server."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from chunkup.client.api import HTTPClient
from chunkup.client.upload import FileStatus, TaskSnapshot, UploadOrchestrator
from chunkup.core.chunking import LocalFileSource
from chunkup.core.config import ServerConfig, UploaderConfig
from chunkup.core.fingerprint import FingerprintProvider, hash_source

if TYPE_CHECKING:
    from tests.integration.conftest import TestServer

pytestmark = pytest.mark.integration

CHUNK_SIZE = 64 * 1024


@pytest.fixture
def fingerprints() -> FingerprintProvider:
    """In-thread fingerprints keep the tests quick."""
    return FingerprintProvider(window=CHUNK_SIZE, use_processes=False)


@pytest.fixture
def config() -> UploaderConfig:
    return UploaderConfig(
        chunk_size=CHUNK_SIZE,
        concurrent_files=2,
        concurrent_chunks=3,
        max_retries=1,
        base_delay=0.01,
        max_delay=0.05,
    )


def upload(
    client: HTTPClient,
    config: UploaderConfig,
    fingerprints: FingerprintProvider,
    paths: list[Path],
) -> list[TaskSnapshot]:
    with UploadOrchestrator(client, config, fingerprints=fingerprints) as uploader:
        tasks = uploader.add_files(paths)
        assert uploader.wait(timeout=30)
        return [task.snapshot() for task in tasks]


class TestFreshUpload:
    """Uploading content the server has never seen."""

    def test_multi_chunk_file(
        self,
        test_server: TestServer,
        http_client: HTTPClient,
        config: UploaderConfig,
        fingerprints: FingerprintProvider,
        make_file: Callable[[str, bytes], Path],
    ) -> None:
        """A file spanning several chunks arrives byte-for-byte."""
        content = os.urandom(CHUNK_SIZE * 4 + 123)
        path = make_file("big.bin", content)

        (snapshot,) = upload(http_client, config, fingerprints, [path])

        assert snapshot.status == FileStatus.SUCCESS
        assert snapshot.progress == 100
        assert snapshot.total_chunks == 5
        assert test_server.artifact(snapshot.path) == content
        assert test_server.db.get_stored_file(snapshot.fingerprint) is not None

    def test_several_files(
        self,
        test_server: TestServer,
        http_client: HTTPClient,
        config: UploaderConfig,
        fingerprints: FingerprintProvider,
        make_file: Callable[[str, bytes], Path],
    ) -> None:
        """More files than file slots all complete."""
        contents = {f"file{i}.bin": os.urandom(CHUNK_SIZE + i * 1000) for i in range(4)}
        paths = [make_file(name, data) for name, data in contents.items()]

        snapshots = upload(http_client, config, fingerprints, paths)

        assert [s.status for s in snapshots] == [FileStatus.SUCCESS] * 4
        for snapshot in snapshots:
            assert test_server.artifact(snapshot.path) == contents[snapshot.name]

    def test_empty_file(
        self,
        test_server: TestServer,
        http_client: HTTPClient,
        config: UploaderConfig,
        fingerprints: FingerprintProvider,
        make_file: Callable[[str, bytes], Path],
    ) -> None:
        """An empty file merges without sending any chunk."""
        path = make_file("empty.txt", b"")

        (snapshot,) = upload(http_client, config, fingerprints, [path])

        assert snapshot.status == FileStatus.SUCCESS
        assert test_server.artifact(snapshot.path) == b""


class TestResume:
    """Resuming after a previous partial upload."""

    def test_only_missing_chunks_sent(
        self,
        test_server: TestServer,
        http_client: HTTPClient,
        config: UploaderConfig,
        fingerprints: FingerprintProvider,
        make_file: Callable[[str, bytes], Path],
    ) -> None:
        """Chunks already on the server are not sent again."""
        content = os.urandom(CHUNK_SIZE * 4)
        path = make_file("resume.bin", content)
        source = LocalFileSource(path)
        fingerprint = hash_source(source, CHUNK_SIZE)
        for index in (0, 2):
            test_server.storage.put_chunk(
                fingerprint, index, source.read_chunk(index, CHUNK_SIZE).data
            )

        with patch.object(
            http_client, "upload_chunk", wraps=http_client.upload_chunk
        ) as spy:
            (snapshot,) = upload(http_client, config, fingerprints, [path])

        sent = sorted(call.args[2] for call in spy.call_args_list)
        assert sent == [1, 3]
        assert snapshot.status == FileStatus.SUCCESS
        assert test_server.artifact(snapshot.path) == content


class TestInstantTransfer:
    """Content the server already stores."""

    def test_second_upload_sends_nothing(
        self,
        test_server: TestServer,
        http_client: HTTPClient,
        config: UploaderConfig,
        fingerprints: FingerprintProvider,
        make_file: Callable[[str, bytes], Path],
    ) -> None:
        """Same bytes under another name complete without chunk uploads."""
        content = os.urandom(CHUNK_SIZE * 2)
        first_path = make_file("original.bin", content)
        copy_path = make_file("copy.bin", content)
        (first,) = upload(http_client, config, fingerprints, [first_path])

        with patch.object(
            http_client, "upload_chunk", wraps=http_client.upload_chunk
        ) as spy:
            (second,) = upload(http_client, config, fingerprints, [copy_path])

        spy.assert_not_called()
        assert second.status == FileStatus.SUCCESS
        assert second.path == first.path
        assert second.progress == 100


class TestAuthentication:
    """Bearer token handling end to end."""

    def test_wrong_token_fails_upload(
        self,
        test_server: TestServer,
        config: UploaderConfig,
        fingerprints: FingerprintProvider,
        make_file: Callable[[str, bytes], Path],
    ) -> None:
        """A rejected token settles the file as an error without retries."""
        path = make_file("secret.bin", b"payload")
        client = HTTPClient(ServerConfig(server_url=test_server.url, token="wrong"))
        try:
            with patch.object(client, "check", wraps=client.check) as spy:
                (snapshot,) = upload(client, config, fingerprints, [path])
        finally:
            client.close()

        assert snapshot.status == FileStatus.ERROR
        assert spy.call_count == 1
        assert "Invalid or expired token" in snapshot.error
