"""Tests for the chunked upload HTTP client."""

import json
import threading
import time

import httpx
import pytest

from chunkup.client.api import (
    APIError,
    AuthenticationError,
    CheckResult,
    HTTPClient,
    MergeRejectedError,
    MergeResult,
    NotFoundError,
    PayloadTooLargeError,
    ServerError,
    _CancellableReader,
)
from chunkup.client.upload.cancel import CancellationToken
from chunkup.client.upload.types import UploadCancelledError
from chunkup.core.config import ServerConfig

CHECK_URL = "http://test/api/upload/check"
CHUNK_URL = "http://test/api/upload/chunk"
MERGE_URL = "http://test/api/upload/merge"


def make_config(server_url: str = "http://test", token: str | None = "token123") -> ServerConfig:
    """Create a ServerConfig for testing."""
    return ServerConfig(server_url=server_url, token=token)


class TestResults:
    """Tests for response dataclasses."""

    def test_check_result_from_dict(self) -> None:
        """Should parse snake_case responses."""
        result = CheckResult.from_dict({"exists": False, "uploaded_chunks": [2, 0]})

        assert result.exists is False
        assert result.path is None
        assert result.uploaded_chunks == [2, 0]

    def test_check_result_camel_case(self) -> None:
        """Should accept uploadedChunks as well."""
        result = CheckResult.from_dict(
            {"exists": True, "path": "uploads/a", "uploadedChunks": []}
        )

        assert result.exists is True
        assert result.path == "uploads/a"

    def test_check_result_defaults(self) -> None:
        """Missing fields default to not existing and no chunks."""
        result = CheckResult.from_dict({})

        assert result.exists is False
        assert result.uploaded_chunks == []

    def test_merge_result_from_dict(self) -> None:
        """Should parse merge responses."""
        result = MergeResult.from_dict({"success": True, "path": "uploads/x"})

        assert result == MergeResult(success=True, path="uploads/x")


class TestHTTPClient:
    """Tests for HTTPClient."""

    def test_health_check_success(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return True when server is healthy."""
        httpx_mock.add_response(url="http://test/health", json={"status": "ok"})

        with HTTPClient(make_config()) as client:
            assert client.health_check() is True

    def test_health_check_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return False when server is down."""
        httpx_mock.add_response(url="http://test/health", status_code=500)

        with HTTPClient(make_config()) as client:
            assert client.health_check() is False

    def test_check(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should post fingerprint and filename and parse the answer."""
        httpx_mock.add_response(
            url=CHECK_URL,
            method="POST",
            json={"exists": False, "uploaded_chunks": [0, 1]},
        )

        with HTTPClient(make_config()) as client:
            result = client.check("abc123", "movie.mkv")

        assert result.exists is False
        assert result.uploaded_chunks == [0, 1]
        request = httpx_mock.get_request()
        assert json.loads(request.content) == {"fingerprint": "abc123", "filename": "movie.mkv"}
        assert request.headers["Authorization"] == "Bearer token123"

    def test_no_token_no_auth_header(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Without a token no Authorization header is sent."""
        httpx_mock.add_response(url=CHECK_URL, json={"exists": False})

        with HTTPClient(make_config(token=None)) as client:
            client.check("abc", "a.txt")

        assert "Authorization" not in httpx_mock.get_request().headers

    def test_upload_chunk_multipart(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should send form fields and the chunk as a file part."""
        httpx_mock.add_response(url=CHUNK_URL, method="POST", json={"success": True, "index": 2})

        with HTTPClient(make_config()) as client:
            client.upload_chunk(b"chunk-bytes", "abc123", 2, 5)

        request = httpx_mock.get_request()
        body = request.read()
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="fingerprint"' in body
        assert b'name="chunk_index"\r\n\r\n2' in body
        assert b'name="total_chunks"\r\n\r\n5' in body
        assert b'name="file"; filename="2.chunk"' in body
        assert b"chunk-bytes" in body

    def test_upload_chunk_with_token(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """An active token does not change what is sent."""
        httpx_mock.add_response(url=CHUNK_URL, json={"success": True, "index": 0})

        with HTTPClient(make_config()) as client:
            client.upload_chunk(b"payload", "abc123", 0, 1, CancellationToken())

        assert b"payload" in httpx_mock.get_request().read()

    def test_upload_chunk_rejected(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A 4xx answer raises APIError with the server's detail."""
        httpx_mock.add_response(
            url=CHUNK_URL, status_code=400, json={"detail": "Empty chunk data"}
        )

        with HTTPClient(make_config()) as client:
            with pytest.raises(APIError, match="Empty chunk data") as exc_info:
                client.upload_chunk(b"x", "abc", 0, 1)

        assert exc_info.value.status_code == 400

    def test_server_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """5xx answers raise ServerError."""
        httpx_mock.add_response(url=CHUNK_URL, status_code=503, text="busy")

        with HTTPClient(make_config()) as client:
            with pytest.raises(ServerError, match="503"):
                client.upload_chunk(b"x", "abc", 0, 1)

    def test_authentication_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """401 raises AuthenticationError."""
        httpx_mock.add_response(url=CHECK_URL, status_code=401)

        with HTTPClient(make_config()) as client:
            with pytest.raises(AuthenticationError):
                client.check("abc", "a.txt")

    def test_not_found(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """404 raises NotFoundError."""
        httpx_mock.add_response(url=CHECK_URL, status_code=404)

        with HTTPClient(make_config()) as client:
            with pytest.raises(NotFoundError):
                client.check("abc", "a.txt")

    def test_merge(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should post the merge request and parse the path."""
        httpx_mock.add_response(
            url=MERGE_URL, json={"success": True, "path": "uploads/abc_a.txt"}
        )

        with HTTPClient(make_config()) as client:
            result = client.merge("abc", "a.txt", 3)

        assert result.success is True
        assert result.path == "uploads/abc_a.txt"
        assert json.loads(httpx_mock.get_request().content) == {
            "fingerprint": "abc",
            "filename": "a.txt",
            "total_chunks": 3,
        }

    def test_merge_missing_chunk(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """400 on merge raises MergeRejectedError."""
        httpx_mock.add_response(
            url=MERGE_URL, status_code=400, json={"detail": "Missing chunk 2"}
        )

        with HTTPClient(make_config()) as client:
            with pytest.raises(MergeRejectedError, match="Missing chunk 2"):
                client.merge("abc", "a.txt", 3)

    def test_merge_server_error_stays_transient(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """5xx on merge is a ServerError, not a rejection."""
        httpx_mock.add_response(url=MERGE_URL, status_code=500)

        with HTTPClient(make_config()) as client:
            with pytest.raises(ServerError) as exc_info:
                client.merge("abc", "a.txt", 3)

        assert not isinstance(exc_info.value, MergeRejectedError)

    def test_chunk_too_large(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """413 raises PayloadTooLargeError."""
        httpx_mock.add_response(
            url=CHUNK_URL, status_code=413, json={"detail": "Chunk exceeds 10 bytes"}
        )

        with HTTPClient(make_config()) as client:
            with pytest.raises(PayloadTooLargeError, match="Chunk exceeds"):
                client.upload_chunk(b"x" * 11, "abc", 0, 1)

    def test_merge_with_token(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """An active token does not change the result."""
        httpx_mock.add_response(
            url=MERGE_URL, json={"success": True, "path": "uploads/abc_a.txt"}
        )

        with HTTPClient(make_config()) as client:
            result = client.merge("abc", "a.txt", 1, CancellationToken())

        assert result.path == "uploads/abc_a.txt"

    def test_cancelled_token_skips_request(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A token cancelled beforehand sends nothing."""
        token = CancellationToken()
        token.cancel()

        with HTTPClient(make_config()) as client:
            with pytest.raises(UploadCancelledError):
                client.check("abc", "a.txt", token)

        assert httpx_mock.get_requests() == []

    def test_cancel_releases_pending_check(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Cancelling while the server has not answered returns at once."""
        release = threading.Event()

        def slow_answer(request: httpx.Request) -> httpx.Response:
            release.wait(5)
            return httpx.Response(200, json={"exists": False})

        httpx_mock.add_callback(slow_answer, url=CHECK_URL)
        token = CancellationToken()
        timer = threading.Timer(0.2, token.cancel)

        with HTTPClient(make_config()) as client:
            timer.start()
            start = time.monotonic()
            try:
                with pytest.raises(UploadCancelledError):
                    client.check("abc", "a.txt", token)
                elapsed = time.monotonic() - start
            finally:
                release.set()
                timer.join()

        assert elapsed < 2.0


class TestCancellableReader:
    """Tests for the cancellable chunk body."""

    def test_reads_while_active(self) -> None:
        """Behaves like BytesIO until cancelled."""
        reader = _CancellableReader(b"abcdef", CancellationToken())

        assert reader.read(3) == b"abc"
        assert reader.read() == b"def"

    def test_cancel_aborts_read(self) -> None:
        """Reading after cancellation raises."""
        token = CancellationToken()
        reader = _CancellableReader(b"abcdef", token)
        reader.read(2)

        token.cancel()

        with pytest.raises(UploadCancelledError):
            reader.read(2)
