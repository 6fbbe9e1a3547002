"""Pytest fixtures for integration tests.

This module provides fixtures for end-to-end testing with a real server
running in a background thread with local filesystem storage.
"""

from __future__ import annotations

import socket
import threading
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import pytest
import uvicorn

from chunkup.client.api import HTTPClient
from chunkup.core.config import ServerConfig
from chunkup.server.app import create_app
from chunkup.server.database import Database
from chunkup.server.storage import LocalMergeStorage

API_TOKEN = "integration-token"


@dataclass
class TestServer:
    """Container for test server resources."""

    db: Database
    storage: LocalMergeStorage
    url: str
    token: str

    def artifact(self, path: str) -> bytes:
        """Read a merged artifact by the path the server returned."""
        return (self.storage.base_path / path).read_bytes()


class UvicornTestServer:
    """Uvicorn server running in a background thread for testing."""

    def __init__(self, app: Any, host: str = "127.0.0.1", port: int = 0) -> None:
        self.app = app
        self.host = host
        self.port = port
        self.server: uvicorn.Server | None = None
        self.thread: threading.Thread | None = None

    def start(self) -> int:
        """Start the server and return the port."""
        # Find a free port
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((self.host, 0))
            self.port = s.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
        )
        self.server = uvicorn.Server(config)

        self.thread = threading.Thread(target=self.server.run, daemon=True)
        self.thread.start()

        self._wait_for_ready()
        return self.port

    def _wait_for_ready(self, timeout: float = 5.0) -> None:
        """Wait for the server to be ready to accept connections."""
        start = time.time()
        while time.time() - start < timeout:
            try:
                response = httpx.get(f"http://{self.host}:{self.port}/health")
                if response.status_code == 200:
                    return
            except httpx.TransportError:
                pass
            time.sleep(0.1)
        raise RuntimeError("Server failed to start in time")

    def stop(self) -> None:
        """Stop the server and wait for its thread."""
        if self.server:
            self.server.should_exit = True
        if self.thread:
            self.thread.join(timeout=5.0)


@pytest.fixture
def test_server(tmp_path: Path) -> Generator[TestServer, None, None]:
    """Create and start a test server with a fresh index and local storage."""
    db = Database(tmp_path / "server" / "test.db")
    storage = LocalMergeStorage(tmp_path / "server" / "storage")
    app = create_app(db, storage, api_token=API_TOKEN)

    server = UvicornTestServer(app)
    port = server.start()

    yield TestServer(
        db=db,
        storage=storage,
        url=f"http://127.0.0.1:{port}",
        token=API_TOKEN,
    )

    server.stop()
    db.close()


@pytest.fixture
def http_client(test_server: TestServer) -> Generator[HTTPClient, None, None]:
    """HTTP client authenticated against the test server."""
    client = HTTPClient(ServerConfig(server_url=test_server.url, token=test_server.token))
    yield client
    client.close()


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[[str, bytes], Path]:
    """Factory writing a local file to upload."""

    def _make(name: str, content: bytes) -> Path:
        path = tmp_path / "client" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _make
