"""Shared test fixtures for LockFetch."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from lockfetch.cache import CacheClient
from lockfetch.config import CACHE_TOKEN_ENV
from lockfetch.download.fetcher import BaseFetcher
from lockfetch.download.verifier import integrity_of_bytes
from lockfetch.exceptions import FetchError

ABCDEF_SHA256 = "sha256-vvV+x/U6bUC+tkCngKY5yDvCmsipgW8fxsXG3Nk8RyE="


# ---------------------------------------------------------------------------
# Recording fake fetcher
# ---------------------------------------------------------------------------


class FakeFetcher(BaseFetcher):
    """In-memory fetcher that records every call.

    ``contents`` maps URL to body. Unknown URLs and URLs listed in
    ``unreachable`` fail with FetchError, like a refused connection.
    PUT stores the uploaded bytes under the URL so later GETs see them.
    """

    def __init__(
        self,
        contents: Optional[Dict[str, bytes]] = None,
        unreachable: Optional[Set[str]] = None,
        delay: float = 0.0,
    ):
        self.contents: Dict[str, bytes] = dict(contents or {})
        self.unreachable: Set[str] = set(unreachable or ())
        self.delay = delay
        self.fail_writes = False
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.active = 0
        self.peak = 0
        self.closed = False

    def calls_for(self, method: str) -> List[Tuple[str, str, Optional[str]]]:
        return [c for c in self.calls if c[0] == method]

    async def fetch(self, url: str, dest: str, token: Optional[str] = None) -> None:
        self.calls.append(("GET", url, token))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if url in self.unreachable or url not in self.contents:
                if self.delay:
                    await asyncio.sleep(self.delay)
                raise FetchError(url, "connection refused")
            with open(dest, "wb") as f:
                f.write(self.contents[url])
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

    async def put(self, url: str, source: str, token: Optional[str] = None) -> None:
        self.calls.append(("PUT", url, token))
        if self.fail_writes:
            raise FetchError(url, "HTTP 500 Internal Server Error", status=500)
        with open(source, "rb") as f:
            self.contents[url] = f.read()

    async def delete(self, url: str, token: Optional[str] = None) -> None:
        self.calls.append(("DELETE", url, token))
        if self.fail_writes:
            raise FetchError(url, "HTTP 500 Internal Server Error", status=500)
        self.contents.pop(url, None)

    async def content_length(self, url: str) -> Optional[int]:
        self.calls.append(("HEAD", url, None))
        if url not in self.contents:
            return None
        return len(self.contents[url])

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Recording aiohttp server
# ---------------------------------------------------------------------------


class RecordingServer:
    """In-process HTTP server that serves, stores and deletes bodies by path.

    Every request is recorded as ``(method, path, authorization)``.
    Must be entered inside the running event loop.
    """

    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        self.files: Dict[str, bytes] = dict(files or {})
        self.requests: List[Tuple[str, str, Optional[str]]] = []
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._handle)
        self.server = TestServer(app)

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        path = request.path
        self.requests.append(
            (request.method, path, request.headers.get("Authorization"))
        )
        if request.method in ("GET", "HEAD"):
            if path not in self.files:
                return web.Response(status=404)
            return web.Response(body=self.files[path])
        if request.method == "PUT":
            self.files[path] = await request.read()
            return web.Response(status=201)
        if request.method == "DELETE":
            if self.files.pop(path, None) is None:
                return web.Response(status=404)
            return web.Response(status=204)
        return web.Response(status=405)

    def requests_for(self, method: str) -> List[Tuple[str, str, Optional[str]]]:
        return [r for r in self.requests if r[0] == method]

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))

    async def __aenter__(self) -> "RecordingServer":
        await self.server.start_server()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.server.close()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def no_cache_token(monkeypatch: pytest.MonkeyPatch) -> None:
    """Tests never pick up a cache token from the developer's environment."""
    monkeypatch.delenv(CACHE_TOKEN_ENV, raising=False)


@pytest.fixture
def fetcher() -> FakeFetcher:
    """Provide a fake fetcher serving 'abcdef' at two mirrors."""
    return FakeFetcher(
        {
            "https://example.com/a.txt": b"abcdef",
            "https://mirror.example.com/a.txt": b"abcdef",
        }
    )


@pytest.fixture
def cache(fetcher: FakeFetcher) -> CacheClient:
    """Provide a cache client with a token, backed by the fake fetcher."""
    return CacheClient(fetcher, token="secret")


@pytest.fixture
def lock_path(tmp_path: Path) -> Path:
    """Provide a lock file path inside a temp directory (file not created)."""
    return tmp_path / "lockfetch.lock"


@pytest.fixture
def download_dir(tmp_path: Path) -> Path:
    """Provide an empty download directory."""
    path = tmp_path / "out"
    path.mkdir()
    return path


@pytest.fixture
def abcdef_integrity() -> str:
    """Provide the sha256 integrity string of b'abcdef'."""
    return integrity_of_bytes(b"abcdef")


def part_files(directory: Path) -> List[Path]:
    """List leftover partial downloads in a directory."""
    return [p for p in directory.iterdir() if p.name.endswith(".part")]
