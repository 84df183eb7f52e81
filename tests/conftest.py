"""Shared pytest fixtures for streamingest tests.

Provides a temporary record store, a sleep recorder, and an in-process
fake of the Cloudflare Stream API (management endpoints, one-time upload
URLs and tus resources) served through ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from streamingest.config import CollectionRegistry
from streamingest.models import IngestConfig
from streamingest.upload.client import CloudflareStreamClient
from streamingest.upload.state import AsyncVideoStore

ACCOUNT = "acct123"
API_PREFIX = f"/client/v4/accounts/{ACCOUNT}/stream"
UID = "0123456789abcdef0123456789abcdef"
KIB = 1024


class SleepRecorder:
    """Awaitable stand-in for ``asyncio.sleep`` that records delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)


def envelope(result: Any = None, success: bool = True, errors: list | None = None, status: int = 200) -> httpx.Response:
    body = {"success": success, "errors": errors or [], "messages": [], "result": result}
    return httpx.Response(status, json=body)


class FakeStream:
    """In-memory Cloudflare Stream account.

    Attributes:
        states: Remote states returned by successive ``GET /stream/{uid}``
            calls; the last entry repeats.
        video: Extra fields merged into the video payload.
        patch_plan: Planned outcomes for successive PATCH requests.  Each
            entry is ``"ok"``, an HTTP status code (bytes discarded),
            ``"drop"`` (connection error), or ``"commit-500"`` (bytes
            stored but a 500 is returned).
        download_payload: Raw result of the downloads endpoint; overrides
            ``download_states`` when set.
        requests: Every request seen, in order.
    """

    def __init__(self, uid: str = UID) -> None:
        self.uid = uid
        self.states: list[str] = ["ready"]
        self.video: dict[str, Any] = {}
        self.patch_plan: list[Any] = []
        self.direct_status = 200
        self.delete_status = 200
        self.status_errors = 0
        self.download_states: list[str] = ["ready"]
        self.download_payload: dict[str, Any] | None = None
        self.tus_length: int | None = None
        self.tus_metadata: str | None = None
        self.received = bytearray()
        self.direct_body = b""
        self.requests: list[httpx.Request] = []
        self.status_checks = 0

    # ------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        path = request.url.path
        if host == "api.cloudflare.com":
            return self._api(request, path[len(API_PREFIX):])
        if host == "upload.videodelivery.net" and path.startswith("/direct/"):
            self.direct_body = request.content
            return httpx.Response(self.direct_status)
        if host == "upload.videodelivery.net" and path.startswith("/tus/"):
            return self._tus(request)
        return httpx.Response(404)

    def _api(self, request: httpx.Request, path: str) -> httpx.Response:
        method = request.method
        if method == "POST" and path == "/direct_upload":
            return envelope(
                {"uploadURL": f"https://upload.videodelivery.net/direct/{self.uid}", "uid": self.uid}
            )
        if method == "POST" and path == "":
            self.tus_length = int(request.headers["Upload-Length"])
            self.tus_metadata = request.headers.get("Upload-Metadata")
            return httpx.Response(
                201,
                headers={"Location": f"https://upload.videodelivery.net/tus/{self.uid}?tusv2=true"},
            )
        if method == "POST" and path == f"/{self.uid}":
            return envelope({"uid": self.uid, **json.loads(request.content)})
        if method == "GET" and path == f"/{self.uid}":
            self.status_checks += 1
            if self.status_errors:
                self.status_errors -= 1
                return envelope(success=False, errors=[{"code": 10000, "message": "boom"}], status=500)
            index = min(self.status_checks - 1, len(self.states) - 1)
            return envelope({"uid": self.uid, "status": {"state": self.states[index]}, **self.video})
        if method == "DELETE" and path == f"/{self.uid}":
            return httpx.Response(self.delete_status)
        if path == f"/{self.uid}/downloads" and self.download_payload is not None:
            return envelope(self.download_payload)
        if path == f"/{self.uid}/downloads":
            state = self.download_states.pop(0) if len(self.download_states) > 1 else self.download_states[0]
            entry = {"status": state, "url": f"https://dl.example/{self.uid}.mp4" if state == "ready" else None}
            return envelope({"default": entry})
        return envelope(success=False, errors=[{"code": 10005, "message": "not found"}], status=404)

    def _tus(self, request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            return httpx.Response(200, headers={"Upload-Offset": str(len(self.received))})
        if request.method != "PATCH":
            return httpx.Response(405)
        assert request.headers["Tus-Resumable"] == "1.0.0"
        assert request.headers["Content-Type"] == "application/offset+octet-stream"
        offset = int(request.headers["Upload-Offset"])
        if offset != len(self.received):
            return httpx.Response(409)
        outcome = self.patch_plan.pop(0) if self.patch_plan else "ok"
        if outcome == "drop":
            raise httpx.ConnectError("connection reset", request=request)
        if isinstance(outcome, int):
            return httpx.Response(outcome)
        self.received.extend(request.content)
        if outcome == "commit-500":
            return httpx.Response(500)
        return httpx.Response(204, headers={"Upload-Offset": str(len(self.received))})

    # ------------------------------------------------------------------

    @property
    def patches(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "PATCH"]

    @property
    def heads(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "HEAD"]


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fake_stream() -> FakeStream:
    return FakeStream()


@pytest.fixture
async def http(fake_stream: FakeStream):
    """``httpx.AsyncClient`` routed to the fake account."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_stream.handler)) as client:
        yield client


@pytest.fixture
def stream_client(http: httpx.AsyncClient) -> CloudflareStreamClient:
    return CloudflareStreamClient(ACCOUNT, "token-xyz", http_client=http)


@pytest.fixture
def make_stream_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], CloudflareStreamClient]:
    """Build a client around an ad-hoc request handler."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> CloudflareStreamClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return CloudflareStreamClient(ACCOUNT, "token-xyz", http_client=http_client)

    return _make


@pytest.fixture
async def store(tmp_path: Path):
    async with AsyncVideoStore(str(tmp_path / "videos.db")) as s:
        yield s


@pytest.fixture
def small_config() -> IngestConfig:
    """Scaled-down config: KiB instead of MiB, everything else default."""
    return IngestConfig(threshold_bytes=200 * KIB, chunk_size_bytes=50 * KIB)


@pytest.fixture
def registry(small_config: IngestConfig) -> CollectionRegistry:
    return CollectionRegistry({"videos": small_config})
