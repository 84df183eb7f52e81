"""Tests for single-shot transfers to a one-time upload URL."""

from __future__ import annotations

import httpx
import pytest

from conftest import KIB, UID, FakeStream
from streamingest.exceptions import NetworkError, UpstreamAPIError
from streamingest.models import Mode, UploadTarget
from streamingest.upload.direct import DirectTransferClient

DIRECT_TARGET = UploadTarget(
    mode=Mode.DIRECT,
    remote_resource_id=UID,
    one_time_url=f"https://upload.videodelivery.net/direct/{UID}",
)


class TestDirectTransfer:
    async def test_success_reports_resource_id(self, http, fake_stream: FakeStream):
        payload = bytes(range(256)) * 40
        client = DirectTransferClient(http)

        result = await client.transfer(DIRECT_TARGET, payload, filename="clip.mp4", mime_type="video/mp4")

        assert result.ok
        assert result.unwrap() == UID
        assert result.bytes_uploaded == len(payload)
        request = fake_stream.requests[-1]
        assert request.method == "POST"
        assert request.headers["Content-Type"].startswith("multipart/form-data; boundary=")
        assert int(request.headers["Content-Length"]) == len(fake_stream.direct_body)
        assert b'name="file"; filename="clip.mp4"' in fake_stream.direct_body
        assert b"Content-Type: video/mp4" in fake_stream.direct_body
        assert payload in fake_stream.direct_body

    async def test_progress_is_monotonic_and_ends_at_total(self, http):
        events: list[tuple[int, int]] = []
        client = DirectTransferClient(http, slice_bytes=10 * KIB)

        await client.transfer(DIRECT_TARGET, b"x" * (35 * KIB), on_progress=lambda s, t: events.append((s, t)))

        assert [s for s, _ in events] == [10 * KIB, 20 * KIB, 30 * KIB, 35 * KIB]
        assert all(t == 35 * KIB for _, t in events)

    async def test_rejected_upload_is_upstream_error(self, http, fake_stream):
        fake_stream.direct_status = 413
        client = DirectTransferClient(http)

        result = await client.transfer(DIRECT_TARGET, b"abc")

        assert not result.ok
        assert isinstance(result.error, UpstreamAPIError)
        assert result.error.status_code == 413
        with pytest.raises(UpstreamAPIError):
            result.unwrap()

    async def test_transport_fault_is_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadError("reset", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            result = await DirectTransferClient(http_client).transfer(DIRECT_TARGET, b"abc")
        assert isinstance(result.error, NetworkError)

    async def test_no_progress_after_terminal_result(self, http, fake_stream):
        events: list[tuple[int, int]] = []
        fake_stream.direct_status = 500
        client = DirectTransferClient(http, slice_bytes=1)

        result = await client.transfer(DIRECT_TARGET, b"ab", on_progress=lambda s, t: events.append((s, t)))

        assert not result.ok
        assert len(events) == 2
        # one attempt only, no automatic retry
        assert len([r for r in fake_stream.requests if r.method == "POST"]) == 1

    async def test_empty_payload(self, http, fake_stream):
        events: list[tuple[int, int]] = []
        result = await DirectTransferClient(http).transfer(
            DIRECT_TARGET, b"", on_progress=lambda s, t: events.append((s, t))
        )
        assert result.ok
        assert events == []

    async def test_resumable_target_rejected(self, http):
        target = UploadTarget(
            mode=Mode.RESUMABLE, remote_resource_id=UID, resumable_resource_url="https://x/tus/1"
        )
        with pytest.raises(ValueError):
            await DirectTransferClient(http).transfer(target, b"abc")
