"""Tests for the tus resumable transfer client."""

from __future__ import annotations

import httpx
import pytest

from conftest import KIB, UID, FakeStream, SleepRecorder
from streamingest.exceptions import NetworkError, UpstreamAPIError
from streamingest.models import Mode, UploadTarget
from streamingest.upload.resumable import ResumableTransferClient, is_transient

TUS_URL = f"https://upload.videodelivery.net/tus/{UID}?tusv2=true"
TARGET = UploadTarget(mode=Mode.RESUMABLE, remote_resource_id=UID, resumable_resource_url=TUS_URL)


def _payload(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


def _client(http: httpx.AsyncClient, sleep: SleepRecorder, **kwargs) -> ResumableTransferClient:
    kwargs.setdefault("chunk_size", 10 * KIB)
    return ResumableTransferClient(http, sleep=sleep, **kwargs)


class TestResumableTransfer:
    async def test_chunks_sent_sequentially(self, http, fake_stream: FakeStream, sleep):
        payload = _payload(25 * KIB)
        events: list[tuple[int, int]] = []

        result = await _client(http, sleep).transfer(TARGET, payload, on_progress=lambda s, t: events.append((s, t)))

        assert result.unwrap() == UID
        assert bytes(fake_stream.received) == payload
        assert [int(r.headers["Upload-Offset"]) for r in fake_stream.patches] == [0, 10 * KIB, 20 * KIB]
        assert events == [(10 * KIB, 25 * KIB), (20 * KIB, 25 * KIB), (25 * KIB, 25 * KIB)]
        assert sleep.calls == []
        assert fake_stream.heads == []

    async def test_transient_failure_resent_after_three_seconds(self, http, fake_stream, sleep):
        payload = _payload(30 * KIB)
        fake_stream.patch_plan = ["ok", 503]

        result = await _client(http, sleep).transfer(TARGET, payload)

        assert result.ok
        assert sleep.calls == [3.0]
        assert len(fake_stream.heads) == 1
        assert bytes(fake_stream.received) == payload

    async def test_offset_requeried_before_resend(self, http, fake_stream, sleep):
        payload = _payload(30 * KIB)
        # chunk 2 lands on the server but the acknowledgment is lost
        fake_stream.patch_plan = ["ok", "commit-500"]

        result = await _client(http, sleep).transfer(TARGET, payload)

        assert result.ok
        offsets = [int(r.headers["Upload-Offset"]) for r in fake_stream.patches]
        assert offsets == [0, 10 * KIB, 20 * KIB]
        assert bytes(fake_stream.received) == payload

    async def test_lost_ack_on_last_chunk_completes_without_resend(self, http, fake_stream, sleep):
        payload = _payload(20 * KIB)
        fake_stream.patch_plan = ["ok", "commit-500"]

        result = await _client(http, sleep).transfer(TARGET, payload)

        assert result.ok
        assert len(fake_stream.patches) == 2
        assert result.bytes_uploaded == 20 * KIB

    async def test_connection_drop_is_retried(self, http, fake_stream, sleep):
        fake_stream.patch_plan = ["drop"]

        result = await _client(http, sleep).transfer(TARGET, _payload(5 * KIB))

        assert result.ok
        assert sleep.calls == [3.0]

    async def test_schedule_exhaustion_is_terminal(self, http, fake_stream, sleep):
        events: list[tuple[int, int]] = []
        fake_stream.patch_plan = ["ok"] + [500] * 5

        result = await _client(http, sleep).transfer(
            TARGET, _payload(20 * KIB), on_progress=lambda s, t: events.append((s, t))
        )

        assert not result.ok
        assert isinstance(result.error, UpstreamAPIError)
        assert result.error.status_code == 500
        assert sleep.calls == [3.0, 5.0, 10.0, 20.0]
        assert len(fake_stream.patches) == 6
        assert result.bytes_uploaded == 10 * KIB
        # nothing after the terminal result
        assert events == [(10 * KIB, 20 * KIB)]

    async def test_permanent_error_not_retried(self, http, fake_stream, sleep):
        fake_stream.patch_plan = [400]

        result = await _client(http, sleep).transfer(TARGET, _payload(5 * KIB))

        assert isinstance(result.error, UpstreamAPIError)
        assert result.error.status_code == 400
        assert sleep.calls == []
        assert len(fake_stream.patches) == 1

    async def test_single_delay_schedule_means_one_attempt(self, http, fake_stream, sleep):
        fake_stream.patch_plan = [500]

        result = await _client(http, sleep, retry_delays=(0.0,)).transfer(TARGET, _payload(KIB))

        assert not result.ok
        assert len(fake_stream.patches) == 1

    async def test_custom_schedule(self, http, fake_stream, sleep):
        fake_stream.patch_plan = [500, 500]

        result = await _client(http, sleep, retry_delays=(0.0, 2.0, 7.0)).transfer(TARGET, _payload(KIB))

        assert result.ok
        assert sleep.calls == [2.0, 7.0]

    async def test_non_advancing_ack_is_rejected(self, sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(204, headers={"Upload-Offset": request.headers["Upload-Offset"]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            result = await _client(http_client, sleep).transfer(TARGET, _payload(KIB))

        assert isinstance(result.error, UpstreamAPIError)
        assert "outside sent range" in str(result.error)

    async def test_missing_offset_header_is_rejected(self, sleep):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(204))) as http_client:
            result = await _client(http_client, sleep).transfer(TARGET, _payload(KIB))
        assert isinstance(result.error, UpstreamAPIError)

    async def test_query_offset(self, http, fake_stream, sleep):
        fake_stream.received.extend(b"x" * 123)
        assert await _client(http, sleep).query_offset(TUS_URL) == 123

    async def test_direct_target_rejected(self, http, sleep):
        target = UploadTarget(mode=Mode.DIRECT, remote_resource_id=UID, one_time_url="https://x/d")
        with pytest.raises(ValueError):
            await _client(http, sleep).transfer(target, b"abc")

    async def test_invalid_construction(self, http, sleep):
        with pytest.raises(ValueError):
            ResumableTransferClient(http, chunk_size=0)
        with pytest.raises(ValueError):
            ResumableTransferClient(http, retry_delays=())


class TestIsTransient:
    def test_network_error(self):
        assert is_transient(NetworkError("reset"))

    def test_server_error(self):
        assert is_transient(UpstreamAPIError("x", 502))

    def test_client_error(self):
        assert not is_transient(UpstreamAPIError("x", 400))

    def test_other_exception(self):
        assert not is_transient(ValueError("x"))
