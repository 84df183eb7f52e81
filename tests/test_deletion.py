"""Tests for idempotent remote deletion."""

from __future__ import annotations

import logging

import httpx
import pytest

from conftest import UID
from streamingest.exceptions import NetworkError, UpstreamAPIError
from streamingest.upload.deletion import DeletionGuard


class TestDeletionGuard:
    async def test_success(self, stream_client, fake_stream):
        await DeletionGuard(stream_client).delete_remote(UID)
        assert fake_stream.requests[-1].method == "DELETE"

    async def test_404_is_success(self, stream_client, fake_stream, caplog):
        fake_stream.delete_status = 404
        with caplog.at_level(logging.WARNING, logger="streamingest.upload.deletion"):
            await DeletionGuard(stream_client).delete_remote(UID)
        assert "already absent" in caplog.text

    @pytest.mark.parametrize("status", [400, 403, 500, 503])
    async def test_other_failures_raise(self, stream_client, fake_stream, status):
        fake_stream.delete_status = status
        with pytest.raises(UpstreamAPIError) as excinfo:
            await DeletionGuard(stream_client).delete_remote(UID)
        assert excinfo.value.status_code == status

    async def test_network_error_propagates(self, make_stream_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkError):
            await DeletionGuard(make_stream_client(handler)).delete_remote(UID)

    async def test_empty_id_is_noop(self, stream_client, fake_stream):
        await DeletionGuard(stream_client).delete_remote("")
        assert fake_stream.requests == []
