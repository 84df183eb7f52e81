"""Single-shot upload to a one-time URL.

The whole payload goes out as one ``multipart/form-data`` request with a
``file`` field.  The body is streamed in slices so byte-level progress can
be reported while it is being sent.  There is no automatic retry: one call
is one attempt.
"""

from __future__ import annotations

import logging
import uuid
from typing import AsyncIterator

import httpx

from streamingest.constants import MIB
from streamingest.exceptions import NetworkError, UpstreamAPIError
from streamingest.models import Mode, TransferResult, UploadTarget
from streamingest.upload.progress import ProgressCallback, ProgressChannel

logger = logging.getLogger(__name__)

_SLICE_BYTES = MIB


class DirectTransferClient:
    """Uploads a payload to a one-time upload URL.

    Args:
        http_client: Unauthenticated ``httpx.AsyncClient``; the one-time
            URL carries its own authorisation.
        slice_bytes: Granularity of progress reporting.
    """

    def __init__(self, http_client: httpx.AsyncClient, slice_bytes: int = _SLICE_BYTES) -> None:
        self._http = http_client
        self._slice_bytes = slice_bytes

    async def transfer(
        self,
        target: UploadTarget,
        data: bytes | bytearray | memoryview,
        filename: str = "video",
        mime_type: str = "application/octet-stream",
        on_progress: ProgressCallback | None = None,
    ) -> TransferResult:
        """Upload *data* in one request.

        Returns:
            A :class:`TransferResult` holding the resource id on success,
            :class:`UpstreamAPIError` on a non-2xx response, or
            :class:`NetworkError` on a transport fault.
        """
        if target.mode is not Mode.DIRECT or target.one_time_url is None:
            raise ValueError("DirectTransferClient needs a direct-mode target")

        channel = ProgressChannel(on_progress)
        view = memoryview(data)
        boundary = uuid.uuid4().hex
        head, tail = _multipart_envelope(boundary, filename, mime_type)
        headers = {
            "Content-Type": f"multipart/form-data; boundary={boundary}",
            "Content-Length": str(len(head) + len(view) + len(tail)),
        }

        try:
            response = await self._http.post(
                target.one_time_url,
                content=self._body(head, view, tail, channel),
                headers=headers,
            )
        except httpx.TransportError as exc:
            logger.error("One-time upload of %s failed: %s", target.remote_resource_id, exc)
            return _finish(channel, TransferResult(error=NetworkError(str(exc))))

        if not response.is_success:
            logger.error(
                "One-time upload of %s rejected with HTTP %d",
                target.remote_resource_id,
                response.status_code,
            )
            error = UpstreamAPIError("One-time upload rejected", response.status_code)
            return _finish(channel, TransferResult(error=error))

        logger.info("One-time upload complete for %s (%d bytes)", target.remote_resource_id, len(view))
        return _finish(
            channel,
            TransferResult(remote_resource_id=target.remote_resource_id, bytes_uploaded=len(view)),
        )

    async def _body(
        self,
        head: bytes,
        view: memoryview,
        tail: bytes,
        channel: ProgressChannel,
    ) -> AsyncIterator[bytes]:
        total = len(view)
        yield head
        sent = 0
        while sent < total:
            piece = view[sent : sent + self._slice_bytes]
            yield bytes(piece)
            sent += len(piece)
            channel.emit(sent, total)
        yield tail


def _multipart_envelope(boundary: str, filename: str, mime_type: str) -> tuple[bytes, bytes]:
    safe_name = filename.replace('"', "%22").replace("\r", "").replace("\n", "")
    head = (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="file"; filename="{safe_name}"\r\n'
        f"Content-Type: {mime_type}\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("ascii")
    return head, tail


def _finish(channel: ProgressChannel, result: TransferResult) -> TransferResult:
    channel.close()
    return result
