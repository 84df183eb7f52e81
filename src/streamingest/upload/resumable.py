"""Client half of the tus 1.0.0 resumable upload protocol.

The payload is sent in sequential fixed-size chunks with ``PATCH`` at the
server-acknowledged offset.  A chunk that fails transiently is resent
after the next delay of a fixed schedule; before every resend the current
offset is re-read with ``HEAD`` so bytes the server already holds are not
sent twice.

Delay schedule semantics: the delay before attempt *n* of a chunk
(1-based) is ``retry_delays[min(n - 1, len - 1)]``.  With the default
``(0, 3, 5, 10, 20)`` the first send is immediate, the first resend waits
3 s, and the chunk fails terminally after five attempts.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from streamingest.constants import DEFAULT_CHUNK_SIZE_BYTES, DEFAULT_RETRY_DELAYS, TUS_VERSION
from streamingest.exceptions import NetworkError, StreamIngestError, UpstreamAPIError
from streamingest.models import Mode, TransferResult, UploadTarget
from streamingest.upload.progress import ProgressCallback, ProgressChannel

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def is_transient(exc: BaseException) -> bool:
    """Whether a chunk may be resent after *exc*."""
    if isinstance(exc, NetworkError):
        return True
    if isinstance(exc, UpstreamAPIError):
        return exc.is_transient
    return False


class ResumableTransferClient:
    """Drives a tus upload resource to completion.

    Args:
        http_client: Unauthenticated ``httpx.AsyncClient``.
        chunk_size: Bytes per ``PATCH`` request.
        retry_delays: Delay schedule in seconds (see module docstring).
        sleep: Awaitable sleep used between attempts (tests inject a
            recorder).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES,
        retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not retry_delays:
            raise ValueError("retry_delays must not be empty")
        self._http = http_client
        self._chunk_size = chunk_size
        self._delays = tuple(retry_delays)
        self._sleep = sleep

    async def transfer(
        self,
        target: UploadTarget,
        data: bytes | bytearray | memoryview,
        on_progress: ProgressCallback | None = None,
    ) -> TransferResult:
        """Upload *data* to the target's resumable resource.

        Progress is emitted once per acknowledged chunk.  The returned
        result is the single terminal event; no progress follows it.
        """
        if target.mode is not Mode.RESUMABLE or target.resumable_resource_url is None:
            raise ValueError("ResumableTransferClient needs a resumable-mode target")

        url = target.resumable_resource_url
        uid = target.remote_resource_id
        channel = ProgressChannel(on_progress)
        view = memoryview(data)
        total = len(view)
        offset = 0
        chunk_number = 0

        try:
            while offset < total:
                chunk_number += 1
                offset = await self._send_chunk(url, uid, view, offset, chunk_number)
                logger.debug("Chunk %d of %s acknowledged at offset %d/%d", chunk_number, uid, offset, total)
                channel.emit(offset, total)
        except StreamIngestError as exc:
            logger.error("Resumable upload of %s failed at offset %d: %s", uid, offset, exc)
            channel.close()
            return TransferResult(error=exc, bytes_uploaded=offset)

        channel.close()
        logger.info("Resumable upload complete for %s (%d chunks, %d bytes)", uid, chunk_number, total)
        return TransferResult(remote_resource_id=uid, bytes_uploaded=offset)

    # ------------------------------------------------------------------
    # Chunk retry loop
    # ------------------------------------------------------------------

    async def _send_chunk(
        self,
        url: str,
        uid: str,
        view: memoryview,
        offset: int,
        chunk_number: int,
    ) -> int:
        """Send the chunk starting at *offset*, retrying per the schedule.

        Returns:
            The new server-acknowledged offset.
        """
        total = len(view)
        start = offset

        async for attempt in AsyncRetrying(
            wait=self._scheduled_wait,
            stop=stop_after_attempt(len(self._delays)),
            retry=retry_if_exception(is_transient),
            before_sleep=self._log_retry(uid, chunk_number),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    start = await self.query_offset(url)
                    if start >= total:
                        return start
                return await self._patch(url, view, start)

        return start  # pragma: no cover - AsyncRetrying always returns or raises

    def _scheduled_wait(self, retry_state: RetryCallState) -> float:
        # attempt_number is the attempt that just failed; the next one is +1.
        index = min(retry_state.attempt_number, len(self._delays) - 1)
        return self._delays[index]

    @staticmethod
    def _log_retry(uid: str, chunk_number: int) -> Callable[[RetryCallState], None]:
        def _before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "Chunk %d of %s failed (attempt %d): %s -- retrying in %.1fs",
                chunk_number,
                uid,
                retry_state.attempt_number,
                exc,
                delay,
            )

        return _before_sleep

    # ------------------------------------------------------------------
    # Protocol requests
    # ------------------------------------------------------------------

    async def query_offset(self, url: str) -> int:
        """Return the offset the server currently holds (``HEAD``)."""
        try:
            response = await self._http.head(url, headers={"Tus-Resumable": TUS_VERSION})
        except httpx.TransportError as exc:
            raise NetworkError(f"HEAD {url} failed: {exc}") from exc
        if not response.is_success:
            raise UpstreamAPIError("Failed to query upload offset", response.status_code)
        return _read_offset(response)

    async def _patch(self, url: str, view: memoryview, offset: int) -> int:
        chunk = view[offset : offset + self._chunk_size]
        headers = {
            "Tus-Resumable": TUS_VERSION,
            "Upload-Offset": str(offset),
            "Content-Type": "application/offset+octet-stream",
        }
        try:
            response = await self._http.patch(url, content=bytes(chunk), headers=headers)
        except httpx.TransportError as exc:
            raise NetworkError(f"PATCH {url} at offset {offset} failed: {exc}") from exc
        if not response.is_success:
            raise UpstreamAPIError(
                f"Chunk at offset {offset} rejected", response.status_code
            )

        new_offset = _read_offset(response)
        if new_offset <= offset or new_offset > offset + len(chunk):
            raise UpstreamAPIError(
                f"Server acknowledged offset {new_offset} outside sent range "
                f"[{offset}, {offset + len(chunk)}]",
                response.status_code,
            )
        return new_offset


def _read_offset(response: httpx.Response) -> int:
    raw = response.headers.get("Upload-Offset")
    try:
        value = int(raw) if raw is not None else -1
    except ValueError:
        value = -1
    if value < 0:
        raise UpstreamAPIError(
            f"Missing or invalid Upload-Offset header: {raw!r}", response.status_code
        )
    return value
