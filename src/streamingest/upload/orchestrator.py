"""Ingestion orchestrator.

Composes the upload primitives (mode selector, target issuer, transfer
clients, record store, reconciliation scheduler, deletion guard) into the
end-to-end flow:

1. Pick DIRECT or RESUMABLE from the file size
2. Issue an upload target for the collection
3. Create the local record in ``processing`` state
4. Run the matching transfer client
5. Hand the video to the reconciliation scheduler
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import mimetypes
import mmap
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Union

import httpx

from streamingest.config import CollectionRegistry
from streamingest.constants import DEFAULT_WATCH_DOMAIN
from streamingest.models import (
    IngestConfig,
    Mode,
    TransferResult,
    UploadIntent,
    UploadTarget,
    VideoRecord,
)
from streamingest.upload.client import CloudflareStreamClient
from streamingest.upload.deletion import DeletionGuard
from streamingest.upload.direct import DirectTransferClient
from streamingest.upload.issuer import AccessPredicate, TargetIssuer
from streamingest.upload.progress import ProgressCallback
from streamingest.upload.reconciler import PollScheduler, ReconcileHandle, Sleep
from streamingest.upload.resumable import ResumableTransferClient
from streamingest.upload.selector import decide
from streamingest.upload.state import AsyncVideoStore

logger = logging.getLogger(__name__)

AfterUpload = Callable[[VideoRecord, UploadTarget], Union[None, Awaitable[None]]]
BeforeDelete = Callable[[VideoRecord], Union[None, Awaitable[None]]]


async def _call_hook(hook: Callable[..., Any], *args: Any) -> None:
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


def build_view_url(remote_resource_id: str, stream_domain: str | None = None) -> str:
    """Return the watch page URL for a video.

    A customer stream domain serves ``/{uid}/watch``; the shared watch
    domain serves the uid at its root.
    """
    if not stream_domain or not stream_domain.strip():
        return f"https://{DEFAULT_WATCH_DOMAIN}/{remote_resource_id}"
    domain = stream_domain.strip().rstrip("/")
    if "://" not in domain:
        domain = f"https://{domain}"
    return f"{domain}/{remote_resource_id}/watch"


@contextlib.contextmanager
def open_payload(path: Path) -> Iterator[bytes | mmap.mmap]:
    """Map a file read-only so large payloads are not copied into memory."""
    with open(path, "rb") as f:
        if path.stat().st_size == 0:
            yield b""
            return
        mapped = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
        try:
            yield mapped
        finally:
            try:
                mapped.close()
            except BufferError:
                # A failed transfer's traceback can still hold a view of the
                # mapping; it is unmapped once that view is collected.
                logger.debug("Mapping of %s still referenced; deferring unmap", path)


@dataclass
class IngestionResult:
    """What :meth:`IngestionOrchestrator.ingest` hands back."""

    record: VideoRecord
    target: UploadTarget
    transfer: TransferResult
    handle: ReconcileHandle


class IngestionOrchestrator:
    """Main ingestion engine.

    Usage::

        orchestrator = IngestionOrchestrator(client, store, registry, scheduler, http)
        result = await orchestrator.ingest("videos", Path("clip.mp4"), requester=user)
        outcome = await result.handle.wait()

    Args:
        client: Cloudflare Stream management API client.
        store: Async record store.
        registry: Collection key to ingestion config mapping.
        scheduler: Reconciliation scheduler.
        transfer_http: Unauthenticated HTTP client for the transfer itself.
        access: Optional access predicate for target issuance.
        sleep: Awaitable sleep used by the resumable retry schedule.
        after_upload: Called with ``(record, target)`` once the bytes are
            transferred, before reconciliation is scheduled.  May be sync or
            async; if it raises, the record is marked ``error`` and the
            exception propagates.
        before_delete: Called with the record before the remote video is
            deleted.  If it raises, nothing is deleted.
    """

    def __init__(
        self,
        client: CloudflareStreamClient,
        store: AsyncVideoStore,
        registry: CollectionRegistry,
        scheduler: PollScheduler,
        transfer_http: httpx.AsyncClient,
        access: AccessPredicate | None = None,
        sleep: Sleep = asyncio.sleep,
        after_upload: AfterUpload | None = None,
        before_delete: BeforeDelete | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._registry = registry
        self._scheduler = scheduler
        self._transfer_http = transfer_http
        self._sleep = sleep
        self._issuer = TargetIssuer(client, registry, access)
        self._guard = DeletionGuard(client)
        self._after_upload = after_upload
        self._before_delete = before_delete

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(
        self,
        collection_key: str,
        path: Path,
        requester: Any = None,
        mime_type: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> IngestionResult:
        """Ingest a file from disk.  See :meth:`ingest_data`."""
        path = Path(path)
        mime = mime_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        with open_payload(path) as data:
            return await self.ingest_data(
                collection_key,
                path.name,
                data,
                requester=requester,
                mime_type=mime,
                on_progress=on_progress,
            )

    async def ingest_data(
        self,
        collection_key: str,
        filename: str,
        data: bytes | bytearray | memoryview | mmap.mmap,
        requester: Any = None,
        mime_type: str = "application/octet-stream",
        on_progress: ProgressCallback | None = None,
    ) -> IngestionResult:
        """Upload *data* and schedule reconciliation.

        Raises:
            ConfigurationError: Unregistered collection.
            AuthorizationError: Access predicate rejected the requester.
            UpstreamAPIError / NetworkError: Target issuance or transfer
                failed.  A failed transfer marks the record ``error``.
            Exception: Whatever the ``after_upload`` hook raised.
        """
        config = self._registry.resolve(collection_key)
        total = len(data)
        mode = decide(total, config.threshold_bytes)
        intent = UploadIntent(
            collection_key=collection_key,
            filename=filename,
            mime_type=mime_type,
            total_bytes=total,
            mode=mode,
        )
        logger.info("Ingesting %s (%d bytes) into %s via %s", filename, total, collection_key, mode.value)

        target = await self._issuer.request_target(intent, requester)
        uid = target.remote_resource_id

        record = await self._store.create_record(
            VideoRecord(
                remote_resource_id=uid,
                view_url=build_view_url(uid, config.stream_domain),
                collection_key=collection_key,
                filename=filename,
            )
        )

        transfer = await self._transfer(target, data, config, filename, mime_type, on_progress)
        if not transfer.ok:
            await self._fail(record, f"Transfer of {filename} failed")
            transfer.unwrap()

        if self._after_upload is not None:
            try:
                await _call_hook(self._after_upload, record, target)
            except Exception:
                await self._fail(record, f"after_upload hook for {filename} raised")
                raise

        handle = self._scheduler.schedule(uid)
        return IngestionResult(record=record, target=target, transfer=transfer, handle=handle)

    async def _fail(self, record: VideoRecord, reason: str) -> None:
        await self._store.mark_failed(record.remote_resource_id)
        logger.error("%s; record %s marked error", reason, record.id)

    async def _transfer(
        self,
        target: UploadTarget,
        data: Any,
        config: IngestConfig,
        filename: str,
        mime_type: str,
        on_progress: ProgressCallback | None,
    ) -> TransferResult:
        if target.mode is Mode.RESUMABLE:
            client = ResumableTransferClient(
                self._transfer_http,
                chunk_size=config.chunk_size_bytes,
                retry_delays=config.retry_delays,
                sleep=self._sleep,
            )
            return await client.transfer(target, data, on_progress=on_progress)

        direct = DirectTransferClient(self._transfer_http)
        return await direct.transfer(
            target, data, filename=filename, mime_type=mime_type, on_progress=on_progress
        )

    # ------------------------------------------------------------------
    # Edits and removal
    # ------------------------------------------------------------------

    async def update_video(self, record_id: int, fields: dict[str, Any]) -> bool:
        """Apply a user edit.  The remote video is never touched."""
        return await self._store.update_fields(record_id, fields)

    async def delete_video(self, record_id: int) -> bool:
        """Permanently remove a record and its remote video.

        The remote delete runs first; if it fails the local record is kept
        so the identifier is not lost.

        Returns:
            ``False`` if no such record exists.
        """
        record = await self._store.get_record(record_id)
        if record is None:
            return False
        if self._before_delete is not None:
            await _call_hook(self._before_delete, record)
        self._scheduler.cancel(record.remote_resource_id)
        await self._guard.delete_remote(record.remote_resource_id)
        await self._store.delete_record(record_id)
        logger.info("Deleted record %s (%s)", record_id, record.remote_resource_id)
        return True
