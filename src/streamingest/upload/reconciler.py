"""Status reconciliation: poll the remote platform until a terminal state.

After a transfer completes the remote video is ``queued`` /
``inprogress`` for a while.  :class:`StatusReconciler` polls
``GET /stream/{uid}`` on a fixed interval with a bounded attempt budget
and performs exactly one merge-write into the local record on the first
terminal observation.

:class:`PollScheduler` owns one ``asyncio.Task`` per video so callers can
fire-and-forget reconciliation, cancel it, or tear everything down at
shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from streamingest.exceptions import PollingBudgetExhausted, StreamIngestError
from streamingest.models import IngestConfig, PollState, ReconcileOutcome, RemoteVideo, VideoRecord, VideoStatus
from streamingest.upload.client import CloudflareStreamClient
from streamingest.upload.state import AsyncVideoStore

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
OutcomeListener = Callable[[str, ReconcileOutcome], None]

# Remote spellings of the two terminal states.  Everything else
# (queued, inprogress, pendingupload, downloading, unknown) is processing.
_READY_STATES = frozenset({"ready"})
_ERROR_STATES = frozenset({"error"})

_RETRYABLE_TICK_ERRORS = (StreamIngestError, sqlite3.Error)


def map_remote_state(state: str | None) -> VideoStatus:
    """Map a remote ``status.state`` to the local three-valued status."""
    normalized = (state or "").strip().lower()
    if normalized in _READY_STATES:
        return VideoStatus.READY
    if normalized in _ERROR_STATES:
        return VideoStatus.ERROR
    return VideoStatus.PROCESSING


def _positive(value: float | int | None) -> float | int | None:
    if value is None or value <= 0:
        return None
    return value


class StatusReconciler:
    """Polls one video's remote status and merges the terminal result.

    Args:
        client: Cloudflare Stream API client.
        store: Record store receiving the merge-write.
        config: Supplies interval, attempt budget and ``prepare_download``.
        sleep: Awaitable sleep between ticks (tests inject a recorder).
    """

    def __init__(
        self,
        client: CloudflareStreamClient,
        store: AsyncVideoStore,
        config: IngestConfig,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._store = store
        self._config = config
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Single observation
    # ------------------------------------------------------------------

    async def observe(self, remote_resource_id: str) -> RemoteVideo:
        """Query the remote status once."""
        details = await self._client.get_video(remote_resource_id)
        return RemoteVideo(
            uid=details.uid or remote_resource_id,
            state=details.status.state,
            duration_seconds=_positive(details.duration),
            size_bytes=_positive(details.size),
            thumbnail_url=details.thumbnail or None,
            preview_url=details.preview or None,
            uploaded=details.uploaded,
        )

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    async def reconcile(
        self,
        remote_resource_id: str,
        poll_state: PollState | None = None,
    ) -> ReconcileOutcome:
        """Poll until terminal or the budget runs out.

        Query and local-write failures consume an attempt and polling
        continues.  Budget exhaustion leaves the record untouched and
        returns :attr:`ReconcileOutcome.GAVE_UP`.
        """
        state = poll_state or PollState(
            remote_resource_id=remote_resource_id,
            attempt_limit=self._config.poll_attempt_budget,
            interval_seconds=self._config.poll_interval_seconds,
        )
        state.started_at = datetime.now(timezone.utc)

        async def _tick() -> VideoStatus | None:
            state.attempt += 1
            try:
                remote = await self.observe(remote_resource_id)
            except StreamIngestError as exc:
                state.last_error = str(exc)
                logger.warning(
                    "Status check %d/%d for %s failed: %s",
                    state.attempt,
                    state.attempt_limit,
                    remote_resource_id,
                    exc,
                )
                raise

            status = map_remote_state(remote.state)
            logger.debug(
                "Status check %d/%d for %s: remote=%r local=%s",
                state.attempt,
                state.attempt_limit,
                remote_resource_id,
                remote.state,
                status.value,
            )
            if status is VideoStatus.PROCESSING:
                return None

            fields: dict[str, Any] = {
                "duration_seconds": remote.duration_seconds,
                "size_bytes": remote.size_bytes,
                "thumbnail_url": remote.thumbnail_url,
            }
            if status is VideoStatus.READY and self._config.prepare_download:
                fields["download_url"] = await self.prepare_download(remote_resource_id)

            try:
                written = await self._store.merge_terminal(remote_resource_id, status, fields)
            except sqlite3.Error as exc:
                state.last_error = str(exc)
                logger.warning(
                    "Could not write %s status for %s: %s", status.value, remote_resource_id, exc
                )
                raise
            if written:
                logger.info(
                    "Video %s reached %s after %d status checks",
                    remote_resource_id,
                    status.value,
                    state.attempt,
                )
            return status

        retrying = AsyncRetrying(
            wait=wait_fixed(state.interval_seconds),
            stop=stop_after_attempt(state.attempt_limit),
            retry=(
                retry_if_result(lambda status: status is None)
                | retry_if_exception_type(_RETRYABLE_TICK_ERRORS)
            ),
            retry_error_callback=lambda retry_state: None,
            sleep=self._sleep,
        )
        final = await retrying(_tick)

        if final is None:
            elapsed = (datetime.now(timezone.utc) - state.started_at).total_seconds()
            logger.warning(
                "Gave up on %s after %d status checks (%.1fs); record left processing",
                remote_resource_id,
                state.attempt,
                elapsed,
            )
            return ReconcileOutcome.GAVE_UP
        return ReconcileOutcome(final.value)

    async def wait_until_terminal(self, remote_resource_id: str) -> VideoRecord:
        """Reconcile and return the updated record.

        Raises:
            PollingBudgetExhausted: If the budget ran out while processing.
        """
        state = PollState(
            remote_resource_id=remote_resource_id,
            attempt_limit=self._config.poll_attempt_budget,
            interval_seconds=self._config.poll_interval_seconds,
        )
        outcome = await self.reconcile(remote_resource_id, state)
        if outcome is ReconcileOutcome.GAVE_UP:
            raise PollingBudgetExhausted(remote_resource_id, state.attempt)
        record = await self._store.get_by_remote_id(remote_resource_id)
        if record is None:
            raise LookupError(f"Record for {remote_resource_id} disappeared during reconciliation")
        return record

    # ------------------------------------------------------------------
    # Downloadable asset
    # ------------------------------------------------------------------

    async def prepare_download(self, remote_resource_id: str) -> str | None:
        """Request the default MP4 download and poll until its URL is ready.

        Uses the same interval and budget as status polling.  Returns
        ``None`` (and logs) if the download cannot be prepared; the status
        merge goes ahead without it.
        """

        async def _check() -> str | None:
            entry = await self._client.get_download(remote_resource_id)
            if entry is not None and entry.status == "ready" and entry.url:
                return entry.url
            return None

        try:
            entry = await self._client.create_download(remote_resource_id)
        except StreamIngestError as exc:
            logger.warning("Could not request download for %s: %s", remote_resource_id, exc)
            return None
        if entry is not None and entry.status == "ready" and entry.url:
            return entry.url

        retrying = AsyncRetrying(
            wait=wait_fixed(self._config.poll_interval_seconds),
            stop=stop_after_attempt(self._config.poll_attempt_budget),
            retry=(
                retry_if_result(lambda url: url is None)
                | retry_if_exception_type(StreamIngestError)
            ),
            retry_error_callback=lambda retry_state: None,
            sleep=self._sleep,
        )
        url = await retrying(_check)
        if url is None:
            logger.warning("Download for %s not ready within the polling budget", remote_resource_id)
        return url


# ----------------------------------------------------------------------
# Scheduling
# ----------------------------------------------------------------------


class ReconcileHandle:
    """Handle on one in-flight reconciliation task."""

    def __init__(self, remote_resource_id: str, task: asyncio.Task) -> None:
        self.remote_resource_id = remote_resource_id
        self.task = task

    @property
    def done(self) -> bool:
        return self.task.done()

    def cancel(self) -> None:
        self.task.cancel()

    async def wait(self) -> ReconcileOutcome | None:
        """Wait for the outcome; ``None`` if the task was cancelled."""
        try:
            return await asyncio.shield(self.task)
        except asyncio.CancelledError:
            if self.task.cancelled():
                return None
            raise


class PollScheduler:
    """Owns one reconciliation task per video.

    Scheduling an id that is already in flight returns the existing
    handle.  Finished handles are dropped automatically.  ``shutdown()``
    cancels and awaits every task, after which nothing can be scheduled.

    Usage::

        async with PollScheduler(reconciler) as scheduler:
            handle = scheduler.schedule(uid)
            outcome = await handle.wait()
    """

    def __init__(self, reconciler: StatusReconciler) -> None:
        self._reconciler = reconciler
        self._handles: dict[str, ReconcileHandle] = {}
        self._listeners: list[OutcomeListener] = []
        self._closed = False

    def add_listener(self, listener: OutcomeListener) -> None:
        """Register ``listener(remote_resource_id, outcome)`` for finished runs."""
        self._listeners.append(listener)

    def schedule(self, remote_resource_id: str) -> ReconcileHandle:
        if self._closed:
            raise RuntimeError("PollScheduler is shut down")
        existing = self._handles.get(remote_resource_id)
        if existing is not None and not existing.done:
            return existing

        task = asyncio.create_task(
            self._run(remote_resource_id), name=f"reconcile-{remote_resource_id}"
        )
        handle = ReconcileHandle(remote_resource_id, task)
        self._handles[remote_resource_id] = handle
        task.add_done_callback(lambda t: self._discard(remote_resource_id, t))
        logger.debug("Scheduled reconciliation for %s", remote_resource_id)
        return handle

    def cancel(self, remote_resource_id: str) -> bool:
        handle = self._handles.get(remote_resource_id)
        if handle is None or handle.done:
            return False
        handle.cancel()
        return True

    @property
    def active(self) -> list[str]:
        return [uid for uid, h in self._handles.items() if not h.done]

    async def shutdown(self) -> None:
        self._closed = True
        handles = list(self._handles.values())
        for handle in handles:
            handle.cancel()
        if handles:
            await asyncio.gather(*(h.task for h in handles), return_exceptions=True)
            logger.info("Cancelled %d reconciliation task(s) at shutdown", len(handles))
        self._handles.clear()

    async def __aenter__(self) -> PollScheduler:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.shutdown()

    async def _run(self, remote_resource_id: str) -> ReconcileOutcome:
        outcome = await self._reconciler.reconcile(remote_resource_id)
        for listener in self._listeners:
            try:
                listener(remote_resource_id, outcome)
            except Exception:
                logger.exception("Reconcile listener failed for %s", remote_resource_id)
        return outcome

    def _discard(self, remote_resource_id: str, task: asyncio.Task) -> None:
        handle = self._handles.get(remote_resource_id)
        if handle is not None and handle.task is task:
            del self._handles[remote_resource_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Reconciliation for %s crashed",
                remote_resource_id,
                exc_info=task.exception(),
            )
