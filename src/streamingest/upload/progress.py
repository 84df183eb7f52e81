"""Progress reporting for transfers.

* :class:`ProgressChannel` -- one-shot guard around a caller's
  ``(bytes_sent, bytes_total)`` callback; once closed it drops every
  further emission, so nothing follows a terminal result.
* :class:`TransferProgressTracker` -- Rich byte-level progress bar plus a
  status line for the reconciliation phase, used by the CLI.
"""

from __future__ import annotations

import logging
from typing import Callable

from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class ProgressChannel:
    """Delivers progress events in order until closed."""

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self._callback = callback
        self._closed = False
        self.last: tuple[int, int] | None = None

    def emit(self, bytes_sent: int, bytes_total: int) -> None:
        if self._closed:
            return
        self.last = (bytes_sent, bytes_total)
        if self._callback is None:
            return
        try:
            self._callback(bytes_sent, bytes_total)
        except Exception:
            # A broken progress callback must not abort the transfer.
            logger.exception("Progress callback raised; continuing transfer")

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class TransferProgressTracker:
    """Rich progress display for a single ingestion.

    Usage::

        with TransferProgressTracker("clip.mp4", total_bytes) as tracker:
            await orchestrator.ingest(..., on_progress=tracker.update)
            tracker.set_status("reconciling")
    """

    def __init__(self, filename: str, total_bytes: int) -> None:
        self._filename = filename
        self._total_bytes = total_bytes
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
        )
        self._task: TaskID | None = None

    def start(self) -> None:
        self._progress.start()
        self._task = self._progress.add_task(
            f"[green]{_truncate_name(self._filename)}",
            total=self._total_bytes,
            status="uploading",
        )

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> TransferProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    def update(self, bytes_sent: int, bytes_total: int) -> None:
        """Progress callback compatible with the transfer clients."""
        if self._task is not None:
            self._progress.update(self._task, completed=bytes_sent, total=bytes_total)

    def set_status(self, status: str) -> None:
        if self._task is not None:
            self._progress.update(self._task, status=status)


def _truncate_name(name: str, max_len: int = 40) -> str:
    if len(name) <= max_len:
        return name
    return "..." + name[-(max_len - 3) :]
