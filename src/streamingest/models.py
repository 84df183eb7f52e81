"""Data models and enums for the ingestion pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from streamingest.constants import (
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_MAX_DURATION_SECONDS,
    DEFAULT_POLL_ATTEMPT_BUDGET,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RETRY_DELAYS,
    DEFAULT_THRESHOLD_BYTES,
)


class Mode(str, Enum):
    """Upload strategy chosen from the file size."""

    DIRECT = "direct"
    RESUMABLE = "resumable"


class VideoStatus(str, Enum):
    """Local status of a video record.

    ``processing`` is the only non-terminal value; ``ready`` and ``error``
    are never left once reached.
    """

    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not VideoStatus.PROCESSING


class ReconcileOutcome(str, Enum):
    """How a reconciliation run ended."""

    READY = "ready"
    ERROR = "error"
    GAVE_UP = "gave_up"


@dataclass(frozen=True)
class UploadIntent:
    """What the caller wants to upload. Never persisted."""

    collection_key: str
    filename: str
    mime_type: str
    total_bytes: int
    mode: Mode


@dataclass(frozen=True)
class UploadTarget:
    """Where the bytes go.

    Exactly one of ``one_time_url`` / ``resumable_resource_url`` is set,
    matching ``mode``.
    """

    mode: Mode
    remote_resource_id: str
    one_time_url: str | None = None
    resumable_resource_url: str | None = None

    def __post_init__(self) -> None:
        if self.mode is Mode.DIRECT:
            valid = self.one_time_url is not None and self.resumable_resource_url is None
        else:
            valid = self.resumable_resource_url is not None and self.one_time_url is None
        if not valid:
            raise ValueError(
                f"UploadTarget in {self.mode.value} mode must carry exactly the matching URL"
            )

    @property
    def url(self) -> str:
        return self.one_time_url or self.resumable_resource_url or ""


@dataclass(slots=True)
class VideoRecord:
    """Local record of a video hosted on the remote platform."""

    remote_resource_id: str
    view_url: str
    collection_key: str
    filename: str
    status: VideoStatus = VideoStatus.PROCESSING
    size_bytes: int | None = None
    duration_seconds: float | None = None
    thumbnail_url: str | None = None
    download_url: str | None = None
    uploaded_at: str | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary with enum values as strings."""
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_row(cls, row: Any) -> VideoRecord:
        """Build a record from an sqlite row (``sqlite3.Row`` or ``aiosqlite.Row``)."""
        return cls(
            id=row["id"],
            remote_resource_id=row["remote_resource_id"],
            view_url=row["view_url"],
            collection_key=row["collection_key"],
            filename=row["filename"],
            status=VideoStatus(row["status"]),
            size_bytes=row["size_bytes"],
            duration_seconds=row["duration_seconds"],
            thumbnail_url=row["thumbnail_url"],
            download_url=row["download_url"],
            uploaded_at=row["uploaded_at"],
        )


@dataclass
class PollState:
    """Per-record polling bookkeeping, alive only while reconciling."""

    remote_resource_id: str
    attempt_limit: int
    interval_seconds: float
    attempt: int = 0
    last_error: str | None = None
    started_at: datetime | None = None


@dataclass(frozen=True)
class RemoteVideo:
    """Subset of the remote video payload the reconciler consumes."""

    uid: str
    state: str
    duration_seconds: float | None = None
    size_bytes: int | None = None
    thumbnail_url: str | None = None
    preview_url: str | None = None
    uploaded: str | None = None


@dataclass
class TransferResult:
    """Terminal outcome of a transfer: a resource id or an error, never both."""

    remote_resource_id: str | None = None
    error: Exception | None = None
    bytes_uploaded: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.remote_resource_id is not None

    def unwrap(self) -> str:
        """Return the resource id or raise the terminal error."""
        if self.error is not None:
            raise self.error
        if self.remote_resource_id is None:
            raise RuntimeError("TransferResult carries neither a resource id nor an error")
        return self.remote_resource_id


@dataclass
class IngestConfig:
    """Every recognised ingestion option with its default.

    Controls mode selection, chunking, retry, polling and the options sent
    to the remote platform when a target is issued.
    """

    threshold_bytes: int = DEFAULT_THRESHOLD_BYTES
    chunk_size_bytes: int = DEFAULT_CHUNK_SIZE_BYTES
    retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    poll_attempt_budget: int = DEFAULT_POLL_ATTEMPT_BUDGET
    max_duration_seconds: int = DEFAULT_MAX_DURATION_SECONDS
    allowed_origins: list[str] = field(default_factory=list)
    require_signed_urls: bool = False
    prepare_download: bool = False
    stream_domain: str | None = None
    request_timeout_seconds: float = 60.0
    db_path: str = "data/videos.db"

    def __post_init__(self) -> None:
        self.retry_delays = tuple(float(d) for d in self.retry_delays)
        if self.chunk_size_bytes <= 0:
            raise ValueError("chunk_size_bytes must be positive")
        if not self.retry_delays:
            raise ValueError("retry_delays must contain at least one delay")
        if self.poll_attempt_budget < 1:
            raise ValueError("poll_attempt_budget must be at least 1")
