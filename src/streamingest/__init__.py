"""Cloudflare Stream ingestion and status reconciliation."""

__version__ = "0.1.0"

from streamingest.models import (
    IngestConfig,
    Mode,
    ReconcileOutcome,
    UploadIntent,
    UploadTarget,
    VideoRecord,
    VideoStatus,
)

__all__ = [
    "IngestConfig",
    "Mode",
    "ReconcileOutcome",
    "UploadIntent",
    "UploadTarget",
    "VideoRecord",
    "VideoStatus",
    "__version__",
]
