"""Upload pipeline for Cloudflare Stream.

Public API
----------
.. autoclass:: CloudflareStreamClient
.. autoclass:: TargetIssuer
.. autoclass:: DirectTransferClient
.. autoclass:: ResumableTransferClient
.. autoclass:: StatusReconciler
.. autoclass:: PollScheduler
.. autoclass:: DeletionGuard
.. autoclass:: AsyncVideoStore
.. autoclass:: IngestionOrchestrator
.. autoclass:: ReconcileRecovery
.. autoclass:: IssuanceHandler
"""

from streamingest.upload.client import CloudflareStreamClient
from streamingest.upload.deletion import DeletionGuard
from streamingest.upload.direct import DirectTransferClient
from streamingest.upload.issuance import IssuanceHandler, TargetRequest
from streamingest.upload.issuer import TargetIssuer, default_access
from streamingest.upload.metadata_builder import (
    build_upload_metadata,
    extract_stream_uid,
    normalize_origins,
)
from streamingest.upload.orchestrator import IngestionOrchestrator, IngestionResult, build_view_url
from streamingest.upload.progress import ProgressChannel, TransferProgressTracker
from streamingest.upload.reconciler import (
    PollScheduler,
    ReconcileHandle,
    StatusReconciler,
    map_remote_state,
)
from streamingest.upload.recovery import ReconcileRecovery, RecoveryResult
from streamingest.upload.resumable import ResumableTransferClient, is_transient
from streamingest.upload.selector import decide
from streamingest.upload.state import AsyncVideoStore

__all__ = [
    "AsyncVideoStore",
    "CloudflareStreamClient",
    "DeletionGuard",
    "DirectTransferClient",
    "IngestionOrchestrator",
    "IngestionResult",
    "IssuanceHandler",
    "PollScheduler",
    "ProgressChannel",
    "ReconcileHandle",
    "ReconcileRecovery",
    "RecoveryResult",
    "ResumableTransferClient",
    "StatusReconciler",
    "TargetIssuer",
    "TargetRequest",
    "TransferProgressTracker",
    "build_upload_metadata",
    "build_view_url",
    "decide",
    "default_access",
    "extract_stream_uid",
    "is_transient",
    "map_remote_state",
    "normalize_origins",
]
