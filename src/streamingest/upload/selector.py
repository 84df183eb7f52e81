"""Upload mode selection."""

from __future__ import annotations

from streamingest.constants import DEFAULT_THRESHOLD_BYTES
from streamingest.models import Mode


def decide(total_bytes: int, threshold_bytes: int = DEFAULT_THRESHOLD_BYTES) -> Mode:
    """Return RESUMABLE iff *total_bytes* is strictly above *threshold_bytes*."""
    if total_bytes < 0:
        raise ValueError(f"total_bytes must be non-negative, got {total_bytes}")
    return Mode.RESUMABLE if total_bytes > threshold_bytes else Mode.DIRECT
