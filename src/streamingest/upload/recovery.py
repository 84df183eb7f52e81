"""Startup recovery: resume reconciliation for records left ``processing``.

A record stays ``processing`` when the process stopped mid-poll or a
previous reconciler exhausted its budget.  Recovery re-schedules a
reconciler for each such record so it can still reach a terminal state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from streamingest.upload.reconciler import PollScheduler, ReconcileHandle
from streamingest.upload.state import AsyncVideoStore

logger = logging.getLogger(__name__)


@dataclass
class RecoveryResult:
    """Summary of a recovery run.

    Attributes:
        scheduled: Remote ids handed to the scheduler.
        handles: Handles for the scheduled reconcilers.
        errors: Human-readable descriptions of records that could not be
            scheduled.
    """

    scheduled: list[str] = field(default_factory=list)
    handles: list[ReconcileHandle] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class ReconcileRecovery:
    """Re-schedules reconciliation for every ``processing`` record.

    Intended to be called once at startup, before new ingestions.
    """

    def __init__(self, store: AsyncVideoStore, scheduler: PollScheduler) -> None:
        self._store = store
        self._scheduler = scheduler

    async def run(self) -> RecoveryResult:
        result = RecoveryResult()
        pending = await self._store.list_processing()
        if not pending:
            logger.info("Recovery: no records awaiting a terminal status")
            return result

        logger.info("Recovery: %d record(s) still processing", len(pending))
        for record in pending:
            if not record.remote_resource_id:
                result.errors.append(f"Record {record.id} has no remote resource id")
                continue
            try:
                handle = self._scheduler.schedule(record.remote_resource_id)
            except RuntimeError as exc:
                result.errors.append(f"{record.remote_resource_id}: {exc}")
                logger.error("Recovery could not schedule %s: %s", record.remote_resource_id, exc)
                continue
            result.scheduled.append(record.remote_resource_id)
            result.handles.append(handle)

        logger.info(
            "Recovery: scheduled %d, errors %d", len(result.scheduled), len(result.errors)
        )
        return result
