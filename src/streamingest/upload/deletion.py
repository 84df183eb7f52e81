"""Remote deletion for permanently removed records.

Only call :meth:`DeletionGuard.delete_remote` when the owning local record
is itself being removed.  Edits that carry no new upload never touch the
remote video.
"""

from __future__ import annotations

import logging

from streamingest.upload.client import CloudflareStreamClient

logger = logging.getLogger(__name__)


class DeletionGuard:
    """Idempotent remote delete: a 404 counts as success."""

    def __init__(self, client: CloudflareStreamClient) -> None:
        self._client = client

    async def delete_remote(self, remote_resource_id: str) -> None:
        """Delete the remote video.

        Raises:
            UpstreamAPIError: On any non-2xx response other than 404.
            NetworkError: On transport faults.
        """
        if not remote_resource_id:
            logger.warning("No remote resource id; nothing to delete")
            return

        deleted = await self._client.delete_video(remote_resource_id)
        if deleted:
            logger.info("Deleted remote video %s", remote_resource_id)
        else:
            logger.warning("Remote video %s already absent (404)", remote_resource_id)
