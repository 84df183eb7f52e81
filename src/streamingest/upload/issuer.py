"""Upload target issuance.

Turns an :class:`UploadIntent` into an :class:`UploadTarget` by asking the
remote platform for either a one-time upload URL (direct mode) or a tus
resource (resumable mode).
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from streamingest.config import CollectionRegistry
from streamingest.exceptions import AuthorizationError, UpstreamAPIError
from streamingest.models import IngestConfig, Mode, UploadIntent, UploadTarget
from streamingest.upload.client import CloudflareStreamClient
from streamingest.upload.metadata_builder import (
    build_upload_metadata,
    extract_stream_uid,
    normalize_origins,
)

logger = logging.getLogger(__name__)

AccessPredicate = Callable[[str, Any], Union[bool, Awaitable[bool]]]


def default_access(collection_key: str, requester: Any) -> bool:
    """Allow any authenticated requester."""
    return requester is not None


class TargetIssuer:
    """Issues upload targets for registered collections.

    Args:
        client: Cloudflare Stream API client.
        registry: Collection key to ingestion config mapping.
        access: Predicate over ``(collection_key, requester)``; may be sync
            or async.  Defaults to :func:`default_access`.
    """

    def __init__(
        self,
        client: CloudflareStreamClient,
        registry: CollectionRegistry,
        access: AccessPredicate | None = None,
    ) -> None:
        self._client = client
        self._registry = registry
        self._access = access or default_access

    async def request_target(self, intent: UploadIntent, requester: Any = None) -> UploadTarget:
        """Issue a target for *intent*.

        Raises:
            ConfigurationError: If the collection is not registered.
            AuthorizationError: If the access predicate rejects the requester.
            UpstreamAPIError: If any remote call fails.
            NetworkError: On transport faults.
        """
        config = self._registry.resolve(intent.collection_key)

        allowed = self._access(intent.collection_key, requester)
        if inspect.isawaitable(allowed):
            allowed = await allowed
        if not allowed:
            raise AuthorizationError(
                f"Requester may not upload to collection {intent.collection_key!r}"
            )

        if intent.mode is Mode.RESUMABLE:
            target = await self._issue_resumable(intent, config)
        else:
            target = await self._issue_direct(config)

        logger.info(
            "Issued %s upload target %s for %s (%d bytes)",
            target.mode.value,
            target.remote_resource_id,
            intent.filename,
            intent.total_bytes,
        )
        return target

    async def _issue_direct(self, config: IngestConfig) -> UploadTarget:
        origins = normalize_origins(config.allowed_origins)
        result = await self._client.create_direct_upload(
            max_duration_seconds=config.max_duration_seconds,
            allowed_origins=origins or None,
            require_signed_urls=config.require_signed_urls,
        )
        return UploadTarget(
            mode=Mode.DIRECT,
            remote_resource_id=result.uid,
            one_time_url=result.upload_url,
        )

    async def _issue_resumable(self, intent: UploadIntent, config: IngestConfig) -> UploadTarget:
        metadata = build_upload_metadata(
            intent.filename,
            intent.mime_type,
            max_duration_seconds=config.max_duration_seconds,
            require_signed_urls=config.require_signed_urls,
        )
        location = await self._client.create_resumable_upload(intent.total_bytes, metadata)
        uid = extract_stream_uid(location)
        if uid is None:
            raise UpstreamAPIError(f"Cannot find a video id in resumable location {location!r}")

        # The creation call has no origin allowlist field; set it afterwards.
        origins = normalize_origins(config.allowed_origins)
        if origins:
            await self._client.update_allowed_origins(uid, origins)

        return UploadTarget(
            mode=Mode.RESUMABLE,
            remote_resource_id=uid,
            resumable_resource_url=location,
        )
