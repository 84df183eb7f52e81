"""HTTP-facing handler for upload target requests.

Framework-neutral: takes the parsed JSON body, request headers and the
authenticated requester, and returns ``(status_code, json_body)``.  A
client that wants a resumable target sends ``X-Use-Tus: true`` together
with ``Upload-Length``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from streamingest.exceptions import (
    AuthorizationError,
    ConfigurationError,
    NetworkError,
    UpstreamAPIError,
)
from streamingest.models import Mode, UploadIntent
from streamingest.upload.issuer import TargetIssuer
from streamingest.upload.metadata_builder import parse_upload_metadata

logger = logging.getLogger(__name__)


class TargetRequest(BaseModel):
    """Body of an upload target request."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    collection_slug: str = Field(alias="collectionSlug", min_length=1)
    filename: str = Field(min_length=1)
    mime_type: str = Field(default="application/octet-stream", alias="mimeType")


def _header(headers: Mapping[str, str], name: str) -> str | None:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _error(status: int, message: str) -> tuple[int, dict[str, Any]]:
    return status, {"error": message}


class IssuanceHandler:
    """Maps target requests onto :class:`TargetIssuer` and its errors onto HTTP."""

    def __init__(self, issuer: TargetIssuer) -> None:
        self._issuer = issuer

    async def handle(
        self,
        body: Mapping[str, Any] | None,
        headers: Mapping[str, str],
        requester: Any = None,
    ) -> tuple[int, dict[str, Any]]:
        payload = dict(body or {})
        raw_metadata = _header(headers, "Upload-Metadata")
        if raw_metadata:
            # tus clients describe the file here rather than in the body
            try:
                metadata = parse_upload_metadata(raw_metadata)
            except ValueError:
                return _error(400, "Upload-Metadata header is malformed")
            filename = metadata.get("filename") or metadata.get("name")
            if filename and not payload.get("filename"):
                payload["filename"] = filename
            if metadata.get("filetype") and not (payload.get("mimeType") or payload.get("mime_type")):
                payload["mimeType"] = metadata["filetype"]

        try:
            request = TargetRequest.model_validate(payload)
        except ValidationError as exc:
            return _error(400, f"Invalid request body: {exc.error_count()} error(s)")

        use_tus = (_header(headers, "X-Use-Tus") or "").strip().lower() == "true"
        total_bytes = 0
        if use_tus:
            raw_length = _header(headers, "Upload-Length")
            try:
                total_bytes = int(raw_length) if raw_length is not None else -1
            except ValueError:
                total_bytes = -1
            if total_bytes < 0:
                return _error(400, "Upload-Length header is required for resumable uploads")

        intent = UploadIntent(
            collection_key=request.collection_slug,
            filename=request.filename,
            mime_type=request.mime_type,
            total_bytes=total_bytes,
            mode=Mode.RESUMABLE if use_tus else Mode.DIRECT,
        )

        try:
            target = await self._issuer.request_target(intent, requester)
        except ConfigurationError as exc:
            return _error(400, str(exc))
        except AuthorizationError as exc:
            return _error(403, str(exc))
        except (UpstreamAPIError, NetworkError) as exc:
            logger.error("Target issuance for %s failed: %s", request.collection_slug, exc)
            return _error(502, "Upload target could not be issued")

        if target.mode is Mode.RESUMABLE:
            return 200, {"tusEndpoint": target.resumable_resource_url, "streamId": target.remote_resource_id}
        return 200, {"uploadURL": target.one_time_url, "streamId": target.remote_resource_id}
