"""Cloudflare Stream management API client.

Wraps the account-scoped endpoints the pipeline needs:

* ``POST /stream/direct_upload`` -- one-time upload URL
* ``POST /stream`` with tus headers -- resumable upload resource
* ``POST /stream/{uid}`` -- update origin allowlist
* ``GET /stream/{uid}`` -- processing status
* ``DELETE /stream/{uid}`` -- remove a video
* ``POST|GET /stream/{uid}/downloads`` -- downloadable MP4

Transport faults become :class:`NetworkError`; non-2xx responses and
``success=false`` envelopes become :class:`UpstreamAPIError`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from streamingest.constants import API_BASE, TUS_VERSION
from streamingest.exceptions import NetworkError, UpstreamAPIError
from streamingest.upload.schemas import (
    DirectUploadResult,
    DownloadEntry,
    DownloadsResult,
    Envelope,
    VideoDetails,
)

logger = logging.getLogger(__name__)


class CloudflareStreamClient:
    """Async wrapper around the Cloudflare Stream REST API.

    Usage::

        async with CloudflareStreamClient(account_id, api_token) as client:
            video = await client.get_video(uid)

    Args:
        account_id: Cloudflare account id.
        api_token: API token with Stream edit permission.
        http_client: Optional pre-built ``httpx.AsyncClient`` (tests inject
            one backed by ``httpx.MockTransport``).  When omitted the client
            creates and owns its own.
        base_url: Accounts API root.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        account_id: str,
        api_token: str,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = API_BASE,
        timeout: float = 60.0,
    ) -> None:
        self.account_id = account_id
        self._api_token = api_token
        self._base = f"{base_url.rstrip('/')}/{account_id}/stream"
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    # ------------------------------------------------------------------
    # Upload targets
    # ------------------------------------------------------------------

    async def create_direct_upload(
        self,
        max_duration_seconds: int,
        allowed_origins: list[str] | None = None,
        require_signed_urls: bool = False,
    ) -> DirectUploadResult:
        """Request a one-time upload URL.

        Returns:
            The parsed ``{uploadURL, uid}`` result.
        """
        body: dict[str, Any] = {"maxDurationSeconds": max_duration_seconds}
        if allowed_origins:
            body["allowedOrigins"] = allowed_origins
        if require_signed_urls:
            body["requireSignedURLs"] = True

        response = await self._request("POST", "/direct_upload", json=body)
        envelope = self._unwrap(response, "create one-time upload URL")
        try:
            result = DirectUploadResult.model_validate(envelope.result or {})
        except ValidationError as exc:
            raise UpstreamAPIError(
                "Malformed one-time upload response", response.status_code
            ) from exc
        logger.debug("Issued one-time upload URL for %s", result.uid)
        return result

    async def create_resumable_upload(self, total_bytes: int, upload_metadata: str) -> str:
        """Create a tus upload resource and return its ``Location`` URL."""
        headers = {
            "Tus-Resumable": TUS_VERSION,
            "Upload-Length": str(total_bytes),
            "Upload-Metadata": upload_metadata,
        }
        response = await self._request("POST", "", headers=headers)
        if not response.is_success:
            raise UpstreamAPIError(
                "Failed to create resumable upload",
                response.status_code,
                self._error_messages(response),
            )
        location = response.headers.get("Location")
        if not location:
            raise UpstreamAPIError(
                "Resumable upload response has no Location header", response.status_code
            )
        return str(response.url.join(location))

    async def update_allowed_origins(self, uid: str, allowed_origins: list[str]) -> None:
        """Set the origin allowlist on an existing video."""
        response = await self._request(
            "POST", f"/{uid}", json={"uid": uid, "allowedOrigins": allowed_origins}
        )
        self._unwrap(response, "update allowed origins")
        logger.debug("Set %d allowed origins on %s", len(allowed_origins), uid)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_video(self, uid: str) -> VideoDetails:
        """Fetch the current processing status and metadata of a video."""
        response = await self._request("GET", f"/{uid}")
        envelope = self._unwrap(response, "fetch video status")
        try:
            return VideoDetails.model_validate(envelope.result or {})
        except ValidationError as exc:
            raise UpstreamAPIError(
                "Malformed video status response", response.status_code
            ) from exc

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_video(self, uid: str) -> bool:
        """Delete a video.

        Returns:
            ``True`` if the video was deleted, ``False`` if it was already
            gone (404).

        Raises:
            UpstreamAPIError: On any other non-2xx response.
        """
        response = await self._request("DELETE", f"/{uid}")
        if response.status_code == 404:
            return False
        if not response.is_success:
            raise UpstreamAPIError(
                f"Failed to delete video {uid}",
                response.status_code,
                self._error_messages(response),
            )
        return True

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    async def create_download(self, uid: str) -> DownloadEntry | None:
        """Ask the platform to prepare the default MP4 download."""
        response = await self._request("POST", f"/{uid}/downloads")
        envelope = self._unwrap(response, "create download")
        return self._download_entry(envelope, response)

    async def get_download(self, uid: str) -> DownloadEntry | None:
        """Return the default download entry, if one exists."""
        response = await self._request("GET", f"/{uid}/downloads")
        envelope = self._unwrap(response, "fetch download status")
        return self._download_entry(envelope, response)

    @staticmethod
    def _download_entry(envelope: Envelope, response: httpx.Response) -> DownloadEntry | None:
        try:
            return DownloadsResult.model_validate(envelope.result or {}).default
        except ValidationError as exc:
            raise UpstreamAPIError(
                "Malformed downloads response", response.status_code
            ) from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> CloudflareStreamClient:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        merged = {"Authorization": f"Bearer {self._api_token}"}
        if headers:
            merged.update(headers)
        url = f"{self._base}{path}"
        try:
            return await self._http.request(method, url, headers=merged, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {url} failed: {exc}") from exc

    @staticmethod
    def _error_messages(response: httpx.Response) -> list[str]:
        try:
            return Envelope.model_validate(response.json()).error_messages
        except (ValueError, ValidationError):
            return []

    def _unwrap(self, response: httpx.Response, action: str) -> Envelope:
        """Validate status and envelope, returning the parsed envelope."""
        if not response.is_success:
            raise UpstreamAPIError(
                f"Failed to {action}",
                response.status_code,
                self._error_messages(response),
            )
        try:
            envelope = Envelope.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise UpstreamAPIError(
                f"Failed to {action}: response is not a JSON envelope",
                response.status_code,
            ) from exc
        if not envelope.success:
            raise UpstreamAPIError(
                f"Failed to {action}", response.status_code, envelope.error_messages
            )
        return envelope
