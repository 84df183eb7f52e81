"""Error taxonomy for the ingestion pipeline.

* :class:`ConfigurationError` -- fatal at setup, never retried.
* :class:`AuthorizationError` -- request rejected, never retried.
* :class:`UpstreamAPIError` -- non-2xx or ``success=false`` envelope.
* :class:`NetworkError` -- transport-level fault.
* :class:`PollingBudgetExhausted` -- reconciliation gave up while the
  remote side was still processing.

Only the resumable chunk schedule retries ``UpstreamAPIError`` and
``NetworkError``.
"""

from __future__ import annotations


class StreamIngestError(Exception):
    """Base class for every error raised by streamingest."""


class ConfigurationError(StreamIngestError):
    """Missing credentials or an unregistered collection."""


class AuthorizationError(StreamIngestError):
    """The access predicate rejected the request."""


class UpstreamAPIError(StreamIngestError):
    """The remote platform answered with a non-success response.

    Attributes:
        status_code: HTTP status of the response (``None`` when the
            failure was detected before a response existed, e.g. an
            unparseable ``Location`` header).
        messages: Error messages reported by the remote envelope.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        messages: list[str] | None = None,
    ) -> None:
        self.status_code = status_code
        self.messages = list(messages or [])
        detail = message
        if self.messages:
            detail = f"{message}: {', '.join(self.messages)}"
        if status_code is not None:
            detail = f"{detail} (HTTP {status_code})"
        super().__init__(detail)

    @property
    def is_transient(self) -> bool:
        """Whether a resumable chunk may be resent after this error."""
        if self.status_code is None:
            return False
        return self.status_code >= 500 or self.status_code in (409, 423, 429)


class NetworkError(StreamIngestError):
    """Transport-level fault (connection refused, timeout, reset)."""


class PollingBudgetExhausted(StreamIngestError):
    """Raised when reconciliation stops while the video is still processing."""

    def __init__(self, remote_resource_id: str, attempts: int) -> None:
        self.remote_resource_id = remote_resource_id
        self.attempts = attempts
        super().__init__(
            f"Video {remote_resource_id} still processing after {attempts} status checks"
        )
