"""Pydantic models for Cloudflare Stream API payloads.

Only the fields the pipeline reads are declared; everything else in the
payload is ignored.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class APIMessage(_Lenient):
    code: int | None = None
    message: str = ""


class Envelope(_Lenient):
    """Common ``{success, errors, messages, result}`` wrapper."""

    success: bool = False
    errors: list[APIMessage] = Field(default_factory=list)
    messages: list[APIMessage] = Field(default_factory=list)
    result: Any = None

    @field_validator("errors", "messages", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return value or []

    @property
    def error_messages(self) -> list[str]:
        return [e.message for e in self.errors if e.message]


class DirectUploadResult(_Lenient):
    upload_url: str = Field(alias="uploadURL")
    uid: str


class VideoState(_Lenient):
    state: str = ""
    error_reason_code: str | None = Field(default=None, alias="errorReasonCode")
    error_reason_text: str | None = Field(default=None, alias="errorReasonText")


class VideoDetails(_Lenient):
    uid: str = ""
    status: VideoState = Field(default_factory=VideoState)
    duration: float | None = None
    size: int | None = None
    thumbnail: str | None = None
    preview: str | None = None
    uploaded: str | None = None
    ready_to_stream: bool = Field(default=False, alias="readyToStream")

    @field_validator("status", mode="before")
    @classmethod
    def _status_object(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            return {"state": value}
        return value


class DownloadEntry(_Lenient):
    status: str = ""
    url: str | None = None
    percent_complete: float | None = Field(default=None, alias="percentComplete")


class DownloadsResult(_Lenient):
    default: DownloadEntry | None = None
