"""Protocol metadata helpers for issuing upload targets.

* ``Upload-Metadata`` header encoding for resumable-session creation
* Origin allowlist normalization
* Extraction of the 32-hex video uid from a resumable resource URL
"""

from __future__ import annotations

import base64
import logging
import re
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

_UID_PATTERN = re.compile(r"/([0-9a-f]{32})(?=[/?#]|$)")


def build_upload_metadata(
    filename: str,
    mime_type: str,
    max_duration_seconds: int | None = None,
    require_signed_urls: bool = False,
) -> str:
    """Encode the ``Upload-Metadata`` header for a resumable session.

    Each entry is ``key base64(value)``; entries are comma-joined.  The
    signed-URL requirement is a bare flag key with no value.

    Example::

        >>> build_upload_metadata("a.mp4", "video/mp4", 3600, True)
        'name YS5tcDQ=,filetype dmlkZW8vbXA0,maxDurationSeconds MzYwMA==,requiresignedurls'
    """
    pairs: list[tuple[str, str | None]] = [
        ("name", filename),
        ("filetype", mime_type),
    ]
    if max_duration_seconds is not None:
        pairs.append(("maxDurationSeconds", str(int(max_duration_seconds))))
    if require_signed_urls:
        pairs.append(("requiresignedurls", None))

    entries = []
    for key, value in pairs:
        if value is None:
            entries.append(key)
        else:
            encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
            entries.append(f"{key} {encoded}")
    return ",".join(entries)


def parse_upload_metadata(header: str) -> dict[str, str | None]:
    """Decode an ``Upload-Metadata`` header back into a dict."""
    result: dict[str, str | None] = {}
    for entry in filter(None, (e.strip() for e in header.split(","))):
        key, _, encoded = entry.partition(" ")
        result[key] = base64.b64decode(encoded).decode("utf-8") if encoded else None
    return result


def normalize_origin(origin: str) -> str:
    """Reduce an origin to its lower-cased host (and port, if any).

    ``https://Example.com/path`` and ``example.com`` both become
    ``example.com``.  Returns an empty string for blank input.
    """
    value = origin.strip()
    if not value:
        return ""
    if "//" not in value:
        value = f"//{value}"
    netloc = urlsplit(value).netloc
    # strip userinfo
    host = netloc.rsplit("@", 1)[-1]
    return host.lower()


def normalize_origins(origins: list[str] | tuple[str, ...]) -> list[str]:
    """Normalize an origin allowlist, dropping blanks and duplicates in order."""
    seen: set[str] = set()
    result: list[str] = []
    for origin in origins:
        host = normalize_origin(origin)
        if host and host not in seen:
            seen.add(host)
            result.append(host)
    return result


def extract_stream_uid(location: str) -> str | None:
    """Return the 32-hex video uid embedded in *location*, or ``None``.

    Only the URL path is searched, e.g.
    ``https://upload.videodelivery.net/tus/<uid>?tusv2=true`` yields
    ``<uid>``.
    """
    path = urlsplit(location).path if "://" in location else location
    match = _UID_PATTERN.search(path)
    return match.group(1) if match else None
