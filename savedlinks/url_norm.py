from __future__ import annotations

import re
from urllib.parse import urlparse, urlunparse

_HTTP_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_url(url: str) -> str:
    """Canonical form used for duplicate detection.

    Adds ``https://`` when no http(s) scheme is present, lower-cases scheme
    and host, drops the fragment and collapses a bare ``/`` path.
    """
    raw = (url or "").strip()
    if not raw:
        return ""
    if not _HTTP_SCHEME_RE.match(raw):
        raw = "https://" + raw

    try:
        p = urlparse(raw)
    except ValueError:
        return raw.lower()
    if not p.netloc:
        return (url or "").strip().lower()

    userinfo, sep, host = p.netloc.rpartition("@")
    netloc = f"{userinfo}{sep}{host.lower()}"

    path = p.path
    if path in ("", "/"):
        path = "/" if p.query else ""

    return urlunparse((p.scheme.lower(), netloc, path, p.params, p.query, ""))


def url_key(url: str) -> str:
    """Case-insensitive comparison key used when merging remote rows."""
    return normalize_url(url).lower()


def title_from_url(url: str) -> str:
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return url
    if not host:
        return url
    return host[4:] if host.startswith("www.") else host
