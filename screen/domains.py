"""
Domain normalisation for website rules.

Users paste both bare domains ("github.com") and full URLs
("https://www.youtube.com/watch?v=xyz"); both must collapse to the
same comparable host string.
"""

import logging
from typing import Optional
from urllib.parse import urlsplit

from core.errors import InvalidDomain

logger = logging.getLogger(__name__)


def _host_of(candidate: str) -> Optional[str]:
    """Return the host of an absolute URL, or None if it has none."""
    try:
        parts = urlsplit(candidate)
        host = parts.hostname
    except ValueError:
        return None
    # "github.com" parses as a path, "localhost:8080" as a scheme - neither has a netloc
    if not parts.netloc or not host:
        return None
    return host


def normalize_host(host: str) -> str:
    """Lower-case a host and strip a leading "www."."""
    lower = host.strip().lower()
    if lower.startswith("www."):
        return lower[4:]
    return lower


def normalize_domain(raw: str) -> str:
    """
    Canonicalise user input into a comparable host string.

    Tries the input as an absolute URL, then again with an https://
    scheme prepended, and finally falls back to everything before the
    first "/". A leading "www." is always removed.

    Args:
        raw: Whatever the user typed or pasted.

    Returns:
        Lower-case host without scheme, "www.", path or query.

    Raises:
        InvalidDomain: If nothing remains after trimming.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        raise InvalidDomain(f"Empty domain input: {raw!r}")

    host = _host_of(trimmed) or _host_of("https://" + trimmed)
    if host is None:
        host = trimmed.lower().split("/", 1)[0]

    normalized = normalize_host(host)
    if not normalized:
        raise InvalidDomain(f"No host in domain input: {raw!r}")
    return normalized


def host_from_url(url: Optional[str]) -> Optional[str]:
    """
    Extract the normalised host of a browser tab URL.

    Returns None for empty input or URLs without a host (new-tab pages,
    about:blank, file URLs), which callers treat as "not allowed".
    """
    if not url:
        return None
    host = _host_of(url.strip())
    if host is None:
        logger.debug(f"Tab URL has no host: {url[:80]}")
        return None
    return normalize_host(host)
