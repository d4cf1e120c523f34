"""
URL canonicalisation shared by every component that compares pages.

Aggregation, link counting and extraction all go through normalize_url so
two call sites never disagree on page identity.
"""

from __future__ import annotations

import re
from typing import Iterable, List
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}
_BARE_HOST = re.compile(r"^[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+(:\d+)?(/|$)")


def normalize_url(url: str) -> str:
    """
    Normalize URL for deduplication.

    Lowercases scheme and hostname, drops default ports and fragments,
    removes the trailing slash from non-root paths and sorts query
    parameters. Returns an empty string for anything that is not an
    absolute http(s) URL.

    Args:
        url: URL to normalize

    Returns:
        Normalized URL string, or "" when the input has no usable URL
    """
    if not isinstance(url, str):
        return ""
    candidate = url.strip()
    if not candidate:
        return ""
    if "://" not in candidate and _BARE_HOST.match(candidate):
        candidate = f"https://{candidate}"

    try:
        parsed = urlsplit(candidate)
        port = parsed.port
    except ValueError:
        return ""

    scheme = parsed.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parsed.hostname:
        return ""

    netloc = parsed.hostname.lower()
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"

    # Remove trailing slash from path (except for root)
    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query = ""
    if parsed.query:
        params = sorted(parse_qsl(parsed.query, keep_blank_values=True))
        query = urlencode(params)

    return urlunsplit((scheme, netloc, path, query, ""))


def unique_normalized(urls: Iterable[str]) -> List[str]:
    """Normalize URLs, dropping blanks and duplicates while keeping first-seen order."""
    seen = set()
    ordered: List[str] = []
    for url in urls:
        normalized = normalize_url(url)
        if normalized and normalized not in seen:
            seen.add(normalized)
            ordered.append(normalized)
    return ordered


def dedupe_urls(urls: Iterable[str]) -> List[str]:
    """Drop blank, invalid and duplicate URLs, keeping the first spelling of each.

    Duplicates are detected with normalize_url, but the returned URLs are
    the caller's own strings, so they can be fetched exactly as discovered.
    A bare host only gains the https scheme.
    """
    seen = set()
    ordered: List[str] = []
    for url in urls:
        if not isinstance(url, str):
            continue
        key = normalize_url(url)
        if key and key not in seen:
            seen.add(key)
            raw = url.strip()
            ordered.append(raw if "://" in raw else f"https://{raw}")
    return ordered
