"""Result identity and deduplication utilities for lanesearch.

Two notions of identity live here:

* ``canonical_url`` is the identity of a result inside the cache.  It only
  normalizes surface formatting (scheme/host casing, fragments, trailing
  slash) so that the same link reported twice by a source is stored once.
* ``saved_identity`` is a looser, platform-aware key used to tell whether a
  result was already saved by the user (e.g. ``youtu.be/x`` and
  ``youtube.com/watch?v=x`` are the same video).  It only drives display
  flags and never affects the cache.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Iterable, List, Optional, Set
from urllib.parse import parse_qs, urlsplit, urlunsplit

if TYPE_CHECKING:
    from lanesearch.core.data_models import ResultItem

logger = logging.getLogger(__name__)

_TWITTER_HOSTS = {"twitter.com", "x.com", "mobile.twitter.com"}
_YOUTUBE_HOSTS = {"youtube.com", "m.youtube.com", "youtu.be"}
_STATUS_RE = re.compile(r"/status/(\d+)")
_SHORTS_RE = re.compile(r"^/shorts/([^/]+)")


def canonical_url(url: str) -> str:
    """Normalize a URL for identity comparison.

    Args:
        url: Raw URL as returned by a source

    Returns:
        URL with lower-cased scheme and host, no fragment and no trailing
        slash on the path.  The query string is kept since several sources
        identify posts by query parameters.
    """
    raw = (url or "").strip()
    if not raw:
        return ""

    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw.rstrip("/")

    if not parts.scheme or not parts.netloc:
        return raw.rstrip("/")

    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


def saved_identity(url: str) -> str:
    """Build a platform-aware identity key used for "already saved" checks.

    YouTube links collapse to ``youtube:<video id>`` and tweets to
    ``twitter:<status id>``.  Everything else becomes host + path + query
    without ``www.`` and trailing slash.
    """
    raw = (url or "").strip()
    try:
        parts = urlsplit(raw)
    except ValueError:
        parts = None

    if parts is None or not parts.netloc:
        return re.sub(r"^https?://(www\.)?", "", raw).rstrip("/")

    host = parts.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    path = parts.path.rstrip("/")

    if host in _YOUTUBE_HOSTS:
        video_id = parse_qs(parts.query).get("v", [None])[0]
        if video_id:
            return f"youtube:{video_id}"
        shorts = _SHORTS_RE.match(path)
        if shorts:
            return f"youtube:{shorts.group(1)}"
        if host == "youtu.be" and path:
            return f"youtube:{path.lstrip('/')}"

    if host in _TWITTER_HOSTS:
        status = _STATUS_RE.search(path)
        if status:
            return f"twitter:{status.group(1)}"

    query = f"?{parts.query}" if parts.query else ""
    return f"{host}{path}{query}".rstrip("/")


class ResultDeduplicator:
    """Filters incoming results against URLs that are already known."""

    def __init__(self, known_urls: Optional[Iterable[str]] = None) -> None:
        """Initialize the deduplicator.

        Args:
            known_urls: Canonical URLs that must not be returned again
        """
        self._seen: Set[str] = {canonical_url(u) for u in known_urls or ()}
        self.logger = logging.getLogger(self.__class__.__name__)

    def __contains__(self, url: str) -> bool:
        return canonical_url(url) in self._seen

    def add(self, url: str) -> None:
        self._seen.add(canonical_url(url))

    def filter_new(self, items: Iterable["ResultItem"]) -> List["ResultItem"]:
        """Return items whose URL has not been seen, in their original order.

        Items repeated within ``items`` itself are also dropped, and every
        returned URL is remembered.
        """
        fresh: List["ResultItem"] = []
        dropped = 0
        for item in items:
            if item.canonical_url in self._seen:
                dropped += 1
                continue
            self._seen.add(item.canonical_url)
            fresh.append(item)

        if dropped:
            self.logger.debug("Dropped %d duplicate results, kept %d", dropped, len(fresh))
        return fresh


def deduplicate_results(
    items: Iterable["ResultItem"],
    known_urls: Optional[Iterable[str]] = None,
) -> List["ResultItem"]:
    """Convenience function: drop duplicates and anything in ``known_urls``."""
    return ResultDeduplicator(known_urls).filter_new(items)
