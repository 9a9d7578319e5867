"""Data models used throughout lanesearch.

``ResultItem`` is the common representation of one hit returned by a content
source.  Its identity is the canonical URL: two items that point at the same
resource compare equal no matter how the source formatted the link.

The pagination cursor is a small tagged union.  Every source speaks exactly
one of the variants below and the rest of the system only ever passes the
cursor back to the source that produced it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from lanesearch.core.deduplication import canonical_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaRef:
    """A playable or viewable media attachment of a result."""

    type: str
    url: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "url": self.url}


@dataclass(frozen=True)
class ResultItem:
    """Represents a single search hit from one source.

    Attributes
    ----------
    canonical_url: str
        Identity of the item.  Normalized on construction (scheme and host
        lower-cased, trailing slash stripped).
    title: str
        Human readable title.
    source_id: str
        Identifier of the source lane that produced the item.
    thumbnail: Optional[str]
        Thumbnail image URL if the source provides one.
    author: Optional[str]
        Channel, account or poster name.
    published_at: Optional[str]
        Publication timestamp as reported by the source (ISO 8601).
    media: Tuple[MediaRef, ...]
        Attached media, if any.
    is_saved, is_saving: bool
        Display-only flags.  They take no part in identity and are never
        written to the cache.
    """

    canonical_url: str
    title: str = field(compare=False)
    source_id: str = field(compare=False)
    thumbnail: Optional[str] = field(default=None, compare=False)
    author: Optional[str] = field(default=None, compare=False)
    published_at: Optional[str] = field(default=None, compare=False)
    media: Tuple[MediaRef, ...] = field(default=(), compare=False)
    is_saved: bool = field(default=False, compare=False)
    is_saving: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "canonical_url", canonical_url(self.canonical_url))
        if not self.canonical_url:
            raise ValueError("canonical_url cannot be empty")
        if not self.source_id:
            raise ValueError("source_id cannot be empty")
        object.__setattr__(self, "title", str(self.title or "").strip())
        object.__setattr__(self, "media", tuple(self.media or ()))

    def with_flags(self, *, is_saved: Optional[bool] = None, is_saving: Optional[bool] = None) -> "ResultItem":
        """Return a copy with updated display flags."""
        return replace(
            self,
            is_saved=self.is_saved if is_saved is None else is_saved,
            is_saving=self.is_saving if is_saving is None else is_saving,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the item for the cache (display flags excluded)."""
        return {
            "canonical_url": self.canonical_url,
            "title": self.title,
            "source_id": self.source_id,
            "thumbnail": self.thumbnail,
            "author": self.author,
            "published_at": self.published_at,
            "media": [m.to_dict() for m in self.media],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResultItem":
        if "canonical_url" not in data or "source_id" not in data:
            raise ValueError("ResultItem requires 'canonical_url' and 'source_id' fields")
        return cls(
            canonical_url=data["canonical_url"],
            title=data.get("title", ""),
            source_id=data["source_id"],
            thumbnail=data.get("thumbnail"),
            author=data.get("author"),
            published_at=data.get("published_at"),
            media=tuple(MediaRef(m["type"], m["url"]) for m in data.get("media") or ()),
        )

    def __repr__(self) -> str:
        return f"ResultItem(source_id={self.source_id!r}, url={self.canonical_url!r})"


# ---------------------------------------------------------------------------
# Pagination cursors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PageOffset:
    """Page number plus offset within that page (community boards)."""

    page: int = 1
    offset: int = 0

    kind = "page_offset"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "page": self.page, "offset": self.offset}


@dataclass(frozen=True)
class OpaqueToken:
    """Opaque next-page token (YouTube ``pageToken``)."""

    token: str

    kind = "opaque_token"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "token": self.token}


@dataclass(frozen=True)
class OpaqueCursor:
    """Opaque continuation cursor (Twitter, TikTok)."""

    cursor: str

    kind = "opaque_cursor"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "cursor": self.cursor}


@dataclass(frozen=True)
class Watermark:
    """Oldest id seen so far; the next page starts below it (selca)."""

    id: str

    kind = "watermark"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "id": self.id}


Cursor = Union[PageOffset, OpaqueToken, OpaqueCursor, Watermark]

_CURSOR_TYPES = {c.kind: c for c in (PageOffset, OpaqueToken, OpaqueCursor, Watermark)}


def cursor_from_dict(data: Optional[Dict[str, Any]]) -> Optional[Cursor]:
    """Rebuild a cursor from its serialised form."""
    if not data:
        return None
    kind = data.get("kind")
    cursor_cls = _CURSOR_TYPES.get(kind)
    if cursor_cls is None:
        raise ValueError(f"Unknown cursor kind: {kind!r}")
    fields = {k: v for k, v in data.items() if k != "kind"}
    return cursor_cls(**fields)


@dataclass
class PageResult:
    """One page returned by a source adapter."""

    items: List[ResultItem] = field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[Cursor] = None


# ---------------------------------------------------------------------------
# Cache and lane state
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry:
    """Accumulated results and pagination state for one (query, source) pair.

    Invariants: ``0 <= displayed_count <= len(results)``, no two results share
    a canonical URL, and ``results`` only ever grows at the end.
    """

    results: List[ResultItem] = field(default_factory=list)
    displayed_count: int = 0
    pagination_cursor: Optional[Cursor] = None
    has_more_upstream: bool = True
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.displayed_count < 0:
            self.displayed_count = 0
        if self.displayed_count > len(self.results):
            logger.warning(
                "displayed_count %d clamped to %d results",
                self.displayed_count,
                len(self.results),
            )
            self.displayed_count = len(self.results)

    @property
    def urls(self) -> Set[str]:
        return {item.canonical_url for item in self.results}

    @property
    def unseen(self) -> List[ResultItem]:
        return self.results[self.displayed_count :]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [item.to_dict() for item in self.results],
            "displayed_count": self.displayed_count,
            "pagination_cursor": (
                self.pagination_cursor.to_dict() if self.pagination_cursor else None
            ),
            "has_more_upstream": self.has_more_upstream,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        updated_at = data.get("updated_at")
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at)
        elif updated_at is None:
            updated_at = datetime.now(timezone.utc)
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)

        return cls(
            results=[ResultItem.from_dict(item) for item in data.get("results", [])],
            displayed_count=int(data.get("displayed_count", 0)),
            pagination_cursor=cursor_from_dict(data.get("pagination_cursor")),
            has_more_upstream=bool(data.get("has_more_upstream", True)),
            updated_at=updated_at,
        )


@dataclass
class SourceLaneState:
    """Caller-visible state of one source within a live search session.

    This is a projection of the cached entry plus in-flight status.  It never
    decides what to fetch next; the cache owns the cursor.
    """

    source_id: str
    results: List[ResultItem] = field(default_factory=list)
    history: List[ResultItem] = field(default_factory=list)
    has_more: bool = False
    is_loading: bool = False
    is_loading_more: bool = False
    error: Optional[Any] = None
    cursor: Optional[Cursor] = None
    show_history: bool = False
    generation: int = 0

    @property
    def rendered_urls(self) -> Set[str]:
        return {item.canonical_url for item in self.results}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "results": [
                {**item.to_dict(), "is_saved": item.is_saved, "is_saving": item.is_saving}
                for item in self.results
            ],
            "history_count": len(self.history),
            "has_more": self.has_more,
            "is_loading": self.is_loading,
            "is_loading_more": self.is_loading_more,
            "error": self.error.to_dict() if self.error is not None else None,
        }
