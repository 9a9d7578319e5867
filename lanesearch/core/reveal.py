"""Reveal engine: decides per source whether to serve from cache or fetch.

One call reveals at most one batch of ``page_size`` results the caller has
not seen yet.  Results already fetched but never shown are preferred; the
source is only asked for another page when the cache cannot fill a batch,
and then exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Set

from lanesearch.core.cache import CacheStore
from lanesearch.core.data_models import CacheEntry, Cursor, ResultItem
from lanesearch.core.deduplication import ResultDeduplicator, canonical_url
from lanesearch.core.errors import ProviderTimeout

if TYPE_CHECKING:
    from lanesearch.sources.base import ProviderAdapter

PAGE_SIZE = 6


@dataclass
class RevealOutcome:
    """What one reveal served to a lane.

    Attributes
    ----------
    served: List[ResultItem]
        New items for the caller, at most ``page_size``.
    history: List[ResultItem]
        Items shown in earlier sessions that are not rendered now.
    has_more: bool
        Whether the cache or the upstream can provide another batch.
    fetched: bool
        Whether the source was called.
    """

    source_id: str
    served: List[ResultItem] = field(default_factory=list)
    history: List[ResultItem] = field(default_factory=list)
    has_more: bool = False
    cursor: Optional[Cursor] = None
    fetched: bool = False
    committed: bool = True


class RevealEngine:
    """Serves result batches for one source lane at a time."""

    def __init__(self, cache: CacheStore, page_size: int = PAGE_SIZE) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.cache = cache
        self.page_size = page_size
        self.logger = logging.getLogger(self.__class__.__name__)

    async def reveal(
        self,
        query_key: str,
        source_id: str,
        adapter: "ProviderAdapter",
        request_query: str,
        rendered_urls: Iterable[str] = (),
        should_commit: Optional[Callable[[], bool]] = None,
    ) -> RevealOutcome:
        """Reveal the next batch for ``(query_key, source_id)``.

        Args:
            query_key: Normalized query used as cache key
            source_id: Source lane identifier
            adapter: Adapter used when the cache cannot fill a batch
            request_query: Text sent to the adapter
            rendered_urls: URLs the caller currently shows for this lane;
                never served again even if the cache lags behind
            should_commit: Called before the shown boundary is advanced.
                When it returns False the fetched page is still cached but
                nothing is marked as shown.

        Raises:
            ProviderTimeout: If the adapter did not answer within its timeout.
            LaneError: Whatever the adapter raised.
        """
        entry = await self.cache.get_entry(query_key, source_id) or CacheEntry()
        rendered = {canonical_url(url) for url in rendered_urls}
        unseen = [item for item in entry.unseen if item.canonical_url not in rendered]

        if len(unseen) >= self.page_size or not entry.has_more_upstream:
            return await self._serve_from_cache(
                query_key, source_id, entry, unseen, rendered, should_commit
            )

        self.logger.debug(
            "%s: %d unseen cached for '%s', fetching with cursor %r",
            source_id,
            len(unseen),
            query_key,
            entry.pagination_cursor,
        )
        try:
            page = await asyncio.wait_for(
                adapter.fetch_page(request_query, entry.pagination_cursor),
                timeout=adapter.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(source_id, adapter.timeout) from exc

        new_items = ResultDeduplicator(entry.urls | rendered).filter_new(page.items)
        combined = unseen + new_items
        served = combined[: self.page_size]

        commit = should_commit is None or should_commit()
        merged = await self.cache.update(
            query_key,
            source_id,
            results=new_items,
            shown=_shown_urls(served, rendered) if commit else None,
            cursor=page.next_cursor,
            has_more=page.has_more,
        )

        self.logger.info(
            "%s: fetched %d (%d new), served %d for '%s'%s",
            source_id,
            len(page.items),
            len(new_items),
            len(served),
            query_key,
            "" if commit else " (stale, not committed)",
        )
        return RevealOutcome(
            source_id=source_id,
            served=served,
            history=_history(merged, served, rendered),
            has_more=page.has_more or len(combined) > self.page_size,
            cursor=page.next_cursor,
            fetched=True,
            committed=commit,
        )

    async def _serve_from_cache(
        self,
        query_key: str,
        source_id: str,
        entry: CacheEntry,
        unseen: List[ResultItem],
        rendered: set,
        should_commit: Optional[Callable[[], bool]],
    ) -> RevealOutcome:
        served = unseen[: self.page_size]
        has_more = len(unseen) > self.page_size or entry.has_more_upstream

        commit = should_commit is None or should_commit()
        if commit and served:
            entry = await self.cache.update(
                query_key, source_id, shown=_shown_urls(served, rendered)
            )

        self.logger.debug(
            "%s: served %d from cache for '%s' (displayed %d/%d)",
            source_id,
            len(served),
            query_key,
            entry.displayed_count,
            len(entry.results),
        )
        return RevealOutcome(
            source_id=source_id,
            served=served,
            history=_history(entry, served, rendered),
            has_more=has_more,
            cursor=entry.pagination_cursor,
            fetched=False,
            committed=commit,
        )


def _shown_urls(served: List[ResultItem], rendered: set) -> Set[str]:
    return rendered | {item.canonical_url for item in served}


def _history(entry: CacheEntry, served: List[ResultItem], rendered: set) -> List[ResultItem]:
    exclude = _shown_urls(served, rendered)
    return [
        item for item in entry.results[: entry.displayed_count] if item.canonical_url not in exclude
    ]
