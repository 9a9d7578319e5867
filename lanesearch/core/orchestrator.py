"""Central orchestrator for lanesearch.

This module defines the ``SearchOrchestrator`` class which fans one query
out to every enabled source concurrently and keeps one independent lane per
source.  Each lane is updated as soon as its own source settles; a slow or
failing source never holds the others back, and its error stays in its lane.

Searches are not cancelled when a newer one starts.  Instead every search
mints a generation number and lane completions from older generations are
dropped.
"""

from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from lanesearch.core.cache import CacheStore
from lanesearch.core.data_models import ResultItem, SourceLaneState
from lanesearch.core.deduplication import canonical_url, saved_identity
from lanesearch.core.errors import LaneError, NotConfigured, classify_exception
from lanesearch.core.logging_setup import log_performance
from lanesearch.core.normalizer import CuratedEntity, NormalizedQuery, QueryNormalizer
from lanesearch.core.reveal import PAGE_SIZE, RevealEngine, RevealOutcome

if TYPE_CHECKING:
    from lanesearch.sources.base import ProviderRegistry

LaneListener = Callable[[str, SourceLaneState], None]


class SearchOrchestrator:
    """Coordinates incremental searches across source lanes."""

    def __init__(
        self,
        registry: "ProviderRegistry",
        cache: CacheStore,
        page_size: int = PAGE_SIZE,
        normalizer: Optional[QueryNormalizer] = None,
        enabled_sources: Optional[Iterable[str]] = None,
        language: str = "ko",
    ) -> None:
        """Initialize the orchestrator.

        Parameters
        ----------
        registry: ProviderRegistry
            Adapters by source id.
        cache: CacheStore
            Shared search cache; the record of cursors and shown counts.
        page_size: int
            Maximum number of new results revealed per lane per action.
        normalizer: QueryNormalizer, optional
            Query normalizer (default one if not provided).
        enabled_sources: iterable of str, optional
            Sources to search, in lane order.  Defaults to every registered
            source.
        language: str
            Alias language used when a curated entity is selected.
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self.registry = registry
        self.cache = cache
        self.engine = RevealEngine(cache, page_size)
        self.normalizer = normalizer or QueryNormalizer()
        self.enabled_sources: List[str] = (
            list(enabled_sources) if enabled_sources is not None else registry.source_ids
        )
        self.language = language
        self._lanes: Dict[str, SourceLaneState] = {}
        self._query: Optional[NormalizedQuery] = None
        self._generation = 0
        self._is_searching = False
        self._saved: Set[str] = set()
        self._saving: Set[str] = set()
        self._listeners: List[LaneListener] = []

    async def __aenter__(self) -> "SearchOrchestrator":
        await self.cache.sweep_expired()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Flush pending cache writes and close adapters."""
        await self.cache.flush()
        await self.registry.aclose()

    # ------------------------------------------------------------------
    # Read-only projection
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_searching(self) -> bool:
        return self._is_searching

    @property
    def query(self) -> Optional[NormalizedQuery]:
        return self._query

    @property
    def lanes(self) -> Mapping[str, SourceLaneState]:
        return MappingProxyType(self._lanes)

    def lane(self, source_id: str) -> Optional[SourceLaneState]:
        return self._lanes.get(source_id)

    def visible_results(self, source_id: str) -> List[ResultItem]:
        """Results to render for a lane, history first when it is expanded."""
        lane = self._lanes.get(source_id)
        if lane is None:
            return []
        if lane.show_history:
            return lane.history + lane.results
        return list(lane.results)

    def on_update(self, listener: LaneListener) -> LaneListener:
        """Register a callback run whenever a lane changes."""
        self._listeners.append(listener)
        return listener

    def _notify(self, source_id: str) -> None:
        lane = self._lanes.get(source_id)
        if lane is None:
            return
        for listener in self._listeners:
            try:
                listener(source_id, lane)
            except Exception:
                self.logger.exception("Lane listener failed for %s", source_id)

    # ------------------------------------------------------------------
    # Search actions
    # ------------------------------------------------------------------

    async def search(
        self,
        query: Union[str, CuratedEntity],
        language: Optional[str] = None,
    ) -> Mapping[str, SourceLaneState]:
        """Search every enabled source for ``query``.

        Parameters
        ----------
        query: str or CuratedEntity
            Free text typed by the user or a curated entity selection.
        language: str, optional
            Alias language for entity selections (orchestrator default if
            not provided).

        Returns
        -------
        Mapping[str, SourceLaneState]
            The lanes once every source has settled.
        """
        if isinstance(query, CuratedEntity):
            normalized = self.normalizer.resolve_selection(query, language or self.language)
        else:
            if not str(query or "").strip():
                self.logger.debug("Ignoring empty search")
                return self.lanes
            normalized = self.normalizer.normalize(query)

        self._generation += 1
        generation = self._generation
        self._query = normalized
        self._is_searching = True
        self._lanes = {
            source_id: SourceLaneState(source_id=source_id, is_loading=True, generation=generation)
            for source_id in self.enabled_sources
        }
        self.logger.info(
            "Searching '%s' (key '%s') on %d sources, generation %d",
            normalized.text,
            normalized.cache_key,
            len(self._lanes),
            generation,
        )
        for source_id in self._lanes:
            self._notify(source_id)

        try:
            await asyncio.gather(
                *(
                    self._run_lane(source_id, normalized, generation, more=False)
                    for source_id in self.enabled_sources
                )
            )
        finally:
            if generation == self._generation:
                self._is_searching = False

        return self.lanes

    async def load_more(self, source_id: str) -> Optional[SourceLaneState]:
        """Reveal the next batch for one lane.

        A no-op when the lane does not exist, is still loading, already has a
        load in flight or has nothing more to show.
        """
        lane = self._lanes.get(source_id)
        if lane is None or self._query is None:
            self.logger.debug("load_more(%s): no such lane", source_id)
            return lane
        if lane.is_loading or lane.is_loading_more or not lane.has_more:
            self.logger.debug(
                "load_more(%s) skipped (loading=%s, loading_more=%s, has_more=%s)",
                source_id,
                lane.is_loading,
                lane.is_loading_more,
                lane.has_more,
            )
            return lane

        lane.is_loading_more = True
        self._notify(source_id)
        await self._run_lane(source_id, self._query, self._generation, more=True)
        return self._lanes.get(source_id)

    async def _run_lane(
        self,
        source_id: str,
        query: NormalizedQuery,
        generation: int,
        *,
        more: bool,
    ) -> None:
        """Reveal one batch for a lane and apply it if still current."""

        def is_current() -> bool:
            return generation == self._generation

        lane = self._lanes.get(source_id)
        rendered = [item.canonical_url for item in lane.results] if (more and lane) else []
        outcome: Optional[RevealOutcome] = None
        error: Optional[LaneError] = None

        try:
            if source_id not in self.registry:
                raise NotConfigured(f"No adapter registered for {source_id}", source_id=source_id)
            adapter = self.registry.get(source_id)
            request_query = query.for_source(
                source_id,
                strips_hashtag=adapter.strips_hashtag,
                romanized=adapter.romanized_query,
            )
            with log_performance(
                f"reveal {source_id}",
                self.logger,
                {"source_id": source_id, "query": query.cache_key, "load_more": more},
            ) as fields:
                outcome = await self.engine.reveal(
                    query.cache_key,
                    source_id,
                    adapter,
                    request_query,
                    rendered_urls=rendered,
                    should_commit=is_current,
                )
                fields["served"] = len(outcome.served)
                fields["fetched"] = outcome.fetched
        except LaneError as exc:
            error = classify_exception(exc, source_id)
            self.logger.warning("%s lane failed: %s", source_id, error.message)
        except Exception as exc:
            self.logger.exception("Unexpected error in %s lane", source_id)
            error = classify_exception(exc, source_id)

        if not is_current():
            self.logger.debug(
                "Discarding stale %s result (generation %d, current %d)",
                source_id,
                generation,
                self._generation,
            )
            return

        lane = self._lanes.get(source_id)
        if lane is None:
            return

        if error is not None:
            lane.error = error
            lane.is_loading = False
            lane.is_loading_more = False
            if not more:
                lane.results = []
                lane.has_more = False
        elif outcome is not None:
            served = self._flagged(outcome.served)
            lane.results = lane.results + served if more else served
            lane.history = self._flagged(outcome.history)
            lane.has_more = outcome.has_more
            lane.cursor = outcome.cursor
            lane.error = None
            lane.is_loading = False
            lane.is_loading_more = False

        self._notify(source_id)

    # ------------------------------------------------------------------
    # Display flags
    # ------------------------------------------------------------------

    def _flagged(self, items: Iterable[ResultItem]) -> List[ResultItem]:
        return [
            item.with_flags(
                is_saved=saved_identity(item.canonical_url) in self._saved,
                is_saving=item.canonical_url in self._saving,
            )
            for item in items
        ]

    def _reflag_lanes(self) -> None:
        for source_id, lane in self._lanes.items():
            results = self._flagged(lane.results)
            history = self._flagged(lane.history)
            changed = [
                (a.is_saved, a.is_saving) != (b.is_saved, b.is_saving)
                for a, b in zip(results + history, lane.results + lane.history)
            ]
            if any(changed):
                lane.results = results
                lane.history = history
                self._notify(source_id)

    def mark_saved(self, url: str) -> None:
        """Flag a result as saved once the external save pipeline succeeded.

        Only display flags change; cache and deduplication are untouched.
        """
        self._saved.add(saved_identity(url))
        self._saving.discard(canonical_url(url))
        self._reflag_lanes()

    def mark_saving(self, url: str, is_saving: bool = True) -> None:
        key = canonical_url(url)
        if is_saving:
            self._saving.add(key)
        else:
            self._saving.discard(key)
        self._reflag_lanes()

    def refresh_saved(self, saved_urls: Iterable[str]) -> None:
        """Replace the set of saved URLs and update every lane's flags."""
        self._saved = {saved_identity(url) for url in saved_urls}
        self._reflag_lanes()

    def is_saved(self, url: str) -> bool:
        return saved_identity(url) in self._saved

    def toggle_history(self, source_id: str) -> bool:
        """Expand or collapse the "previously shown" bucket of a lane."""
        lane = self._lanes.get(source_id)
        if lane is None:
            return False
        lane.show_history = not lane.show_history
        self._notify(source_id)
        return lane.show_history
