"""Content sources for lanesearch.

This package contains one adapter per upstream plus the registry that maps
source ids to adapters:

- youtube: YouTube Data API v3 (page token)
- twitter: ScrapeBadger advanced search (cursor)
- heye, kgirls, kgirls-issue: community board gateway (page + offset)
- selca: selca.kastden.org gateway (id watermark)
- tiktok: RapidAPI TikTok scraper (cursor)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional

import httpx

from lanesearch.sources.base import (
    BaseSourceAdapter,
    ProviderAdapter,
    ProviderRegistry,
    SourceConfig,
)
from lanesearch.sources.community import COMMUNITY_BOARDS, CommunityAdapter
from lanesearch.sources.selca import SelcaAdapter
from lanesearch.sources.tiktok import TikTokAdapter
from lanesearch.sources.twitter import TwitterAdapter
from lanesearch.sources.youtube import YouTubeAdapter

if TYPE_CHECKING:
    from lanesearch.core.config import Config

logger = logging.getLogger(__name__)


def create_adapter(
    source_id: str,
    config: "Config",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseSourceAdapter:
    """Create the adapter for ``source_id`` from configuration.

    Args:
        source_id: Source identifier
        config: Application configuration
        transport: Custom httpx transport shared by the adapter (tests)

    Raises:
        ValueError: If the source id is unknown.
    """
    section = config.get_source_config(source_id)
    options = dict(section.get("options") or {})
    fetch_count = int(config.get("search.fetch_count", 20))

    if source_id in COMMUNITY_BOARDS:
        adapter: BaseSourceAdapter = CommunityAdapter(
            source_id, fetch_count=fetch_count, transport=transport
        )
    elif source_id == "youtube":
        adapter = YouTubeAdapter(
            api_key=config.get_api_key("youtube_api_key") or None,
            fetch_count=fetch_count,
            transport=transport,
            **options,
        )
    elif source_id == "twitter":
        adapter = TwitterAdapter(
            api_key=config.get_api_key("scrapebadger_api_key") or None,
            fetch_count=fetch_count,
            transport=transport,
            **options,
        )
    elif source_id == "selca":
        adapter = SelcaAdapter(fetch_count=fetch_count, transport=transport)
    elif source_id == "tiktok":
        adapter = TikTokAdapter(
            api_key=config.get_api_key("rapidapi_key") or None,
            fetch_count=fetch_count,
            transport=transport,
            **options,
        )
    else:
        raise ValueError(f"Unknown source: {source_id}")

    if section.get("base_url") is not None:
        adapter.config.base_url = section["base_url"]
    if section.get("timeout_seconds"):
        adapter.config.timeout = float(section["timeout_seconds"])
    return adapter


def build_registry(
    config: "Config",
    source_ids: Optional[Iterable[str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderRegistry:
    """Build a registry holding an adapter for each requested source.

    Args:
        config: Application configuration
        source_ids: Sources to include (every enabled source if not provided)
        transport: Custom httpx transport for all adapters (tests)
    """
    ids = list(source_ids) if source_ids is not None else config.enabled_sources
    registry = ProviderRegistry()
    for source_id in ids:
        adapter = create_adapter(source_id, config, transport)
        if not adapter.is_configured:
            logger.info("Source '%s' is not configured, its lane will report it", source_id)
        registry.register(adapter)
    return registry


__all__ = [
    "BaseSourceAdapter",
    "ProviderAdapter",
    "ProviderRegistry",
    "SourceConfig",
    "CommunityAdapter",
    "SelcaAdapter",
    "TikTokAdapter",
    "TwitterAdapter",
    "YouTubeAdapter",
    "build_registry",
    "create_adapter",
]
