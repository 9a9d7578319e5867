"""YouTube Data API v3 source."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

from lanesearch.core.data_models import Cursor, OpaqueToken, PageResult, ResultItem
from lanesearch.core.errors import UpstreamError
from lanesearch.sources.base import BaseSourceAdapter, SourceConfig

YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
MAX_RESULTS_LIMIT = 50

_PERIODS = {
    "today": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


class YouTubeAdapter(BaseSourceAdapter):
    """Searches videos and pages with ``pageToken``."""

    cursor_type = OpaqueToken

    def __init__(
        self,
        config: Optional[SourceConfig] = None,
        api_key: Optional[str] = None,
        fetch_count: int = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        order: str = "relevance",
        period: Optional[str] = "month",
        query_suffix: str = "",
    ) -> None:
        super().__init__(config, api_key, fetch_count, transport)
        if period is not None and period not in _PERIODS:
            raise ValueError(f"Invalid period: {period}. Must be one of {sorted(_PERIODS)}")
        self.order = order
        self.period = period
        self.query_suffix = query_suffix

    def _get_default_config(self) -> SourceConfig:
        return SourceConfig(
            source_id="youtube",
            name="YouTube",
            base_url=YOUTUBE_SEARCH_URL,
            api_key_name="youtube_api_key",
            requires_auth=True,
            timeout=10.0,
        )

    def _published_after(self) -> Optional[str]:
        if self.period is None:
            return None
        since = datetime.now(timezone.utc) - _PERIODS[self.period]
        return since.strftime("%Y-%m-%dT%H:%M:%SZ")

    async def fetch_page(self, query: str, cursor: Optional[Cursor] = None) -> PageResult:
        self._check_cursor(cursor)
        self._require_configured()

        q = f"{query} {self.query_suffix}".strip() if self.query_suffix else query
        params: Dict[str, Any] = {
            "part": "snippet",
            "type": "video",
            "q": q,
            "key": self._api_key,
            "maxResults": min(max(1, self.fetch_count), MAX_RESULTS_LIMIT),
            "order": self.order,
        }
        published_after = self._published_after()
        if published_after:
            params["publishedAfter"] = published_after
        if cursor is not None:
            params["pageToken"] = cursor.token

        data = self._expect_dict(await self.http.get_json(self.config.base_url, params=params))
        if "error" in data:
            error = data["error"] if isinstance(data["error"], dict) else {}
            raise UpstreamError(
                f"YouTube: {error.get('message', 'API returned an error')}",
                source_id=self.source_id,
                status_code=error.get("code"),
            )

        items = []
        for raw in self._expect_list(data, "items"):
            item = self._parse_item(raw)
            if item is not None:
                items.append(item)

        token = data.get("nextPageToken")
        next_cursor = OpaqueToken(token) if token else None
        self.logger.debug("YouTube returned %d videos (next page: %s)", len(items), bool(token))
        return PageResult(items=items, has_more=next_cursor is not None, next_cursor=next_cursor)

    def _parse_item(self, raw: Any) -> Optional[ResultItem]:
        if not isinstance(raw, dict):
            raise self._malformed("search item is not an object")
        video_id = (raw.get("id") or {}).get("videoId")
        if not video_id:
            return None
        snippet = raw.get("snippet") or {}
        thumbnails = snippet.get("thumbnails") or {}
        thumbnail = next(
            (
                thumbnails[size]["url"]
                for size in ("high", "medium", "default")
                if (thumbnails.get(size) or {}).get("url")
            ),
            f"https://img.youtube.com/vi/{video_id}/hqdefault.jpg",
        )
        return self._make_item(
            f"https://www.youtube.com/watch?v={video_id}",
            snippet.get("title"),
            thumbnail=thumbnail,
            author=snippet.get("channelTitle"),
            published_at=snippet.get("publishedAt"),
        )
