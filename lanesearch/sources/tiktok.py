"""TikTok source backed by the RapidAPI TikTok scraper."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from lanesearch.core.data_models import Cursor, MediaRef, OpaqueCursor, PageResult, ResultItem
from lanesearch.core.errors import UpstreamError
from lanesearch.sources.base import BaseSourceAdapter, SourceConfig

RAPIDAPI_HOST = "tiktok-scraper7.p.rapidapi.com"
TIKTOK_SEARCH_URL = f"https://{RAPIDAPI_HOST}/feed/search"
MAX_COUNT = 30
TITLE_LIMIT = 50


class TikTokAdapter(BaseSourceAdapter):
    """Searches videos by keyword, paging with the feed cursor."""

    cursor_type = OpaqueCursor

    def __init__(
        self,
        config: Optional[SourceConfig] = None,
        api_key: Optional[str] = None,
        fetch_count: int = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        region: str = "kr",
    ) -> None:
        super().__init__(config, api_key, fetch_count, transport)
        self.region = region

    def _get_default_config(self) -> SourceConfig:
        return SourceConfig(
            source_id="tiktok",
            name="TikTok",
            base_url=TIKTOK_SEARCH_URL,
            api_key_name="rapidapi_key",
            requires_auth=True,
            timeout=15.0,
        )

    async def fetch_page(self, query: str, cursor: Optional[Cursor] = None) -> PageResult:
        self._check_cursor(cursor)
        self._require_configured()

        count = min(max(1, self.fetch_count), MAX_COUNT)
        params: Dict[str, Any] = {
            "keywords": query,
            "region": self.region,
            "count": count,
            "cursor": cursor.cursor if cursor is not None else "0",
            "publish_time": 0,  # all time
            "sort_type": 0,  # relevance
        }
        headers = {"x-rapidapi-host": RAPIDAPI_HOST, "x-rapidapi-key": self._api_key}

        data = self._expect_dict(
            await self.http.get_json(self.config.base_url, params=params, headers=headers)
        )
        if data.get("code", 0) != 0:
            raise UpstreamError(
                f"TikTok: {data.get('msg') or 'API returned code ' + str(data.get('code'))}",
                source_id=self.source_id,
            )

        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            raise self._malformed("'data' is not an object")

        items = []
        for video in self._expect_list(payload, "videos"):
            item = self._parse_video(video)
            if item is not None:
                items.append(item)

        has_more = payload.get("hasMore")
        if has_more is None:
            has_more = len(items) >= count
        token = payload.get("cursor")
        next_cursor = OpaqueCursor(str(token)) if has_more and token is not None else None
        return PageResult(items=items, has_more=bool(has_more) and next_cursor is not None, next_cursor=next_cursor)

    def _parse_video(self, video: Any) -> Optional[ResultItem]:
        if not isinstance(video, dict):
            raise self._malformed("video is not an object")
        video_id = video.get("video_id")
        if not video_id:
            return None

        author = video.get("author") or {}
        username = author.get("unique_id") or "user"
        title = video.get("title") or f"@{username}'s TikTok"
        if len(title) > TITLE_LIMIT:
            title = title[:TITLE_LIMIT] + "..."

        return self._make_item(
            f"https://www.tiktok.com/@{username}/video/{video_id}",
            title,
            thumbnail=video.get("cover"),
            author=author.get("nickname") or author.get("unique_id") or "TikTok",
            media=[MediaRef("video", video["play"])] if video.get("play") else None,
        )
