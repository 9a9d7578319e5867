"""Twitter source backed by the ScrapeBadger advanced search API."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from lanesearch.core.data_models import Cursor, MediaRef, OpaqueCursor, PageResult, ResultItem
from lanesearch.sources.base import BaseSourceAdapter, SourceConfig

SCRAPEBADGER_SEARCH_URL = "https://scrapebadger.com/v1/twitter/tweets/advanced_search"

QUERY_TYPES = {"top": "Top", "latest": "Latest", "media": "Media"}


class TwitterAdapter(BaseSourceAdapter):
    """Searches tweets; pages with the ``next_cursor`` returned upstream.

    Hashtags are sent without the leading ``#``, the API treats them as
    plain keywords.
    """

    cursor_type = OpaqueCursor

    def __init__(
        self,
        config: Optional[SourceConfig] = None,
        api_key: Optional[str] = None,
        fetch_count: int = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        search_type: str = "top",
    ) -> None:
        super().__init__(config, api_key, fetch_count, transport)
        if search_type not in QUERY_TYPES:
            raise ValueError(f"Invalid search type: {search_type}")
        self.search_type = search_type

    def _get_default_config(self) -> SourceConfig:
        return SourceConfig(
            source_id="twitter",
            name="Twitter",
            base_url=SCRAPEBADGER_SEARCH_URL,
            api_key_name="scrapebadger_api_key",
            requires_auth=True,
            timeout=15.0,
            strips_hashtag=True,
        )

    async def fetch_page(self, query: str, cursor: Optional[Cursor] = None) -> PageResult:
        self._check_cursor(cursor)
        self._require_configured()

        params: Dict[str, Any] = {
            "query": query.lstrip("#"),
            "query_type": QUERY_TYPES[self.search_type],
        }
        if cursor is not None:
            params["cursor"] = cursor.cursor
        if self.fetch_count > 0:
            params["count"] = self.fetch_count

        data = self._expect_dict(
            await self.http.get_json(
                self.config.base_url,
                params=params,
                headers={"X-API-Key": self._api_key},
            )
        )

        items = []
        for tweet in self._expect_list(data, "data"):
            item = self._parse_tweet(tweet)
            if item is not None:
                items.append(item)

        token = data.get("next_cursor")
        next_cursor = OpaqueCursor(token) if token else None
        return PageResult(items=items, has_more=next_cursor is not None, next_cursor=next_cursor)

    def _parse_tweet(self, tweet: Any) -> Optional[ResultItem]:
        if not isinstance(tweet, dict):
            raise self._malformed("tweet is not an object")
        tweet_id = tweet.get("id")
        username = tweet.get("username")
        if not tweet_id or not username:
            return None

        media = [m for m in tweet.get("media") or [] if isinstance(m, dict)]
        thumbnail = None
        if media:
            first = media[0]
            # t.co links point at the tweet, not at the image
            if first.get("url") and "t.co/" not in first["url"]:
                thumbnail = first["url"]
            else:
                thumbnail = first.get("preview_image_url")

        user_name = tweet.get("user_name") or username
        return self._make_item(
            f"https://twitter.com/{username}/status/{tweet_id}",
            f"{user_name} (@{username})",
            thumbnail=thumbnail,
            author=user_name,
            published_at=tweet.get("created_at"),
            media=[
                MediaRef(m.get("type", "photo"), m["url"])
                for m in media
                if m.get("url") and "t.co/" not in m["url"]
            ],
        )
