"""Community board sources (heye.kr, kgirls.net).

The boards are reached through a JSON gateway that scrapes a result page and
returns a window of it.  A page may hold more posts than one request
returns, so the cursor tracks both the board page and the offset inside it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from lanesearch.core.data_models import Cursor, PageOffset, PageResult, ResultItem
from lanesearch.sources.base import BaseSourceAdapter, SourceConfig

# source_id -> (display name, gateway board parameter)
COMMUNITY_BOARDS: Dict[str, tuple] = {
    "heye": ("heye.kr", None),
    "kgirls": ("kgirls.net", "mgall"),
    "kgirls-issue": ("kgirls.net issue", "issue"),
}


class CommunityAdapter(BaseSourceAdapter):
    """Searches one community board through the gateway."""

    cursor_type = PageOffset

    def __init__(
        self,
        source_id: str = "heye",
        config: Optional[SourceConfig] = None,
        api_key: Optional[str] = None,
        fetch_count: int = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if source_id not in COMMUNITY_BOARDS:
            raise ValueError(f"Unknown community board: {source_id}")
        self._board_source = source_id
        self.board = COMMUNITY_BOARDS[source_id][1]
        super().__init__(config, api_key, fetch_count, transport)

    def _get_default_config(self) -> SourceConfig:
        return SourceConfig(
            source_id=self._board_source,
            name=COMMUNITY_BOARDS[self._board_source][0],
            base_url="",
            timeout=10.0,
        )

    async def fetch_page(self, query: str, cursor: Optional[Cursor] = None) -> PageResult:
        self._check_cursor(cursor)
        self._require_configured()

        position = cursor or PageOffset(page=1, offset=0)
        params: Dict[str, Any] = {
            "q": query,
            "page": position.page,
            "limit": self.fetch_count,
            "offset": position.offset,
        }
        if self.board:
            params["board"] = self.board

        data = self._expect_dict(await self.http.get_json(self.config.base_url, params=params))

        rows = self._expect_list(data, "results")
        items = []
        for row in rows:
            item = self._parse_row(row)
            if item is not None:
                items.append(item)

        has_more = bool(data.get("hasMore", False))
        page = int(data.get("currentPage") or position.page)
        total = data.get("totalResults")
        consumed = position.offset + len(rows)

        if isinstance(total, int) and consumed < total:
            next_cursor = PageOffset(page=page, offset=consumed)
        else:
            next_cursor = PageOffset(page=page + 1, offset=0)

        self.logger.debug(
            "%s page %d offset %d: %d posts (more: %s)",
            self.source_id,
            position.page,
            position.offset,
            len(items),
            has_more,
        )
        return PageResult(items=items, has_more=has_more, next_cursor=next_cursor if has_more else None)

    def _parse_row(self, row: Any) -> Optional[ResultItem]:
        if not isinstance(row, dict):
            raise self._malformed("result row is not an object")
        return self._make_item(
            row.get("url"),
            row.get("title"),
            thumbnail=row.get("thumbnailUrl"),
            author=row.get("author"),
        )
