"""selca.kastden.org source.

The gateway lists an idol's media newest first and pages backwards with the
id of the oldest item seen (``maxTimeId``).  Names are only indexed in
latin script, so the adapter wants a romanized query or an explicit slug.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from lanesearch.core.data_models import Cursor, PageResult, ResultItem, Watermark
from lanesearch.sources.base import BaseSourceAdapter, SourceConfig


class SelcaAdapter(BaseSourceAdapter):
    cursor_type = Watermark

    def _get_default_config(self) -> SourceConfig:
        return SourceConfig(
            source_id="selca",
            name="Selca",
            base_url="",
            timeout=15.0,
            romanized_query=True,
        )

    async def fetch_page(self, query: str, cursor: Optional[Cursor] = None) -> PageResult:
        self._check_cursor(cursor)
        self._require_configured()

        params: Dict[str, Any] = {"query": query, "limit": self.fetch_count}
        if cursor is not None:
            params["maxTimeId"] = cursor.id

        data = self._expect_dict(await self.http.get_json(self.config.base_url, params=params))

        items = []
        for row in self._expect_list(data, "results"):
            item = self._parse_row(row)
            if item is not None:
                items.append(item)

        watermark = data.get("nextMaxTimeId")
        has_more = bool(data.get("hasNextPage", False)) and bool(watermark)
        next_cursor = Watermark(str(watermark)) if has_more else None
        return PageResult(items=items, has_more=has_more, next_cursor=next_cursor)

    def _parse_row(self, row: Any) -> Optional[ResultItem]:
        if not isinstance(row, dict):
            raise self._malformed("result row is not an object")
        return self._make_item(
            row.get("url"),
            row.get("title"),
            thumbnail=row.get("thumbnailUrl"),
            author=row.get("author"),
        )
