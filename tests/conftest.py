"""Shared test helpers: a scripted fake adapter, a controllable clock."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple, Type, Union

import pytest

from lanesearch.core.cache import CacheStore, MemoryCacheBackend
from lanesearch.core.data_models import Cursor, PageOffset, PageResult, ResultItem


def make_items(source_id: str, start: int, count: int) -> List[ResultItem]:
    """Build ``count`` distinct items numbered from ``start``."""
    return [
        ResultItem(
            canonical_url=f"https://example.com/{source_id}/{i}",
            title=f"{source_id} item {i}",
            source_id=source_id,
        )
        for i in range(start, start + count)
    ]


class FakeAdapter:
    """Adapter replaying scripted pages (or raising scripted errors)."""

    def __init__(
        self,
        source_id: str,
        responses: Optional[List[Union[PageResult, BaseException]]] = None,
        *,
        timeout: float = 5.0,
        delay: float = 0.0,
        cursor_type: Type[Any] = PageOffset,
        strips_hashtag: bool = False,
        romanized_query: bool = False,
    ) -> None:
        self.source_id = source_id
        self.responses = list(responses or [])
        self.timeout = timeout
        self.delay = delay
        self.cursor_type = cursor_type
        self.strips_hashtag = strips_hashtag
        self.romanized_query = romanized_query
        self.calls: List[Tuple[str, Optional[Cursor]]] = []
        self.closed = False

    @property
    def is_configured(self) -> bool:
        return True

    async def fetch_page(self, query: str, cursor: Optional[Cursor] = None) -> PageResult:
        self.calls.append((query, cursor))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            return PageResult(items=[], has_more=False, next_cursor=None)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock: FakeClock) -> CacheStore:
    return CacheStore(MemoryCacheBackend(), ttl=timedelta(hours=24), clock=clock)
