"""Provider adapter contract and registry.

Every content source is reached through one capability, ``fetch_page``,
which hides the source's pagination idiom behind a cursor variant.  Adapters
are looked up by ``source_id`` in a :class:`ProviderRegistry`; nothing
dispatches on adapter classes.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Protocol, Type, runtime_checkable

import httpx

from lanesearch.core.data_models import Cursor, MediaRef, PageResult, ResultItem
from lanesearch.core.deduplication import canonical_url
from lanesearch.core.errors import MalformedResponse, NotConfigured
from lanesearch.core.http_client import AsyncHTTPClient

logger = logging.getLogger(__name__)

DEFAULT_FETCH_COUNT = 20


@runtime_checkable
class ProviderAdapter(Protocol):
    """What the reveal engine needs from a source."""

    source_id: str
    cursor_type: Type[Any]
    timeout: float
    strips_hashtag: bool
    romanized_query: bool

    @property
    def is_configured(self) -> bool: ...

    async def fetch_page(self, query: str, cursor: Optional[Cursor] = None) -> PageResult:
        """Fetch one page of results starting at ``cursor`` (first page if None)."""
        ...

    async def aclose(self) -> None: ...


@dataclass
class SourceConfig:
    """Configuration for a source adapter."""

    source_id: str
    name: str
    base_url: str
    api_key_name: str = ""  # Config key for API key
    requires_auth: bool = False
    timeout: float = 10.0
    strips_hashtag: bool = False
    romanized_query: bool = False


class BaseSourceAdapter(ABC):
    """Base class for adapters talking to a JSON-over-HTTP upstream."""

    cursor_type: Type[Any] = type(None)

    def __init__(
        self,
        config: Optional[SourceConfig] = None,
        api_key: Optional[str] = None,
        fetch_count: int = DEFAULT_FETCH_COUNT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            config: Source configuration (class default if not provided)
            api_key: Credential for the upstream, if it needs one
            fetch_count: Number of items requested per page
            transport: Custom httpx transport (tests)
        """
        self.config = config or self._get_default_config()
        self._api_key = api_key
        self.fetch_count = fetch_count
        self._transport = transport
        self._http: Optional[AsyncHTTPClient] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def _get_default_config(self) -> SourceConfig:
        """Get default configuration for this source."""

    @abstractmethod
    async def fetch_page(self, query: str, cursor: Optional[Cursor] = None) -> PageResult:
        """Fetch one page of results."""

    @property
    def source_id(self) -> str:
        return self.config.source_id

    @property
    def timeout(self) -> float:
        return self.config.timeout

    @property
    def strips_hashtag(self) -> bool:
        return self.config.strips_hashtag

    @property
    def romanized_query(self) -> bool:
        return self.config.romanized_query

    @property
    def is_configured(self) -> bool:
        if self.config.requires_auth and not self._api_key:
            return False
        return bool(self.config.base_url)

    @property
    def http(self) -> AsyncHTTPClient:
        """Lazy-load the HTTP client."""
        if self._http is None:
            self._http = AsyncHTTPClient(
                self.source_id,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._http is not None:
            await self._http.aclose()

    def _require_configured(self) -> None:
        if not self.config.base_url:
            raise NotConfigured(
                f"{self.config.name} endpoint is not configured", source_id=self.source_id
            )
        if self.config.requires_auth and not self._api_key:
            raise NotConfigured(
                f"{self.config.name} requires API key '{self.config.api_key_name}'",
                source_id=self.source_id,
            )

    def _check_cursor(self, cursor: Optional[Cursor]) -> None:
        if cursor is not None and not isinstance(cursor, self.cursor_type):
            raise TypeError(
                f"{self.source_id} expects {self.cursor_type.__name__}, "
                f"got {type(cursor).__name__}"
            )

    def _malformed(self, message: str) -> MalformedResponse:
        return MalformedResponse(f"{self.config.name}: {message}", source_id=self.source_id)

    def _expect_dict(self, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise self._malformed(f"expected a JSON object, got {type(data).__name__}")
        return data

    def _expect_list(self, data: Dict[str, Any], key: str) -> List[Any]:
        value = data.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise self._malformed(f"'{key}' is not a list")
        return value

    def _make_item(
        self,
        url: Optional[str],
        title: Optional[str],
        *,
        thumbnail: Optional[str] = None,
        author: Optional[str] = None,
        published_at: Optional[str] = None,
        media: Optional[List[MediaRef]] = None,
    ) -> Optional[ResultItem]:
        """Build a ResultItem, or None when the upstream row has no URL."""
        url = canonical_url(url or "")
        if not url:
            self.logger.debug("Skipping %s row without URL", self.source_id)
            return None
        return ResultItem(
            canonical_url=url,
            title=title or "",
            source_id=self.source_id,
            thumbnail=thumbnail or None,
            author=author or None,
            published_at=published_at or None,
            media=tuple(media or ()),
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(source_id={self.source_id!r})"


class ProviderRegistry:
    """Maps source ids to adapters."""

    def __init__(self, adapters: Optional[List[ProviderAdapter]] = None) -> None:
        self._adapters: Dict[str, ProviderAdapter] = {}
        self.logger = logging.getLogger(self.__class__.__name__)
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        """Register an adapter, replacing any previous one for its source."""
        if adapter.source_id in self._adapters:
            self.logger.warning("Replacing adapter for source '%s'", adapter.source_id)
        self._adapters[adapter.source_id] = adapter

    def get(self, source_id: str) -> ProviderAdapter:
        """Get the adapter for a source.

        Raises:
            KeyError: If no adapter is registered for ``source_id``.
        """
        try:
            return self._adapters[source_id]
        except KeyError:
            raise KeyError(f"No adapter registered for source '{source_id}'") from None

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._adapters

    def __iter__(self) -> Iterator[ProviderAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    @property
    def source_ids(self) -> List[str]:
        return list(self._adapters)

    async def aclose(self) -> None:
        """Close every adapter's HTTP resources."""
        for adapter in self._adapters.values():
            await adapter.aclose()
