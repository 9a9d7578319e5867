"""Core functionality for lanesearch.

This package contains the data model, query normalization, the search cache,
the reveal engine and the orchestrator, plus the ambient pieces they share:
configuration, logging, HTTP plumbing and the lane error taxonomy.
"""

from .data_models import (  # noqa: F401
    CacheEntry,
    Cursor,
    MediaRef,
    OpaqueCursor,
    OpaqueToken,
    PageOffset,
    PageResult,
    ResultItem,
    SourceLaneState,
    Watermark,
    cursor_from_dict,
)
from .deduplication import ResultDeduplicator, canonical_url, deduplicate_results, saved_identity  # noqa: F401
from .errors import (  # noqa: F401
    ErrorKind,
    LaneError,
    MalformedResponse,
    NoContentForEntity,
    NotConfigured,
    ProviderTimeout,
    UpstreamError,
    classify_exception,
)
from .http_client import AsyncHTTPClient  # noqa: F401
from .logging_setup import configure_logging, log_performance  # noqa: F401
from .config import Config, get_config, ValidationResult  # noqa: F401
from .normalizer import CuratedEntity, NormalizedQuery, QueryNormalizer  # noqa: F401
from .cache import CacheStore, MemoryCacheBackend, SQLiteCacheBackend, create_cache_store  # noqa: F401
from .reveal import PAGE_SIZE, RevealEngine, RevealOutcome  # noqa: F401
from .orchestrator import SearchOrchestrator  # noqa: F401

__all__ = [
    # Data model
    "CacheEntry",
    "Cursor",
    "MediaRef",
    "OpaqueCursor",
    "OpaqueToken",
    "PageOffset",
    "PageResult",
    "ResultItem",
    "SourceLaneState",
    "Watermark",
    "cursor_from_dict",
    # Identity
    "ResultDeduplicator",
    "canonical_url",
    "deduplicate_results",
    "saved_identity",
    # Errors
    "ErrorKind",
    "LaneError",
    "MalformedResponse",
    "NoContentForEntity",
    "NotConfigured",
    "ProviderTimeout",
    "UpstreamError",
    "classify_exception",
    # Plumbing
    "AsyncHTTPClient",
    "configure_logging",
    "log_performance",
    "Config",
    "get_config",
    "ValidationResult",
    # Search
    "CuratedEntity",
    "NormalizedQuery",
    "QueryNormalizer",
    "CacheStore",
    "MemoryCacheBackend",
    "SQLiteCacheBackend",
    "create_cache_store",
    "PAGE_SIZE",
    "RevealEngine",
    "RevealOutcome",
    "SearchOrchestrator",
]
