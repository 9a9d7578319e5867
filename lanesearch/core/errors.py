"""Error taxonomy for lanesearch.

Every failure a source lane can run into is represented by a ``LaneError``
subclass.  Errors are raised by adapters (or by the reveal engine on a
timeout), caught at the lane boundary by the orchestrator and attached to the
lane state.  They never cross from one lane to another.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Kinds of lane failures."""

    TIMEOUT = "timeout"  # Upstream did not answer in time
    NOT_CONFIGURED = "not_configured"  # Missing credentials or endpoint
    UPSTREAM = "upstream"  # Non-2xx or transport failure
    MALFORMED = "malformed"  # Response could not be understood
    NO_CONTENT = "no_content"  # Entity declares no content on this source


class LaneError(Exception):
    """Base class for failures attached to a single source lane."""

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str, *, source_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.source_id = source_id
        self.timestamp = datetime.now(timezone.utc)

    @property
    def is_transient(self) -> bool:
        """Whether searching again may succeed without user intervention."""
        return self.kind in (ErrorKind.TIMEOUT, ErrorKind.UPSTREAM)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "source_id": self.source_id,
            "message": self.message,
            "transient": self.is_transient,
            "timestamp": self.timestamp.isoformat(),
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(source_id={self.source_id!r}, message={self.message!r})"


class ProviderTimeout(LaneError):
    kind = ErrorKind.TIMEOUT

    def __init__(self, source_id: Optional[str] = None, timeout: Optional[float] = None) -> None:
        message = "Search timed out" if timeout is None else f"Search timed out after {timeout:g}s"
        super().__init__(message, source_id=source_id)
        self.timeout = timeout


class NotConfigured(LaneError):
    """The source needs credentials or an endpoint that are not set."""

    kind = ErrorKind.NOT_CONFIGURED


class UpstreamError(LaneError):
    kind = ErrorKind.UPSTREAM

    def __init__(
        self,
        message: str,
        *,
        source_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, source_id=source_id)
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class MalformedResponse(LaneError):
    kind = ErrorKind.MALFORMED


class NoContentForEntity(LaneError):
    """The selected curated entity declares it has nothing on this source."""

    kind = ErrorKind.NO_CONTENT


def classify_exception(exception: BaseException, source_id: Optional[str] = None) -> LaneError:
    """Turn any exception escaping an adapter into a ``LaneError``.

    Args:
        exception: The exception to classify
        source_id: Lane the exception belongs to

    Returns:
        A LaneError (the same object when it already is one)
    """
    if isinstance(exception, LaneError):
        if exception.source_id is None:
            exception.source_id = source_id
        return exception

    if isinstance(exception, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ProviderTimeout(source_id)

    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return UpstreamError(f"HTTP {status}", source_id=source_id, status_code=status)

    if isinstance(exception, httpx.RequestError):
        return UpstreamError(f"Request failed: {exception}", source_id=source_id)

    # TypeError is a programming error (such as a cursor of the wrong
    # variant), not something the upstream sent.
    if isinstance(exception, (ValueError, KeyError)):
        return MalformedResponse(f"{type(exception).__name__}: {exception}", source_id=source_id)

    return UpstreamError(f"{type(exception).__name__}: {exception}", source_id=source_id)
