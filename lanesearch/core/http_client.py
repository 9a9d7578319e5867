"""Asynchronous HTTP client helper.

This module provides a wrapper around the `httpx` asynchronous client used by
the source adapters.  It centralises timeouts, headers and error mapping so
that every adapter reports failures with the same ``LaneError`` types.

Requests are made exactly once.  Retrying is left to the user ("search again"
or "load more"), so one lane action never turns into a burst of upstream
calls.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx

from lanesearch.core.errors import MalformedResponse, ProviderTimeout, UpstreamError


class AsyncHTTPClient:
    """A small async HTTP client that maps failures onto lane errors."""

    DEFAULT_USER_AGENT = "lanesearch/0.1 (+https://github.com/lanesearch)"

    def __init__(
        self,
        source_id: str,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the HTTP client.

        Parameters
        ----------
        source_id : str
            Lane the client belongs to; attached to every raised error.
        timeout : float
            Request timeout in seconds.
        headers : dict, optional
            Default headers sent with every request.
        transport : httpx.AsyncBaseTransport, optional
            Custom transport (``httpx.MockTransport`` in tests).
        """
        self.source_id = source_id
        self._timeout = timeout
        self._headers = {"User-Agent": self.DEFAULT_USER_AGENT, **(headers or {})}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.logger = logging.getLogger(self.__class__.__name__)
        self._request_count = 0
        self._total_request_time = 0.0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._headers,
                follow_redirects=True,
                transport=self._transport,
            )
            self.logger.debug(
                "HTTP client initialized for %s (timeout=%.1fs)", self.source_id, self._timeout
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            if self._request_count > 0:
                avg_time = self._total_request_time / self._request_count
                self.logger.debug(
                    "HTTP client closed for %s (requests=%d, avg_time=%.2fms)",
                    self.source_id,
                    self._request_count,
                    avg_time * 1000,
                )

    async def __aenter__(self) -> "AsyncHTTPClient":
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def get(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make a single GET request.

        Raises
        ------
        ProviderTimeout
            If the request did not complete within the timeout.
        UpstreamError
            On transport failures and non-2xx responses.
        """
        client = self._get_client()
        start_time = time.time()
        self.logger.debug("GET %s (source=%s)", url[:100], self.source_id)

        try:
            response = await client.get(url, headers=headers, params=params)
        except httpx.TimeoutException as exc:
            self.logger.warning("Timeout on GET %s: %s", url[:100], exc)
            raise ProviderTimeout(self.source_id, self._timeout) from exc
        except httpx.RequestError as exc:
            self.logger.warning("Request error on GET %s: %s", url[:100], exc)
            raise UpstreamError(
                f"Request failed: {exc}", source_id=self.source_id
            ) from exc

        elapsed = time.time() - start_time
        self._request_count += 1
        self._total_request_time += elapsed
        self.logger.debug(
            "GET %s -> %d (%.2fms)", url[:100], response.status_code, elapsed * 1000
        )

        if response.status_code >= 400:
            raise UpstreamError(
                f"HTTP {response.status_code} from {self.source_id}",
                source_id=self.source_id,
                status_code=response.status_code,
            )
        return response

    async def get_json(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """GET ``url`` and decode the JSON body.

        Raises
        ------
        MalformedResponse
            If the body is not valid JSON.
        """
        response = await self.get(url, headers=headers, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(
                f"Invalid JSON from {self.source_id}", source_id=self.source_id
            ) from exc

    @property
    def stats(self) -> Dict[str, Any]:
        """Get request statistics."""
        return {
            "request_count": self._request_count,
            "total_time_ms": self._total_request_time * 1000,
            "avg_time_ms": (
                (self._total_request_time / self._request_count * 1000)
                if self._request_count > 0
                else 0
            ),
        }
