"""HTTP transport shared by the REST-based adapters (Algolia, Meilisearch, Typesense).

Wraps a lazily created ``httpx.AsyncClient`` and maps HTTP failures onto
the adapter exception taxonomy: 404 becomes ``NotFoundError``, any other
error status or transport failure becomes ``BackendError`` carrying the
backend's own error body.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any

import httpx

from searchbridge.adapters.base.adapter import SearchAdapter
from searchbridge.adapters.base.exceptions import BackendError, NotFoundError

logger = logging.getLogger(__name__)


class HttpSearchAdapter(SearchAdapter):
    """Search adapter speaking a JSON REST API through ``httpx``.

    Subclasses describe how to reach the backend via ``_client_options()``;
    the client is created on first use and reused until ``shutdown()``.

    Args:
        timeout: Read timeout in seconds.
        connect_timeout: Connect timeout in seconds.
        index_prefix: Global prefix for physical index names.
        batch_size: Maximum documents per bulk request.
        facet_distribution_cap: Most distinct values facet-value search fetches per field.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        connect_timeout: float = 5.0,
        index_prefix: str = "",
        batch_size: int = 500,
        facet_distribution_cap: int = 1000,
    ) -> None:
        super().__init__(
            index_prefix=index_prefix, batch_size=batch_size, facet_distribution_cap=facet_distribution_cap
        )
        self._timeout = timeout
        self._connect_timeout = connect_timeout
        self._client: httpx.AsyncClient | None = None

    @abstractmethod
    def _client_options(self) -> dict[str, Any]:
        """``base_url`` and ``headers`` for the client.

        Raises:
            ConfigurationError: If the host or credentials are missing.
        """

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            options = self._client_options()
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=self._connect_timeout),
                **options,
            )
            logger.debug("Created %s client for %s", self.display_name, options.get("base_url"))
        return self._client

    async def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request and return the successful response.

        Raises:
            NotFoundError: On HTTP 404.
            BackendError: On any other error status or a transport failure.
        """
        client = self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise BackendError(f"{self.display_name} request {method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"{self.display_name}: {method} {path} returned 404")
        if response.status_code >= 400:
            detail = _error_detail(response)
            raise BackendError(
                f"{self.display_name} request {method} {path} failed with HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
                detail=detail,
            )
        return response

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and decode its JSON body (None for an empty body)."""
        response = await self._send(method, path, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(
                f"{self.display_name} returned a non-JSON body for {method} {path}",
                status_code=response.status_code,
                detail=response.text[:500],
            ) from e


def _error_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]
