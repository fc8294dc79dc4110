"""Shared aiohttp session handling for the store and index clients."""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from analysis_consumer.errors import AnalysisError, ErrorKind
from analysis_consumer.logging import get_logger, log_with_context

logger = get_logger(__name__)


class JsonHttpClient:
    """
    Async JSON-over-HTTP client with a lazily created session.

    Subclasses interpret status codes; transport failures (timeouts,
    connection errors) are raised here as AnalysisError of kind OTHER so
    that they lead to redelivery.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 15.0,
        max_connections: int = 20,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_connections = max_connections
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "JsonHttpClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        """Create aiohttp session if not exists."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_connections,
                limit_per_host=self.max_connections,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Any]:
        """
        Make a request and return the status and decoded JSON body.

        The body is None when the response is not JSON.

        Raises:
            AnalysisError: On timeouts and connection errors
        """
        await self._ensure_session()
        assert self._session is not None  # for mypy

        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            async with self._session.request(
                method,
                url,
                json=json_body,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None
                return response.status, body

        except asyncio.TimeoutError as e:
            log_with_context(
                logger,
                logging.WARNING,
                "HTTP request timeout",
                api_endpoint=url,
                api_method=method,
            )
            raise AnalysisError(
                f"Timeout after {self.timeout_seconds}s: {method} {url}",
                kind=ErrorKind.OTHER,
                cause=e,
            ) from e

        except aiohttp.ClientError as e:
            log_with_context(
                logger,
                logging.WARNING,
                "HTTP connection error",
                api_endpoint=url,
                api_method=method,
                error_message=str(e),
            )
            raise AnalysisError(
                f"Connection error: {e}",
                kind=ErrorKind.OTHER,
                cause=e,
            ) from e


def http_error(status: int, method: str, path: str, body: Any = None) -> AnalysisError:
    """Build the error for an unexpected HTTP status."""
    return AnalysisError(
        f"HTTP error ({status}): {method} {path}",
        kind=ErrorKind.OTHER,
        context={"http_status": status, "body": body},
    )
