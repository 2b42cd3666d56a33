"""
HTTP transport primitive.

Sends one JSON payload to one URL and reports success or failure. Everything
else (queueing, batching, retry) lives in the dispatcher.
"""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """A send failed: network error, timeout or non-2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class Sender:
    """Interface for the dispatcher's outbound side."""

    async def send(self, url: str, payload: Dict[str, Any], method: str = "POST") -> None:
        """
        Deliver a payload.

        Raises:
            TransportError: if the payload was not accepted
        """
        raise NotImplementedError

    async def aclose(self):
        """Release any held connections."""


class HttpxSender(Sender):
    """
    Sender built on httpx.AsyncClient.

    Adds the identification headers the collection backend expects on
    every request.
    """

    def __init__(
        self,
        api_key: str,
        app_id: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api_key: Project API key, sent as X-API-Key
            app_id: Application id, sent as X-App-Id
            timeout: Per-request timeout in seconds
            client: Pre-built client (tests pass one with a MockTransport)
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Content-Type": "application/json",
            "X-API-Key": api_key,
            "X-App-Id": app_id,
            "X-Platform": "mobile",
        }

    async def send(self, url: str, payload: Dict[str, Any], method: str = "POST") -> None:
        try:
            response = await self._client.request(
                method, url, json=payload, headers=self._headers
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if response.is_success:
            logger.debug("Sent to %s: %d", url, response.status_code)
            return

        raise TransportError(
            f"HTTP {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()
