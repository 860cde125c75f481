"""
Passthrough client for the upstream signal API.
"""

import logging
from typing import Optional

import httpx
from pydantic import BaseModel

from signalgate.exceptions import UpstreamStatusError, UpstreamUnavailableError

logger = logging.getLogger(__name__)


class SignalQuery(BaseModel):
    """Query parameters forwarded to the signal API."""

    start_time: str
    end_time: str
    assets: str
    day: str


class SignalResponse(BaseModel):
    """Upstream answer, passed back to the caller verbatim."""

    status_code: int
    text: str
    content_type: str = "text/plain; charset=utf-8"


class SignalClient:
    """Fetches signals from the upstream API.

    Args:
        upstream_url: Base URL of the signal API.
        timeout_seconds: Per-request timeout.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        upstream_url: str,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = upstream_url
        self._timeout = timeout_seconds
        self._transport = transport

    async def fetch(self, query: SignalQuery) -> SignalResponse:
        """Call the upstream with *query* and return its body.

        Raises:
            UpstreamStatusError: The upstream answered with a non-2xx status.
            UpstreamUnavailableError: The upstream could not be reached.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(self._url, params=query.model_dump())
        except httpx.HTTPError as exc:
            logger.error(
                "Signal API request failed",
                extra={"url": self._url, "error": str(exc)},
            )
            raise UpstreamUnavailableError(str(exc)) from exc

        logger.info(
            "Response from signal API (status %s)",
            response.status_code,
            extra={"bytes": len(response.content)},
        )

        if not response.is_success:
            raise UpstreamStatusError(response.status_code, response.text)

        return SignalResponse(
            status_code=response.status_code,
            text=response.text,
            content_type=response.headers.get(
                "content-type", "text/plain; charset=utf-8"
            ),
        )
