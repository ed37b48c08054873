"""
Default HTTP transport for the carrier adapters.

The adapters only depend on an object with an async ``request`` method of the
same signature as ``HttpTransport.request``. No retries happen here; timeouts
and network failures surface as ``TransportError``.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union

import httpx

from shipkit.core.exceptions import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    text: str


class HttpTransport:
    """Asynchronous request executor built on httpx"""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[Union[str, bytes]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> TransportResponse:
        """
        Execute one HTTP request.

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Request headers
            content: Raw request body
            params: Query parameters

        Returns:
            TransportResponse with the status code and decoded body

        Raises:
            TransportError: On network errors or timeouts
        """
        logger.debug(f"Making {method} request to {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    content=content,
                    params=params,
                )
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling {url}: {str(e)}")
            raise TransportError(f"Request timed out: {str(e)}") from e
        except httpx.RequestError as e:
            logger.error(f"Network error calling {url}: {str(e)}")
            raise TransportError(f"Network error: {str(e)}") from e

        if response.status_code >= 400:
            logger.warning(f"{url} responded with HTTP {response.status_code}")

        return TransportResponse(status_code=response.status_code, text=response.text)
