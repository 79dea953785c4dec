"""HTTP client for authenticated API calls

Every request is sent through ``TokenRefreshCoordinator.call`` with the
current bearer token attached; a 401 becomes ``TokenExpired`` so the
coordinator can refresh and replay it once.
"""

import logging
from typing import Any, Optional

import httpx

from settings import CONNECT_TIMEOUT, REQUEST_TIMEOUT

from .errors import NetworkError, TokenExpired
from .token_refresh import TokenRefreshCoordinator

logger = logging.getLogger(__name__)


class AuthenticatedClient:
    """Bearer-authenticated requests against the Logware API"""

    def __init__(
        self,
        coordinator: TokenRefreshCoordinator,
        base_url: str,
        *,
        timeout: float = REQUEST_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.coordinator = coordinator
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self):
        await self._client.aclose()

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, refreshing and replaying once on 401

        Args:
            method: HTTP method
            url: Path relative to the API base, or an absolute URL
            **kwargs: Passed to ``httpx.AsyncClient.request``

        Returns:
            The response (any status other than 401)

        Raises:
            SessionExpired: Not signed in, or the refresh failed
            TokenExpired: The replayed request was rejected again
            NetworkError: Transport failure or timeout
        """
        base_headers = dict(kwargs.pop("headers", None) or {})

        async def send(access_token: str) -> httpx.Response:
            # Fresh header dict per attempt so the replay carries the new token
            headers = dict(base_headers)
            headers["Authorization"] = f"Bearer {access_token}"
            try:
                response = await self._client.request(method, url, headers=headers, **kwargs)
            except httpx.TimeoutException as e:
                raise NetworkError(f"{method} {url} timed out") from e
            except httpx.TransportError as e:
                raise NetworkError(f"{method} {url} failed: {e}") from e

            if response.status_code == 401:
                logger.debug(f"{method} {url} -> 401")
                raise TokenExpired(f"{method} {url} was rejected with 401", 401)
            return response

        return await self.coordinator.call(send)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)
