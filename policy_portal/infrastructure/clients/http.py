"""Configured async HTTP client with request/response interceptor hooks"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from policy_portal.config import settings
from policy_portal.domain.exceptions import TransientNetworkError
from policy_portal.infrastructure.observability.metrics import request_duration_histogram

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}

RequestInterceptor = Callable[[httpx.Request], None]
ResponseInterceptor = Callable[[httpx.Response], Awaitable[httpx.Response]]


def clone_request(request: httpx.Request, **extensions: Any) -> httpx.Request:
    """Copy of a request with identical method, URL, headers and body"""
    return httpx.Request(
        request.method,
        request.url,
        headers=request.headers.copy(),
        content=request.content,
        extensions={**request.extensions, **extensions},
    )


class HttpClient:
    """
    Request sender shared by every backend call.

    Request interceptors mutate the outgoing request in place (e.g. attach
    the bearer token). Response interceptors receive the response and return
    the one handed to the caller, which lets them re-issue the request.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        headers: Optional[Dict[str, str]] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.api_base_url
        self.timeout = timeout or settings.http_timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={**DEFAULT_HEADERS, **(headers or {})},
            transport=transport,
        )
        self._request_interceptors: List[RequestInterceptor] = []
        self._response_interceptors: List[ResponseInterceptor] = []

    def add_request_interceptor(self, interceptor: RequestInterceptor) -> None:
        self._request_interceptors.append(interceptor)

    def add_response_interceptor(self, interceptor: ResponseInterceptor) -> None:
        self._response_interceptors.append(interceptor)

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float | None = None,
        intercept: bool = True,
    ) -> httpx.Response:
        """
        Send a request through the interceptor chain.

        Non-2xx responses are returned, not raised.

        Raises:
            TransientNetworkError: On timeouts and connection failures
            SessionError: When a response interceptor cannot restore the session
        """
        request = self._client.build_request(
            method,
            url,
            json=json,
            params=params,
            headers=headers,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        return await self.send(request, intercept=intercept)

    async def send(self, request: httpx.Request, intercept: bool = True) -> httpx.Response:
        if intercept:
            for interceptor in self._request_interceptors:
                interceptor(request)

        response = await self._send(request)

        if intercept:
            for response_interceptor in self._response_interceptors:
                response = await response_interceptor(response)
        return response

    async def _send(self, request: httpx.Request) -> httpx.Response:
        start_time = time.time()
        try:
            response = await self._client.send(request)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{request.method} {request.url.path} timed out") from e
        except httpx.RequestError as e:
            raise TransientNetworkError(f"{request.method} {request.url.path} failed: {e}") from e

        request_duration_histogram.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code,
        ).observe(time.time() - start_time)
        logger.debug(
            "Backend response",
            extra={"method": request.method, "path": request.url.path, "status": response.status_code},
        )
        return response

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
