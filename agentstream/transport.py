"""HTTP streaming transport (httpx + httpx-sse).

One request opens one SSE stream. Only connection establishment is retried;
once the response has started nothing is replayed.
"""

from __future__ import annotations

import contextlib
import json
import logging
from typing import Any, AsyncContextManager, AsyncIterator, Protocol

import httpx
import httpx_sse
from httpx_sse import ServerSentEvent
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import TransportError
from .provider_contracts import ProviderContract

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)
MAX_CONNECT_ATTEMPTS = 3

_CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


class StreamTransport(Protocol):
    def open(self, payload: dict[str, Any]) -> AsyncContextManager[AsyncIterator[Any]]: ...


def _error_message(body: bytes) -> str:
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text[:500] or "empty response body"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return text[:500]


class HttpxStreamTransport:
    """POSTs the request payload and yields ``ServerSentEvent`` objects."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | float | None = DEFAULT_TIMEOUT,
        connect_attempts: int = MAX_CONNECT_ATTEMPTS,
    ) -> None:
        self.url = url
        self.headers = dict(headers or {})
        self._client = client
        self._timeout = timeout
        self._connect_attempts = max(1, connect_attempts)

    @contextlib.asynccontextmanager
    async def open(self, payload: dict[str, Any]) -> AsyncIterator[AsyncIterator[ServerSentEvent]]:
        async with contextlib.AsyncExitStack() as stack:
            client = self._client
            if client is None:
                client = await stack.enter_async_context(httpx.AsyncClient(timeout=self._timeout))

            event_source = await self._connect(stack, client, payload)
            response = event_source.response
            if response.status_code >= 400:
                body = await response.aread()
                raise TransportError(
                    f"HTTP {response.status_code}: {_error_message(body)}",
                    status_code=response.status_code,
                )
            yield self._iter_events(event_source)

    async def _connect(
        self,
        stack: contextlib.AsyncExitStack,
        client: httpx.AsyncClient,
        payload: dict[str, Any],
    ) -> httpx_sse.EventSource:
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_CONNECT_ERRORS),
                stop=stop_after_attempt(self._connect_attempts),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "Retrying stream connection to %s (attempt %d)",
                            self.url,
                            attempt.retry_state.attempt_number,
                        )
                    return await stack.enter_async_context(
                        httpx_sse.aconnect_sse(client, "POST", self.url, json=payload, headers=dict(self.headers))
                    )
        except httpx.TimeoutException as exc:
            raise TransportError(f"request to {self.url} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"request to {self.url} failed: {exc}") from exc
        raise TransportError(f"could not connect to {self.url}")

    async def _iter_events(self, event_source: httpx_sse.EventSource) -> AsyncIterator[ServerSentEvent]:
        try:
            async for event in event_source.aiter_sse():
                yield event
        except httpx.HTTPError as exc:
            raise TransportError(f"stream interrupted: {exc}") from exc
        except httpx_sse.SSEError as exc:
            raise TransportError(f"invalid event stream: {exc}") from exc


def create_transport(
    contract: ProviderContract,
    api_key: str,
    *,
    base_url: str | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: httpx.Timeout | float | None = DEFAULT_TIMEOUT,
    extra_headers: dict[str, str] | None = None,
) -> HttpxStreamTransport:
    """Build a transport for ``contract``'s streaming endpoint."""
    root = (base_url or contract.capabilities.default_base_url).rstrip("/")
    if not root:
        raise ValueError(f"base_url is required for provider '{contract.provider}'")
    headers = contract.auth_headers(api_key)
    if extra_headers:
        headers.update(extra_headers)
    return HttpxStreamTransport(
        f"{root}/{contract.capabilities.endpoint_path}",
        headers,
        client=client,
        timeout=timeout,
    )
