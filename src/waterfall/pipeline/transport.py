"""HTTP transport for the waterfall endpoints."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import httpx

from waterfall.observability.logging import get_logger
from waterfall.pipeline.config import ClientConfig
from waterfall.pipeline.errors import WaterfallTransportError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from waterfall.models.requests import StepRequest, WaterfallRequest

log = get_logger(__name__)

SECRET_HEADER = "X-Solvent-Secret"


def is_connectivity_error(exc: BaseException) -> bool:
    """Check if an exception indicates lost connectivity to the server.

    Recognises httpx network/timeout errors and Python's built-in
    ConnectionError, walking the ``__cause__`` chain so wrapped errors
    are also detected.
    """
    if isinstance(
        exc,
        (
            httpx.NetworkError,  # ConnectError, ReadError, WriteError, CloseError
            httpx.TimeoutException,  # ConnectTimeout, ReadTimeout, PoolTimeout
            ConnectionError,
        ),
    ):
        return True

    cause = exc.__cause__
    if cause is not None:
        return is_connectivity_error(cause)

    return False


def _error_message(response: httpx.Response) -> str:
    """Pull the server's error text out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    text = response.text.strip()
    return text or f"Request failed with status {response.status_code}"


class WaterfallClient:
    """Client for the waterfall server.

    Attributes:
        config: Client configuration (base URL, timeout, retries).
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Client configuration. Defaults to ClientConfig().
            http_client: Optional preconfigured httpx client (tests inject
                one built on ``httpx.MockTransport``).
        """
        self.config = config or ClientConfig()
        headers = {SECRET_HEADER: self.config.secret} if self.config.secret else {}
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout, connect=10.0),
            headers=headers,
        )
        if http_client is not None and headers:
            self._client.headers.update(headers)

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}/{path.lstrip('/')}"

    async def stream(self, request: WaterfallRequest) -> AsyncIterator[bytes]:
        """Open the streaming endpoint and yield raw body chunks.

        Args:
            request: Body of the streaming request.

        Yields:
            Body chunks in arrival order.

        Raises:
            WaterfallTransportError: If the server rejects the request or
                the connection fails mid-stream.
        """
        url = self._url("waterfall")
        try:
            async with self._client.stream("POST", url, json=request.to_wire()) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise WaterfallTransportError(
                        f"Waterfall request failed (status {response.status_code}): "
                        f"{_error_message(response)}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.TimeoutException as e:
            raise WaterfallTransportError(f"Waterfall stream timed out: {e}") from e
        except httpx.HTTPError as e:
            raise WaterfallTransportError(f"Waterfall stream failed: {e}") from e

    async def run_step(self, request: StepRequest) -> Any:
        """Run one phase through the non-streaming endpoint.

        Connectivity failures and 5xx responses are retried with exponential
        backoff; 4xx responses fail immediately.

        Args:
            request: Body of the step request.

        Returns:
            The decoded JSON payload.

        Raises:
            WaterfallTransportError: If every attempt failed.
        """
        url = self._url("waterfall/step")
        attempts = self.config.step_retries

        for attempt in range(attempts):
            try:
                return await self._post_step(url, request)
            except WaterfallTransportError as e:
                if e.is_client_error or attempt == attempts - 1:
                    raise
                log.warning(
                    "step_attempt_failed",
                    step=str(request.step),
                    attempt=attempt + 1,
                    error=str(e),
                )
            delay = self.config.step_backoff * 2**attempt
            log.debug("step_retry_scheduled", step=str(request.step), delay=delay)
            await asyncio.sleep(delay)

        raise WaterfallTransportError(f"Step request made no attempts (step_retries={attempts})")

    async def _post_step(self, url: str, request: StepRequest) -> Any:
        try:
            response = await self._client.post(url, json=request.to_wire())
        except httpx.HTTPError as e:
            if is_connectivity_error(e):
                raise WaterfallTransportError(f"Failed to reach waterfall server: {e}") from e
            raise WaterfallTransportError(f"Step request failed: {e}") from e

        if response.status_code >= 400:
            raise WaterfallTransportError(
                _error_message(response),
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise WaterfallTransportError(f"Invalid JSON response: {e}") from e

    async def check_health(self) -> dict[str, Any]:
        """Query the server's service health report.

        Raises:
            WaterfallTransportError: If the server is unreachable or unhealthy.
        """
        try:
            response = await self._client.get(self._url("health/services"))
        except httpx.HTTPError as e:
            raise WaterfallTransportError(f"Failed to reach waterfall server: {e}") from e
        if response.status_code != 200:
            raise WaterfallTransportError(
                _error_message(response),
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise WaterfallTransportError(f"Invalid JSON response: {e}") from e
        return data if isinstance(data, dict) else {"status": data}

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> WaterfallClient:
        """Enter async context."""
        return self

    async def __aexit__(self, *_: object) -> None:
        """Exit async context and close client."""
        await self.close()
