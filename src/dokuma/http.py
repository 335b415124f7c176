"""Remote resource client for the ERP REST API."""

from __future__ import annotations

import logging
from typing import Any, Literal, cast

import httpx

from dokuma.errors import HttpError, NetworkError
from dokuma.keys import QueryParams, format_key
from dokuma.types import Fetcher, ResourceKey

logger = logging.getLogger(__name__)

METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})

UnauthorizedBehavior = Literal["return_none", "raise"]


def _error_message(response: httpx.Response) -> str:
    """Pull a human readable message out of an error response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for field in ("message", "error"):
            if isinstance(payload.get(field), str) and payload[field]:
                return cast(str, payload[field])
    text = response.text.strip()
    if text:
        return text
    return response.reason_phrase or f"HTTP {response.status_code}"


def json_body(response: httpx.Response) -> Any:
    """Decode a successful response. Empty bodies decode to None."""
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


class ResourceClient:
    """Async HTTP client with uniform error translation.

    Usage:
        async with ResourceClient("https://erp.example") as client:
            response = await client.request("POST", "/api/master/fabrics", body)
            fabric = json_body(response)
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: float | None = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        # Cookies persist on the client, which carries the session
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> ResourceClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def cookies(self) -> httpx.Cookies:
        return self._client.cookies

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request and return the response of any 2xx status.

        Raises:
            HttpError: The server answered with a non-2xx status.
            NetworkError: No response was received.
        """
        method = method.upper()
        if method not in METHODS:
            raise ValueError(f"Unsupported method: {method!r}")

        logger.debug("API request: %s %s", method, path)
        try:
            if body is not None:
                response = await self._client.request(
                    method, path, json=body, params=params
                )
            else:
                response = await self._client.request(method, path, params=params)
        except httpx.TransportError as e:
            logger.warning("Network failure for %s %s: %s", method, path, e)
            raise NetworkError(
                f"Cannot reach the API ({method} {path}): {e}"
            ) from e

        if not response.is_success:
            message = _error_message(response)
            if response.status_code == 401:
                logger.warning("Session rejected at %s; sign in again", path)
            logger.warning(
                "API error %s at %s %s: %s",
                response.status_code,
                method,
                path,
                message,
            )
            raise HttpError(response.status_code, message)
        return response

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a path and decode its JSON body."""
        return json_body(await self.request("GET", path, params=params))

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()


def key_to_request(key: ResourceKey) -> tuple[str, dict[str, Any]]:
    """Derive the request path and query parameters from a key.

    The first segment is the path; scalar segments are appended as path
    segments and mapping segments become query parameters.

    Example:
        key_to_request(("/api/orders", 7, "items"))  # ("/api/orders/7/items", {})
    """
    if not key or not isinstance(key[0], str):
        raise ValueError(f"Key has no path segment: {format_key(key)}")

    path = key[0] if key[0].startswith("/") else f"/{key[0]}"
    params: dict[str, Any] = {}
    for part in key[1:]:
        if isinstance(part, QueryParams):
            params.update(part.as_dict())
        elif part is not None:
            path = f"{path.rstrip('/')}/{part}"
    return path, params


def default_fetcher(
    client: ResourceClient,
    *,
    on_unauthorized: UnauthorizedBehavior = "return_none",
) -> Fetcher:
    """Build a fetcher that GETs the path derived from the key."""

    async def fetch(key: ResourceKey) -> Any:
        path, params = key_to_request(key)
        try:
            return await client.get_json(path, params or None)
        except HttpError as e:
            if e.status == 401 and on_unauthorized == "return_none":
                return None
            raise

    return fetch
