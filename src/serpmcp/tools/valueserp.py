from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from ..version import __version__
from .errors import ValueSerpError, is_retryable_status

DEFAULT_BASE_URL = "https://api.valueserp.com"
DEFAULT_TIMEOUT = 30.0


def _render_param(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


class ValueSerpClient:
    """Thin async client for the ValueSerp ``/search`` endpoint.

    JSON replies are returned decoded; CSV (or any other non-JSON body) is
    returned as text, unchanged.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def build_params(self, params: dict[str, Any]) -> dict[str, str]:
        query = {"api_key": self.api_key}
        for key, value in params.items():
            if value is None:
                continue
            query[key] = _render_param(value)
        return query

    async def _request(self, path: str, params: dict[str, Any]) -> Any:
        headers = {
            "Accept": "application/json",
            "User-Agent": f"serpmcp/{__version__}",
        }
        logger.debug("GET {}{} params={}", self.base_url, path, sorted(params))
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}{path}",
                    params=self.build_params(params),
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise ValueSerpError(
                f"ValueSerp request failed: {exc.__class__.__name__}",
                retryable=isinstance(exc, (httpx.TimeoutException, httpx.TransportError)),
            ) from exc

        if not response.is_success:
            status = response.status_code
            raise ValueSerpError(
                f"ValueSerp API error: {status} {response.reason_phrase} - {response.text}",
                status_code=status,
                retryable=is_retryable_status(status),
            )

        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError as exc:
                raise ValueSerpError(f"ValueSerp returned invalid JSON: {exc}") from exc
        return response.text

    async def search(self, params: dict[str, Any]) -> Any:
        return await self._request("/search", params)

    async def search_news(self, params: dict[str, Any]) -> Any:
        return await self._request("/search", {**params, "search_type": "news"})

    async def search_images(self, params: dict[str, Any]) -> Any:
        return await self._request("/search", {**params, "search_type": "images"})

    async def search_videos(self, params: dict[str, Any]) -> Any:
        return await self._request("/search", {**params, "search_type": "videos"})

    async def search_places(self, params: dict[str, Any]) -> Any:
        return await self._request("/search", {**params, "search_type": "places"})

    async def place_details(self, params: dict[str, Any]) -> Any:
        return await self._request("/search", {**params, "search_type": "place_details"})
