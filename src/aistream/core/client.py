"""Async HTTP client for the generative API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from aistream.core.config import ClientSettings
from aistream.core.errors import APIError, ErrorKind, classify, from_transport
from aistream.core.headers import ResponseMetadata, parse_metadata
from aistream.llm.chat import ChatEndpoint
from aistream.llm.runs import RunsEndpoint

logger = logging.getLogger(__name__)


class APIClient:
    """Shared transport: auth headers, one-shot JSON calls and streamed calls.

    Resources hang off the client::

        async with APIClient(ClientSettings(api_key="sk-...")) as client:
            response = await client.chat.stream_completion(request, print_delta)
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or ClientSettings()
        self._headers = {"User-Agent": "aistream/0.1.0"}
        api_key = api_key or self.settings.resolved_api_key()
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        if self.settings.organization:
            self._headers["OpenAI-Organization"] = self.settings.organization
        if self.settings.project:
            self._headers["OpenAI-Project"] = self.settings.project

        self._owns_http = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(
                base_url=(base_url or self.settings.base_url).rstrip("/"),
                headers=self._headers,
                timeout=httpx.Timeout(
                    self.settings.http.timeout,
                    connect=self.settings.http.connect_timeout,
                ),
                transport=transport,
            )
        else:
            http_client.headers.update(self._headers)
        self._http = http_client

        self.chat = ChatEndpoint(self)
        self.runs = RunsEndpoint(self)

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> tuple[Any, ResponseMetadata]:
        """Single request/response call returning the decoded JSON body."""
        logger.debug("%s %s", method, path)
        try:
            response = await self._http.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TransportError as exc:
            raise from_transport(exc) from exc

        if response.is_error:
            raise classify(response.status_code, response.headers, response.text)

        try:
            data = response.json()
        except ValueError as exc:
            raise APIError(
                ErrorKind.DECODE,
                "Response body is not valid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        return data, parse_metadata(response.headers)

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        headers: dict | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open a streamed response; raises :class:`APIError` before any body is read."""
        logger.debug("%s %s (stream)", method, path)
        request = self._http.build_request(
            method, path, json=json, headers={"Accept": "text/event-stream", **(headers or {})}
        )
        try:
            response = await self._http.send(request, stream=True)
        except httpx.TransportError as exc:
            raise from_transport(exc) from exc

        try:
            if response.is_error:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise classify(response.status_code, response.headers, body)
            yield response
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> APIClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
