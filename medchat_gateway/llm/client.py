"""
HTTP client for the upstream inference API.

Supports two backends selected by decoding mode:
- Ollama `/api/generate` streaming newline-delimited JSON
- OpenAI-compatible `/v1/chat/completions` streaming server-sent events
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from ..logging_utils import log_operation
from .exceptions import UpstreamStatusError
from .models import DecodeMode, GenerationParams, RelayOptions

HTTP_OK = 200
HTTP_MULTIPLE_CHOICES = 300


class UpstreamClient:
    """
    Thin wrapper around a pooled httpx.AsyncClient.

    One instance is shared by every turn; each call to `open_stream` issues
    exactly one request and closes its response when the context exits.
    """

    def __init__(
        self,
        params: GenerationParams | None = None,
        api_key: str | None = None,
        http_config: dict[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.params = params or GenerationParams()
        self.api_key = api_key
        http_config = http_config or {}

        timeout = httpx.Timeout(
            connect=http_config.get("connect_timeout", 10.0),
            read=http_config.get("read_timeout", 60.0),
            write=http_config.get("write_timeout", 10.0),
            pool=http_config.get("pool_timeout", 10.0),
        )
        limits = httpx.Limits(
            max_connections=http_config.get("max_connections", 50),
            max_keepalive_connections=http_config.get("max_keepalive", 10),
            keepalive_expiry=http_config.get("keepalive_expiry", 30.0),
        )
        self.client = httpx.AsyncClient(
            timeout=timeout, limits=limits, transport=transport
        )

    def _build_request(
        self, input_text: str, opts: RelayOptions
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        base = opts.base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}

        if opts.mode is DecodeMode.SSE:
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            headers["Accept"] = "text/event-stream"
            payload = {
                "model": opts.model,
                "messages": [{"role": "user", "content": input_text}],
                "stream": True,
                "temperature": self.params.temperature,
                "max_tokens": self.params.max_tokens,
            }
            return f"{base}/v1/chat/completions", payload, headers

        headers["Accept"] = "application/json"
        payload = {
            "model": opts.model,
            "prompt": input_text,
            "stream": True,
            "options": {
                "temperature": self.params.temperature,
                "top_p": self.params.top_p,
                "top_k": self.params.top_k,
            },
        }
        return f"{base}/api/generate", payload, headers

    @asynccontextmanager
    async def open_stream(
        self, input_text: str, opts: RelayOptions
    ) -> AsyncIterator[httpx.Response]:
        """Open the streaming generation call and yield the live response."""
        url, payload, headers = self._build_request(input_text, opts)

        async with self.client.stream(
            "POST", url, json=payload, headers=headers
        ) as response:
            if not HTTP_OK <= response.status_code < HTTP_MULTIPLE_CHOICES:
                error_text = (await response.aread()).decode("utf-8", "replace")
                raise UpstreamStatusError(
                    f"Upstream API error {response.status_code}: {error_text[:200]}",
                    provider=opts.mode.value,
                    model=opts.model,
                    status_code=response.status_code,
                )
            yield response

    @log_operation("upstream_health_check")
    async def health_check(
        self, opts: RelayOptions, timeout: float = 10.0
    ) -> dict[str, Any]:
        """Probe the upstream model listing; never raises."""
        base = opts.base_url.rstrip("/")
        if opts.mode is DecodeMode.SSE:
            url = f"{base}/v1/models"
            headers = (
                {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            )
        else:
            url = f"{base}/api/tags"
            headers = {}

        try:
            response = await self.client.get(url, headers=headers, timeout=timeout)
        except httpx.HTTPError as e:
            return {
                "healthy": False,
                "message": f"Upstream unavailable: {type(e).__name__}",
            }

        if response.status_code != HTTP_OK:
            return {
                "healthy": False,
                "message": f"Upstream responded with status {response.status_code}",
            }

        try:
            body = response.json()
        except ValueError:
            body = {}
        models = body.get("models", body.get("data", [])) if isinstance(body, dict) else []
        return {
            "healthy": True,
            "message": "Upstream service is connected",
            "models": [
                m.get("name", m.get("id")) if isinstance(m, dict) else m
                for m in models
            ],
        }

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> UpstreamClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
