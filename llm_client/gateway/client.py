"""LLM API Client — orchestrator for one logical call.

Main entry point for talking to an LLM backend:
  1. Admits the call through the Request Queue (if enabled)
  2. Builds the wire payload via the bound Provider Adapter
  3. Runs each attempt under a cancellation deadline
  4. Classifies failures and retries with exponential backoff
  5. For streaming, hands fragments to the caller as they arrive and
     assembles the final response

Usage:
    client = create_client(api_key="sk-...", base_url="https://api.deepseek.com/v1")

    response = await client.send(request)

    # Or stream
    response = await client.send_streaming(request, lambda text: print(text, end=""))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any, TypeVar

import httpx

from llm_client.core.config import settings
from llm_client.gateway.errors import (
    StreamingNotSupportedError,
    classify_error,
    raise_for_status,
)
from llm_client.gateway.queue_manager import RequestQueue
from llm_client.gateway.retry import next_retry_delay
from llm_client.gateway.types import (
    ChatRequest,
    ChatResponse,
    ClientConfig,
    TokenUsage,
)
from llm_client.gateway.vendor_adapters import ProviderAdapter, detect_provider

logger = logging.getLogger(__name__)

T = TypeVar("T")

FragmentCallback = Callable[[str], Any]


@dataclass
class _AttemptState:
    """One attempt: its index, plus what a stream has gathered so far."""

    index: int
    content: str = ""
    usage: TokenUsage | None = None
    model: str | None = None
    finish_reason: str | None = None

    def update(self, meta: dict[str, Any]) -> None:
        # Last value seen wins
        if "usage" in meta:
            self.usage = meta["usage"]
        if "model" in meta:
            self.model = meta["model"]
        if "finish_reason" in meta:
            self.finish_reason = meta["finish_reason"]

    def to_response(self) -> ChatResponse:
        return ChatResponse(
            content=self.content,
            usage=self.usage,
            model=self.model,
            finish_reason=self.finish_reason,
        )


class ApiClient:
    """Executes chat requests against one backend.

    Integrates:
      - ProviderAdapter: wire-format translation
      - RequestQueue: system-wide concurrency cap
      - retry policy: classification + exponential backoff
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            config: API key, bound adapter, timeout and retry settings
            transport: Optional httpx transport (tests, proxies)
        """
        self.config = config
        self._transport = transport
        self.queue: RequestQueue | None = RequestQueue(config.max_concurrent) if config.use_queue else None

    @property
    def adapter(self) -> ProviderAdapter:
        return self.config.adapter

    def update_config(self, **overrides: Any) -> None:
        """Replace fields of the bound ClientConfig."""
        self.config = replace(self.config, **overrides)
        if "use_queue" in overrides or "max_concurrent" in overrides:
            self.queue = RequestQueue(self.config.max_concurrent) if self.config.use_queue else None

    async def send(self, request: ChatRequest) -> ChatResponse:
        """Send a request and return the complete response."""
        return await self._submit(lambda: self._execute(request))

    async def send_streaming(self, request: ChatRequest, on_fragment: FragmentCallback) -> ChatResponse:
        """Stream a request, calling ``on_fragment`` for each content fragment.

        Fragments are delivered in arrival order. The returned response holds
        the concatenated content plus the last usage / model / finish_reason
        seen on the stream.
        """
        return await self._submit(lambda: self._execute_streaming(request, on_fragment))

    async def _submit(self, factory: Callable[[], Awaitable[T]]) -> T:
        if self.queue is not None:
            return await self.queue.submit(factory)
        return await factory()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, request: ChatRequest) -> ChatResponse:
        direct_request = replace(request, stream=False)
        return await self._with_retries(lambda state: self._post(direct_request, state))

    async def _execute_streaming(self, request: ChatRequest, on_fragment: FragmentCallback) -> ChatResponse:
        if not self.adapter.supports_streaming:
            raise StreamingNotSupportedError(self.adapter.name)

        stream_request = replace(request, stream=True)
        return await self._with_retries(lambda state: self._post_streaming(stream_request, on_fragment, state))

    async def _with_retries(self, attempt_fn: Callable[[_AttemptState], Awaitable[T]]) -> T:
        """Run ``attempt_fn`` under the retry policy.

        Attempts are numbered 0..max_retries; each one gets its own deadline.
        """
        config = self.config
        deadline = config.timeout_ms / 1000 if config.timeout_ms else None

        attempt = 0
        while True:
            state = _AttemptState(index=attempt)
            try:
                return await asyncio.wait_for(attempt_fn(state), timeout=deadline)
            except Exception as e:
                error = classify_error(e)
                error.partial_content = state.content
                logger.debug(
                    "Attempt %d failed: %s",
                    attempt,
                    error.type.value,
                    extra={"provider": self.adapter.name, "attempt": attempt, "error_type": error.type.value},
                )

                delay_ms = next_retry_delay(error, attempt, config.max_retries, config.retry_delay_ms)
                if delay_ms is None:
                    if error is e:
                        raise
                    raise error from e

                await asyncio.sleep(delay_ms / 1000)
                attempt += 1

    def _log_context(self, request: ChatRequest, state: _AttemptState) -> dict[str, Any]:
        return {"provider": self.adapter.name, "model": request.model, "attempt": state.index}

    def _http_client(self) -> httpx.AsyncClient:
        timeout = self.config.timeout_ms / 1000 if self.config.timeout_ms else None
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def _post(self, request: ChatRequest, state: _AttemptState) -> ChatResponse:
        adapter = self.adapter
        url = adapter.endpoint(request.model, stream=False)
        payload = adapter.format_request(request)
        logger.debug("POST %s", url, extra=self._log_context(request, state))

        async with self._http_client() as client:
            resp = await client.post(url, json=payload, headers=adapter.headers(self.config.api_key))

        raise_for_status(resp)
        return adapter.parse_response(resp.json())

    async def _post_streaming(
        self,
        request: ChatRequest,
        on_fragment: FragmentCallback,
        state: _AttemptState,
    ) -> ChatResponse:
        adapter = self.adapter
        url = adapter.endpoint(request.model, stream=True)
        payload = adapter.format_request(request)
        logger.debug("POST %s (stream)", url, extra=self._log_context(request, state))

        async with self._http_client() as client:
            async with client.stream("POST", url, json=payload, headers=adapter.headers(self.config.api_key)) as resp:
                if not resp.is_success:
                    await resp.aread()
                    raise_for_status(resp)

                # aiter_lines keeps an incomplete trailing line until the next read
                async for line in resp.aiter_lines():
                    fragment = adapter.parse_stream_chunk(line)
                    if fragment:
                        state.content += fragment
                        on_fragment(fragment)
                    state.update(adapter.stream_metadata(line))

        return state.to_response()


def normalize_base_url(base_url: str) -> str:
    """Strip a trailing ``/chat/completions`` and trailing slash."""
    url = base_url.strip()
    if url.endswith("/chat/completions"):
        url = url[: -len("/chat/completions")]
    return url.rstrip("/")


def create_client(
    api_key: str,
    base_url: str,
    transport: httpx.AsyncBaseTransport | None = None,
    **overrides: Any,
) -> ApiClient:
    """Factory: detect the provider from ``base_url`` and build a client.

    Defaults come from Settings; ``overrides`` replace any ClientConfig field.
    """
    adapter = detect_provider(base_url).with_base_url(normalize_base_url(base_url))

    options: dict[str, Any] = {
        "timeout_ms": settings.llm_timeout_ms,
        "max_retries": settings.llm_max_retries,
        "retry_delay_ms": settings.llm_retry_delay_ms,
        "use_queue": settings.llm_use_queue,
        "max_concurrent": settings.llm_max_concurrent,
    }
    options.update(overrides)

    logger.info("Created %s client for %s", adapter.name, adapter.base_url)
    return ApiClient(ClientConfig(api_key=api_key, adapter=adapter, **options), transport=transport)
