"""Vendor-Specific Adapters — wire-format translation for each LLM backend.

Each adapter turns a ChatRequest into the backend's JSON payload and turns
the backend's JSON (or one streamed SSE line) back into canonical shapes.
Adapters never touch the network; ApiClient does.

Vendor-specific behaviors:
  - OpenAI: Chat Completions, native system role, image_url parts
  - DeepSeek: OpenAI-compatible, no top_p
  - Gemini: generateContent, no system role (folded into a user turn),
    images as inlineData, finishReason lowercased
"""

from __future__ import annotations

import json
import logging
import mimetypes
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, ClassVar

from llm_client.gateway.types import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ImagePart,
    MessageRole,
    TextPart,
    TokenUsage,
)

logger = logging.getLogger(__name__)

STREAM_DATA_PREFIX = "data: "
STREAM_DONE = "data: [DONE]"
SYSTEM_INSTRUCTION_PREFIX = "System instruction: "

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?:;[^,]*)?,(?P<data>.*)$", re.DOTALL)
_DEFAULT_IMAGE_MIME = "image/jpeg"


def _decode_data_line(line: str) -> dict | None:
    """Return the JSON object carried by an SSE ``data:`` line.

    None for non-data lines, the stream-end sentinel and anything that
    fails to parse.
    """
    line = line.strip()
    if not line.startswith(STREAM_DATA_PREFIX) or line == STREAM_DONE:
        return None
    try:
        data = json.loads(line[len(STREAM_DATA_PREFIX) :])
    except ValueError:
        logger.debug("Skipping unparseable stream line: %.80s", line)
        return None
    return data if isinstance(data, dict) else None


def _first(items: Any) -> dict:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def split_data_uri(url: str) -> tuple[str, str] | None:
    """Split ``data:<mime>;base64,<data>`` into (mime, data).

    None when ``url`` is not a data URI.
    """
    match = _DATA_URI_RE.match(url)
    if match is None:
        return None
    return match.group("mime") or _DEFAULT_IMAGE_MIME, match.group("data")


class ProviderAdapter(ABC):
    """Base class for all provider adapters.

    Concrete adapters are frozen dataclasses: a custom endpoint is the same
    adapter with another ``base_url`` (see ``with_base_url``).
    """

    name: str
    base_url: str
    supports_streaming: bool

    def headers(self, api_key: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

    def endpoint(self, model: str, stream: bool = False) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    @abstractmethod
    def format_request(self, request: ChatRequest) -> dict[str, Any]:
        """Build the backend payload for a canonical request."""
        ...

    @abstractmethod
    def parse_response(self, raw: Any) -> ChatResponse:
        """Normalize a non-streaming backend body. Never raises."""
        ...

    @abstractmethod
    def parse_stream_chunk(self, line: str) -> str | None:
        """Extract the content fragment from one streamed line, if any."""
        ...

    @abstractmethod
    def stream_metadata(self, line: str) -> dict[str, Any]:
        """Extract usage / model / finish_reason present on a streamed line."""
        ...

    def with_base_url(self, base_url: str) -> ProviderAdapter:
        return replace(self, base_url=base_url)


# ---------------------------------------------------------------------------
# OpenAI Adapter (also the fallback for custom endpoints)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OpenAIAdapter(ProviderAdapter):
    """OpenAI Chat Completions adapter."""

    name: str = "OpenAI"
    base_url: str = "https://api.openai.com/v1"
    supports_streaming: bool = True

    forwards_top_p: ClassVar[bool] = True

    def format_request(self, request: ChatRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [self._format_message(m) for m in request.messages],
            "stream": request.stream,
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if self.forwards_top_p and request.top_p is not None:
            payload["top_p"] = request.top_p
        return payload

    @staticmethod
    def _format_message(message: ChatMessage) -> dict[str, Any]:
        if isinstance(message.content, str):
            return {"role": message.role.value, "content": message.content}

        parts: list[dict[str, Any]] = []
        for part in message.content:
            if isinstance(part, ImagePart):
                parts.append({"type": "image_url", "image_url": {"url": part.url}})
            else:
                parts.append({"type": "text", "text": part.text})
        return {"role": message.role.value, "content": parts}

    def parse_response(self, raw: Any) -> ChatResponse:
        if not isinstance(raw, dict):
            return ChatResponse()

        choice = _first(raw.get("choices"))
        message = choice.get("message") or {}
        usage = raw.get("usage")
        return ChatResponse(
            content=message.get("content") or "",
            usage=TokenUsage.from_openai(usage) if isinstance(usage, dict) else None,
            model=raw.get("model"),
            finish_reason=choice.get("finish_reason"),
        )

    def parse_stream_chunk(self, line: str) -> str | None:
        data = _decode_data_line(line)
        if data is None:
            return None
        delta = _first(data.get("choices")).get("delta") or {}
        return delta.get("content") or None

    def stream_metadata(self, line: str) -> dict[str, Any]:
        data = _decode_data_line(line)
        if data is None:
            return {}

        meta: dict[str, Any] = {}
        if isinstance(data.get("usage"), dict):
            meta["usage"] = TokenUsage.from_openai(data["usage"])
        if data.get("model"):
            meta["model"] = data["model"]
        finish_reason = _first(data.get("choices")).get("finish_reason")
        if finish_reason:
            meta["finish_reason"] = finish_reason
        return meta


# ---------------------------------------------------------------------------
# DeepSeek Adapter
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeepSeekAdapter(OpenAIAdapter):
    """DeepSeek adapter: OpenAI wire format without top_p."""

    name: str = "DeepSeek"
    base_url: str = "https://api.deepseek.com/v1"
    supports_streaming: bool = True

    forwards_top_p: ClassVar[bool] = False


# ---------------------------------------------------------------------------
# Gemini Adapter (Google AI)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GeminiAdapter(ProviderAdapter):
    """Google Gemini generateContent adapter."""

    name: str = "Gemini"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    supports_streaming: bool = True

    default_max_output_tokens: ClassVar[int] = 4000
    default_temperature: ClassVar[float] = 0.7

    def headers(self, api_key: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": api_key,
        }

    def endpoint(self, model: str, stream: bool = False) -> str:
        base = self.base_url.rstrip("/")
        if stream:
            return f"{base}/models/{model}:streamGenerateContent?alt=sse"
        return f"{base}/models/{model}:generateContent"

    def format_request(self, request: ChatRequest) -> dict[str, Any]:
        generation_config: dict[str, Any] = {
            "maxOutputTokens": (
                request.max_tokens if request.max_tokens is not None else self.default_max_output_tokens
            ),
            "temperature": (
                request.temperature if request.temperature is not None else self.default_temperature
            ),
        }
        if request.top_p is not None:
            generation_config["topP"] = request.top_p
        if request.stream:
            generation_config["candidateCount"] = 1

        return {
            "contents": [self._format_message(m) for m in request.messages],
            "generationConfig": generation_config,
        }

    @classmethod
    def _format_message(cls, message: ChatMessage) -> dict[str, Any]:
        # Gemini has no system role
        if message.role == MessageRole.SYSTEM:
            return {
                "role": "user",
                "parts": [{"text": f"{SYSTEM_INSTRUCTION_PREFIX}{message.text}"}],
            }

        role = "model" if message.role == MessageRole.ASSISTANT else "user"
        if isinstance(message.content, str):
            return {"role": role, "parts": [{"text": message.content}]}
        return {"role": role, "parts": [cls._format_part(p) for p in message.content]}

    @staticmethod
    def _format_part(part: TextPart | ImagePart) -> dict[str, Any]:
        if isinstance(part, TextPart):
            return {"text": part.text}

        inline = split_data_uri(part.url)
        if inline is not None:
            mime_type, data = inline
            return {"inlineData": {"mimeType": mime_type, "data": data}}

        mime_type, _ = mimetypes.guess_type(part.url)
        return {"fileData": {"mimeType": mime_type or _DEFAULT_IMAGE_MIME, "fileUri": part.url}}

    @staticmethod
    def _candidate_text(candidate: dict) -> str:
        parts = (candidate.get("content") or {}).get("parts") or []
        return "".join(p.get("text") or "" for p in parts if isinstance(p, dict))

    def parse_response(self, raw: Any) -> ChatResponse:
        if not isinstance(raw, dict):
            return ChatResponse()

        candidate = _first(raw.get("candidates"))
        finish_reason = candidate.get("finishReason")
        if not candidate:
            # No candidates, check prompt feedback
            block_reason = (raw.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                finish_reason = f"blocked_{block_reason}"

        usage = raw.get("usageMetadata")
        return ChatResponse(
            content=self._candidate_text(candidate),
            usage=TokenUsage.from_gemini(usage) if isinstance(usage, dict) else None,
            model=raw.get("modelVersion"),
            finish_reason=finish_reason.lower() if isinstance(finish_reason, str) else None,
        )

    def parse_stream_chunk(self, line: str) -> str | None:
        data = _decode_data_line(line)
        if data is None:
            return None
        return self._candidate_text(_first(data.get("candidates"))) or None

    def stream_metadata(self, line: str) -> dict[str, Any]:
        data = _decode_data_line(line)
        if data is None:
            return {}

        meta: dict[str, Any] = {}
        if isinstance(data.get("usageMetadata"), dict):
            meta["usage"] = TokenUsage.from_gemini(data["usageMetadata"])
        if data.get("modelVersion"):
            meta["model"] = data["modelVersion"]
        finish_reason = _first(data.get("candidates")).get("finishReason")
        if isinstance(finish_reason, str) and finish_reason:
            meta["finish_reason"] = finish_reason.lower()
        return meta


# ---------------------------------------------------------------------------
# Adapter registry
# ---------------------------------------------------------------------------

OPENAI_ADAPTER = OpenAIAdapter()
DEEPSEEK_ADAPTER = DeepSeekAdapter()
GEMINI_ADAPTER = GeminiAdapter()

ADAPTER_REGISTRY: dict[str, ProviderAdapter] = {
    "openai": OPENAI_ADAPTER,
    "deepseek": DEEPSEEK_ADAPTER,
    "gemini": GEMINI_ADAPTER,
    "custom": OPENAI_ADAPTER,
}


def get_adapter(provider: str, base_url: str | None = None) -> ProviderAdapter:
    """Factory: get the adapter for a provider key, optionally rebound to ``base_url``."""
    adapter = ADAPTER_REGISTRY.get(provider.lower())
    if adapter is None:
        raise ValueError(f"No adapter registered for provider: {provider}")
    return adapter.with_base_url(base_url) if base_url else adapter


def detect_provider(base_url: str) -> ProviderAdapter:
    """Pick an adapter from a base URL; unknown URLs get the OpenAI adapter."""
    if "deepseek" in base_url:
        return DEEPSEEK_ADAPTER
    if "generativelanguage.googleapis.com" in base_url or "gemini" in base_url:
        return GEMINI_ADAPTER
    return OPENAI_ADAPTER
