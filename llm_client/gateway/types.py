"""Core types and DTOs for the LLM client layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from llm_client.gateway.vendor_adapters import ProviderAdapter


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MessageRole(str, Enum):
    """Roles accepted in a canonical chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ErrorType(str, Enum):
    """Classification of a failed attempt."""

    NETWORK = "network"  # Connection / DNS level failure
    TIMEOUT = "timeout"  # Attempt deadline exceeded
    RATE_LIMIT = "rate_limit"  # Backend answered 429
    API = "api"  # Any other non-2xx status
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Canonical request (input to the client)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextPart:
    """Plain text segment of a multimodal message."""

    text: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ImagePart:
    """Image segment; ``url`` is a data URI or a remote URL."""

    url: str
    type: str = field(default="image", init=False)


ContentPart = Union[TextPart, ImagePart]


@dataclass
class ChatMessage:
    """A single message of a conversation."""

    role: MessageRole
    content: str | list[ContentPart]

    def __post_init__(self) -> None:
        try:
            self.role = MessageRole(self.role)
        except ValueError:
            raise ValueError(f"Unsupported message role: {self.role!r}") from None

    @property
    def text(self) -> str:
        """All text of the message, images dropped."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        content = data.get("content", "")
        if isinstance(content, list):
            content = [_part_from_dict(p) for p in content]
        return cls(role=data.get("role", ""), content=content)


def _part_from_dict(data: dict[str, Any]) -> ContentPart:
    part_type = data.get("type")
    if part_type == "text":
        return TextPart(text=data.get("text", ""))
    if part_type == "image":
        return ImagePart(url=data.get("url", ""))
    if part_type == "image_url":
        # OpenAI-shaped part: {"type": "image_url", "image_url": {"url": ...}}
        return ImagePart(url=(data.get("image_url") or {}).get("url", ""))
    raise ValueError(f"Unsupported content part type: {part_type!r}")


@dataclass
class ChatRequest:
    """Provider-agnostic chat request.

    Adapters translate this into each backend's wire payload.
    """

    model: str
    messages: list[ChatMessage]
    stream: bool = False
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError("ChatRequest requires at least one message")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatRequest:
        """Build a request from its plain-record form."""
        return cls(
            model=data.get("model", ""),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages", [])],
            stream=bool(data.get("stream", False)),
            max_tokens=data.get("max_tokens"),
            temperature=data.get("temperature"),
            top_p=data.get("top_p"),
        )


# ---------------------------------------------------------------------------
# Canonical response (output of the client)
# ---------------------------------------------------------------------------


@dataclass
class TokenUsage:
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @classmethod
    def from_openai(cls, data: dict[str, Any]) -> TokenUsage:
        return cls(
            total_tokens=data.get("total_tokens") or 0,
            prompt_tokens=data.get("prompt_tokens") or 0,
            completion_tokens=data.get("completion_tokens") or 0,
        )

    @classmethod
    def from_gemini(cls, data: dict[str, Any]) -> TokenUsage:
        return cls(
            total_tokens=data.get("totalTokenCount") or 0,
            prompt_tokens=data.get("promptTokenCount") or 0,
            completion_tokens=data.get("candidatesTokenCount") or 0,
        )


@dataclass
class ChatResponse:
    """Unified response DTO, same structure regardless of backend."""

    content: str = ""
    usage: TokenUsage | None = None
    model: str | None = None
    finish_reason: str | None = None

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dict."""
        return {
            "content": self.content,
            "usage": (
                {
                    "total_tokens": self.usage.total_tokens,
                    "prompt_tokens": self.usage.prompt_tokens,
                    "completion_tokens": self.usage.completion_tokens,
                }
                if self.usage
                else None
            ),
            "model": self.model,
            "finish_reason": self.finish_reason,
        }


# ---------------------------------------------------------------------------
# Client config
# ---------------------------------------------------------------------------


@dataclass
class ClientConfig:
    """Connection and retry configuration bound to one adapter."""

    api_key: str
    adapter: ProviderAdapter
    timeout_ms: int = 30_000  # Per-attempt deadline
    max_retries: int = 3  # Attempts are 0..max_retries
    retry_delay_ms: int = 1_000  # Base delay for exponential backoff
    use_queue: bool = True
    max_concurrent: int = 3  # Request queue admission cap


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitBudget:
    """Caller-declared usage budget."""

    requests_per_minute: int
    requests_per_hour: int
    requests_per_day: int
    tokens_per_minute: int | None = None
    tokens_per_day: int | None = None


@dataclass(frozen=True)
class UsageRecord:
    """One completed request."""

    timestamp: float  # Milliseconds since the epoch
    tokens: int = 0

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "tokens": self.tokens}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageRecord:
        return cls(timestamp=data.get("timestamp", 0), tokens=data.get("tokens", 0))


@dataclass
class UsageStats:
    requests_last_minute: int = 0
    requests_last_hour: int = 0
    requests_last_day: int = 0
    tokens_last_minute: int = 0
    tokens_last_day: int = 0
    last_request_time: float = 0  # 0 when nothing was recorded


@dataclass
class RateLimitDecision:
    """Answer to "may I send another request now"."""

    allowed: bool
    reason: str | None = None
    wait_time_ms: float | None = None


# Budgets per provider tier
RATE_LIMIT_PRESETS: dict[str, RateLimitBudget] = {
    "OPENAI_FREE": RateLimitBudget(
        requests_per_minute=3,
        requests_per_hour=200,
        requests_per_day=200,
        tokens_per_minute=40_000,
        tokens_per_day=200_000,
    ),
    "OPENAI_PAID": RateLimitBudget(
        requests_per_minute=60,
        requests_per_hour=3_600,
        requests_per_day=10_000,
        tokens_per_minute=90_000,
        tokens_per_day=2_000_000,
    ),
    "DEEPSEEK": RateLimitBudget(
        requests_per_minute=30,
        requests_per_hour=1_800,
        requests_per_day=5_000,
        tokens_per_minute=60_000,
        tokens_per_day=1_000_000,
    ),
    "GEMINI_FREE": RateLimitBudget(
        requests_per_minute=15,
        requests_per_hour=1_500,
        requests_per_day=1_500,
        tokens_per_minute=32_000,
        tokens_per_day=50_000,
    ),
    "GEMINI_PAID": RateLimitBudget(
        requests_per_minute=360,
        requests_per_hour=21_600,
        requests_per_day=50_000,
        tokens_per_minute=4_000_000,
        tokens_per_day=4_000_000,
    ),
    "CONSERVATIVE": RateLimitBudget(
        requests_per_minute=2,
        requests_per_hour=100,
        requests_per_day=500,
        tokens_per_minute=20_000,
        tokens_per_day=100_000,
    ),
    "UNLIMITED": RateLimitBudget(
        requests_per_minute=60,
        requests_per_hour=3_600,
        requests_per_day=14_400,
        tokens_per_minute=1_000_000,
        tokens_per_day=1_000_000,
    ),
}
