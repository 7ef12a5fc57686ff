"""Tests for the provider adapters: payloads, parsing, stream lines, detection."""

from __future__ import annotations

import pytest

from llm_client.gateway.types import (
    ChatMessage,
    ChatRequest,
    ImagePart,
    MessageRole,
    TextPart,
    TokenUsage,
)
from llm_client.gateway.vendor_adapters import (
    ADAPTER_REGISTRY,
    DEEPSEEK_ADAPTER,
    GEMINI_ADAPTER,
    OPENAI_ADAPTER,
    DeepSeekAdapter,
    GeminiAdapter,
    OpenAIAdapter,
    detect_provider,
    get_adapter,
    split_data_uri,
)


def _request(*messages: ChatMessage, **kwargs) -> ChatRequest:
    return ChatRequest(model=kwargs.pop("model", "test-model"), messages=list(messages), **kwargs)


SYSTEM = ChatMessage(role=MessageRole.SYSTEM, content="Be brief")
USER = ChatMessage(role=MessageRole.USER, content="Hi there")
ASSISTANT = ChatMessage(role=MessageRole.ASSISTANT, content="Hello!")

PNG_URI = "data:image/png;base64,iVBORw0KGgo="


# ==========================================================================
# Test: OpenAI / DeepSeek
# ==========================================================================


class TestOpenAIAdapter:
    def test_format_request_passes_system_role(self):
        payload = OPENAI_ADAPTER.format_request(_request(SYSTEM, USER))
        assert payload["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Hi there"},
        ]
        assert payload["stream"] is False

    def test_format_request_omits_unset_options(self):
        payload = OPENAI_ADAPTER.format_request(_request(USER))
        assert "max_tokens" not in payload
        assert "temperature" not in payload
        assert "top_p" not in payload

    def test_format_request_sampling_options(self):
        payload = OPENAI_ADAPTER.format_request(_request(USER, max_tokens=256, temperature=0.0, top_p=0.9))
        assert payload["max_tokens"] == 256
        assert payload["temperature"] == 0.0
        assert payload["top_p"] == 0.9

    def test_format_request_image_parts(self):
        msg = ChatMessage(role=MessageRole.USER, content=[TextPart("What is this?"), ImagePart(PNG_URI)])
        payload = OPENAI_ADAPTER.format_request(_request(msg))
        assert payload["messages"][0]["content"] == [
            {"type": "text", "text": "What is this?"},
            {"type": "image_url", "image_url": {"url": PNG_URI}},
        ]

    def test_deepseek_drops_top_p(self):
        payload = DEEPSEEK_ADAPTER.format_request(_request(USER, temperature=0.3, top_p=0.9))
        assert payload["temperature"] == 0.3
        assert "top_p" not in payload

    def test_parse_response(self):
        resp = OPENAI_ADAPTER.parse_response(
            {
                "choices": [{"message": {"content": "Hello world"}, "finish_reason": "stop"}],
                "model": "gpt-4o-mini",
                "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
            }
        )
        assert resp.content == "Hello world"
        assert resp.model == "gpt-4o-mini"
        assert resp.finish_reason == "stop"
        assert resp.usage == TokenUsage(total_tokens=30, prompt_tokens=10, completion_tokens=20)

    @pytest.mark.parametrize("raw", [{}, None, {"choices": []}, {"choices": [{"message": {"content": None}}]}, "oops"])
    def test_parse_response_tolerates_missing_fields(self, raw):
        resp = OPENAI_ADAPTER.parse_response(raw)
        assert resp.content == ""
        assert resp.usage is None

    def test_parse_stream_chunk(self):
        line = 'data: {"choices":[{"delta":{"content":"Hello"}}]}'
        assert OPENAI_ADAPTER.parse_stream_chunk(line) == "Hello"

    @pytest.mark.parametrize(
        "line",
        [
            "",
            ": keep-alive",
            "event: message",
            "data: [DONE]",
            "data: {not json",
            'data: {"choices":[{"delta":{}}]}',
            'data: {"choices":[]}',
            "data: 42",
        ],
    )
    def test_parse_stream_chunk_ignores_non_content(self, line):
        assert OPENAI_ADAPTER.parse_stream_chunk(line) is None

    def test_stream_metadata(self):
        line = 'data: {"model":"deepseek-chat","choices":[{"delta":{},"finish_reason":"stop"}],"usage":{"total_tokens":7}}'
        meta = DEEPSEEK_ADAPTER.stream_metadata(line)
        assert meta["model"] == "deepseek-chat"
        assert meta["finish_reason"] == "stop"
        assert meta["usage"].total_tokens == 7

    def test_stream_metadata_empty_for_non_data(self):
        assert OPENAI_ADAPTER.stream_metadata("data: [DONE]") == {}
        assert OPENAI_ADAPTER.stream_metadata("garbage") == {}

    def test_headers_and_endpoint(self):
        assert OPENAI_ADAPTER.headers("sk-1")["Authorization"] == "Bearer sk-1"
        assert OPENAI_ADAPTER.endpoint("gpt-4o") == "https://api.openai.com/v1/chat/completions"
        assert OPENAI_ADAPTER.endpoint("gpt-4o", stream=True) == "https://api.openai.com/v1/chat/completions"


# ==========================================================================
# Test: Gemini
# ==========================================================================


class TestGeminiAdapter:
    def test_system_message_folded_into_user_turn(self):
        payload = GEMINI_ADAPTER.format_request(_request(SYSTEM, USER))
        assert payload["contents"] == [
            {"role": "user", "parts": [{"text": "System instruction: Be brief"}]},
            {"role": "user", "parts": [{"text": "Hi there"}]},
        ]

    def test_assistant_becomes_model(self):
        payload = GEMINI_ADAPTER.format_request(_request(USER, ASSISTANT))
        assert payload["contents"][1] == {"role": "model", "parts": [{"text": "Hello!"}]}

    def test_data_uri_image_inlined(self):
        msg = ChatMessage(role=MessageRole.USER, content=[TextPart("Describe"), ImagePart(PNG_URI)])
        payload = GEMINI_ADAPTER.format_request(_request(msg))
        assert payload["contents"][0]["parts"] == [
            {"text": "Describe"},
            {"inlineData": {"mimeType": "image/png", "data": "iVBORw0KGgo="}},
        ]

    def test_remote_image_as_file_data(self):
        msg = ChatMessage(role=MessageRole.USER, content=[ImagePart("https://example.com/cat.png")])
        payload = GEMINI_ADAPTER.format_request(_request(msg))
        assert payload["contents"][0]["parts"] == [
            {"fileData": {"mimeType": "image/png", "fileUri": "https://example.com/cat.png"}},
        ]

    def test_generation_config_defaults(self):
        config = GEMINI_ADAPTER.format_request(_request(USER))["generationConfig"]
        assert config == {"maxOutputTokens": 4000, "temperature": 0.7}

    def test_generation_config_keeps_zero_temperature(self):
        config = GEMINI_ADAPTER.format_request(_request(USER, max_tokens=100, temperature=0.0, top_p=0.5, stream=True))[
            "generationConfig"
        ]
        assert config == {"maxOutputTokens": 100, "temperature": 0.0, "topP": 0.5, "candidateCount": 1}

    def test_parse_response(self):
        resp = GEMINI_ADAPTER.parse_response(
            {
                "candidates": [
                    {
                        "content": {"parts": [{"text": "Hello"}, {"text": " world"}]},
                        "finishReason": "STOP",
                    }
                ],
                "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 20, "totalTokenCount": 30},
                "modelVersion": "gemini-2.0-flash",
            }
        )
        assert resp.content == "Hello world"
        assert resp.finish_reason == "stop"
        assert resp.model == "gemini-2.0-flash"
        assert resp.usage == TokenUsage(total_tokens=30, prompt_tokens=10, completion_tokens=20)

    def test_parse_response_prompt_blocked(self):
        resp = GEMINI_ADAPTER.parse_response({"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}})
        assert resp.content == ""
        assert resp.finish_reason == "blocked_safety"

    def test_parse_response_without_usage(self):
        resp = GEMINI_ADAPTER.parse_response({"candidates": [{"content": {"parts": [{"text": "x"}]}}]})
        assert resp.content == "x"
        assert resp.usage is None
        assert resp.finish_reason is None

    def test_parse_stream_chunk(self):
        line = 'data: {"candidates":[{"content":{"parts":[{"text":"Hi"}],"role":"model"}}]}'
        assert GEMINI_ADAPTER.parse_stream_chunk(line) == "Hi"
        assert GEMINI_ADAPTER.parse_stream_chunk("data: [DONE]") is None
        assert GEMINI_ADAPTER.parse_stream_chunk("data: {broken") is None

    def test_stream_metadata(self):
        line = (
            'data: {"candidates":[{"content":{"parts":[{"text":"."}]},"finishReason":"MAX_TOKENS"}],'
            '"usageMetadata":{"promptTokenCount":3,"candidatesTokenCount":4,"totalTokenCount":7},'
            '"modelVersion":"gemini-2.5-flash"}'
        )
        meta = GEMINI_ADAPTER.stream_metadata(line)
        assert meta["finish_reason"] == "max_tokens"
        assert meta["model"] == "gemini-2.5-flash"
        assert meta["usage"] == TokenUsage(total_tokens=7, prompt_tokens=3, completion_tokens=4)

    def test_headers_and_endpoints(self):
        headers = GEMINI_ADAPTER.headers("g-key")
        assert headers["x-goog-api-key"] == "g-key"
        assert "Authorization" not in headers
        base = "https://generativelanguage.googleapis.com/v1beta"
        assert GEMINI_ADAPTER.endpoint("gemini-2.0-flash") == f"{base}/models/gemini-2.0-flash:generateContent"
        assert (
            GEMINI_ADAPTER.endpoint("gemini-2.0-flash", stream=True)
            == f"{base}/models/gemini-2.0-flash:streamGenerateContent?alt=sse"
        )


# ==========================================================================
# Test: Data URIs, detection, registry
# ==========================================================================


class TestSplitDataUri:
    def test_png(self):
        assert split_data_uri(PNG_URI) == ("image/png", "iVBORw0KGgo=")

    def test_missing_mime_defaults_to_jpeg(self):
        assert split_data_uri("data:;base64,AAAA") == ("image/jpeg", "AAAA")

    def test_not_a_data_uri(self):
        assert split_data_uri("https://example.com/a.jpg") is None


class TestDetectProvider:
    def test_deepseek(self):
        assert detect_provider("https://api.deepseek.com/v1").name == "DeepSeek"

    def test_gemini_googleapis(self):
        assert detect_provider("https://generativelanguage.googleapis.com/v1beta").name == "Gemini"

    def test_gemini_keyword(self):
        assert detect_provider("https://api.gemini.example.com/v1").name == "Gemini"

    def test_openai(self):
        assert detect_provider("https://api.openai.com/v1").name == "OpenAI"

    def test_unknown_defaults_to_openai(self):
        assert detect_provider("https://custom-api.example.com").name == "OpenAI"


class TestAdapterRegistry:
    def test_registry_contents(self):
        assert isinstance(ADAPTER_REGISTRY["openai"], OpenAIAdapter)
        assert isinstance(ADAPTER_REGISTRY["deepseek"], DeepSeekAdapter)
        assert isinstance(ADAPTER_REGISTRY["gemini"], GeminiAdapter)
        assert ADAPTER_REGISTRY["custom"] is OPENAI_ADAPTER

    def test_get_adapter_with_base_url(self):
        adapter = get_adapter("custom", base_url="http://localhost:11434/v1")
        assert adapter.name == "OpenAI"
        assert adapter.endpoint("llama3") == "http://localhost:11434/v1/chat/completions"
        # Shared instance untouched
        assert OPENAI_ADAPTER.base_url == "https://api.openai.com/v1"

    def test_get_adapter_unknown(self):
        with pytest.raises(ValueError, match="No adapter registered"):
            get_adapter("yandexgpt")

    def test_adapters_are_immutable(self):
        with pytest.raises(AttributeError):
            OPENAI_ADAPTER.base_url = "https://elsewhere"

    def test_every_adapter_streams(self):
        assert all(a.supports_streaming for a in ADAPTER_REGISTRY.values())
