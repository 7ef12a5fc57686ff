"""
run_llm_chat.py — send one prompt to the configured LLM backend.

Runs the whole client pipeline once:
  1. Check the rate limit budget
  2. Stream the prompt through the API client
  3. Record actual token usage

Configuration comes from the environment / .env (LLM_API_KEY, LLM_BASE_URL,
LLM_MODEL, LLM_RATE_LIMIT_PRESET, LLM_USAGE_STORE_PATH, ...). Usage history is
kept in LLM_USAGE_STORE_PATH so the budget holds across runs.

Usage:
    python run_llm_chat.py "Explain SSE in one paragraph"
    python run_llm_chat.py --no-stream --system "Be terse" "What is HTTP 429?"
"""

import argparse
import asyncio
import logging
import sys

from llm_client.core.config import settings
from llm_client.core.logging import setup_logging
from llm_client.gateway.client import create_client
from llm_client.gateway.errors import LlmClientError
from llm_client.gateway.rate_limiter import create_rate_limiter
from llm_client.gateway.storage import JsonFileStore
from llm_client.gateway.types import ChatMessage, ChatRequest, MessageRole

logger = logging.getLogger("llm_chat")


def estimate_tokens(messages: list[ChatMessage]) -> int:
    """Rough estimate: ~4 characters per token."""
    return max(1, sum(len(m.text) for m in messages) // 4)


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Send one prompt to an LLM backend")
    parser.add_argument("prompt")
    parser.add_argument("--system", default="", help="Optional system instruction")
    parser.add_argument("--model", default=settings.llm_model)
    parser.add_argument("--no-stream", action="store_true", help="Wait for the full response")
    args = parser.parse_args(argv)

    setup_logging()

    if not settings.llm_api_key:
        logger.error("LLM_API_KEY is not set")
        return 2

    messages = []
    if args.system:
        messages.append(ChatMessage(role=MessageRole.SYSTEM, content=args.system))
    messages.append(ChatMessage(role=MessageRole.USER, content=args.prompt))
    request = ChatRequest(model=args.model, messages=messages)

    limiter = create_rate_limiter(settings.llm_rate_limit_preset, JsonFileStore(settings.llm_usage_store_path))
    estimated = estimate_tokens(messages)
    decision = await limiter.can_make_request(estimated)
    if not decision.allowed:
        logger.error("%s, retry in %.0fs", decision.reason, (decision.wait_time_ms or 0) / 1000)
        return 1

    client = create_client(settings.llm_api_key, settings.llm_base_url)

    try:
        if args.no_stream:
            response = await client.send(request)
            print(response.content)
        else:
            response = await client.send_streaming(request, lambda text: print(text, end="", flush=True))
            print()
    except LlmClientError as e:
        logger.error("Request failed: %r", e)
        return 1

    tokens = response.usage.total_tokens if response.usage else estimated
    await limiter.record_request(tokens)
    logger.info("Done: model=%s finish_reason=%s tokens=%d", response.model, response.finish_reason, tokens)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
