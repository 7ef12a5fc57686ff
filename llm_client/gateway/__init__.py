"""LLM client layer.

Provides async infrastructure for sending chat requests to LLM backends with:
  - Provider Adapters (OpenAI, DeepSeek, Gemini, custom OpenAI-compatible)
  - Request Queue (global concurrency cap)
  - Rate Limiter (advisory request/token budgets over sliding windows)
  - API Client (timeouts, error classification, exponential backoff, streaming)
"""
