import pytest

from llm_client.gateway.types import ChatMessage, ChatRequest, MessageRole


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, now: float = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chat_request():
    return ChatRequest(
        model="gpt-4o-mini",
        messages=[ChatMessage(role=MessageRole.USER, content="Hello")],
    )
