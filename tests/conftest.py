"""Shared test fixtures."""

from typing import Iterator

import pytest

from branchchat.llm import (
    Cancellation,
    CompletionRequest,
    CompletionResponse,
    LLMClient,
    LLMManager,
    Provider,
    ProviderError,
    StreamChunk,
)
from branchchat.store import ConversationStore


class FakeClient(LLMClient):
    """In-memory provider that answers by echoing the last user message.

    Requests whose last message contains ``fail_when`` raise a retryable
    rate-limit error, so individual branches can be made to fail. Like the
    real clients it stops a stream once its cancellation fires.
    """

    provider = Provider.ANTHROPIC

    def __init__(self, fail_when: str | None = None, configured: bool = True):
        self.fail_when = fail_when
        self.configured = configured
        self.requests: list[CompletionRequest] = []
        self.cancellations: list[Cancellation | None] = []

    def is_configured(self) -> bool:
        return self.configured

    def _check(self, request: CompletionRequest, cancellation: Cancellation | None) -> str:
        self.requests.append(request)
        self.cancellations.append(cancellation)
        question = request.messages[-1].content
        if self.fail_when and self.fail_when in question:
            raise ProviderError(
                "Rate limit exceeded. Please wait before making more requests.",
                "RATE_LIMIT", 429, True,
            )
        return f"Answer to: {question}"

    def complete(
        self, request: CompletionRequest, cancellation: Cancellation | None = None
    ) -> CompletionResponse:
        return CompletionResponse(content=self._check(request, cancellation), model=request.model)

    def stream(
        self, request: CompletionRequest, cancellation: Cancellation | None = None
    ) -> Iterator[StreamChunk]:
        answer = self._check(request, cancellation)
        middle = len(answer) // 2
        for part in (answer[:middle], answer[middle:]):
            if cancellation is not None:
                cancellation.check()
            yield StreamChunk(content=part, model=request.model)
        yield StreamChunk(content="", done=True, model=request.model)


@pytest.fixture
def fake_client():
    """Provider client answering every request."""
    return FakeClient()


@pytest.fixture
def fake_manager(fake_client):
    """LLMManager with the fake client registered for Anthropic."""
    return LLMManager(clients={Provider.ANTHROPIC: fake_client})


@pytest.fixture
def store():
    """Empty conversation store."""
    return ConversationStore()
