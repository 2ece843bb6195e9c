"""Provider-neutral request/response types and the client interface."""

import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Iterator, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


class Provider(str, Enum):
    """Supported completion providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OLLAMA = "ollama"


class ChatMessage(BaseModel):
    """A role/content pair sent to a provider."""

    role: Literal["system", "user", "assistant"]
    content: str


class CompletionRequest(BaseModel):
    """A chat completion request."""

    model: str
    messages: list[ChatMessage]
    max_tokens: int | None = Field(None, ge=1)
    temperature: float | None = Field(None, ge=0.0, le=2.0)

    def system_prompt(self) -> str | None:
        """Content of the first system message, if any."""
        for message in self.messages:
            if message.role == "system":
                return message.content
        return None

    def dialogue(self) -> list[dict]:
        """User/assistant messages as plain dicts, system messages removed."""
        return [
            {"role": m.role, "content": m.content}
            for m in self.messages
            if m.role != "system"
        ]


class TokenUsage(BaseModel):
    """Token usage statistics."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class CompletionResponse(BaseModel):
    """A finished completion."""

    content: str
    model: str
    usage: TokenUsage | None = None


class StreamChunk(BaseModel):
    """One increment of a streamed completion."""

    content: str = ""
    done: bool = False
    model: str | None = None


class ProviderError(Exception):
    """A failure reported by (or while talking to) a provider."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN",
        status_code: int | None = None,
        retryable: bool = False,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class Cancellation:
    """Cancellation token for a single completion.

    Each request gets its own token, so cancelling one reply never touches
    another one running on the same client. Clients register the transport
    of their request (SDK stream, HTTP response) and it is closed on cancel.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._closers: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            closers, self._closers = self._closers, []
        for close in closers:
            try:
                close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing cancelled request: {e}")

    def close_on_cancel(self, resource: object) -> None:
        """Close ``resource`` when cancelled (right away if already cancelled)."""
        close = getattr(resource, "close", None)
        if close is None:
            return
        with self._lock:
            if not self._event.is_set():
                self._closers.append(close)
                return
        close()

    def check(self) -> None:
        """Raise an ABORTED ProviderError once cancelled."""
        if self._event.is_set():
            raise ProviderError("Request was cancelled.", "ABORTED")


def error_for_status(provider_name: str, status_code: int | None, detail: str) -> ProviderError:
    """Map an HTTP status from a provider API to a ProviderError.

    401/403 are credential problems and never retryable; 429 and 5xx are
    transient.
    """
    if status_code == 401:
        return ProviderError(
            f"Invalid API key. Please check your {provider_name} API key configuration.",
            "INVALID_API_KEY", 401, False,
        )
    if status_code == 403:
        return ProviderError(
            "Access denied. Your API key may not have permission for this operation.",
            "ACCESS_DENIED", 403, False,
        )
    if status_code == 429:
        return ProviderError(
            "Rate limit exceeded. Please wait before making more requests.",
            "RATE_LIMIT", 429, True,
        )
    if status_code in (500, 502, 503):
        return ProviderError(
            f"{provider_name} service is temporarily unavailable. Please try again later.",
            "SERVICE_UNAVAILABLE", status_code, True,
        )
    if status_code == 504:
        return ProviderError(
            "Request timed out. The server took too long to respond.",
            "TIMEOUT", 504, True,
        )
    if status_code == 529:
        return ProviderError(
            f"{provider_name} API is overloaded. Please try again later.",
            "OVERLOADED", 529, True,
        )
    return ProviderError(
        f"{provider_name} API error: {detail}",
        "API_ERROR",
        status_code,
        (status_code or 0) >= 500,
    )


class LLMClient(ABC):
    """Interface every provider client implements.

    Clients hold no per-request state: everything about one completion,
    including its cancellation, travels with the call.
    """

    provider: Provider

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the client has what it needs (API key, endpoint) to run."""

    @abstractmethod
    def complete(
        self, request: CompletionRequest, cancellation: Cancellation | None = None
    ) -> CompletionResponse:
        """Run a non-streaming completion.

        Raises ProviderError with code ABORTED if ``cancellation`` fires.
        """

    @abstractmethod
    def stream(
        self, request: CompletionRequest, cancellation: Cancellation | None = None
    ) -> Iterator[StreamChunk]:
        """Yield chunks until one with ``done=True`` or the stream ends."""
