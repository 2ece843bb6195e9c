"""Registry of provider clients with one error surface."""

import logging
from typing import Iterator

from ..errors import CompletionFailedError
from .anthropic_client import AnthropicClient
from .base import (
    Cancellation,
    CompletionRequest,
    CompletionResponse,
    LLMClient,
    Provider,
    ProviderError,
    StreamChunk,
)
from .ollama_client import OllamaClient
from .openai_client import OpenAIClient

logger = logging.getLogger(__name__)


def wrap_provider_error(error: Exception, provider: Provider) -> CompletionFailedError:
    """Wrap any failure raised by a client into a CompletionFailedError."""
    if isinstance(error, CompletionFailedError):
        return error
    if isinstance(error, ProviderError):
        return CompletionFailedError(
            f"[{provider.value}] {error.message}",
            provider=provider.value,
            code=error.code,
            retryable=error.retryable,
        )
    return CompletionFailedError(
        f"[{provider.value}] Unexpected error: {error}",
        provider=provider.value,
        code="UNEXPECTED_ERROR",
        retryable=False,
    )


class LLMManager:
    """Selects a client by provider tag and normalizes its failures."""

    def __init__(
        self,
        clients: dict[Provider, LLMClient] | None = None,
        ollama_base_url: str | None = None,
    ):
        if clients is None:
            clients = {
                Provider.ANTHROPIC: AnthropicClient(),
                Provider.OPENAI: OpenAIClient(),
                Provider.OLLAMA: OllamaClient(base_url=ollama_base_url),
            }
        self._clients: dict[Provider, LLMClient] = dict(clients)

    def get_client(self, provider: Provider) -> LLMClient:
        """Return the client registered for a provider.

        Raises:
            CompletionFailedError: If no client is registered for it
        """
        client = self._clients.get(provider)
        if client is None:
            available = ", ".join(p.value for p in self._clients)
            raise CompletionFailedError(
                f'Unknown LLM provider: "{provider.value}". Available providers: {available}.',
                provider=provider.value,
                code="UNKNOWN_PROVIDER",
            )
        return client

    def set_client(self, provider: Provider, client: LLMClient) -> None:
        """Register or replace the client for a provider."""
        self._clients[provider] = client

    def is_provider_configured(self, provider: Provider) -> bool:
        client = self._clients.get(provider)
        return client.is_configured() if client else False

    def available_providers(self) -> list[tuple[Provider, bool]]:
        """All providers with their configuration status."""
        return [(provider, self.is_provider_configured(provider)) for provider in Provider]

    def _configured_client(self, provider: Provider) -> LLMClient:
        client = self.get_client(provider)
        if not client.is_configured():
            raise CompletionFailedError(
                f'Provider "{provider.value}" is not configured. '
                "Please provide the required API key or configuration.",
                provider=provider.value,
                code="PROVIDER_NOT_CONFIGURED",
            )
        return client

    def complete(
        self,
        provider: Provider,
        request: CompletionRequest,
        cancellation: Cancellation | None = None,
    ) -> CompletionResponse:
        """Run a completion on the given provider.

        Raises:
            CompletionFailedError: If the provider is unusable or the request fails
        """
        client = self._configured_client(provider)
        logger.debug(f"Completing with {provider.value} ({request.model})")
        try:
            return client.complete(request, cancellation)
        except Exception as e:
            raise wrap_provider_error(e, provider) from e

    def stream(
        self,
        provider: Provider,
        request: CompletionRequest,
        cancellation: Cancellation | None = None,
    ) -> Iterator[StreamChunk]:
        """Stream a completion on the given provider.

        Cancelling ``cancellation`` stops only this stream; other requests on
        the same client keep running.

        Raises:
            CompletionFailedError: If the provider is unusable or the stream fails
        """
        client = self._configured_client(provider)
        logger.debug(f"Streaming from {provider.value} ({request.model})")
        try:
            yield from client.stream(request, cancellation)
        except Exception as e:
            raise wrap_provider_error(e, provider) from e
