"""Anthropic (Claude) provider client."""

import os
from typing import Iterator

import anthropic
from anthropic import Anthropic

from .base import (
    DEFAULT_MAX_TOKENS,
    Cancellation,
    CompletionRequest,
    CompletionResponse,
    LLMClient,
    Provider,
    ProviderError,
    StreamChunk,
    TokenUsage,
    error_for_status,
)


def _parse_error(error: Exception) -> ProviderError:
    """Translate an SDK exception into a ProviderError."""
    if isinstance(error, ProviderError):
        return error
    if isinstance(error, anthropic.APIStatusError):
        return error_for_status("Anthropic", error.status_code, error.message)
    if isinstance(error, anthropic.APIConnectionError):
        return ProviderError(
            "Network error. Please check your internet connection.",
            "NETWORK_ERROR", None, True,
        )
    return ProviderError(f"Unexpected error: {error}", "UNKNOWN", None, False)


class AnthropicClient(LLMClient):
    """Claude via the official anthropic SDK."""

    provider = Provider.ANTHROPIC

    def __init__(self, api_key: str | None = None, client: Anthropic | None = None):
        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if client is None and key:
            client = Anthropic(api_key=key)
        self._client = client

    def is_configured(self) -> bool:
        return self._client is not None

    def _require_client(self) -> Anthropic:
        if self._client is None:
            raise ProviderError(
                "Anthropic client not configured. Please provide an API key.",
                "NOT_CONFIGURED",
            )
        return self._client

    def _request_kwargs(self, request: CompletionRequest) -> dict:
        kwargs = {
            "model": request.model,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": request.dialogue(),
        }
        system = request.system_prompt()
        if system:
            kwargs["system"] = system
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        return kwargs

    def complete(
        self, request: CompletionRequest, cancellation: Cancellation | None = None
    ) -> CompletionResponse:
        client = self._require_client()
        cancellation = cancellation or Cancellation()
        cancellation.check()

        try:
            response = client.messages.create(**self._request_kwargs(request))
        except Exception as e:
            raise _parse_error(e) from e

        cancellation.check()

        content = ""
        for block in response.content:
            if getattr(block, "type", None) == "text":
                content += block.text

        if not content:
            raise ProviderError(
                "No text content received from Anthropic. The model returned an empty response.",
                "EMPTY_RESPONSE", None, True,
            )

        return CompletionResponse(
            content=content,
            model=response.model,
            usage=TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            ),
        )

    def stream(
        self, request: CompletionRequest, cancellation: Cancellation | None = None
    ) -> Iterator[StreamChunk]:
        client = self._require_client()
        cancellation = cancellation or Cancellation()
        cancellation.check()

        try:
            events = client.messages.create(**self._request_kwargs(request), stream=True)
        except Exception as e:
            raise _parse_error(e) from e
        cancellation.close_on_cancel(events)

        model = request.model
        try:
            for event in events:
                cancellation.check()

                if event.type == "message_start":
                    model = event.message.model
                elif event.type == "content_block_delta" and event.delta.type == "text_delta":
                    yield StreamChunk(content=event.delta.text, done=False, model=model)
                elif event.type == "message_stop":
                    yield StreamChunk(content="", done=True, model=model)
                    break
        except ProviderError:
            raise
        except Exception as e:
            if cancellation.cancelled:
                raise ProviderError("Request was cancelled.", "ABORTED") from e
            raise _parse_error(e) from e
