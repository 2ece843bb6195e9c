"""OpenAI provider client."""

import os
from typing import Iterator

import openai
from openai import OpenAI

from .base import (
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
    if isinstance(error, openai.APIStatusError):
        return error_for_status("OpenAI", error.status_code, error.message)
    if isinstance(error, openai.APIConnectionError):
        return ProviderError(
            "Network error. Please check your internet connection.",
            "NETWORK_ERROR", None, True,
        )
    return ProviderError(f"Unexpected error: {error}", "UNKNOWN", None, False)


class OpenAIClient(LLMClient):
    """Chat completions via the official openai SDK."""

    provider = Provider.OPENAI

    def __init__(self, api_key: str | None = None, client: OpenAI | None = None):
        key = api_key or os.environ.get("OPENAI_API_KEY")
        if client is None and key:
            client = OpenAI(api_key=key)
        self._client = client

    def is_configured(self) -> bool:
        return self._client is not None

    def _require_client(self) -> OpenAI:
        if self._client is None:
            raise ProviderError(
                "OpenAI client not configured. Please provide an API key.",
                "NOT_CONFIGURED",
            )
        return self._client

    def _request_kwargs(self, request: CompletionRequest) -> dict:
        # OpenAI takes system prompts inline with the other messages
        kwargs = {
            "model": request.model,
            "messages": [m.model_dump() for m in request.messages],
        }
        if request.max_tokens is not None:
            kwargs["max_tokens"] = request.max_tokens
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
            response = client.chat.completions.create(**self._request_kwargs(request))
        except Exception as e:
            raise _parse_error(e) from e

        cancellation.check()

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError(
                "No content received from OpenAI. The model returned an empty response.",
                "EMPTY_RESPONSE", None, True,
            )

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return CompletionResponse(content=content, model=response.model, usage=usage)

    def stream(
        self, request: CompletionRequest, cancellation: Cancellation | None = None
    ) -> Iterator[StreamChunk]:
        client = self._require_client()
        cancellation = cancellation or Cancellation()
        cancellation.check()

        try:
            chunks = client.chat.completions.create(**self._request_kwargs(request), stream=True)
        except Exception as e:
            raise _parse_error(e) from e
        cancellation.close_on_cancel(chunks)

        try:
            for chunk in chunks:
                cancellation.check()
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                text = choice.delta.content or ""
                if text:
                    yield StreamChunk(content=text, done=False, model=chunk.model)
                if choice.finish_reason is not None:
                    yield StreamChunk(content="", done=True, model=chunk.model)
                    break
        except ProviderError:
            raise
        except Exception as e:
            if cancellation.cancelled:
                raise ProviderError("Request was cancelled.", "ABORTED") from e
            raise _parse_error(e) from e
