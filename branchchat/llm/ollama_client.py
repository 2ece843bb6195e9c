"""Ollama provider client (local models over HTTP)."""

import json
import logging
import os
from typing import Iterator

import requests

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

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
REQUEST_TIMEOUT_SECONDS = 300


class OllamaClient(LLMClient):
    """Chat completions against an Ollama server's ``/api/chat`` endpoint."""

    provider = Provider.OLLAMA

    def __init__(self, base_url: str | None = None, session: requests.Session | None = None):
        self.base_url = (
            base_url or os.environ.get("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL
        ).rstrip("/")
        self._session = session or requests.Session()

    def is_configured(self) -> bool:
        # No API key needed
        return True

    def _payload(self, request: CompletionRequest, stream: bool) -> dict:
        options = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        return {
            "model": request.model,
            "messages": [m.model_dump() for m in request.messages],
            "stream": stream,
            "options": options,
        }

    def _post(self, request: CompletionRequest, stream: bool) -> requests.Response:
        try:
            response = self._session.post(
                f"{self.base_url}/api/chat",
                json=self._payload(request, stream),
                stream=stream,
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.exceptions.ConnectionError as e:
            raise ProviderError(
                f"Cannot connect to Ollama at {self.base_url}. Is it running?",
                "NETWORK_ERROR", None, True,
            ) from e
        except requests.exceptions.Timeout as e:
            raise ProviderError(
                "Request timed out. The server took too long to respond.",
                "TIMEOUT", None, True,
            ) from e

        if response.status_code != 200:
            detail = response.text
            response.close()
            raise error_for_status("Ollama", response.status_code, detail)
        return response

    def complete(
        self, request: CompletionRequest, cancellation: Cancellation | None = None
    ) -> CompletionResponse:
        cancellation = cancellation or Cancellation()
        cancellation.check()
        response = self._post(request, stream=False)
        data = response.json()

        cancellation.check()

        usage = None
        if "prompt_eval_count" in data and "eval_count" in data:
            usage = TokenUsage(
                prompt_tokens=data["prompt_eval_count"],
                completion_tokens=data["eval_count"],
                total_tokens=data["prompt_eval_count"] + data["eval_count"],
            )

        return CompletionResponse(
            content=data.get("message", {}).get("content", ""),
            model=data.get("model", request.model),
            usage=usage,
        )

    def stream(
        self, request: CompletionRequest, cancellation: Cancellation | None = None
    ) -> Iterator[StreamChunk]:
        cancellation = cancellation or Cancellation()
        cancellation.check()
        response = self._post(request, stream=True)
        cancellation.close_on_cancel(response)

        try:
            for line in response.iter_lines():
                cancellation.check()
                if not line:
                    continue

                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug(f"Skipping malformed Ollama stream line: {line!r}")
                    continue

                done = bool(data.get("done", False))
                yield StreamChunk(
                    content=data.get("message", {}).get("content", ""),
                    done=done,
                    model=data.get("model"),
                )
                if done:
                    break
        except requests.exceptions.RequestException as e:
            if cancellation.cancelled:
                raise ProviderError("Request was cancelled.", "ABORTED") from e
            raise ProviderError(f"Ollama stream failed: {e}", "NETWORK_ERROR", None, True) from e
        finally:
            response.close()
