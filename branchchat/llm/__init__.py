"""Completion providers behind one interface.

## Components

- base.py: Provider tag, request/response models, LLMClient interface
- anthropic_client.py / openai_client.py / ollama_client.py: provider clients
- manager.py: LLMManager registry selecting clients by Provider tag
"""

from .anthropic_client import AnthropicClient
from .base import (
    Cancellation,
    ChatMessage,
    CompletionRequest,
    CompletionResponse,
    LLMClient,
    Provider,
    ProviderError,
    StreamChunk,
    TokenUsage,
)
from .manager import LLMManager, wrap_provider_error
from .ollama_client import OllamaClient
from .openai_client import OpenAIClient

__all__ = [
    # Types
    "Provider",
    "ChatMessage",
    "CompletionRequest",
    "CompletionResponse",
    "StreamChunk",
    "TokenUsage",
    "ProviderError",
    "Cancellation",
    # Clients
    "LLMClient",
    "AnthropicClient",
    "OpenAIClient",
    "OllamaClient",
    # Manager
    "LLMManager",
    "wrap_provider_error",
]
