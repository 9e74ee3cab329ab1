"""Text-completion client abstraction."""

from src.concierge.llm.client import (
    ChatCompletionClient,
    CompletionClient,
    LLMError,
    LLMTimeoutError,
    parse_json_response,
)

__all__ = [
    "ChatCompletionClient",
    "CompletionClient",
    "LLMError",
    "LLMTimeoutError",
    "parse_json_response",
]
