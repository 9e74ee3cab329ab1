"""Text-completion client used by every judged assessment.

The concierge treats the language model as an external collaborator
behind a small protocol. The production implementation talks to any
OpenAI-compatible endpoint through LangChain's ChatOpenAI client, bounds
every call with a timeout and parses JSON answers, tolerating the usual
markdown code fences.

Callers are responsible for degrading gracefully: every consumer in the
concierge catches LLMError and falls back to a deterministic default.

Source:
- src/concierge/config.py (llm_url, llm_model, llm_timeout_seconds)
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI


logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when a completion call or its parsing fails.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception that caused the failure.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class LLMTimeoutError(LLMError):
    """Raised when a completion call exceeds its timeout."""


@runtime_checkable
class CompletionClient(Protocol):
    """Protocol for JSON-answering completion clients."""

    async def complete_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        """Run one completion and return the parsed JSON object.

        Raises:
            LLMError: If the call fails, times out or returns invalid JSON.
        """
        ...


def parse_json_response(response_text: str) -> Dict[str, Any]:
    """Parse a completion into a JSON object.

    Handles common LLM response quirks like markdown code blocks and
    short prose around the object.

    Args:
        response_text: Raw text response from the LLM.

    Returns:
        Parsed dictionary from the JSON response.

    Raises:
        json.JSONDecodeError: If the response is not valid JSON.
        ValueError: If the JSON is not an object.
    """
    text = response_text.strip()

    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]

    if text.endswith("```"):
        text = text[:-3]

    text = text.strip()
    if not text.startswith("{"):
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            text = text[start:end + 1]

    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class ChatCompletionClient:
    """CompletionClient backed by an OpenAI-compatible endpoint.

    Attributes:
        llm_url: URL of the OpenAI-compatible endpoint.
        model_name: Name of the model to use for inference.
        timeout: Upper bound in seconds for a single call.
        temperature: Sampling temperature for the LLM.

    Example:
        >>> client = ChatCompletionClient(
        ...     llm_url="http://localhost:8000/v1",
        ...     model_name="gpt-4o-mini",
        ... )
        >>> data = await client.complete_json("Answer in JSON.", "Is this a bug?")
    """

    def __init__(
        self,
        llm_url: str,
        model_name: str,
        timeout: float = 30.0,
        temperature: float = 0.1,
        api_key: str = "not-needed",
    ):
        self.llm_url = llm_url
        self.model_name = model_name
        self.timeout = timeout
        self.temperature = temperature
        self._api_key = api_key
        self._llm: Optional[ChatOpenAI] = None

    @property
    def llm(self) -> ChatOpenAI:
        """Get the LLM client, creating it if necessary."""
        if self._llm is None:
            self._llm = ChatOpenAI(
                base_url=self.llm_url,
                model=self.model_name,
                temperature=self.temperature,
                timeout=self.timeout,
                api_key=self._api_key,
            )
        return self._llm

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Run one completion and return the raw text.

        Raises:
            LLMTimeoutError: If the call exceeds the timeout.
            LLMError: If the call fails or returns non-text content.
        """
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt),
        ]

        try:
            response = await asyncio.wait_for(
                self.llm.ainvoke(messages),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                "LLM call timed out",
                extra={"model": self.model_name, "timeout": self.timeout},
            )
            raise LLMTimeoutError(f"LLM call exceeded {self.timeout}s", cause=e)
        except Exception as e:
            raise LLMError(f"LLM invocation failed: {e}", cause=e)

        content = response.content
        if not isinstance(content, str):
            raise LLMError(f"Unexpected response type: {type(content)}")
        return content

    async def complete_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        """Run one completion and parse the JSON object it returns.

        Raises:
            LLMError: If the call fails or the answer is not a JSON object.
        """
        text = await self.complete(system_prompt, user_prompt)
        try:
            return parse_json_response(text)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(
                "Failed to parse LLM response as JSON",
                extra={"response_preview": text[:200], "error": str(e)},
            )
            raise LLMError(f"Invalid JSON response: {e}", cause=e)
