"""
Claude API Client

Generates the assistant's free-text chat replies. Only the wording comes
from the model: booking outcomes are produced by the scheduling core and
override whatever the model says.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AsyncAnthropic,
    RateLimitError,
)

from app.config import get_settings

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (RateLimitError, APIConnectionError, APITimeoutError)


class ClaudeClientError(Exception):
    """Raised when no model produced a reply."""
    pass


@dataclass
class ClaudeResponse:
    """One generated reply."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: str
    latency_ms: float


def prepare_history(messages: list[dict]) -> list[dict]:
    """
    Shape chat history for the Messages API.

    Drops empty turns, merges consecutive turns of the same role (the chat
    log can hold several customer messages in a row) and drops leading
    assistant turns.
    """
    prepared: list[dict] = []
    for message in messages:
        role = message.get("role")
        content = (message.get("content") or "").strip()
        if role not in ("user", "assistant") or not content:
            continue
        if prepared and prepared[-1]["role"] == role:
            prepared[-1]["content"] += "\n" + content
        elif prepared or role == "user":
            prepared.append({"role": role, "content": content})
    return prepared


class ClaudeClient:
    """
    Async chat-reply client.

    Tries the chat model, then the fallback model; each model gets a few
    attempts with exponential backoff on rate limits and transport errors.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        max_retries: int = 3,
    ):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to settings)
            model: Chat model (defaults to settings)
            fallback_model: Model tried when the chat model fails
            max_retries: Attempts per model for retryable errors

        Raises:
            ValueError: if no API key is available
        """
        settings = get_settings()
        api_key = api_key or settings.anthropic_api_key
        if not api_key:
            raise ValueError("Anthropic API key is required")

        self._client = AsyncAnthropic(api_key=api_key)
        self.model = model or settings.claude_chat_model
        self.fallback_model = fallback_model or settings.claude_fallback_model
        self.max_tokens = settings.claude_max_tokens
        self.temperature = settings.claude_temperature
        self.max_retries = max_retries

        logger.info(f"ClaudeClient initialized with model={self.model}")

    async def generate(
        self,
        messages: list[dict],
        system_prompt: Optional[str] = None,
    ) -> ClaudeResponse:
        """
        Generate the next assistant turn.

        Args:
            messages: History as [{"role": "user"|"assistant", "content": str}],
                ending with the customer's latest message
            system_prompt: Persona and business context

        Returns:
            ClaudeResponse with the reply text

        Raises:
            ClaudeClientError: if the history is empty or every model failed
        """
        history = prepare_history(messages)
        if not history or history[-1]["role"] != "user":
            raise ClaudeClientError("Conversation must end with a customer message")

        models = [self.model]
        if self.fallback_model and self.fallback_model != self.model:
            models.append(self.fallback_model)

        last_error: Optional[Exception] = None
        for model in models:
            started = time.monotonic()
            try:
                response = await self._create(model, history, system_prompt)
            except (APIError, ClaudeClientError) as e:
                logger.warning(f"Model {model} failed: {e}")
                last_error = e
                continue

            text = "".join(
                block.text for block in response.content if getattr(block, "type", "") == "text"
            )
            return ClaudeResponse(
                content=text,
                model=model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                stop_reason=response.stop_reason,
                latency_ms=(time.monotonic() - started) * 1000,
            )

        raise ClaudeClientError(f"Claude API call failed: {last_error}") from last_error

    async def _create(
        self,
        model: str,
        history: list[dict],
        system_prompt: Optional[str],
    ) -> Any:
        """One model, retried with backoff on retryable errors."""
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": history,
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        for attempt in range(self.max_retries):
            try:
                return await self._client.messages.create(**kwargs)
            except RETRYABLE_ERRORS as e:
                if attempt + 1 == self.max_retries:
                    raise
                wait_time = 2 ** attempt
                logger.warning(
                    f"{type(e).__name__} from {model}, retrying in {wait_time}s "
                    f"(attempt {attempt + 1})"
                )
                await asyncio.sleep(wait_time)

        raise ClaudeClientError("No attempts configured")

    async def close(self) -> None:
        """Close the client."""
        await self._client.close()
