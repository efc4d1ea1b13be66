import os
import time
from typing import Any, Protocol

from anthropic import APIError, AsyncAnthropic

from pchealth.config import DEFAULT_MODEL
from pchealth.errors import ReasoningServiceError
from pchealth.models.schemas import TokenUsage
from pchealth.utils.logger import get_logger

logger = get_logger(__name__)


class ReasoningService(Protocol):
    """The conversational capability the agents depend on.

    `chat_with_tools` returns an object shaped like an Anthropic Message:
    `.stop_reason`, `.content` (blocks with `.type` of "text" or "tool_use")
    and `.usage` (`input_tokens`, `output_tokens`).
    """

    async def chat_with_tools(
        self,
        system: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.0,
    ) -> Any: ...

    def get_total_usage(self) -> TokenUsage: ...


class AnthropicClient:
    """Anthropic API client with cumulative token tracking."""

    def __init__(self, agent_name: str = "unknown", model: str = DEFAULT_MODEL, api_key: str | None = None):
        self.agent_name = agent_name
        self.model = model  # Caller handles resolution
        self._client = AsyncAnthropic(api_key=api_key or os.getenv("ANTHROPIC_API_KEY"))
        self._total_input_tokens = 0
        self._total_output_tokens = 0

    async def chat_with_tools(
        self,
        system: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.0,
    ):
        """Send a message with tool definitions. Returns raw Anthropic response object."""
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": messages,
            "temperature": temperature,
        }
        if tools:
            kwargs["tools"] = tools

        logger.info("LLM call", extra={
            "agent_name": self.agent_name,
            "action": "llm_call",
            "tool": self.model,
            "extra": {
                "system": (system[:500] + "...") if len(system) > 500 else system,
                "message_count": len(messages),
                "tool_count": len(tools) if tools else 0,
            },
        })

        return await self._create(kwargs)

    async def _create(self, kwargs: dict):
        start = time.monotonic()
        try:
            response = await self._client.messages.create(**kwargs)
        except APIError as e:
            logger.error("LLM call failed", extra={
                "agent_name": self.agent_name, "action": "llm_error", "extra": str(e)
            })
            raise ReasoningServiceError(f"Reasoning service request failed: {e}") from e

        elapsed_ms = round((time.monotonic() - start) * 1000)
        self._total_input_tokens += response.usage.input_tokens
        self._total_output_tokens += response.usage.output_tokens

        tool_names = [b.name for b in response.content if b.type == "tool_use"]
        text_preview = ""
        for b in response.content:
            if b.type == "text" and b.text:
                text_preview = b.text[:1000] + "..." if len(b.text) > 1000 else b.text

        logger.info("LLM response", extra={
            "agent_name": self.agent_name,
            "action": "llm_response",
            "tokens": {"input": response.usage.input_tokens, "output": response.usage.output_tokens},
            "duration_ms": elapsed_ms,
            "extra": {
                "stop_reason": response.stop_reason,
                "tool_calls": tool_names if tool_names else None,
                "response_text": text_preview if text_preview else None,
            },
        })

        return response

    def get_total_usage(self) -> TokenUsage:
        """Get cumulative token usage for this client instance."""
        return TokenUsage(
            agent_name=self.agent_name,
            input_tokens=self._total_input_tokens,
            output_tokens=self._total_output_tokens,
            total_tokens=self._total_input_tokens + self._total_output_tokens,
        )
