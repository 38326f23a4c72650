"""LLM client using LiteLLM for tool-calling chat turns."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from litellm import acompletion

from pipeline_crm.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCall:
    """A single tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class LLMTurn:
    """Normalized model response: text, requested tool calls, and the raw assistant message."""

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    message: dict[str, Any] = field(default_factory=dict)


def tool_spec(name: str, description: str | None, input_schema: dict[str, Any] | None) -> dict[str, Any]:
    """Render a tool definition in the function-calling format LiteLLM accepts."""
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description or "",
            "parameters": input_schema or {"type": "object", "properties": {}},
        },
    }


def _parse_arguments(raw: Any) -> dict[str, Any]:
    """Decode tool-call arguments, which providers send as a JSON string."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Tool call arguments were not valid JSON: %r", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


class LLMClient:
    """Wrapper around LiteLLM for consistent LLM access."""

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        timeout: int = 600,
    ) -> None:
        """Initialize the client for a model."""
        self.model = self._normalize_model_name(model)
        self._api_key = api_key
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        """Build a client from the agent section of the settings."""
        return cls(
            settings.agent.model,
            api_key=settings.anthropic_api_key,
            temperature=settings.agent.temperature,
            max_tokens=settings.agent.max_tokens,
            timeout=settings.agent.timeout,
        )

    def _normalize_model_name(self, model: str) -> str:
        """Normalize model name for LiteLLM compatibility.

        LiteLLM expects ``anthropic/<model>``; the ``anthropic:`` prefix is
        rewritten to that form.
        """
        if model.startswith("anthropic:"):
            return "anthropic/" + model[len("anthropic:") :]
        return model

    def _uses_anthropic(self) -> bool:
        """Return True if the configured model is an Anthropic model."""
        model = (self.model or "").lower()
        return "claude" in model or "anthropic" in model

    def _litellm_kwargs(self) -> dict[str, Any]:
        """Build LiteLLM keyword arguments from settings."""
        extra: dict[str, Any] = {}
        if self._api_key and self._uses_anthropic():
            extra["api_key"] = self._api_key
        return extra

    async def chat(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMTurn:
        """Send one turn of the conversation and normalize the reply.

        Args:
            system_prompt: System instructions for the agent
            messages: Conversation so far, excluding the system message
            tools: Function-calling tool definitions

        Returns:
            Normalized turn with text and tool calls
        """
        kwargs: dict[str, Any] = {}
        if tools:
            kwargs["tools"] = tools
        response = await acompletion(
            model=self.model,
            messages=[{"role": "system", "content": system_prompt}, *messages],
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            timeout=self._timeout,
            **self._litellm_kwargs(),
            **kwargs,
        )
        message = response.choices[0].message
        text = message.content or ""
        calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=_parse_arguments(call.function.arguments),
            )
            for call in (getattr(message, "tool_calls", None) or [])
        ]
        assistant: dict[str, Any] = {"role": "assistant", "content": text}
        if calls:
            assistant["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in calls
            ]
        return LLMTurn(text=text, tool_calls=calls, message=assistant)
