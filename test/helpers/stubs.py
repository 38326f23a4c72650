"""Test doubles for clocks, language models, agent runners, and email."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from pipeline_crm.errors import EmailSendError
from pipeline_crm.llm import LLMTurn, ToolCall
from pipeline_crm.services.email import EmailMessage, EmailResult

# Wednesday
DEFAULT_NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = DEFAULT_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


def tool_turn(*calls: tuple[str, dict[str, Any]], text: str = "") -> LLMTurn:
    """Build a model turn requesting the given (name, arguments) tool calls."""
    tool_calls = [
        ToolCall(id=f"call_{index}", name=name, arguments=arguments)
        for index, (name, arguments) in enumerate(calls)
    ]
    message = {
        "role": "assistant",
        "content": text,
        "tool_calls": [
            {"id": call.id, "type": "function", "function": {"name": call.name, "arguments": "{}"}}
            for call in tool_calls
        ],
    }
    return LLMTurn(text=text, tool_calls=tool_calls, message=message)


def text_turn(text: str) -> LLMTurn:
    return LLMTurn(text=text, message={"role": "assistant", "content": text})


class ScriptedLLM:
    """LLM stub replaying scripted turns and recording what it was sent."""

    def __init__(self, turns: Iterable[LLMTurn] = ()) -> None:
        self.turns = list(turns)
        self.calls: list[dict[str, Any]] = []

    async def chat(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMTurn:
        self.calls.append(
            {"system_prompt": system_prompt, "messages": list(messages), "tools": list(tools or [])}
        )
        if self.turns:
            return self.turns.pop(0)
        return text_turn("done")

    def tool_names(self, call_index: int = 0) -> list[str]:
        return [tool["function"]["name"] for tool in self.calls[call_index]["tools"]]


class LoopingLLM:
    """LLM stub that never stops calling tools."""

    def __init__(self) -> None:
        self.calls = 0

    async def chat(self, system_prompt, messages, tools=None) -> LLMTurn:
        self.calls += 1
        return tool_turn(("list_deals", {}))


class StubRunner:
    """Agent runner stub recording invocations and optionally failing."""

    def __init__(
        self,
        *,
        fail_for: Iterable[str] = (),
        output: str = "ran",
        side_effect: Callable[[str | None], None] | None = None,
    ) -> None:
        self.fail_for = set(fail_for)
        self.output = output
        self.side_effect = side_effect
        self.calls: list[dict[str, Any]] = []

    async def run(
        self,
        prompt: str,
        system_prompt: str,
        *,
        agent_name: str | None = None,
        run_id: str | None = None,
        verbose: bool = False,
        on_text: Callable[[str], None] | None = None,
    ) -> str:
        self.calls.append(
            {"prompt": prompt, "system_prompt": system_prompt, "agent_name": agent_name}
        )
        if agent_name in self.fail_for:
            raise RuntimeError(f"{agent_name} exploded")
        if self.side_effect is not None:
            self.side_effect(agent_name)
        if on_text is not None:
            on_text(self.output)
        return f"run-{len(self.calls)}"


class RecordingEmailSender:
    """Email sender that records messages and returns a fixed id."""

    provider = "test"

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    def send(self, message: EmailMessage) -> EmailResult:
        self.sent.append(message)
        return EmailResult(provider=self.provider, message_id=f"msg-{len(self.sent)}")


class FailingEmailSender:
    """Email sender that always fails."""

    provider = "test"

    def send(self, message: EmailMessage) -> EmailResult:
        raise EmailSendError("relay unavailable")
