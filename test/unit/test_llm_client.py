"""Unit tests for the LiteLLM-backed chat client."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

import pipeline_crm.llm as llm_module
from pipeline_crm.llm import LLMClient, _parse_arguments, tool_spec


def _response(content, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def test_model_prefix_is_normalized() -> None:
    assert LLMClient("anthropic:claude-x").model == "anthropic/claude-x"
    assert LLMClient("openai/gpt-4o").model == "openai/gpt-4o"


def test_tool_spec_defaults_schema() -> None:
    spec = tool_spec("list_deals", None, None)

    assert spec["function"]["description"] == ""
    assert spec["function"]["parameters"] == {"type": "object", "properties": {}}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [('{"a": 1}', {"a": 1}), ({"b": 2}, {"b": 2}), ("", {}), ("not json", {}), ("[1]", {})],
)
def test_parse_arguments(raw, expected) -> None:
    assert _parse_arguments(raw) == expected


@pytest.mark.asyncio
async def test_chat_prepends_system_and_normalizes_tool_calls(monkeypatch) -> None:
    captured = {}

    async def fake_acompletion(**kwargs):
        captured.update(kwargs)
        return _response("Checking", [_tool_call("c1", "list_deals", '{"stage": "lead"}')])

    monkeypatch.setattr(llm_module, "acompletion", fake_acompletion)
    client = LLMClient("anthropic/claude-x", api_key="sk-test")
    tools = [tool_spec("list_deals", "List deals", None)]

    turn = await client.chat("system", [{"role": "user", "content": "hi"}], tools)

    assert captured["messages"][0] == {"role": "system", "content": "system"}
    assert captured["tools"] == tools
    assert captured["api_key"] == "sk-test"
    assert turn.text == "Checking"
    assert turn.tool_calls[0].name == "list_deals"
    assert turn.tool_calls[0].arguments == {"stage": "lead"}
    assert turn.message["tool_calls"][0]["id"] == "c1"


@pytest.mark.asyncio
async def test_chat_without_tools_omits_tool_arguments(monkeypatch) -> None:
    captured = {}

    async def fake_acompletion(**kwargs):
        captured.update(kwargs)
        return _response(None)

    monkeypatch.setattr(llm_module, "acompletion", fake_acompletion)

    turn = await LLMClient("openai/gpt-4o", api_key="sk-test").chat("s", [])

    assert "tools" not in captured
    assert "api_key" not in captured
    assert turn.text == ""
    assert turn.tool_calls == []
    assert "tool_calls" not in turn.message
