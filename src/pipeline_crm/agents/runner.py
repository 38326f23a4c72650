"""Tool-calling agent loop over the local and external tool servers."""

from __future__ import annotations

import json
import logging
import time
import uuid
from contextlib import AsyncExitStack
from typing import Any, Callable

from fastmcp import Client, FastMCP
from fastmcp.client.transports import StreamableHttpTransport

from pipeline_crm.config import IntegrationsConfig
from pipeline_crm.errors import AgentRunError
from pipeline_crm.llm import LLMClient, tool_spec
from pipeline_crm.services.audit import MAX_ARG_LENGTH, AuditLog, AuditRecord, truncate

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 25

ServerFactory = Callable[[str | None, str], FastMCP]


def external_transport(config: IntegrationsConfig) -> StreamableHttpTransport | None:
    """Return the streamable-HTTP transport for the integration server, if configured."""
    if not config.is_configured:
        return None
    headers = {"Authorization": f"Bearer {config.api_key}"} if config.api_key else {}
    if config.user_id:
        headers["X-User-Id"] = config.user_id
    return StreamableHttpTransport(config.mcp_url, headers=headers)


def _result_text(result: Any) -> str:
    """Join the text blocks of a tool result."""
    parts = [item.text for item in result.content if getattr(item, "text", None) is not None]
    return "\n".join(parts)


class AgentRunner:
    """Drive one agent conversation until the model stops calling tools.

    Each run gets its own local tool server bound to the run's agent name and
    run id. Tool names are resolved through a capability map built once per
    run; local tools win collisions with the external server.
    """

    def __init__(
        self,
        llm: LLMClient,
        server_factory: ServerFactory,
        *,
        audit: AuditLog | None = None,
        external: Any = None,
        max_turns: int = DEFAULT_MAX_TURNS,
    ) -> None:
        """Initialize the runner.

        Args:
            llm: Client producing normalized model turns
            server_factory: Builds the local tool server for (agent_name, run_id)
            audit: Audit log receiving one entry per tool call
            external: Optional fastmcp client target for integration tools
            max_turns: Upper bound on model calls per run
        """
        self._llm = llm
        self._server_factory = server_factory
        self._audit = audit
        self._external = external
        self._max_turns = max_turns

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
        """Run the agent to completion and return its run id."""
        run_id = run_id or uuid.uuid4().hex
        emit = on_text or (lambda _text: None)
        logger.info("Agent run started: agent=%s run=%s", agent_name or "-", run_id)

        async with AsyncExitStack() as stack:
            local = await stack.enter_async_context(
                Client(self._server_factory(agent_name, run_id))
            )
            connections: list[tuple[str, Client]] = [("local", local)]
            if self._external is not None:
                external = await stack.enter_async_context(Client(self._external))
                connections.append(("external", external))

            routes, tools = await self._capability_map(connections)
            messages: list[dict[str, Any]] = [{"role": "user", "content": prompt}]

            for _turn in range(self._max_turns):
                turn = await self._llm.chat(system_prompt, messages, tools)
                if turn.text:
                    emit(turn.text)
                if not turn.tool_calls:
                    logger.info("Agent run finished: agent=%s run=%s", agent_name or "-", run_id)
                    return run_id

                messages.append(turn.message)
                for call in turn.tool_calls:
                    if verbose:
                        emit(f"\n[Tool: {call.name}]")
                    content = await self._call_tool(routes, call.name, call.arguments, agent_name)
                    messages.append(
                        {"role": "tool", "tool_call_id": call.id, "content": content}
                    )

        raise AgentRunError(
            f"Agent {agent_name or 'agent'} exceeded {self._max_turns} turns without finishing"
        )

    async def _capability_map(
        self,
        connections: list[tuple[str, Client]],
    ) -> tuple[dict[str, Client], list[dict[str, Any]]]:
        """Map each tool name to the connection that owns it."""
        routes: dict[str, Client] = {}
        tools: list[dict[str, Any]] = []
        for label, client in connections:
            for tool in await client.list_tools():
                if tool.name in routes:
                    logger.warning(
                        "Dropping %s tool %s: name already provided locally", label, tool.name
                    )
                    continue
                routes[tool.name] = client
                tools.append(tool_spec(tool.name, tool.description, tool.inputSchema))
        return routes, tools

    async def _call_tool(
        self,
        routes: dict[str, Client],
        name: str,
        arguments: dict[str, Any],
        agent_name: str | None,
    ) -> str:
        """Dispatch a tool call and audit it; failures become ``Error:`` text."""
        started = time.monotonic()
        error: str | None = None
        client = routes.get(name)
        if client is None:
            error = f"Unknown tool: {name}"
            content = f"Error: {error}"
        else:
            try:
                content = _result_text(await client.call_tool(name, arguments))
            except Exception as exc:
                logger.warning("Tool %s failed: %s", name, exc)
                error = str(exc) or exc.__class__.__name__
                content = f"Error: {error}"

        if self._audit is not None:
            self._audit.write(
                AuditRecord(
                    actor=agent_name or "agent",
                    command=name,
                    args=truncate(json.dumps(arguments, default=str), MAX_ARG_LENGTH),
                    result="error" if error else "success",
                    error=error,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
            )
        return content
