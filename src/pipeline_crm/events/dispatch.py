"""Run the agents named by processed triggers, once per agent."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from pipeline_crm.agents.catalog import AgentCatalog
from pipeline_crm.events.processor import TriggerResult
from pipeline_crm.scheduler.service import AgentRunnerProtocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of dispatching one agent for a trigger."""

    agent_name: str
    event_type: str
    status: str
    detail: str = ""


def event_prompt(event_type: str) -> str:
    return f"Triggered by event: {event_type}. Review and act as appropriate."


async def dispatch_triggers(
    triggers: Iterable[TriggerResult],
    catalog: AgentCatalog,
    runner: AgentRunnerProtocol,
    *,
    verbose: bool = False,
    on_text: Callable[[str], None] | None = None,
) -> list[DispatchOutcome]:
    """Run each distinct agent once; the first trigger for an agent wins.

    A failing agent is recorded and the remaining agents still run.
    """
    outcomes: list[DispatchOutcome] = []
    seen: set[str] = set()
    for trigger in triggers:
        if trigger.agent_name in seen:
            continue
        seen.add(trigger.agent_name)

        agent = catalog.get(trigger.agent_name)
        if agent is None:
            logger.warning("Hook references unknown agent: %s", trigger.agent_name)
            outcomes.append(
                DispatchOutcome(
                    agent_name=trigger.agent_name,
                    event_type=trigger.event_type,
                    status="skipped",
                    detail=f"Agent not found: {trigger.agent_name}",
                )
            )
            continue

        try:
            run_id = await runner.run(
                event_prompt(trigger.event_type),
                agent.prompt,
                agent_name=agent.name,
                verbose=verbose,
                on_text=on_text,
            )
        except Exception as exc:
            logger.exception("Triggered agent %s failed", agent.name)
            outcomes.append(
                DispatchOutcome(
                    agent_name=agent.name,
                    event_type=trigger.event_type,
                    status="failed",
                    detail=str(exc) or exc.__class__.__name__,
                )
            )
            continue
        outcomes.append(
            DispatchOutcome(
                agent_name=agent.name,
                event_type=trigger.event_type,
                status="done",
                detail=f"run {run_id}",
            )
        )
    return outcomes
