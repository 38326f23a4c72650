"""Built-in and user-defined agent definitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentDefinition:
    """Named system prompt an agent run starts from."""

    name: str
    description: str
    prompt: str
    source: str = "builtin"


BUILTIN_AGENTS: tuple[AgentDefinition, ...] = (
    AgentDefinition(
        name="follow-up",
        description="Check stale contacts and propose follow-up emails",
        prompt=(
            "You are a follow-up specialist. Your job is to:\n"
            "1. Use get_stale_contacts to find contacts who have not been contacted "
            "recently (default: 14 days)\n"
            "2. For each stale contact, use get_contact_with_history to understand the "
            "relationship\n"
            "3. Use recall_memory to check what was already proposed and how it was "
            "received\n"
            '4. Propose follow-ups using propose_action with action_type "send_email"\n'
            "5. Include personalized reasoning based on their history\n\n"
            "Be specific about why each follow-up is needed and suggest a brief email "
            "subject and body."
        ),
    ),
    AgentDefinition(
        name="enrich",
        description="Research a contact and propose record updates",
        prompt=(
            "You are a contact enrichment specialist. Your job is to:\n"
            "1. Use search_contacts to find the specified contact\n"
            "2. Use get_contact_with_history to see what information we have\n"
            "3. Identify gaps in their profile such as missing company or role\n"
            '4. Propose updates with propose_action ("update_warmth", "log_note", '
            '"create_edge")\n'
            "5. Suggest what additional information would be valuable\n\n"
            "Report what you found and what you proposed."
        ),
    ),
    AgentDefinition(
        name="digest",
        description="Morning pipeline briefing and daily digest",
        prompt=(
            "You are a CRM digest specialist. Create a morning briefing by:\n"
            "1. Use list_deals to see all active deals and summarize them by stage with "
            "total values\n"
            "2. Use get_stale_contacts with days=7 to find contacts needing attention\n"
            "3. Use list_tasks with overdue=true to find slipping work\n"
            "4. Check for deals in late stages (proposal, negotiation) that need action\n"
            "5. Provide a prioritized action list for today\n\n"
            "Format as a clean, scannable briefing with sections: Pipeline Summary, "
            "Urgent Actions, Follow-ups Needed."
        ),
    ),
    AgentDefinition(
        name="qualify",
        description="Assess deal health and qualification",
        prompt=(
            "You are a deal qualification specialist. For the specified deal:\n"
            "1. Use list_deals to find the deal\n"
            "2. Use get_deal_detail to understand its contact, interactions and tasks\n"
            "3. Assess deal health based on activity recency, contact warmth, deal value "
            "against stage, and time in the current stage\n"
            "4. Provide a qualification score (1-10) with reasoning\n"
            '5. Propose next steps with propose_action ("update_priority", '
            '"create_task", "update_stage")\n\n'
            "Be honest about deal risks and opportunities."
        ),
    ),
)


def load_agent_file(path: Path) -> AgentDefinition:
    """Parse a markdown agent file: first line is the description, the rest the prompt."""
    content = path.read_text(encoding="utf-8")
    first, _, rest = content.partition("\n")
    return AgentDefinition(
        name=path.stem,
        description=first.lstrip("#").strip(),
        prompt=rest.strip(),
        source="custom",
    )


class AgentCatalog:
    """Lookup over built-in agents followed by ``*.md`` files in the agents directory."""

    def __init__(
        self,
        agents_dir: Path | str | None = None,
        *,
        builtins: tuple[AgentDefinition, ...] = BUILTIN_AGENTS,
    ) -> None:
        self._agents_dir = Path(agents_dir).expanduser() if agents_dir else None
        self._builtins = builtins

    def custom(self) -> list[AgentDefinition]:
        """Return agents defined as markdown files, sorted by name."""
        if self._agents_dir is None or not self._agents_dir.is_dir():
            return []
        agents = []
        for path in sorted(self._agents_dir.glob("*.md")):
            try:
                agents.append(load_agent_file(path))
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable agent file %s: %s", path, exc)
        return agents

    def list(self) -> list[AgentDefinition]:
        """Return all agents; built-ins shadow custom agents of the same name."""
        agents = list(self._builtins)
        seen = {agent.name for agent in agents}
        for agent in self.custom():
            if agent.name in seen:
                logger.debug("Custom agent %s shadowed by built-in", agent.name)
                continue
            agents.append(agent)
            seen.add(agent.name)
        return agents

    def get(self, name: str) -> AgentDefinition | None:
        """Return the agent with the given name, if any."""
        for agent in self.list():
            if agent.name == name:
                return agent
        return None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None
