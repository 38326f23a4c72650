"""Component wiring for one CLI invocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cached_property

from pipeline_crm.actions.handlers import build_default_registry
from pipeline_crm.actions.registry import ActionRegistry
from pipeline_crm.agents.catalog import AgentCatalog
from pipeline_crm.agents.runner import AgentRunner, external_transport
from pipeline_crm.approvals.proposals import ProposalService
from pipeline_crm.approvals.workflow import ApprovalWorkflow
from pipeline_crm.config import Settings
from pipeline_crm.domain.store import DomainStore
from pipeline_crm.events.processor import EventProcessor
from pipeline_crm.events.scanner import TimeEventScanner
from pipeline_crm.events.store import EventStore
from pipeline_crm.llm import LLMClient
from pipeline_crm.memory.store import AgentMemoryStore
from pipeline_crm.scheduler.service import ScheduleRunner, ScheduleService
from pipeline_crm.services.audit import AuditLog
from pipeline_crm.services.database import Database
from pipeline_crm.services.email import EmailSender, build_email_sender
from pipeline_crm.tools.server import ToolContext, build_tool_server

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Lazily built components sharing one database handle.

    The database is migrated on first use and disposed by ``close``.
    """

    settings: Settings
    as_json: bool = False
    verbose: bool = False
    llm: LLMClient | None = None
    email_sender: EmailSender | None = None
    _database: Database | None = field(default=None, repr=False)

    @property
    def database(self) -> Database:
        if self._database is None:
            database = Database(self.settings.database.url)
            database.migrate()
            self._database = database
        return self._database

    def close(self) -> None:
        """Dispose the database handle if one was opened."""
        if self._database is not None:
            self._database.dispose()
            self._database = None

    @property
    def session_factory(self):
        return self.database.session_factory

    @cached_property
    def events(self) -> EventStore:
        return EventStore(self.session_factory)

    @cached_property
    def domain(self) -> DomainStore:
        return DomainStore(
            self.session_factory,
            stages=self.settings.pipeline.stages,
            events=self.events,
        )

    @cached_property
    def memory(self) -> AgentMemoryStore:
        return AgentMemoryStore(self.session_factory)

    @cached_property
    def audit(self) -> AuditLog:
        return AuditLog(self.session_factory, max_rows=self.settings.audit.max_rows)

    @cached_property
    def registry(self) -> ActionRegistry:
        sender = self.email_sender or build_email_sender(self.settings.email)
        return build_default_registry(self.domain, sender)

    @cached_property
    def proposals(self) -> ProposalService:
        return ProposalService(self.session_factory, self.memory)

    @cached_property
    def approvals(self) -> ApprovalWorkflow:
        return ApprovalWorkflow(self.session_factory, self.registry, self.memory)

    @cached_property
    def catalog(self) -> AgentCatalog:
        return AgentCatalog(self.settings.agent.agents_dir)

    @cached_property
    def scanner(self) -> TimeEventScanner:
        return TimeEventScanner(
            self.events,
            self.domain,
            stale_days=self.settings.scanner.stale_days,
        )

    @cached_property
    def processor(self) -> EventProcessor:
        return EventProcessor(self.events)

    @cached_property
    def schedules(self) -> ScheduleService:
        return ScheduleService(self.session_factory, self.catalog)

    def tool_context(self, agent_name: str | None, run_id: str | None) -> ToolContext:
        """Return the tool server context for a run."""
        return ToolContext(
            domain=self.domain,
            proposals=self.proposals,
            memory=self.memory,
            agent_name=agent_name,
            run_id=run_id,
            stale_days=self.settings.scanner.stale_days,
        )

    @cached_property
    def runner(self) -> AgentRunner:
        return AgentRunner(
            self.llm or LLMClient.from_settings(self.settings),
            lambda agent_name, run_id: build_tool_server(self.tool_context(agent_name, run_id)),
            audit=self.audit,
            external=external_transport(self.settings.integrations),
            max_turns=self.settings.agent.max_turns,
        )

    @cached_property
    def schedule_runner(self) -> ScheduleRunner:
        return ScheduleRunner(
            self.session_factory,
            self.schedules,
            self.catalog,
            self.runner,
            self.approvals,
            auto_approve=self.settings.agent.auto_approve,
        )
