"""Schedule management and the due-schedule runner."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pipeline_crm.agents.catalog import AgentCatalog
from pipeline_crm.approvals.workflow import ApprovalWorkflow
from pipeline_crm.errors import ConflictError, NotFoundError, ValidationError
from pipeline_crm.models import Schedule, ScheduleLog
from pipeline_crm.scheduler.intervals import INTERVALS, is_due, is_valid_interval
from pipeline_crm.services.database import run_in_session
from pipeline_crm.time_utils import utc_now

logger = logging.getLogger(__name__)


class AgentRunnerProtocol(Protocol):
    """Interface the scheduler uses to run one agent to completion."""

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
        """Run the agent and return its run id."""
        ...


@dataclass(frozen=True)
class RunResult:
    """Outcome of one scheduled agent run."""

    agent_name: str
    status: str
    actions_proposed: int
    output: str


class ScheduleService:
    """CRUD over schedules and read access to schedule logs."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        catalog: AgentCatalog,
    ) -> None:
        """Initialize the service with a session factory and the agent catalog."""
        self._session_factory = session_factory
        self._catalog = catalog

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        return run_in_session(self._session_factory, handler)

    def add(self, agent_name: str, interval: str) -> Schedule:
        """Create a schedule for an existing agent."""
        if self._catalog.get(agent_name) is None:
            raise NotFoundError("agent", agent_name, f'Agent not found: "{agent_name}"')
        if not is_valid_interval(interval):
            raise ValidationError(
                f'Invalid interval: "{interval}". Must be one of: {", ".join(INTERVALS)}'
            )

        def handler(session: Session) -> Schedule:
            existing = session.scalars(
                select(Schedule).where(Schedule.agent_name == agent_name)
            ).first()
            if existing is not None:
                raise ConflictError(f'Schedule already exists for "{agent_name}"')
            schedule = Schedule(agent_name=agent_name, interval=interval, enabled=True)
            session.add(schedule)
            session.flush()
            return schedule

        try:
            schedule = self._execute(handler)
        except IntegrityError as exc:
            raise ConflictError(f'Schedule already exists for "{agent_name}"') from exc
        logger.info("Schedule added: %s every %s", agent_name, interval)
        return schedule

    def remove(self, agent_name: str) -> None:
        """Delete the schedule for an agent."""

        def handler(session: Session) -> None:
            schedule = self._find(session, agent_name)
            session.delete(schedule)

        self._execute(handler)
        logger.info("Schedule removed: %s", agent_name)

    def get(self, agent_name: str) -> Schedule:
        """Fetch the schedule for an agent."""
        return self._execute(lambda session: self._find(session, agent_name))

    def list(self) -> list[Schedule]:
        """Return all schedules in creation order."""
        return self._execute(
            lambda session: list(session.scalars(select(Schedule).order_by(Schedule.id)))
        )

    def set_enabled(self, agent_name: str, enabled: bool) -> Schedule:
        """Enable or disable a schedule."""

        def handler(session: Session) -> Schedule:
            schedule = self._find(session, agent_name)
            schedule.enabled = enabled
            return schedule

        return self._execute(handler)

    def logs(self, limit: int = 20) -> list[ScheduleLog]:
        """Return the newest schedule log rows."""

        def handler(session: Session) -> list[ScheduleLog]:
            query = select(ScheduleLog).order_by(
                ScheduleLog.started_at.desc(), ScheduleLog.id.desc()
            )
            return list(session.scalars(query.limit(limit)))

        return self._execute(handler)

    @staticmethod
    def _find(session: Session, agent_name: str) -> Schedule:
        """Return the schedule row or raise when missing."""
        schedule = session.scalars(
            select(Schedule).where(Schedule.agent_name == agent_name)
        ).first()
        if schedule is None:
            raise NotFoundError(
                "schedule", agent_name, f'No schedule found for "{agent_name}"'
            )
        return schedule


class ScheduleRunner:
    """Run due schedules sequentially, isolating per-agent failures.

    A schedule selected by the due check is claimed by swapping its
    ``last_run_at`` from the observed value to now; a lost swap means another
    invocation already took it. Forced runs skip the claim.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        schedules: ScheduleService,
        catalog: AgentCatalog,
        runner: AgentRunnerProtocol,
        approvals: ApprovalWorkflow,
        *,
        auto_approve: bool = False,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the runner with its collaborators."""
        self._session_factory = session_factory
        self._schedules = schedules
        self._catalog = catalog
        self._runner = runner
        self._approvals = approvals
        self._auto_approve = auto_approve
        self._now_provider = now_provider or utc_now

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        return run_in_session(self._session_factory, handler)

    def due(self, now: datetime | None = None) -> list[Schedule]:
        """Return schedules that are due at ``now``."""
        now = now or self._now_provider()
        return [schedule for schedule in self._schedules.list() if is_due(schedule, now)]

    async def run_due(
        self,
        agent_name: str | None = None,
        *,
        verbose: bool = False,
        on_text: Callable[[str], None] | None = None,
    ) -> list[RunResult]:
        """Run every due schedule, or only ``agent_name`` when forced."""
        if agent_name:
            selected = [self._schedules.get(agent_name)]
            forced = True
        else:
            selected = self.due()
            forced = False

        results: list[RunResult] = []
        for schedule in selected:
            agent = self._catalog.get(schedule.agent_name)
            if agent is None:
                logger.warning(
                    "Skipping schedule %s: agent %s no longer exists",
                    schedule.id,
                    schedule.agent_name,
                )
                continue
            if not forced and not self._claim(schedule):
                logger.info("Schedule %s already claimed; skipping", schedule.agent_name)
                continue
            results.append(
                await self._run_one(schedule, agent.prompt, verbose=verbose, on_text=on_text)
            )
        return results

    async def _run_one(
        self,
        schedule: Schedule,
        system_prompt: str,
        *,
        verbose: bool,
        on_text: Callable[[str], None] | None,
    ) -> RunResult:
        """Run one agent and record the outcome in a schedule log row."""
        log_id = self._start_log(schedule)
        output_parts: list[str] = []

        def collect(text: str) -> None:
            output_parts.append(text)
            if on_text is not None:
                on_text(text)

        try:
            await self._runner.run(
                f"Run scheduled {schedule.agent_name} agent.",
                system_prompt,
                agent_name=schedule.agent_name,
                verbose=verbose,
                on_text=collect,
            )
            actions_proposed = self._approvals.count_pending()
            if self._auto_approve:
                self._approvals.approve_all()
        except Exception as exc:
            logger.exception("Scheduled agent %s failed", schedule.agent_name)
            message = str(exc) or exc.__class__.__name__
            self._touch_last_run(schedule.id)
            self._finish_log(log_id, "failed", message, 0)
            return RunResult(
                agent_name=schedule.agent_name,
                status="failed",
                actions_proposed=0,
                output=message,
            )

        output = "".join(output_parts)
        self._touch_last_run(schedule.id)
        self._finish_log(log_id, "completed", output, actions_proposed)
        logger.info(
            "Scheduled agent %s completed: %s pending action(s)",
            schedule.agent_name,
            actions_proposed,
        )
        return RunResult(
            agent_name=schedule.agent_name,
            status="completed",
            actions_proposed=actions_proposed,
            output=output,
        )

    def _claim(self, schedule: Schedule) -> bool:
        """Swap last_run_at from the observed value to now; False if it changed."""
        now = self._now_provider()

        def handler(session: Session) -> int:
            if schedule.last_run_at is None:
                observed = Schedule.last_run_at.is_(None)
            else:
                observed = Schedule.last_run_at == schedule.last_run_at
            result = session.execute(
                update(Schedule)
                .where(Schedule.id == schedule.id, observed)
                .values(last_run_at=now)
            )
            return result.rowcount

        return bool(self._execute(handler))

    def _touch_last_run(self, schedule_id: int) -> None:
        """Record the finish time as the schedule's last run."""
        now = self._now_provider()
        self._execute(
            lambda session: session.execute(
                update(Schedule).where(Schedule.id == schedule_id).values(last_run_at=now)
            )
        )

    def _start_log(self, schedule: Schedule) -> int:
        """Insert a running log row and return its id."""

        def handler(session: Session) -> int:
            log = ScheduleLog(
                schedule_id=schedule.id,
                agent_name=schedule.agent_name,
                started_at=self._now_provider(),
                status="running",
                actions_proposed=0,
            )
            session.add(log)
            session.flush()
            return log.id

        return self._execute(handler)

    def _finish_log(self, log_id: int, status: str, output: str, actions_proposed: int) -> None:
        """Close a log row with its final status and output."""

        def handler(session: Session) -> None:
            log = session.get(ScheduleLog, log_id)
            if log is None:
                return
            log.status = status
            log.finished_at = self._now_provider()
            log.output = output
            log.actions_proposed = actions_proposed

        self._execute(handler)
