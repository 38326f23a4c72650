"""Unit tests for schedule management and the due-schedule runner."""

from __future__ import annotations

from datetime import timedelta

import pytest

from helpers.stubs import RecordingEmailSender, StubRunner
from pipeline_crm.actions.handlers import build_default_registry
from pipeline_crm.agents.catalog import AgentCatalog
from pipeline_crm.approvals.proposals import ProposalInput, ProposalService
from pipeline_crm.approvals.workflow import ApprovalWorkflow
from pipeline_crm.errors import ConflictError, NotFoundError, ValidationError
from pipeline_crm.models import Schedule
from pipeline_crm.scheduler.service import ScheduleRunner, ScheduleService


@pytest.fixture()
def catalog() -> AgentCatalog:
    return AgentCatalog(None)


@pytest.fixture()
def schedules(sqlite_session_factory, catalog) -> ScheduleService:
    return ScheduleService(sqlite_session_factory, catalog)


@pytest.fixture()
def approvals(sqlite_session_factory, domain_store, memory_store, clock) -> ApprovalWorkflow:
    registry = build_default_registry(domain_store, RecordingEmailSender())
    return ApprovalWorkflow(sqlite_session_factory, registry, memory_store, now_provider=clock)


def _runner(sqlite_session_factory, schedules, catalog, runner, approvals, clock, **kwargs):
    return ScheduleRunner(
        sqlite_session_factory,
        schedules,
        catalog,
        runner,
        approvals,
        now_provider=clock,
        **kwargs,
    )


def test_add_validates_agent_interval_and_duplicates(schedules) -> None:
    schedule = schedules.add("digest", "daily")
    assert schedule.interval == "daily"
    assert schedule.enabled is True

    with pytest.raises(NotFoundError) as missing:
        schedules.add("ghost", "daily")
    assert str(missing.value) == 'Agent not found: "ghost"'

    with pytest.raises(ValidationError) as invalid:
        schedules.add("follow-up", "monthly")
    assert "Must be one of: hourly, daily, weekdays, weekly" in str(invalid.value)

    with pytest.raises(ConflictError):
        schedules.add("digest", "weekly")


def test_remove_and_set_enabled(schedules) -> None:
    schedules.add("digest", "daily")

    assert schedules.set_enabled("digest", False).enabled is False
    schedules.remove("digest")

    assert schedules.list() == []
    with pytest.raises(NotFoundError) as excinfo:
        schedules.remove("digest")
    assert str(excinfo.value) == 'No schedule found for "digest"'


@pytest.mark.asyncio
async def test_failure_is_isolated_and_recorded(
    sqlite_session_factory, schedules, catalog, approvals, clock
) -> None:
    schedules.add("follow-up", "daily")
    schedules.add("digest", "daily")
    runner = StubRunner(fail_for={"follow-up"}, output="briefing")

    results = await _runner(
        sqlite_session_factory, schedules, catalog, runner, approvals, clock
    ).run_due()

    assert [(r.agent_name, r.status) for r in results] == [
        ("follow-up", "failed"),
        ("digest", "completed"),
    ]
    assert results[0].output == "follow-up exploded"
    assert results[1].output == "briefing"
    assert runner.calls[1]["prompt"] == "Run scheduled digest agent."
    assert runner.calls[1]["system_prompt"].startswith("You are a CRM digest specialist")
    for schedule in schedules.list():
        assert schedule.last_run_at == clock()
    logs = {log.agent_name: log for log in schedules.logs()}
    assert logs["follow-up"].status == "failed"
    assert logs["follow-up"].output == "follow-up exploded"
    assert logs["digest"].status == "completed"
    assert logs["digest"].finished_at == clock()


@pytest.mark.asyncio
async def test_schedules_are_not_rerun_before_interval(
    sqlite_session_factory, schedules, catalog, approvals, clock
) -> None:
    schedules.add("digest", "hourly")
    runner = StubRunner()
    scheduler = _runner(sqlite_session_factory, schedules, catalog, runner, approvals, clock)

    assert len(await scheduler.run_due()) == 1
    clock.advance(minutes=30)
    assert await scheduler.run_due() == []
    clock.advance(minutes=31)
    assert len(await scheduler.run_due()) == 1


@pytest.mark.asyncio
async def test_actions_proposed_counts_pending_and_auto_approve_resolves(
    sqlite_session_factory, schedules, catalog, approvals, memory_store, clock
) -> None:
    proposals = ProposalService(sqlite_session_factory, memory_store)

    def propose(agent_name):
        proposals.propose(ProposalInput(action_type="create_task", payload={"title": "Call"}))

    schedules.add("follow-up", "daily")
    runner = StubRunner(side_effect=propose)

    [result] = await _runner(
        sqlite_session_factory, schedules, catalog, runner, approvals, clock, auto_approve=True
    ).run_due()

    assert result.actions_proposed == 1
    assert approvals.count_pending() == 0
    assert schedules.logs()[0].actions_proposed == 1


@pytest.mark.asyncio
async def test_forced_run_ignores_timing_and_unknown_schedule_raises(
    sqlite_session_factory, schedules, catalog, approvals, clock
) -> None:
    schedules.add("digest", "weekly")
    runner = StubRunner()
    scheduler = _runner(sqlite_session_factory, schedules, catalog, runner, approvals, clock)
    await scheduler.run_due()

    [forced] = await scheduler.run_due("digest")

    assert forced.status == "completed"
    assert len(runner.calls) == 2
    with pytest.raises(NotFoundError):
        await scheduler.run_due("follow-up")


@pytest.mark.asyncio
async def test_claimed_schedule_is_skipped(
    sqlite_session_factory, schedules, catalog, approvals, clock
) -> None:
    schedules.add("digest", "hourly")
    runner = StubRunner()
    scheduler = _runner(sqlite_session_factory, schedules, catalog, runner, approvals, clock)
    stale_view = scheduler.due()

    with sqlite_session_factory() as session:
        row = session.query(Schedule).one()
        row.last_run_at = clock() - timedelta(minutes=1)
        session.commit()

    assert scheduler._claim(stale_view[0]) is False
    assert await scheduler.run_due() == []
    assert runner.calls == []


@pytest.mark.asyncio
async def test_schedule_for_deleted_agent_is_skipped(
    sqlite_session_factory, schedules, approvals, clock, tmp_path
) -> None:
    agents_dir = tmp_path / "agents"
    agents_dir.mkdir()
    (agents_dir / "weekly-review.md").write_text("# Weekly review\nReview the week.", encoding="utf-8")
    catalog = AgentCatalog(agents_dir)
    service = ScheduleService(sqlite_session_factory, catalog)
    service.add("weekly-review", "weekly")
    (agents_dir / "weekly-review.md").unlink()
    runner = StubRunner()

    results = await _runner(
        sqlite_session_factory, service, catalog, runner, approvals, clock
    ).run_due()

    assert results == []
    assert runner.calls == []
