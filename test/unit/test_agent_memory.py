"""Unit tests for agent memory recall and outcome updates."""

from __future__ import annotations

import pytest

from pipeline_crm.errors import NotFoundError, ValidationError
from pipeline_crm.memory.store import MemoryInput


def _record(memory_store, agent: str = "follow-up", **kwargs):
    return memory_store.record(
        MemoryInput(agent_name=agent, run_id="run-1", action_type="send_email", **kwargs)
    )


def test_recall_returns_newest_first_with_filters(memory_store) -> None:
    first = _record(memory_store, contact_id=1)
    second = _record(memory_store, contact_id=2)
    other = _record(memory_store, agent="digest", deal_id=9)

    assert [m.id for m in memory_store.recall()] == [other.id, second.id, first.id]
    assert [m.id for m in memory_store.recall(agent_name="follow-up")] == [second.id, first.id]
    assert [m.id for m in memory_store.recall(contact_id=1)] == [first.id]
    assert [m.id for m in memory_store.recall(deal_id=9)] == [other.id]
    assert [m.id for m in memory_store.recall(limit=1)] == [other.id]


def test_update_outcome_sets_feedback(memory_store) -> None:
    memory = _record(memory_store, reasoning="stale for a month")

    memory_store.update_outcome(memory.id, "rejected", human_feedback="too pushy")

    [stored] = memory_store.recall(outcome="rejected")
    assert stored.id == memory.id
    assert stored.human_feedback == "too pushy"
    assert memory_store.recall(outcome="pending") == []


def test_invalid_outcome_is_rejected(memory_store) -> None:
    memory = _record(memory_store)

    with pytest.raises(ValidationError):
        memory_store.update_outcome(memory.id, "maybe")
    with pytest.raises(ValidationError):
        memory_store.recall(outcome="maybe")


def test_update_outcome_missing_row(memory_store) -> None:
    with pytest.raises(NotFoundError):
        memory_store.update_outcome(404, "approved")
