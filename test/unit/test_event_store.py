"""Unit tests for the event queue and hook registry."""

from __future__ import annotations

import pytest

from pipeline_crm.errors import NotFoundError
from pipeline_crm.models import EventHook


def test_emit_appends_unprocessed_events_in_order(event_store) -> None:
    first = event_store.emit("contact_stale", "contact", 1, {"name": "Ada"})
    second = event_store.emit("task_overdue", "task", 7)

    pending = event_store.unprocessed()

    assert [event.id for event in pending] == [first.id, second.id]
    assert pending[0].payload == {"name": "Ada"}
    assert pending[1].payload == {}
    assert all(event.processed is False for event in pending)


def test_mark_processed_flips_once(event_store) -> None:
    event = event_store.emit("contact_stale", "contact", 1)

    assert event_store.mark_processed(event.id) is True
    assert event_store.mark_processed(event.id) is False
    assert event_store.get(event.id).processed is True
    assert event_store.unprocessed() == []


def test_find_unprocessed_matches_type_and_entity(event_store) -> None:
    event = event_store.emit("contact_stale", "contact", 3)

    assert event_store.find_unprocessed("contact_stale", 3).id == event.id
    assert event_store.find_unprocessed("contact_stale", 4) is None
    assert event_store.find_unprocessed("task_overdue", 3) is None

    event_store.mark_processed(event.id)
    assert event_store.find_unprocessed("contact_stale", 3) is None


def test_hooks_for_returns_enabled_hooks_only(event_store, sqlite_session_factory) -> None:
    enabled = event_store.add_hook("contact_stale", "follow-up")
    disabled = event_store.add_hook("contact_stale", "digest")
    event_store.add_hook("task_overdue", "digest")
    with sqlite_session_factory() as session:
        session.get(EventHook, disabled.id).enabled = False
        session.commit()

    hooks = event_store.hooks_for("contact_stale")

    assert [hook.id for hook in hooks] == [enabled.id]


def test_remove_hook_deletes_one_matching_row(event_store) -> None:
    event_store.add_hook("contact_stale", "follow-up")
    event_store.add_hook("contact_stale", "follow-up")

    event_store.remove_hook("contact_stale", "follow-up")

    remaining = event_store.list_hooks()
    assert len(remaining) == 1
    assert remaining[0].agent_name == "follow-up"


def test_remove_hook_missing_pair_raises_not_found(event_store) -> None:
    event_store.add_hook("contact_stale", "follow-up")

    with pytest.raises(NotFoundError) as excinfo:
        event_store.remove_hook("contact_stale", "digest")

    assert str(excinfo.value) == 'No hook found for event "contact_stale" → agent "digest"'
    assert len(event_store.list_hooks()) == 1


def test_get_missing_event_raises(event_store) -> None:
    with pytest.raises(NotFoundError):
        event_store.get(999)


def test_list_events_newest_first(event_store) -> None:
    first = event_store.emit("a", "contact", 1)
    second = event_store.emit("b", "contact", 2)
    event_store.mark_processed(first.id)

    assert [event.id for event in event_store.list_events()] == [second.id, first.id]
    assert [event.id for event in event_store.list_events(include_processed=False)] == [second.id]
