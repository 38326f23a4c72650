"""Unit tests for event processing into agent triggers."""

from __future__ import annotations

from pipeline_crm.events.processor import EventProcessor, TriggerResult


def test_event_with_two_hooks_yields_two_triggers_and_is_consumed(event_store) -> None:
    event_store.add_hook("contact_stale", "follow-up")
    event_store.add_hook("contact_stale", "enrich")
    event = event_store.emit("contact_stale", "contact", 5, {"name": "Ada"})

    results = EventProcessor(event_store).process()

    assert results == [
        TriggerResult(event.id, "contact_stale", "follow-up", "triggered"),
        TriggerResult(event.id, "contact_stale", "enrich", "triggered"),
    ]
    assert event_store.get(event.id).processed is True
    assert EventProcessor(event_store).process() == []


def test_event_without_hooks_is_consumed_silently(event_store) -> None:
    event = event_store.emit("deal_stage_changed", "deal", 2)

    assert EventProcessor(event_store).process() == []
    assert event_store.get(event.id).processed is True


def test_triggers_are_not_deduplicated_across_events(event_store) -> None:
    event_store.add_hook("contact_stale", "follow-up")
    event_store.emit("contact_stale", "contact", 1)
    event_store.emit("contact_stale", "contact", 2)

    results = EventProcessor(event_store).process()

    assert [result.agent_name for result in results] == ["follow-up", "follow-up"]
    assert event_store.unprocessed() == []
