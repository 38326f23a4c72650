"""Unit tests for the time-based event scanner."""

from __future__ import annotations

from datetime import timedelta

from pipeline_crm.events.scanner import TimeEventScanner


def _scanner(event_store, domain_store, clock) -> TimeEventScanner:
    return TimeEventScanner(event_store, domain_store, stale_days=14, now_provider=clock)


def test_stale_contact_emits_event_with_payload(event_store, domain_store, clock) -> None:
    stale_at = clock() - timedelta(days=20)
    stale = domain_store.create_contact("Ada Lovelace", updated_at=stale_at)
    domain_store.create_contact("Fresh Person", updated_at=clock() - timedelta(days=2))

    emitted = _scanner(event_store, domain_store, clock).scan()

    assert emitted == 1
    [event] = event_store.unprocessed()
    assert event.event_type == "contact_stale"
    assert event.entity_type == "contact"
    assert event.entity_id == stale.id
    assert event.payload["name"] == "Ada Lovelace"
    assert event.payload["last_updated"].startswith("2026-02-12")


def test_second_scan_emits_nothing_until_event_processed(event_store, domain_store, clock) -> None:
    domain_store.create_contact("Ada", updated_at=clock() - timedelta(days=30))
    scanner = _scanner(event_store, domain_store, clock)

    assert scanner.scan() == 1
    assert scanner.scan() == 0

    [event] = event_store.unprocessed()
    event_store.mark_processed(event.id)

    assert scanner.scan() == 1


def test_overdue_tasks_emit_events(event_store, domain_store, clock) -> None:
    overdue = domain_store.create_task("Send proposal", due="2026-03-01")
    domain_store.create_task("Due today", due="2026-03-04")
    domain_store.create_task("Future", due="2026-04-01")
    domain_store.create_task("No due date")
    finished = domain_store.create_task("Already done", due="2026-02-01")
    domain_store.complete_task(finished.id)

    emitted = _scanner(event_store, domain_store, clock).scan()

    assert emitted == 1
    [event] = event_store.unprocessed()
    assert event.event_type == "task_overdue"
    assert event.entity_type == "task"
    assert event.entity_id == overdue.id
    assert event.payload == {"title": "Send proposal", "due": "2026-03-01"}


def test_stale_threshold_is_configurable(event_store, domain_store, clock) -> None:
    domain_store.create_contact("Ada", updated_at=clock() - timedelta(days=8))
    scanner = TimeEventScanner(event_store, domain_store, stale_days=7, now_provider=clock)

    assert scanner.scan() == 1


def test_free_form_due_dates_do_not_break_the_scan(event_store, domain_store, clock) -> None:
    domain_store.create_task("Call Ada", due="next Friday")
    domain_store.create_task("Invoice", due=20260301)
    overdue = domain_store.create_task("Send proposal", due="2026-03-01")
    scanner = _scanner(event_store, domain_store, clock)

    assert scanner.scan() == 1
    assert scanner.scan() == 0

    [event] = event_store.unprocessed()
    assert event.entity_id == overdue.id
    assert [task.id for task in domain_store.list_overdue_tasks()] == [overdue.id]
