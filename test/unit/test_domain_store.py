"""Unit tests for the CRM domain store."""

from __future__ import annotations

import pytest

from pipeline_crm.domain.store import DomainStore, InteractionInput
from pipeline_crm.errors import NotFoundError, ValidationError


def test_move_deal_rejects_unknown_stage(domain_store) -> None:
    deal = domain_store.create_deal("Acme renewal")

    with pytest.raises(ValidationError) as excinfo:
        domain_store.move_deal(deal.id, "won")

    assert 'Invalid stage "won"' in str(excinfo.value)
    assert "closed_won" in str(excinfo.value)
    assert domain_store.get_deal(deal.id).stage == "lead"


def test_move_deal_unknown_id_raises_not_found(domain_store) -> None:
    with pytest.raises(NotFoundError):
        domain_store.move_deal(404, "qualified")


def test_complete_task_unknown_id_raises_not_found(domain_store) -> None:
    with pytest.raises(NotFoundError):
        domain_store.complete_task(404)


def test_custom_stages_are_honored(sqlite_session_factory, clock) -> None:
    store = DomainStore(sqlite_session_factory, stages=["new", "won"], now_provider=clock)
    deal = store.create_deal("Pilot")

    assert deal.stage == "new"
    assert store.move_deal(deal.id, "won").stage == "won"


def test_mutations_emit_domain_events(sqlite_session_factory, event_store, clock) -> None:
    store = DomainStore(sqlite_session_factory, events=event_store, now_provider=clock)
    contact = store.create_contact("Ada", email="ada@example.com")
    deal = store.create_deal("Acme", contact_id=contact.id)
    task = store.create_task("Call Ada", contact_id=contact.id)

    store.complete_task(task.id)
    store.move_deal(deal.id, "proposal")
    store.update_contact_warmth(contact.id, "hot")
    store.log_interaction(InteractionInput(type="note", contact_id=contact.id, body="hi"))

    types = [event.event_type for event in event_store.unprocessed()]
    assert types == [
        "task_created",
        "task_completed",
        "deal_stage_changed",
        "contact_warmth_changed",
        "interaction_logged",
    ]
    stage_event = event_store.unprocessed()[2]
    assert stage_event.payload == {"title": "Acme", "from_stage": "lead", "to_stage": "proposal"}


def test_search_contacts_matches_name_email_and_warmth(domain_store) -> None:
    domain_store.create_contact("Ada Lovelace", email="ada@analytical.org", warmth="hot")
    domain_store.create_contact("Grace Hopper", email="grace@navy.mil")

    assert [c.name for c in domain_store.search_contacts("lovelace")] == ["Ada Lovelace"]
    assert [c.name for c in domain_store.search_contacts("navy")] == ["Grace Hopper"]
    assert [c.name for c in domain_store.search_contacts(warmth="hot")] == ["Ada Lovelace"]
    assert len(domain_store.search_contacts()) == 2


def test_contact_history_includes_related_rows(domain_store) -> None:
    org = domain_store.create_organization("Analytical Engines")
    contact = domain_store.create_contact("Ada", org_id=org.id)
    domain_store.create_deal("Engine order", contact_id=contact.id)
    domain_store.create_task("Follow up", contact_id=contact.id)
    domain_store.log_interaction(InteractionInput(type="call", contact_id=contact.id))

    history = domain_store.get_contact_with_history(contact.id)

    assert history["name"] == "Ada"
    assert history["organization"]["name"] == "Analytical Engines"
    assert [deal["title"] for deal in history["deals"]] == ["Engine order"]
    assert [task["title"] for task in history["tasks"]] == ["Follow up"]
    assert [item["type"] for item in history["interactions"]] == ["call"]
    assert domain_store.get_contact_with_history(404) is None


def test_deal_detail_and_filters(domain_store) -> None:
    contact = domain_store.create_contact("Ada")
    deal = domain_store.create_deal("Engine order", contact_id=contact.id, priority="high")
    domain_store.create_deal("Side quest", stage="qualified")
    domain_store.create_task("Send quote", deal_id=deal.id)

    detail = domain_store.get_deal_detail(deal.id)

    assert detail["contact"]["name"] == "Ada"
    assert [task["title"] for task in detail["tasks"]] == ["Send quote"]
    assert [d.title for d in domain_store.list_deals(stage="qualified")] == ["Side quest"]
    assert [d.title for d in domain_store.list_deals(priority="high")] == ["Engine order"]
    assert domain_store.get_deal_detail(404) is None


def test_touch_contact_refreshes_updated_at(domain_store, clock) -> None:
    contact = domain_store.create_contact("Ada")
    clock.advance(days=3)

    domain_store.touch_contact(contact.id)

    assert domain_store.get_contact(contact.id).updated_at == clock()
