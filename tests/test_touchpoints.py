from datetime import UTC, date, datetime
from pathlib import Path

import pytest

from outreach.domain.errors import InvalidEntityRef, NotFoundError, ValidationError
from outreach.domain.models import EntityRef
from outreach.domain.stages import ChannelType, OutcomeKind, TouchpointStatus
from outreach.services import aggregation, entities, touchpoints
from outreach.services.events import EventLogger
from outreach.services.touchpoints import TouchpointError, TouchpointFilter
from outreach.store.sqlite import SqliteStore


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(tmp_path / "test.sqlite")
    schema_path = (
        Path(__file__).resolve().parents[1] / "resources" / "schema" / "canonical.yaml"
    )
    store.apply_schema(schema_path)
    return store


def test_batch_payload_rejects_whole_batch(tmp_path: Path) -> None:
    store = _store(tmp_path)
    lead_id = entities.add_lead(store, "Jane Doe <jane@example.com>")
    payload = [
        {"lead_id": lead_id, "channel": "email", "scheduled_at": "2025-07-01T09:00:00Z"},
        {"lead_id": lead_id, "contact_id": "c-1", "channel": "call"},
    ]

    with pytest.raises(InvalidEntityRef):
        touchpoints.specs_from_payload(payload)
    assert store.fetch_all("SELECT * FROM touchpoints") == []


@pytest.mark.parametrize(
    "item",
    [
        {"channel": "email"},
        {"lead_id": "x", "channel": "fax"},
        {"lead_id": "x"},
        {"lead_id": "x", "channel": "email", "scheduled_at": "tomorrow"},
    ],
)
def test_batch_payload_validation(item: dict) -> None:
    with pytest.raises(ValidationError):
        touchpoints.specs_from_payload([item])


def test_empty_batch_rejected() -> None:
    with pytest.raises(ValidationError):
        touchpoints.specs_from_payload([])


def test_create_batch_requires_existing_entities(tmp_path: Path) -> None:
    store = _store(tmp_path)
    lead_id = entities.add_lead(store, "Jane Doe")
    specs = touchpoints.specs_from_payload(
        [
            {"leadId": lead_id, "type": "email", "scheduledAt": "2025-07-01T09:00:00Z"},
            {"contactId": "missing", "type": "call", "scheduledAt": "2025-07-02T09:00:00Z"},
        ]
    )

    with pytest.raises(NotFoundError):
        touchpoints.create_batch(store, specs)
    assert store.fetch_all("SELECT * FROM touchpoints") == []


def test_create_batch_and_lookup(tmp_path: Path) -> None:
    store = _store(tmp_path)
    lead_id = entities.add_lead(store, "Jane Doe")
    logger = EventLogger(path=None, workspace="test")
    specs = touchpoints.specs_from_payload(
        [
            {"lead_id": lead_id, "channel": "call", "scheduled_at": "2025-07-03T09:00:00Z"},
            {"lead_id": lead_id, "channel": "email", "scheduled_at": "2025-07-01T09:00:00Z"},
        ]
    )

    ids = touchpoints.create_batch(store, specs, created_by="ops", logger=logger)

    assert len(ids) == 2
    rows = touchpoints.list_for_entity(store, EntityRef.lead(lead_id))
    assert [tp.channel for tp in rows] == [ChannelType.EMAIL, ChannelType.CALL]
    assert all(tp.status is TouchpointStatus.SCHEDULED for tp in rows)
    assert rows[0].created_by == "ops"
    assert logger.count("touchpoints", "created") == 1


def test_manual_completion_updates_entity(tmp_path: Path) -> None:
    store = _store(tmp_path)
    lead_id = entities.add_lead(store, "Jane Doe")
    ref = EntityRef.lead(lead_id)
    touchpoint_id = touchpoints.schedule_touchpoint(
        store, ref, "call", datetime(2025, 7, 1, 9, 0, tzinfo=UTC)
    )
    done_at = datetime(2025, 7, 1, 15, 30, tzinfo=UTC)

    tp = touchpoints.complete_touchpoint(
        store, touchpoint_id, "sent", outcome="Left voicemail", completed_at=done_at
    )

    assert tp.status is TouchpointStatus.COMPLETED
    assert tp.outcome_kind is OutcomeKind.SENT
    assert tp.completed_at == done_at
    assert tp.outcome == "Left voicemail"
    assert entities.get_entity(store, ref).last_contacted_at == done_at
    counts = aggregation.entity_counts(store, ref)
    assert (counts.scheduled, counts.completed, counts.total) == (0, 1, 1)


def test_manual_completion_respects_precedence(tmp_path: Path) -> None:
    store = _store(tmp_path)
    lead_id = entities.add_lead(store, "Jane Doe")
    touchpoint_id = touchpoints.schedule_touchpoint(
        store, EntityRef.lead(lead_id), "email", datetime(2025, 7, 1, 9, 0, tzinfo=UTC)
    )
    touchpoints.complete_touchpoint(store, touchpoint_id, "opened")

    with pytest.raises(TouchpointError):
        touchpoints.complete_touchpoint(store, touchpoint_id, "sent")
    assert touchpoints.get_touchpoint(store, touchpoint_id).outcome_kind is OutcomeKind.OPENED

    with pytest.raises(ValidationError):
        touchpoints.complete_touchpoint(store, touchpoint_id, "done")
    with pytest.raises(NotFoundError):
        touchpoints.complete_touchpoint(store, "missing", "sent")


def test_compare_and_set_guards_on_current_outcome(tmp_path: Path) -> None:
    store = _store(tmp_path)
    lead_id = entities.add_lead(store, "Jane Doe")
    touchpoint_id = touchpoints.schedule_touchpoint(
        store, EntityRef.lead(lead_id), "email", datetime(2025, 7, 1, 9, 0, tzinfo=UTC)
    )
    at = datetime(2025, 7, 1, 10, 0, tzinfo=UTC)

    with store.session() as session:
        assert touchpoints.compare_and_set_outcome(session, touchpoint_id, None, OutcomeKind.SENT, at)
        assert not touchpoints.compare_and_set_outcome(
            session, touchpoint_id, None, OutcomeKind.OPENED, at
        )
        assert touchpoints.compare_and_set_outcome(
            session, touchpoint_id, OutcomeKind.SENT, OutcomeKind.OPENED, at
        )


def test_query_filters(tmp_path: Path) -> None:
    store = _store(tmp_path)
    lead_id = entities.add_lead(store, "Jane Doe")
    other_id = entities.add_lead(store, "Bob Ray")
    touchpoints.create_batch(
        store,
        touchpoints.specs_from_payload(
            [
                {"lead_id": lead_id, "channel": "email", "scheduled_at": "2025-07-01T09:00:00Z"},
                {"lead_id": lead_id, "channel": "call", "scheduled_at": "2025-07-04T09:00:00Z"},
                {"lead_id": other_id, "channel": "email", "scheduled_at": "2025-07-04T09:00:00Z"},
                {"lead_id": other_id, "channel": "meeting", "scheduled_at": "2025-07-10T09:00:00Z"},
            ]
        ),
    )

    on_day = touchpoints.query(store, TouchpointFilter(day=date(2025, 7, 4)))
    assert len(on_day) == 2
    ranged = touchpoints.query(
        store, TouchpointFilter(date_from=date(2025, 7, 2), date_to=date(2025, 7, 10))
    )
    assert len(ranged) == 3
    emails = touchpoints.query(store, TouchpointFilter(channel=ChannelType.EMAIL))
    assert len(emails) == 2
    mine = touchpoints.query(
        store, TouchpointFilter(entity=EntityRef.lead(other_id), channel=ChannelType.MEETING)
    )
    assert len(mine) == 1


def test_due_today_and_overdue(tmp_path: Path) -> None:
    store = _store(tmp_path)
    lead_id = entities.add_lead(store, "Jane Doe")
    ids = touchpoints.create_batch(
        store,
        touchpoints.specs_from_payload(
            [
                {"lead_id": lead_id, "channel": "email", "scheduled_at": "2025-07-01T09:00:00Z"},
                {"lead_id": lead_id, "channel": "call", "scheduled_at": "2025-07-02T09:00:00Z"},
                {"lead_id": lead_id, "channel": "email", "scheduled_at": "2025-07-04T09:00:00Z"},
                {"lead_id": lead_id, "channel": "call", "scheduled_at": "2025-07-06T09:00:00Z"},
            ]
        ),
    )
    touchpoints.complete_touchpoint(store, ids[1], "sent")

    today = date(2025, 7, 4)
    assert [tp.touchpoint_id for tp in touchpoints.due_today(store, today)] == [ids[2]]
    assert [tp.touchpoint_id for tp in touchpoints.overdue(store, today)] == [ids[0]]


def test_create_batch_uses_entity_campaign(tmp_path: Path) -> None:
    store = _store(tmp_path)
    lead_id = entities.add_lead(store, "Jane Doe")
    store.execute(
        "INSERT INTO campaigns (campaign_id, name, brand, start_date, end_date, status, created_at, updated_at) "
        "VALUES ('c-1', 'July', 'Northwind', '2025-07-01', '2025-07-31', 'active', "
        "'2025-07-01T00:00:00+00:00', '2025-07-01T00:00:00+00:00')"
    )
    with store.session() as session:
        entities.assign_to_campaign(session, [EntityRef.lead(lead_id)], "c-1")
    loose_id = entities.add_lead(store, "Bob Ray")

    ids = touchpoints.create_batch(
        store,
        touchpoints.specs_from_payload(
            [
                {"leadId": lead_id, "channel": "call", "scheduledAt": "2025-07-02T09:00:00Z"},
                {"leadId": loose_id, "channel": "call", "scheduledAt": "2025-07-02T09:00:00Z"},
            ]
        ),
    )

    assert touchpoints.get_touchpoint(store, ids[0]).campaign_id == "c-1"
    assert touchpoints.get_touchpoint(store, ids[1]).campaign_id is None
    assert [tp.touchpoint_id for tp in touchpoints.query(store, TouchpointFilter(campaign_id="c-1"))] == [ids[0]]
