from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, tzinfo
from typing import Any, Protocol
from uuid import uuid4

from outreach.domain import rules
from outreach.domain.errors import InvalidEntityRef, NotFoundError, OutreachError, ValidationError
from outreach.domain.lifecycle import decide_transition
from outreach.domain.models import EntityRef, Touchpoint, TouchpointSpec
from outreach.domain.stages import ChannelType, EntityKind, OutcomeKind, TouchpointStatus
from outreach.services import entities
from outreach.services.events import EventLogger, emit
from outreach.services.utils import day_bounds, from_iso, to_iso, utc_now
from outreach.store.sqlite import SqliteSession, SqliteStore

COMPONENT = "touchpoints"

INSERT_SQL = (
    "INSERT INTO touchpoints (touchpoint_id, lead_id, contact_id, campaign_id, channel, subject, content, "
    "scheduled_at, completed_at, outcome, outcome_kind, created_by, created_at, updated_at) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
)


class TouchpointError(OutreachError):
    pass


class _Reader(Protocol):
    def fetch_one(self, query: str, params: Iterable[object] | None = None): ...

    def fetch_all(self, query: str, params: Iterable[object] | None = None): ...


@dataclass(frozen=True)
class TouchpointFilter:
    day: date | None = None
    date_from: date | None = None
    date_to: date | None = None
    channel: ChannelType | None = None
    campaign_id: str | None = None
    entity: EntityRef | None = None
    status: TouchpointStatus | None = None
    tz: tzinfo = UTC


def specs_from_payload(items: Sequence[dict[str, Any]]) -> list[TouchpointSpec]:
    """Validate a batch creation payload; any bad element rejects the whole batch."""
    if not items:
        raise ValidationError("Touchpoint batch must be a non-empty list.")
    specs: list[TouchpointSpec] = []
    for index, item in enumerate(items):
        channel = item.get("channel") or item.get("type")
        if not channel:
            raise ValidationError(f"Touchpoint {index}: channel is required.")
        rules.validate_enum(channel, [c.value for c in ChannelType], f"touchpoint {index} channel")
        try:
            entity = EntityRef.from_ids(
                item.get("lead_id") or item.get("leadId"),
                item.get("contact_id") or item.get("contactId"),
            )
        except InvalidEntityRef as exc:
            raise InvalidEntityRef(f"Touchpoint {index}: {exc}") from exc
        scheduled_raw = item.get("scheduled_at") or item.get("scheduledAt")
        scheduled_at = rules.parse_datetime(scheduled_raw, f"touchpoint {index} scheduled_at")
        specs.append(
            TouchpointSpec(
                entity=entity,
                channel=ChannelType(channel),
                scheduled_at=scheduled_at or utc_now(),
                subject=item.get("subject"),
                content=item.get("content"),
                campaign_id=item.get("campaign_id") or item.get("campaignId"),
            )
        )
    return specs


def batch_create(
    session: SqliteSession,
    specs: Sequence[TouchpointSpec],
    created_by: str | None = None,
    logger: EventLogger | None = None,
    campaign_id: str | None = None,
) -> list[str]:
    """Insert all specs with one bulk statement inside the caller's transaction.

    ``campaign_id`` tags every row; otherwise each spec's own campaign is used.
    """
    if not specs:
        raise ValidationError("Touchpoint batch must be a non-empty list.")
    now = to_iso(utc_now())
    rows = []
    ids: list[str] = []
    for spec in specs:
        touchpoint_id = str(uuid4())
        ids.append(touchpoint_id)
        rows.append(
            (
                touchpoint_id,
                spec.entity.lead_id,
                spec.entity.contact_id,
                campaign_id or spec.campaign_id,
                spec.channel.value,
                spec.subject,
                spec.content,
                to_iso(spec.scheduled_at),
                None,
                None,
                None,
                created_by,
                now,
                now,
            )
        )
    session.executemany(INSERT_SQL, rows)
    emit(logger, component=COMPONENT, event_type="created", fields=[str(len(ids))])
    return ids


def create_batch(
    store: SqliteStore,
    specs: Sequence[TouchpointSpec],
    created_by: str | None = None,
    logger: EventLogger | None = None,
) -> list[str]:
    """Create touchpoints for existing entities.

    Specs without a campaign belong to the entity's current campaign.
    """
    with store.session() as session:
        current = _current_campaigns(session, {spec.entity for spec in specs})
        specs = [
            spec if spec.campaign_id else replace(spec, campaign_id=current[spec.entity])
            for spec in specs
        ]
        return batch_create(session, specs, created_by=created_by, logger=logger)


def schedule_touchpoint(
    store: SqliteStore,
    entity: EntityRef,
    channel: str,
    scheduled_at: datetime,
    subject: str | None = None,
    content: str | None = None,
    created_by: str | None = None,
    logger: EventLogger | None = None,
) -> str:
    rules.validate_enum(channel, [c.value for c in ChannelType], "channel")
    spec = TouchpointSpec(
        entity=entity,
        channel=ChannelType(channel),
        scheduled_at=scheduled_at,
        subject=subject,
        content=content,
    )
    return create_batch(store, [spec], created_by=created_by, logger=logger)[0]


def get_touchpoint(reader: _Reader, touchpoint_id: str) -> Touchpoint:
    row = reader.fetch_one("SELECT * FROM touchpoints WHERE touchpoint_id = ?", (touchpoint_id,))
    if row is None:
        raise NotFoundError(f"Touchpoint not found: {touchpoint_id}")
    return to_touchpoint(row)


def list_for_entity(reader: _Reader, entity: EntityRef) -> list[Touchpoint]:
    return query(reader, TouchpointFilter(entity=entity))


def query(reader: _Reader, filters: TouchpointFilter | None = None) -> list[Touchpoint]:
    where, params = build_where(filters or TouchpointFilter())
    sql = "SELECT t.* FROM touchpoints t"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY t.scheduled_at, t.touchpoint_id"
    return [to_touchpoint(row) for row in reader.fetch_all(sql, params)]


def build_where(filters: TouchpointFilter) -> tuple[list[str], list[object]]:
    where: list[str] = []
    params: list[object] = []
    if filters.day is not None:
        start, end = day_bounds(filters.day, filters.tz)
        where.append("t.scheduled_at >= ? AND t.scheduled_at < ?")
        params.extend([start, end])
    if filters.date_from is not None:
        where.append("t.scheduled_at >= ?")
        params.append(day_bounds(filters.date_from, filters.tz)[0])
    if filters.date_to is not None:
        where.append("t.scheduled_at < ?")
        params.append(day_bounds(filters.date_to, filters.tz)[1])
    if filters.channel is not None:
        where.append("t.channel = ?")
        params.append(ChannelType(filters.channel).value)
    if filters.campaign_id is not None:
        where.append("t.campaign_id = ?")
        params.append(filters.campaign_id)
    if filters.entity is not None:
        column = "t.lead_id" if filters.entity.kind is EntityKind.LEAD else "t.contact_id"
        where.append(f"{column} = ?")
        params.append(filters.entity.id)
    if filters.status is TouchpointStatus.SCHEDULED:
        where.append("t.completed_at IS NULL")
    elif filters.status is TouchpointStatus.COMPLETED:
        where.append("t.completed_at IS NOT NULL")
    return where, params


def compare_and_set_outcome(
    session: SqliteSession,
    touchpoint_id: str,
    expected: OutcomeKind | None,
    outcome_kind: OutcomeKind,
    completed_at: datetime,
    outcome: str | None = None,
) -> bool:
    """Write the new outcome only if the row still holds ``expected``."""
    updates = "outcome_kind = ?, completed_at = ?, outcome = COALESCE(?, outcome), updated_at = ?"
    params: list[object] = [
        outcome_kind.value,
        to_iso(completed_at),
        outcome,
        to_iso(utc_now()),
        touchpoint_id,
    ]
    if expected is None:
        guard = "outcome_kind IS NULL"
    else:
        guard = "outcome_kind = ?"
        params.append(expected.value)
    rowcount = session.execute(
        f"UPDATE touchpoints SET {updates} WHERE touchpoint_id = ? AND {guard}",
        params,
    )
    return rowcount == 1


def complete_touchpoint(
    store: SqliteStore,
    touchpoint_id: str,
    outcome_kind: str,
    outcome: str | None = None,
    completed_at: datetime | None = None,
    logger: EventLogger | None = None,
) -> Touchpoint:
    """Manually record a completion, with the same precedence as external sync."""
    rules.validate_enum(outcome_kind, [k.value for k in OutcomeKind], "outcome_kind")
    kind = OutcomeKind(outcome_kind)
    completed_at = completed_at or utc_now()
    with store.session() as session:
        current = get_touchpoint(session, touchpoint_id)
        decision = decide_transition(current.outcome_kind, kind)
        if not decision.applies:
            raise TouchpointError(
                f"Touchpoint {touchpoint_id} is already {current.outcome_kind.value}; "
                f"cannot record {kind.value} ({decision.reason})."
            )
        if not compare_and_set_outcome(
            session, touchpoint_id, current.outcome_kind, kind, completed_at, outcome
        ):
            raise TouchpointError(f"Touchpoint {touchpoint_id} changed concurrently; retry.")
        entities.touch_last_contacted(session, current.entity, completed_at)
        emit(
            logger,
            component=COMPONENT,
            event_type="completed",
            entity_type="touchpoint",
            entity_id=touchpoint_id,
            fields=[kind.value],
        )
        return get_touchpoint(session, touchpoint_id)


def due_today(
    reader: _Reader, today: date, tz: tzinfo = UTC, campaign_id: str | None = None
) -> list[Touchpoint]:
    return query(
        reader,
        TouchpointFilter(
            day=today, campaign_id=campaign_id, status=TouchpointStatus.SCHEDULED, tz=tz
        ),
    )


def overdue(
    reader: _Reader, today: date, tz: tzinfo = UTC, campaign_id: str | None = None
) -> list[Touchpoint]:
    where, params = build_where(
        TouchpointFilter(campaign_id=campaign_id, status=TouchpointStatus.SCHEDULED, tz=tz)
    )
    where.append("t.scheduled_at < ?")
    params.append(day_bounds(today, tz)[0])
    rows = reader.fetch_all(
        "SELECT t.* FROM touchpoints t WHERE " + " AND ".join(where) + " ORDER BY t.scheduled_at",
        params,
    )
    return [to_touchpoint(row) for row in rows]


def to_touchpoint(row) -> Touchpoint:
    return Touchpoint(
        touchpoint_id=row["touchpoint_id"],
        entity=EntityRef.from_ids(row["lead_id"], row["contact_id"]),
        channel=ChannelType(row["channel"]),
        scheduled_at=from_iso(row["scheduled_at"]),
        completed_at=from_iso(row["completed_at"]),
        outcome=row["outcome"],
        outcome_kind=OutcomeKind(row["outcome_kind"]) if row["outcome_kind"] else None,
        subject=row["subject"],
        content=row["content"],
        created_at=from_iso(row["created_at"]),
        created_by=row["created_by"],
        campaign_id=row["campaign_id"],
    )


def _current_campaigns(
    session: SqliteSession, refs: Iterable[EntityRef]
) -> dict[EntityRef, str | None]:
    current: dict[EntityRef, str | None] = {}
    missing: list[EntityRef] = []
    for ref in refs:
        table, id_field = entities.TABLES[ref.kind]
        row = session.fetch_one(f"SELECT campaign_id FROM {table} WHERE {id_field} = ?", (ref.id,))
        if row is None:
            missing.append(ref)
        else:
            current[ref] = row["campaign_id"]
    if missing:
        names = ", ".join(f"{ref.kind.value}:{ref.id}" for ref in missing)
        raise NotFoundError(f"Target entities not found: {names}")
    return current
