from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, date, tzinfo
from typing import Protocol

from outreach.domain.errors import ValidationError
from outreach.domain.models import EntityRef
from outreach.domain.policy import CampaignPolicy
from outreach.domain.stages import ChannelType
from outreach.services.entities import TABLES
from outreach.services.touchpoints import TouchpointFilter, build_where
from outreach.services.utils import day_bounds, from_iso, local_day
from outreach.store.sqlite import SqliteStore


class _Reader(Protocol):
    def fetch_one(self, query: str, params: Iterable[object] | None = None): ...

    def fetch_all(self, query: str, params: Iterable[object] | None = None): ...


@dataclass(frozen=True)
class EntityCounts:
    scheduled: int
    completed: int

    @property
    def total(self) -> int:
        return self.scheduled + self.completed


@dataclass(frozen=True)
class CampaignRollup:
    day: date
    emails_sent_today: int
    calls_made_today: int
    active_entities: int
    conversions: int


def entity_counts(reader: _Reader, ref: EntityRef) -> EntityCounts:
    where, params = build_where(TouchpointFilter(entity=ref))
    row = reader.fetch_one(
        "SELECT "
        "COALESCE(SUM(CASE WHEN t.completed_at IS NULL THEN 1 ELSE 0 END), 0) AS scheduled, "
        "COALESCE(SUM(CASE WHEN t.completed_at IS NOT NULL THEN 1 ELSE 0 END), 0) AS completed "
        "FROM touchpoints t WHERE " + " AND ".join(where),
        params,
    )
    return EntityCounts(scheduled=int(row["scheduled"]), completed=int(row["completed"]))


def daily_histogram(
    reader: _Reader,
    date_from: date,
    date_to: date,
    campaign_id: str | None = None,
    channel: ChannelType | None = None,
    tz: tzinfo = UTC,
) -> dict[date, int]:
    """Touchpoints per calendar day in ``tz``.

    Pending touchpoints count on their scheduled day (overdue ones
    included), completed ones on their completion day.
    """
    if date_to < date_from:
        raise ValidationError("date_to must not be before date_from.")
    start = day_bounds(date_from, tz)[0]
    end = day_bounds(date_to, tz)[1]
    where, params = build_where(TouchpointFilter(campaign_id=campaign_id, channel=channel))
    where.append(
        "((t.completed_at IS NULL AND t.scheduled_at >= ? AND t.scheduled_at < ?) "
        "OR (t.completed_at IS NOT NULL AND t.completed_at >= ? AND t.completed_at < ?))"
    )
    params.extend([start, end, start, end])
    rows = reader.fetch_all(
        "SELECT t.scheduled_at, t.completed_at FROM touchpoints t WHERE " + " AND ".join(where),
        params,
    )
    counts: Counter[date] = Counter()
    for row in rows:
        activity_at = from_iso(row["completed_at"] or row["scheduled_at"])
        counts[local_day(activity_at, tz)] += 1
    return dict(sorted(counts.items()))


def campaign_rollup(
    store: SqliteStore,
    today: date,
    campaign_id: str | None = None,
    brand: str | None = None,
    policy: CampaignPolicy | None = None,
) -> CampaignRollup:
    """Dashboard numbers for one day, all read from a single snapshot."""
    policy = policy or CampaignPolicy(brand=brand or "")
    tz = policy.tzinfo
    start, end = day_bounds(today, tz)
    entity_scope, scope_params = _campaign_scope("e", campaign_id, brand)
    touchpoint_scope, _ = _campaign_scope("t", campaign_id, brand)

    with store.snapshot() as session:
        completed_today = {
            row["channel"]: int(row["n"])
            for row in session.fetch_all(
                "SELECT t.channel, COUNT(*) AS n FROM touchpoints t "
                f"WHERE t.completed_at >= ? AND t.completed_at < ? AND {touchpoint_scope} "
                "GROUP BY t.channel",
                [start, end, *scope_params],
            )
        }
        statuses: Counter[str] = Counter()
        for table, _ in TABLES.values():
            for row in session.fetch_all(
                f"SELECT e.status, COUNT(*) AS n FROM {table} e WHERE {entity_scope} GROUP BY e.status",
                scope_params,
            ):
                statuses[row["status"]] += int(row["n"])

    terminal = {status.value for status in policy.terminal_statuses}
    converted = {status.value for status in policy.conversion_statuses}
    return CampaignRollup(
        day=today,
        emails_sent_today=completed_today.get(ChannelType.EMAIL.value, 0),
        calls_made_today=completed_today.get(ChannelType.CALL.value, 0),
        active_entities=sum(n for status, n in statuses.items() if status not in terminal),
        conversions=sum(n for status, n in statuses.items() if status in converted),
    )


def _campaign_scope(
    alias: str, campaign_id: str | None, brand: str | None
) -> tuple[str, list[object]]:
    if campaign_id:
        return f"{alias}.campaign_id = ?", [campaign_id]
    if brand:
        return (
            f"{alias}.campaign_id IN (SELECT campaign_id FROM campaigns WHERE lower(brand) = lower(?))",
            [brand],
        )
    return "1 = 1", []
