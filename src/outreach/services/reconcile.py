from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from outreach.domain.errors import OutreachError, PartialSyncFailure
from outreach.domain.lifecycle import decide_transition, resolve_completed_at
from outreach.domain.models import Campaign, EntityRef, ExternalEvent, Touchpoint
from outreach.domain.stages import ChannelType, TouchpointStatus
from outreach.services import campaigns, entities, touchpoints
from outreach.services.events import EventLogger, emit
from outreach.services.touchpoints import TouchpointError, TouchpointFilter
from outreach.services.utils import utc_now
from outreach.store.sqlite import SqliteSession, SqliteStore

COMPONENT = "reconcile"
MAX_CAS_ATTEMPTS = 3


@dataclass
class EventFailure:
    email: str | None
    status: str | None
    error: str


@dataclass
class ReconcileChange:
    email: str
    touchpoint_id: str | None
    action: str
    outcome_kind: str | None = None
    reason: str | None = None


@dataclass
class ReconcileResult:
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[EventFailure] = field(default_factory=list)
    changes: list[ReconcileChange] = field(default_factory=list)

    @property
    def partial_failure(self) -> bool:
        return bool(self.failures)

    def raise_for_failures(self) -> None:
        if self.failures:
            raise PartialSyncFailure(
                f"{len(self.failures)} external events could not be applied.", self.failures
            )


def reconcile(
    store: SqliteStore,
    campaign_external_id: str,
    events: Iterable[ExternalEvent | dict[str, Any]],
    logger: EventLogger | None = None,
    clock: Callable[[], datetime] = utc_now,
    max_workers: int = 1,
) -> ReconcileResult:
    """Merge sending-platform email statuses into local touchpoints.

    Each event is applied in its own transaction; a failing event is
    recorded in ``failures`` and the rest still run. Touchpoint writes are
    compare-and-set on the current outcome, so replays and stale events
    are no-ops.
    """
    campaign = campaigns.find_by_external_id(store, campaign_external_id)
    now = clock()
    result = ReconcileResult()
    items = list(events)

    def run(raw: ExternalEvent | dict[str, Any]) -> ReconcileChange | EventFailure:
        return _reconcile_one(store, campaign, raw, now, logger)

    if max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes = list(pool.map(run, items))
    else:
        outcomes = [run(raw) for raw in items]

    for outcome in outcomes:
        if isinstance(outcome, EventFailure):
            result.failed += 1
            result.failures.append(outcome)
            continue
        result.changes.append(outcome)
        if outcome.action == "updated":
            result.updated += 1
        else:
            result.skipped += 1

    emit(
        logger,
        component=COMPONENT,
        event_type="summary",
        entity_type="campaign",
        entity_id=campaign.campaign_id,
        fields=[
            f"updated={result.updated}",
            f"skipped={result.skipped}",
            f"failed={result.failed}",
        ],
    )
    return result


def _reconcile_one(
    store: SqliteStore,
    campaign: Campaign,
    raw: ExternalEvent | dict[str, Any],
    now: datetime,
    logger: EventLogger | None,
) -> ReconcileChange | EventFailure:
    email = raw.email if isinstance(raw, ExternalEvent) else raw.get("email")
    status = raw.status.value if isinstance(raw, ExternalEvent) else raw.get("status")
    try:
        event = raw if isinstance(raw, ExternalEvent) else ExternalEvent.from_payload(raw)
        if event.campaign_external_id != campaign.external_id:
            change = ReconcileChange(
                email=event.email, touchpoint_id=None, action="skipped", reason="other_campaign"
            )
        else:
            change = _apply_event(store, campaign, event, now)
    except (OutreachError, sqlite3.Error) as exc:
        emit(
            logger,
            component=COMPONENT,
            event_type="failed",
            entity_type="email",
            entity_id=email,
            detail=str(exc),
        )
        return EventFailure(email=email, status=status, error=str(exc))

    emit(
        logger,
        component=COMPONENT,
        event_type=change.action,
        entity_type="touchpoint",
        entity_id=change.touchpoint_id,
        fields=[f for f in (change.outcome_kind, change.reason) if f],
    )
    return change


def _apply_event(
    store: SqliteStore, campaign: Campaign, event: ExternalEvent, now: datetime
) -> ReconcileChange:
    with store.session() as session:
        refs = entities.find_by_email(session, event.email, campaign.campaign_id)
        if not refs:
            return ReconcileChange(
                email=event.email, touchpoint_id=None, action="skipped", reason="no_match"
            )

        target: Touchpoint | None = None
        for ref in refs:
            target = select_target(session, ref, campaign.campaign_id)
            if target is not None:
                break
        if target is None:
            return ReconcileChange(
                email=event.email, touchpoint_id=None, action="skipped", reason="no_touchpoint"
            )

        for _ in range(MAX_CAS_ATTEMPTS):
            decision = decide_transition(target.outcome_kind, event.status)
            if not decision.applies:
                return ReconcileChange(
                    email=event.email,
                    touchpoint_id=target.touchpoint_id,
                    action="skipped",
                    outcome_kind=target.outcome_kind.value if target.outcome_kind else None,
                    reason=decision.reason,
                )
            completed_at = resolve_completed_at(event.status, event.timestamps, now)
            if touchpoints.compare_and_set_outcome(
                session, target.touchpoint_id, target.outcome_kind, event.status, completed_at
            ):
                entities.touch_last_contacted(session, target.entity, completed_at)
                return ReconcileChange(
                    email=event.email,
                    touchpoint_id=target.touchpoint_id,
                    action="updated",
                    outcome_kind=event.status.value,
                )
            target = touchpoints.get_touchpoint(session, target.touchpoint_id)
        raise TouchpointError(
            f"Touchpoint {target.touchpoint_id} kept changing during reconciliation."
        )


def select_target(
    session: SqliteSession, ref: EntityRef, campaign_id: str | None = None
) -> Touchpoint | None:
    """Pick the email touchpoint an external status applies to.

    The most recently completed email touchpoint carries the platform's
    running status; without one, the earliest pending email touchpoint is
    the one being sent. Touchpoints from other campaigns are never picked.
    """
    emails = touchpoints.query(
        session, TouchpointFilter(entity=ref, channel=ChannelType.EMAIL, campaign_id=campaign_id)
    )
    completed = [tp for tp in emails if tp.status is TouchpointStatus.COMPLETED]
    if completed:
        return max(completed, key=lambda tp: (tp.completed_at, tp.scheduled_at))
    pending = [tp for tp in emails if tp.status is TouchpointStatus.SCHEDULED]
    if pending:
        return min(pending, key=lambda tp: (tp.scheduled_at, tp.touchpoint_id))
    return None
