from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol
from uuid import uuid4

from outreach.domain import rules
from outreach.domain.errors import (
    ExternalPlatformError,
    InconsistentStateError,
    NoTargets,
    NotFoundError,
    ValidationError,
)
from outreach.domain.models import Campaign, EntityRef, Lead, OrgContact, SequenceDefinition
from outreach.domain.policy import CampaignPolicy, resolve_policy
from outreach.domain.stages import CampaignStatus
from outreach.services import catalog, entities, schedule, touchpoints
from outreach.services.events import EventLogger, emit
from outreach.services.utils import from_iso, utc_now_iso
from outreach.store.sqlite import SqliteStore

COMPONENT = "campaigns"


class _Reader(Protocol):
    def fetch_one(self, query: str, params: Iterable[object] | None = None): ...

    def fetch_all(self, query: str, params: Iterable[object] | None = None): ...


class LeadForwarder(Protocol):
    def add_leads_to_campaign(self, campaign_id: str, leads: list[dict[str, Any]]) -> dict[str, Any]: ...


@dataclass
class CampaignResult:
    campaign: Campaign
    touchpoint_ids: list[str]
    entities_updated: int
    warnings: list[str] = field(default_factory=list)


def create_campaign(
    store: SqliteStore,
    name: str,
    brand: str,
    start_date: date,
    targets: Sequence[EntityRef],
    sequence_ref: str | None = None,
    external_id: str | None = None,
    created_by: str | None = None,
    policies: dict[str, CampaignPolicy] | None = None,
    forwarder: LeadForwarder | None = None,
    logger: EventLogger | None = None,
) -> CampaignResult:
    """Bind a sequence to targets: campaign row, touchpoints and entity
    reassignment are written in one transaction.

    Forwarding leads to the sending platform happens after commit and only
    produces warnings.
    """
    rules.require(name, "name")
    rules.require(brand, "brand")
    targets = list(dict.fromkeys(targets))
    if not targets:
        raise NoTargets("At least one target entity is required.")

    policy = resolve_policy(brand, policies)
    sequence_ref = sequence_ref or policy.default_sequence
    wrong_kind = [ref for ref in targets if ref.kind is not policy.entity_kind]
    if wrong_kind:
        raise ValidationError(
            f"Brand {brand} campaigns target {policy.entity_kind.value} entities only."
        )

    campaign_id = str(uuid4())
    now = utc_now_iso()
    with store.session() as session:
        sequence: SequenceDefinition | None = None
        if sequence_ref:
            sequence = catalog.find_sequence(session, sequence_ref, brand)

        loaded: list[Lead | OrgContact] = [entities.get_entity(session, ref) for ref in targets]

        specs = []
        # A sequence without steps still makes a campaign, just no touchpoints.
        if sequence is not None and sequence.steps:
            values = {
                entity.ref: entities.template_values(session, entity) for entity in loaded
            }
            specs = schedule.generate(sequence, start_date, targets, values)
        end_date = schedule.campaign_end_date(start_date, sequence)

        session.execute(
            "INSERT INTO campaigns (campaign_id, name, brand, sequence_id, start_date, end_date, status, "
            "external_id, created_by, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                campaign_id,
                name,
                brand,
                sequence.sequence_id if sequence else None,
                start_date.isoformat(),
                end_date.isoformat(),
                CampaignStatus.ACTIVE.value,
                external_id,
                created_by,
                now,
                now,
            ),
        )
        touchpoint_ids: list[str] = []
        if specs:
            touchpoint_ids = touchpoints.batch_create(
                session, specs, created_by=created_by, logger=logger, campaign_id=campaign_id
            )

        updated = entities.assign_to_campaign(session, targets, campaign_id)
        if updated != len(targets):
            assigned = {
                ref for ref in targets if _assigned_to(session, ref, campaign_id)
            }
            missing = [ref.id for ref in targets if ref not in assigned]
            emit(
                logger,
                component=COMPONENT,
                event_type="inconsistent",
                entity_type="campaign",
                entity_id=campaign_id,
                fields=missing,
            )
            raise InconsistentStateError(
                f"Campaign {name}: {len(touchpoint_ids)} touchpoints staged but only "
                f"{updated} of {len(targets)} entities reassigned; nothing was saved.",
                campaign_id=campaign_id,
                expected=len(targets),
                actual=updated,
                missing_ids=missing,
            )
        campaign = get_campaign(session, campaign_id)

    emit(
        logger,
        component=COMPONENT,
        event_type="created",
        entity_type="campaign",
        entity_id=campaign_id,
        fields=[f"touchpoints={len(touchpoint_ids)}", f"entities={updated}"],
    )

    result = CampaignResult(
        campaign=campaign, touchpoint_ids=touchpoint_ids, entities_updated=updated
    )
    if forwarder is not None and external_id:
        warning = forward_leads(forwarder, external_id, loaded, logger=logger)
        if warning:
            result.warnings.append(warning)
    return result


def forward_leads(
    forwarder: LeadForwarder,
    external_id: str,
    targets: Sequence[Lead | OrgContact],
    logger: EventLogger | None = None,
) -> str | None:
    """Best-effort: returns a warning instead of raising."""
    payload = [_lead_payload(entity) for entity in targets if entity.email]
    if not payload:
        return "No target entities have an email address; nothing forwarded."
    try:
        forwarder.add_leads_to_campaign(external_id, payload)
    except ExternalPlatformError as exc:
        emit(
            logger,
            component=COMPONENT,
            event_type="forward_failed",
            entity_type="campaign",
            entity_id=external_id,
            detail=str(exc),
        )
        return f"Leads were not forwarded to the sending platform: {exc}"
    emit(
        logger,
        component=COMPONENT,
        event_type="forwarded",
        entity_type="campaign",
        entity_id=external_id,
        fields=[str(len(payload))],
    )
    return None


def get_campaign(reader: _Reader, campaign_id: str) -> Campaign:
    row = reader.fetch_one("SELECT * FROM campaigns WHERE campaign_id = ?", (campaign_id,))
    if row is None:
        raise NotFoundError(f"Campaign not found: {campaign_id}")
    return _to_campaign(row)


def find_by_external_id(reader: _Reader, external_id: str) -> Campaign:
    rows = reader.fetch_all("SELECT * FROM campaigns WHERE external_id = ?", (external_id,))
    if not rows:
        raise NotFoundError(f"No campaign is linked to external id {external_id}")
    if len(rows) > 1:
        raise ValidationError(f"Multiple campaigns are linked to external id {external_id}")
    return _to_campaign(rows[0])


def list_campaigns(reader: _Reader, brand: str | None = None) -> list[Campaign]:
    if brand:
        rows = reader.fetch_all(
            "SELECT * FROM campaigns WHERE lower(brand) = lower(?) ORDER BY start_date", (brand,)
        )
    else:
        rows = reader.fetch_all("SELECT * FROM campaigns ORDER BY start_date")
    return [_to_campaign(row) for row in rows]


def close_campaign(store: SqliteStore, campaign_id: str) -> Campaign:
    with store.session() as session:
        get_campaign(session, campaign_id)
        session.execute(
            "UPDATE campaigns SET status = ?, updated_at = ? WHERE campaign_id = ?",
            (CampaignStatus.COMPLETE.value, utc_now_iso(), campaign_id),
        )
        return get_campaign(session, campaign_id)


def _assigned_to(reader: _Reader, ref: EntityRef, campaign_id: str) -> bool:
    table, id_field = entities.TABLES[ref.kind]
    row = reader.fetch_one(f"SELECT campaign_id FROM {table} WHERE {id_field} = ?", (ref.id,))
    return row is not None and row["campaign_id"] == campaign_id


def _lead_payload(entity: Lead | OrgContact) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "email": entity.email,
        "first_name": entity.first_name,
        "last_name": entity.last_name,
        "phone": entity.phone,
    }
    if isinstance(entity, Lead):
        payload["company"] = entity.company
    return {key: value for key, value in payload.items() if value}


def _to_campaign(row) -> Campaign:
    return Campaign(
        campaign_id=row["campaign_id"],
        name=row["name"],
        brand=row["brand"],
        sequence_id=row["sequence_id"],
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        status=CampaignStatus(row["status"]),
        external_id=row["external_id"],
        created_at=from_iso(row["created_at"]),
        created_by=row["created_by"],
    )
