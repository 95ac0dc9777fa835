from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from outreach.domain import rules
from outreach.domain.errors import InvalidEntityRef, ValidationError
from outreach.domain.stages import (
    CampaignStatus,
    ChannelType,
    EntityKind,
    EntityStatus,
    OutcomeKind,
    TouchpointStatus,
)


@dataclass(frozen=True)
class EntityRef:
    """Owner of a touchpoint: exactly one lead or one organization contact."""

    kind: EntityKind
    id: str

    def __post_init__(self) -> None:
        if not isinstance(self.kind, EntityKind):
            try:
                object.__setattr__(self, "kind", EntityKind(self.kind))
            except ValueError as exc:
                raise InvalidEntityRef(f"Unknown entity kind: {self.kind}") from exc
        if not self.id or not str(self.id).strip():
            raise InvalidEntityRef("Entity reference requires an id.")

    @classmethod
    def lead(cls, lead_id: str) -> EntityRef:
        return cls(EntityKind.LEAD, lead_id)

    @classmethod
    def contact(cls, contact_id: str) -> EntityRef:
        return cls(EntityKind.CONTACT, contact_id)

    @classmethod
    def from_ids(cls, lead_id: str | None, contact_id: str | None) -> EntityRef:
        if lead_id and contact_id:
            raise InvalidEntityRef("Touchpoint cannot reference both a lead and a contact.")
        if lead_id:
            return cls.lead(lead_id)
        if contact_id:
            return cls.contact(contact_id)
        raise InvalidEntityRef("Touchpoint must reference either a lead or a contact.")

    @property
    def lead_id(self) -> str | None:
        return self.id if self.kind is EntityKind.LEAD else None

    @property
    def contact_id(self) -> str | None:
        return self.id if self.kind is EntityKind.CONTACT else None


@dataclass(frozen=True)
class SequenceStep:
    step_order: int
    channel: ChannelType
    day_offset: int
    name: str | None = None
    content_ref: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "channel", ChannelType(self.channel))
        if self.step_order < 1:
            raise ValidationError("step_order must be 1 or greater.")
        if self.day_offset < 0:
            raise ValidationError("day_offset must be non-negative.")


@dataclass(frozen=True)
class SequenceDefinition:
    sequence_id: str
    name: str
    brand: str | None
    steps: tuple[SequenceStep, ...] = ()
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        orders = [step.step_order for step in self.steps]
        if len(orders) != len(set(orders)):
            raise ValidationError(f"Sequence {self.name} has duplicate step orders.")

    @property
    def ordered_steps(self) -> list[SequenceStep]:
        return sorted(self.steps, key=lambda step: step.step_order)

    @property
    def max_day_offset(self) -> int | None:
        if not self.steps:
            return None
        return max(step.day_offset for step in self.steps)


@dataclass(frozen=True)
class Organization:
    org_id: str
    name: str
    city: str | None
    notes: str | None
    created_at: datetime


@dataclass(frozen=True)
class Lead:
    lead_id: str
    first_name: str
    last_name: str | None
    email: str | None
    phone: str | None
    city: str | None
    company: str | None
    status: EntityStatus
    campaign_id: str | None
    last_contacted_at: datetime | None
    created_at: datetime

    @property
    def ref(self) -> EntityRef:
        return EntityRef.lead(self.lead_id)


@dataclass(frozen=True)
class OrgContact:
    contact_id: str
    org_id: str
    first_name: str
    last_name: str | None
    title: str | None
    email: str | None
    phone: str | None
    status: EntityStatus
    campaign_id: str | None
    last_contacted_at: datetime | None
    created_at: datetime

    @property
    def ref(self) -> EntityRef:
        return EntityRef.contact(self.contact_id)


@dataclass(frozen=True)
class Campaign:
    campaign_id: str
    name: str
    brand: str
    sequence_id: str | None
    start_date: date
    end_date: date
    status: CampaignStatus
    external_id: str | None
    created_at: datetime
    created_by: str | None


@dataclass(frozen=True)
class TouchpointSpec:
    """A touchpoint to be created; no identity until persisted."""

    entity: EntityRef
    channel: ChannelType
    scheduled_at: datetime
    subject: str | None = None
    content: str | None = None
    step_order: int | None = None
    campaign_id: str | None = None


@dataclass(frozen=True)
class Touchpoint:
    touchpoint_id: str
    entity: EntityRef
    channel: ChannelType
    scheduled_at: datetime
    completed_at: datetime | None
    outcome: str | None
    outcome_kind: OutcomeKind | None
    subject: str | None
    content: str | None
    created_at: datetime
    created_by: str | None
    campaign_id: str | None = None

    def __post_init__(self) -> None:
        if (self.completed_at is None) != (self.outcome_kind is None):
            raise ValidationError(
                f"Touchpoint {self.touchpoint_id}: completed_at and outcome_kind must be set together."
            )

    @property
    def status(self) -> TouchpointStatus:
        if self.completed_at is None:
            return TouchpointStatus.SCHEDULED
        return TouchpointStatus.COMPLETED


@dataclass(frozen=True)
class ExternalEvent:
    email: str
    status: OutcomeKind
    campaign_external_id: str
    timestamps: dict[OutcomeKind, datetime] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ExternalEvent:
        email = (payload.get("email") or "").strip()
        rules.require(email, "email")
        status = payload.get("status")
        rules.validate_enum(status, [k.value for k in OutcomeKind], "status")
        if status is None:
            raise ValidationError("status is required.")
        campaign_external_id = (
            payload.get("campaign_external_id")
            or payload.get("campaignExternalId")
            or payload.get("campaign_id")
        )
        rules.require(campaign_external_id, "campaign_external_id")
        timestamps: dict[OutcomeKind, datetime] = {}
        for kind in OutcomeKind:
            # sent_at or sentAt
            raw = payload.get(f"{kind.value}_at") or payload.get(f"{kind.value}At")
            parsed = rules.parse_datetime(raw, f"{kind.value}_at") if raw else None
            if parsed is not None:
                timestamps[kind] = parsed
        return cls(
            email=email.lower(),
            status=OutcomeKind(status),
            campaign_external_id=str(campaign_external_id),
            timestamps=timestamps,
        )
