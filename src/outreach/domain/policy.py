from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, tzinfo
from zoneinfo import ZoneInfo

from outreach.domain.stages import EntityKind, EntityStatus

DEFAULT_TERMINAL_STATUSES = (EntityStatus.WON, EntityStatus.NOT_INTERESTED)
DEFAULT_CONVERSION_STATUSES = (EntityStatus.WON,)


@dataclass(frozen=True)
class CampaignPolicy:
    """Per-brand behaviour, resolved once per campaign."""

    brand: str
    entity_kind: EntityKind = EntityKind.LEAD
    default_sequence: str | None = None
    terminal_statuses: tuple[EntityStatus, ...] = DEFAULT_TERMINAL_STATUSES
    conversion_statuses: tuple[EntityStatus, ...] = DEFAULT_CONVERSION_STATUSES
    timezone: str = "UTC"

    @property
    def tzinfo(self) -> tzinfo:
        if self.timezone.upper() == "UTC":
            return UTC
        return ZoneInfo(self.timezone)


def resolve_policy(brand: str, policies: dict[str, CampaignPolicy] | None) -> CampaignPolicy:
    if policies:
        for name, policy in policies.items():
            if name.lower() == brand.lower():
                return policy
    return CampaignPolicy(brand=brand)
