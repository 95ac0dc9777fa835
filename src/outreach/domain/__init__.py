from outreach.domain.errors import (
    EmptySequence,
    ExternalPlatformError,
    InconsistentStateError,
    InvalidEntityRef,
    NoTargets,
    NotFoundError,
    OutreachError,
    PartialSyncFailure,
    ValidationError,
)
from outreach.domain.models import (
    Campaign,
    EntityRef,
    ExternalEvent,
    Lead,
    OrgContact,
    Organization,
    SequenceDefinition,
    SequenceStep,
    Touchpoint,
    TouchpointSpec,
)

__all__ = [
    "Campaign",
    "EmptySequence",
    "EntityRef",
    "ExternalEvent",
    "ExternalPlatformError",
    "InconsistentStateError",
    "InvalidEntityRef",
    "Lead",
    "NoTargets",
    "NotFoundError",
    "OrgContact",
    "Organization",
    "OutreachError",
    "PartialSyncFailure",
    "SequenceDefinition",
    "SequenceStep",
    "Touchpoint",
    "TouchpointSpec",
    "ValidationError",
]
