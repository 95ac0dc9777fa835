from __future__ import annotations

from enum import Enum


class ChannelType(str, Enum):
    EMAIL = "email"
    CALL = "call"
    LINKEDIN_MESSAGE = "linkedin_message"
    MEETING = "meeting"


class EntityKind(str, Enum):
    LEAD = "lead"
    CONTACT = "contact"


class EntityStatus(str, Enum):
    NOT_CONTACTED = "not_contacted"
    ACTIVELY_CONTACTING = "actively_contacting"
    ENGAGED = "engaged"
    WON = "won"
    NOT_INTERESTED = "not_interested"


class CampaignStatus(str, Enum):
    ACTIVE = "active"
    COMPLETE = "complete"


class TouchpointStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class OutcomeKind(str, Enum):
    SENT = "sent"
    OPENED = "opened"
    CLICKED = "clicked"
    REPLIED = "replied"
    BOUNCED = "bounced"
    UNSUBSCRIBED = "unsubscribed"
