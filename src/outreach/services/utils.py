from __future__ import annotations

import re
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from outreach.domain.rules import to_utc

CONTACT_RE = re.compile(r"^(?P<name>[^<]+?)(?:\s*<(?P<email>[^>]+)>)?$")
TEMPLATE_FIELDS = ("first_name", "last_name", "city", "company")


def utc_now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def today_iso() -> str:
    return date.today().isoformat()


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_utc(value).replace(microsecond=0).isoformat()


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return to_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def parse_contact(contact: str) -> tuple[str, str | None]:
    match = CONTACT_RE.match(contact.strip())
    if not match:
        return contact.strip(), None
    name = match.group("name").strip()
    email = match.group("email")
    return name, email.strip() if email else None


def split_name(full_name: str) -> tuple[str, str | None]:
    parts = full_name.strip().split(None, 1)
    if not parts:
        return "", None
    return parts[0], parts[1] if len(parts) > 1 else None


def render_template(text: str | None, values: dict[str, str | None]) -> str | None:
    """Fill {{first_name}}-style placeholders, e.g. ``[First Name]`` when missing."""
    if not text:
        return text
    for key in TEMPLATE_FIELDS:
        fallback = "[" + key.replace("_", " ").title() + "]"
        text = text.replace("{{" + key + "}}", values.get(key) or fallback)
    return text


def day_bounds(day: date, tz: tzinfo = UTC) -> tuple[str, str]:
    """UTC ISO bounds [start, end) of a calendar day in ``tz``."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return to_iso(start), to_iso(end)


def local_day(value: datetime, tz: tzinfo = UTC) -> date:
    return to_utc(value).astimezone(tz).date()
