from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import uuid4

from outreach.domain import rules
from outreach.domain.errors import NotFoundError
from outreach.domain.models import EntityRef, Lead, OrgContact
from outreach.domain.stages import EntityKind, EntityStatus
from outreach.services.utils import from_iso, parse_contact, split_name, to_iso, utc_now_iso
from outreach.store.sqlite import SqliteSession, SqliteStore

TABLES = {
    EntityKind.LEAD: ("leads", "lead_id"),
    EntityKind.CONTACT: ("org_contacts", "contact_id"),
}


class _Reader(Protocol):
    def fetch_one(self, query: str, params: Iterable[object] | None = None): ...

    def fetch_all(self, query: str, params: Iterable[object] | None = None): ...


@dataclass(frozen=True)
class EntityListItem:
    ref: EntityRef
    name: str
    email: str | None
    status: str
    campaign_id: str | None
    scheduled: int
    completed: int


def add_lead(
    store: SqliteStore,
    contact: str,
    phone: str | None = None,
    city: str | None = None,
    company: str | None = None,
    status: str = EntityStatus.NOT_CONTACTED.value,
) -> str:
    rules.require(contact, "contact")
    rules.validate_enum(status, [s.value for s in EntityStatus], "status")
    full_name, email = parse_contact(contact)
    first_name, last_name = split_name(full_name)
    rules.require(first_name, "name")

    now = utc_now_iso()
    lead_id = str(uuid4())
    store.execute(
        "INSERT INTO leads (lead_id, first_name, last_name, email, phone, city, company, status, campaign_id, "
        "last_contacted_at, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            lead_id,
            first_name,
            last_name,
            email.lower() if email else None,
            phone,
            city,
            company,
            status,
            None,
            None,
            now,
            now,
        ),
    )
    return lead_id


def add_org_contact(
    store: SqliteStore,
    org_name: str,
    contact: str,
    title: str | None = None,
    phone: str | None = None,
    city: str | None = None,
    status: str = EntityStatus.NOT_CONTACTED.value,
) -> str:
    rules.require(org_name, "org")
    rules.require(contact, "contact")
    rules.validate_enum(status, [s.value for s in EntityStatus], "status")
    full_name, email = parse_contact(contact)
    first_name, last_name = split_name(full_name)

    now = utc_now_iso()
    with store.session() as session:
        org_id = _get_or_create_org(session, org_name, city, now)
        contact_id = str(uuid4())
        session.execute(
            "INSERT INTO org_contacts (contact_id, org_id, first_name, last_name, title, email, phone, status, "
            "campaign_id, last_contacted_at, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                contact_id,
                org_id,
                first_name,
                last_name,
                title,
                email.lower() if email else None,
                phone,
                status,
                None,
                None,
                now,
                now,
            ),
        )
        return contact_id


def get_entity(reader: _Reader, ref: EntityRef) -> Lead | OrgContact:
    table, id_field = TABLES[ref.kind]
    row = reader.fetch_one(f"SELECT * FROM {table} WHERE {id_field} = ?", (ref.id,))
    if row is None:
        raise NotFoundError(f"{ref.kind.value} not found: {ref.id}")
    if ref.kind is EntityKind.LEAD:
        return Lead(
            lead_id=row["lead_id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            phone=row["phone"],
            city=row["city"],
            company=row["company"],
            status=EntityStatus(row["status"]),
            campaign_id=row["campaign_id"],
            last_contacted_at=from_iso(row["last_contacted_at"]),
            created_at=from_iso(row["created_at"]),
        )
    return OrgContact(
        contact_id=row["contact_id"],
        org_id=row["org_id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        title=row["title"],
        email=row["email"],
        phone=row["phone"],
        status=EntityStatus(row["status"]),
        campaign_id=row["campaign_id"],
        last_contacted_at=from_iso(row["last_contacted_at"]),
        created_at=from_iso(row["created_at"]),
    )


def template_values(reader: _Reader, entity: Lead | OrgContact) -> dict[str, str | None]:
    if isinstance(entity, Lead):
        return {
            "first_name": entity.first_name,
            "last_name": entity.last_name,
            "city": entity.city,
            "company": entity.company,
        }
    org = reader.fetch_one("SELECT name, city FROM organizations WHERE org_id = ?", (entity.org_id,))
    return {
        "first_name": entity.first_name,
        "last_name": entity.last_name,
        "city": org["city"] if org else None,
        "company": org["name"] if org else None,
    }


def find_by_email(reader: _Reader, email: str, campaign_id: str) -> list[EntityRef]:
    refs: list[EntityRef] = []
    for kind, (table, id_field) in TABLES.items():
        rows = reader.fetch_all(
            f"SELECT {id_field} FROM {table} WHERE lower(email) = lower(?) AND campaign_id = ?",
            (email, campaign_id),
        )
        refs.extend(EntityRef(kind, row[id_field]) for row in rows)
    return refs


def touch_last_contacted(session: SqliteSession, ref: EntityRef, completed_at: datetime) -> bool:
    """Move last_contacted_at forward only; older completions leave it alone."""
    table, id_field = TABLES[ref.kind]
    value = to_iso(completed_at)
    rowcount = session.execute(
        f"UPDATE {table} SET last_contacted_at = ?, updated_at = ? "
        f"WHERE {id_field} = ? AND (last_contacted_at IS NULL OR last_contacted_at < ?)",
        (value, utc_now_iso(), ref.id, value),
    )
    return rowcount == 1


def assign_to_campaign(session: SqliteSession, refs: Sequence[EntityRef], campaign_id: str) -> int:
    """Attach entities to a campaign; untouched entities start being contacted."""
    now = utc_now_iso()
    updated = 0
    for ref in refs:
        table, id_field = TABLES[ref.kind]
        updated += session.execute(
            f"UPDATE {table} SET campaign_id = ?, "
            "status = CASE WHEN status = ? THEN ? ELSE status END, updated_at = ? "
            f"WHERE {id_field} = ?",
            (
                campaign_id,
                EntityStatus.NOT_CONTACTED.value,
                EntityStatus.ACTIVELY_CONTACTING.value,
                now,
                ref.id,
            ),
        )
    return updated


def list_entities(
    reader: _Reader,
    kind: EntityKind,
    campaign_id: str | None = None,
    status: str | None = None,
) -> list[EntityListItem]:
    if status:
        rules.validate_enum(status, [s.value for s in EntityStatus], "status")
    table, id_field = TABLES[kind]
    fk = "lead_id" if kind is EntityKind.LEAD else "contact_id"
    query = (
        f"SELECT e.{id_field} AS entity_id, e.first_name, e.last_name, e.email, e.status, e.campaign_id, "
        "SUM(CASE WHEN t.touchpoint_id IS NOT NULL AND t.completed_at IS NULL THEN 1 ELSE 0 END) AS scheduled, "
        "SUM(CASE WHEN t.completed_at IS NOT NULL THEN 1 ELSE 0 END) AS completed "
        f"FROM {table} e LEFT JOIN touchpoints t ON t.{fk} = e.{id_field}"
    )
    where: list[str] = []
    params: list[object] = []
    if campaign_id:
        where.append("e.campaign_id = ?")
        params.append(campaign_id)
    if status:
        where.append("e.status = ?")
        params.append(status)
    if where:
        query += " WHERE " + " AND ".join(where)
    query += f" GROUP BY e.{id_field} ORDER BY e.first_name, e.last_name"
    return [
        EntityListItem(
            ref=EntityRef(kind, row["entity_id"]),
            name=" ".join(part for part in (row["first_name"], row["last_name"]) if part),
            email=row["email"],
            status=row["status"],
            campaign_id=row["campaign_id"],
            scheduled=int(row["scheduled"] or 0),
            completed=int(row["completed"] or 0),
        )
        for row in reader.fetch_all(query, params)
    ]


def _get_or_create_org(session: SqliteSession, name: str, city: str | None, now: str) -> str:
    row = session.fetch_one("SELECT org_id FROM organizations WHERE lower(name) = lower(?)", (name,))
    if row:
        return row["org_id"]
    org_id = str(uuid4())
    session.execute(
        "INSERT INTO organizations (org_id, name, city, notes, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (org_id, name, city, None, now, now),
    )
    return org_id
