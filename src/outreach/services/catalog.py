from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol
from uuid import uuid4

from outreach.domain import rules
from outreach.domain.errors import NotFoundError, ValidationError
from outreach.domain.models import SequenceDefinition, SequenceStep
from outreach.domain.stages import ChannelType
from outreach.services.utils import utc_now_iso
from outreach.store.sqlite import SqliteStore


class _Reader(Protocol):
    def fetch_one(self, query: str, params: Iterable[object] | None = None): ...

    def fetch_all(self, query: str, params: Iterable[object] | None = None): ...


def get_sequence(reader: _Reader, sequence_id: str) -> SequenceDefinition:
    row = reader.fetch_one("SELECT * FROM sequences WHERE sequence_id = ?", (sequence_id,))
    if row is None:
        raise NotFoundError(f"Sequence not found: {sequence_id}")
    return _to_definition(reader, row)


def find_sequence(reader: _Reader, name_or_id: str, brand: str | None = None) -> SequenceDefinition:
    row = reader.fetch_one("SELECT * FROM sequences WHERE sequence_id = ?", (name_or_id,))
    if row is None:
        query = "SELECT * FROM sequences WHERE lower(name) = lower(?)"
        params: list[object] = [name_or_id]
        if brand:
            query += " AND (brand IS NULL OR lower(brand) = lower(?))"
            params.append(brand)
        rows = reader.fetch_all(query, params)
        if len(rows) > 1:
            raise ValidationError(f"Sequence name is ambiguous: {name_or_id}")
        row = rows[0] if rows else None
    if row is None:
        raise NotFoundError(f"Sequence not found: {name_or_id}")
    return _to_definition(reader, row)


def list_sequences(reader: _Reader, brand: str | None = None) -> list[SequenceDefinition]:
    if brand:
        rows = reader.fetch_all(
            "SELECT * FROM sequences WHERE lower(brand) = lower(?) ORDER BY name", (brand,)
        )
    else:
        rows = reader.fetch_all("SELECT * FROM sequences ORDER BY name")
    return [_to_definition(reader, row) for row in rows]


def add_sequence(
    store: SqliteStore,
    name: str,
    brand: str | None,
    steps: list[SequenceStep],
    description: str | None = None,
) -> str:
    rules.require(name, "name")
    # Validates step orders before anything is written.
    SequenceDefinition(sequence_id="new", name=name, brand=brand, steps=tuple(steps))

    now = utc_now_iso()
    sequence_id = str(uuid4())
    with store.session() as session:
        session.execute(
            "INSERT INTO sequences (sequence_id, name, brand, description, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (sequence_id, name, brand, description, now, now),
        )
        session.executemany(
            "INSERT INTO sequence_steps (step_id, sequence_id, step_order, channel, day_offset, name, "
            "content_ref, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    str(uuid4()),
                    sequence_id,
                    step.step_order,
                    step.channel.value,
                    step.day_offset,
                    step.name,
                    step.content_ref,
                    now,
                    now,
                )
                for step in steps
            ],
        )
    return sequence_id


def parse_step(raw: str, step_order: int) -> SequenceStep:
    """Parse ``channel:offset[:name]``, e.g. ``email:0:Intro``."""
    parts = raw.split(":", 2)
    if len(parts) < 2:
        raise ValidationError(f"Step must be channel:day_offset, got {raw!r}.")
    channel = parts[0].strip()
    rules.validate_enum(channel, [c.value for c in ChannelType], "channel")
    try:
        day_offset = int(parts[1])
    except ValueError as exc:
        raise ValidationError(f"day_offset must be an integer, got {parts[1]!r}.") from exc
    name = parts[2].strip() if len(parts) == 3 and parts[2].strip() else None
    return SequenceStep(
        step_order=step_order, channel=ChannelType(channel), day_offset=day_offset, name=name
    )


def _to_definition(reader: _Reader, row) -> SequenceDefinition:
    step_rows = reader.fetch_all(
        "SELECT step_order, channel, day_offset, name, content_ref FROM sequence_steps "
        "WHERE sequence_id = ? ORDER BY step_order",
        (row["sequence_id"],),
    )
    steps = tuple(
        SequenceStep(
            step_order=int(step["step_order"]),
            channel=ChannelType(step["channel"]),
            day_offset=int(step["day_offset"]),
            name=step["name"],
            content_ref=step["content_ref"],
        )
        for step in step_rows
    )
    return SequenceDefinition(
        sequence_id=row["sequence_id"],
        name=row["name"],
        brand=row["brand"],
        steps=steps,
        description=row["description"],
    )
