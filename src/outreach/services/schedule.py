from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime, time, timedelta

from outreach.domain.errors import EmptySequence, NoTargets
from outreach.domain.models import EntityRef, SequenceDefinition, TouchpointSpec
from outreach.services.utils import render_template

SEND_TIME = time(9, 0, tzinfo=UTC)
DEFAULT_CAMPAIGN_DAYS = 30


def generate(
    sequence: SequenceDefinition,
    start_date: date,
    targets: Sequence[EntityRef],
    template_values: Mapping[EntityRef, Mapping[str, str | None]] | None = None,
) -> list[TouchpointSpec]:
    """Expand a sequence into one touchpoint per (target, step).

    Day offsets count from ``start_date``, never from the previous step.
    Output order is target order, then step order.
    """
    if not sequence.steps:
        raise EmptySequence(f"Sequence {sequence.name} has no steps.")
    if not targets:
        raise NoTargets("At least one target entity is required.")

    steps = sequence.ordered_steps
    specs: list[TouchpointSpec] = []
    for target in targets:
        values = dict((template_values or {}).get(target) or {})
        for step in steps:
            specs.append(
                TouchpointSpec(
                    entity=target,
                    channel=step.channel,
                    scheduled_at=scheduled_at_for(start_date, step.day_offset),
                    subject=render_template(step.name, values),
                    content=render_template(step.content_ref, values),
                    step_order=step.step_order,
                )
            )
    return specs


def scheduled_at_for(start_date: date, day_offset: int) -> datetime:
    return datetime.combine(start_date + timedelta(days=day_offset), SEND_TIME)


def campaign_end_date(start_date: date, sequence: SequenceDefinition | None) -> date:
    max_offset = sequence.max_day_offset if sequence is not None else None
    if max_offset is None:
        return start_date + timedelta(days=DEFAULT_CAMPAIGN_DAYS)
    return start_date + timedelta(days=max_offset)
