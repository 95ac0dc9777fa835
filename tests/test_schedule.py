from datetime import UTC, date, datetime

import pytest

from outreach.domain.errors import EmptySequence, NoTargets, ValidationError
from outreach.domain.models import EntityRef, SequenceDefinition, SequenceStep
from outreach.domain.stages import ChannelType
from outreach.services import schedule


def _sequence(steps: list[tuple[int, str, int]], name: str | None = None) -> SequenceDefinition:
    return SequenceDefinition(
        sequence_id="seq-1",
        name="Intro",
        brand=None,
        steps=tuple(
            SequenceStep(step_order=order, channel=channel, day_offset=offset, name=name)
            for order, channel, offset in steps
        ),
    )


def test_generate_two_targets_four_steps() -> None:
    sequence = _sequence(
        [(1, "email", 0), (2, "call", 3), (3, "email", 5), (4, "linkedin_message", 10)]
    )
    targets = [EntityRef.lead("lead-a"), EntityRef.contact("contact-b")]

    specs = schedule.generate(sequence, date(2025, 7, 1), targets)

    assert len(specs) == 8
    for target in targets:
        days = [spec.scheduled_at.date() for spec in specs if spec.entity == target]
        assert days == [
            date(2025, 7, 1),
            date(2025, 7, 4),
            date(2025, 7, 6),
            date(2025, 7, 11),
        ]
    assert [spec.channel for spec in specs[:4]] == [
        ChannelType.EMAIL,
        ChannelType.CALL,
        ChannelType.EMAIL,
        ChannelType.LINKEDIN_MESSAGE,
    ]
    assert schedule.campaign_end_date(date(2025, 7, 1), sequence) == date(2025, 7, 11)


def test_generate_sends_at_nine_utc() -> None:
    specs = schedule.generate(_sequence([(1, "email", 2)]), date(2025, 7, 1), [EntityRef.lead("a")])

    assert specs[0].scheduled_at == datetime(2025, 7, 3, 9, 0, tzinfo=UTC)
    assert specs[0].step_order == 1


def test_offsets_are_absolute_regardless_of_step_storage_order() -> None:
    in_order = _sequence([(1, "email", 0), (2, "call", 3), (3, "email", 10)])
    shuffled = _sequence([(3, "email", 10), (1, "email", 0), (2, "call", 3)])
    targets = [EntityRef.lead("a")]

    first = schedule.generate(in_order, date(2025, 7, 1), targets)
    second = schedule.generate(shuffled, date(2025, 7, 1), targets)

    assert [(s.step_order, s.scheduled_at) for s in first] == [
        (s.step_order, s.scheduled_at) for s in second
    ]


def test_end_date_uses_maximum_offset_not_last_step() -> None:
    sequence = _sequence([(1, "email", 0), (2, "call", 10), (3, "email", 5)])

    assert schedule.campaign_end_date(date(2025, 7, 1), sequence) == date(2025, 7, 11)


def test_end_date_defaults_without_sequence() -> None:
    assert schedule.campaign_end_date(date(2025, 7, 1), None) == date(2025, 7, 31)


def test_empty_sequence_rejected() -> None:
    with pytest.raises(EmptySequence):
        schedule.generate(_sequence([]), date(2025, 7, 1), [EntityRef.lead("a")])


def test_no_targets_rejected() -> None:
    with pytest.raises(NoTargets):
        schedule.generate(_sequence([(1, "email", 0)]), date(2025, 7, 1), [])


def test_duplicate_step_orders_rejected() -> None:
    with pytest.raises(ValidationError):
        _sequence([(1, "email", 0), (1, "call", 2)])


def test_negative_offset_rejected() -> None:
    with pytest.raises(ValidationError):
        SequenceStep(step_order=1, channel=ChannelType.EMAIL, day_offset=-1)


def test_step_names_are_rendered_per_target() -> None:
    sequence = _sequence([(1, "email", 0)], name="Hi {{first_name}} at {{company}}")
    targets = [EntityRef.lead("a"), EntityRef.lead("b")]
    values = {targets[0]: {"first_name": "Jane", "company": "Acme"}}

    specs = schedule.generate(sequence, date(2025, 7, 1), targets, values)

    assert specs[0].subject == "Hi Jane at Acme"
    assert specs[1].subject == "Hi [First Name] at [Company]"
