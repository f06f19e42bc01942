"""Availability model, slot materialization and conflict classification (no database)"""
from datetime import date, time

import pytest

from errors import ConfigurationError, ValidationError
from models import ShiftType, TimeOffType
from services.availability import AvailabilityModel, TimeOffPeriod
from services.conflict_detector import ConflictReason, classify
from services.slot_generator import materialize

MONDAY = date(2026, 3, 2)
WEDNESDAY = date(2026, 3, 4)


def weekday_model(duration=15, evening=False):
    return AvailabilityModel(doctor_id=1).merge(
        appointment_duration_min=duration,
        shift_templates={
            ShiftType.MORNING: ("09:00", "13:00"),
            ShiftType.EVENING: ("16:00", "19:00"),
        },
        weekly=[(day, {ShiftType.MORNING: True, ShiftType.EVENING: evening}) for day in range(5)],
    )


def test_morning_shift_is_cut_into_back_to_back_slots():
    specs = materialize(weekday_model(duration=15), MONDAY, MONDAY)

    assert len(specs) == 16
    assert specs[0].start_time == time(9, 0)
    assert specs[0].end_time == time(9, 15)
    assert specs[-1].end_time == time(13, 0)
    assert all(a.end_time == b.start_time for a, b in zip(specs, specs[1:]))


def test_no_partial_trailing_slot():
    model = AvailabilityModel(doctor_id=1).merge(
        appointment_duration_min=25,
        shift_templates={ShiftType.MORNING: ("09:00", "10:00")},
        weekly=[(0, {ShiftType.MORNING: True})],
    )

    specs = materialize(model, MONDAY, MONDAY)

    assert [(s.start_time, s.end_time) for s in specs] == [
        (time(9, 0), time(9, 25)),
        (time(9, 25), time(9, 50)),
    ]


def test_disabled_shift_and_weekend_produce_nothing():
    model = weekday_model(duration=30, evening=False)

    saturday = date(2026, 3, 7)
    assert materialize(model, saturday, saturday) == []
    assert all(s.shift_type == ShiftType.MORNING for s in materialize(model, MONDAY, MONDAY))


def test_break_on_monday_blanks_the_whole_day():
    model = weekday_model(duration=30).with_time_off(
        TimeOffPeriod(start_date=MONDAY, end_date=MONDAY, type=TimeOffType.BREAK)
    )

    assert materialize(model, MONDAY, MONDAY) == []
    tuesday = date(2026, 3, 3)
    assert len(materialize(model, tuesday, tuesday)) == 8


def test_materialize_requires_a_duration():
    model = AvailabilityModel(doctor_id=1).merge(
        shift_templates={ShiftType.MORNING: ("09:00", "13:00")},
        weekly=[(0, {ShiftType.MORNING: True})],
    )

    with pytest.raises(ConfigurationError):
        materialize(model, MONDAY, MONDAY)


def test_merge_keeps_unspecified_parts():
    model = weekday_model(duration=15, evening=True)

    changed = model.merge(weekly=[(2, {ShiftType.EVENING: False, ShiftType.MORNING: None})])

    assert changed.appointment_duration_min == 15
    assert changed.is_enabled(2, ShiftType.MORNING)
    assert not changed.is_enabled(2, ShiftType.EVENING)
    assert changed.is_enabled(3, ShiftType.EVENING)
    # The source model is untouched
    assert model.is_enabled(2, ShiftType.EVENING)


@pytest.mark.parametrize(
    "change",
    [
        {"shift_templates": {ShiftType.MORNING: ("13:00", "09:00")}},
        {"shift_templates": {ShiftType.EVENING: ("12:00", "15:00")}},
        {"shift_templates": {ShiftType.MORNING: ("9:00", "13:00")}},
        {"appointment_duration_min": 2},
        {"weekly": [(7, {ShiftType.MORNING: True})]},
    ],
)
def test_invalid_changes_are_rejected(change):
    with pytest.raises(ValidationError):
        weekday_model().merge(**change)


def test_fully_configured_needs_duration_template_and_enabled_day():
    assert not AvailabilityModel(doctor_id=1).is_fully_configured()
    assert weekday_model().is_fully_configured()


def test_classify_reports_first_broken_rule():
    model = weekday_model(duration=20, evening=False)

    def reason(slot_date, start, end, shift=ShiftType.MORNING, candidate=model):
        verdict = classify(slot_date, start, end, shift, candidate)
        return verdict[0] if verdict else None

    assert reason(MONDAY, time(9, 0), time(9, 20)) is None
    assert reason(MONDAY, time(9, 15), time(9, 30)) == ConflictReason.DURATION_MISMATCH
    assert reason(MONDAY, time(9, 10), time(9, 30)) == ConflictReason.DURATION_MISMATCH
    assert reason(MONDAY, time(12, 50), time(13, 10)) == ConflictReason.TIME_OUTSIDE_SHIFT
    assert reason(WEDNESDAY, time(16, 0), time(16, 20), ShiftType.EVENING) == ConflictReason.SHIFT_DISABLED

    off = model.with_time_off(TimeOffPeriod(start_date=MONDAY, end_date=WEDNESDAY, type=TimeOffType.VACATION))
    assert reason(MONDAY, time(9, 15), time(9, 30), candidate=off) == ConflictReason.TIME_OFF
