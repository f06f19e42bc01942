"""Load and persist a doctor's Availability Model"""
from datetime import datetime
from sqlmodel import Session, select
from errors import NotFound
from models import Doctor, ShiftTemplate, WeeklyAvailability, TimeOffException, ShiftType, TimeOffType
from services.availability import AvailabilityModel, ShiftWindow, TimeOffPeriod, empty_weekly_table
from validators.time_validator import parse_time_string, format_time


def get_active_doctor(session: Session, doctor_id: int) -> Doctor:
    doctor = session.get(Doctor, doctor_id)
    if not doctor or not doctor.is_active:
        raise NotFound("Doctor not found", doctor_id=doctor_id)
    return doctor


def load_availability_model(session: Session, doctor: Doctor) -> AvailabilityModel:
    templates = session.exec(
        select(ShiftTemplate).where(ShiftTemplate.doctor_id == doctor.id)
    ).all()
    weekly_rows = session.exec(
        select(WeeklyAvailability).where(WeeklyAvailability.doctor_id == doctor.id)
    ).all()
    time_off_rows = session.exec(
        select(TimeOffException)
        .where(TimeOffException.doctor_id == doctor.id)
        .order_by(TimeOffException.start_date)
    ).all()

    weekly = empty_weekly_table()
    for row in weekly_rows:
        weekly[(row.day_of_week, ShiftType(row.shift_type))] = row.enabled

    return AvailabilityModel(
        doctor_id=doctor.id,
        appointment_duration_min=doctor.appointment_duration_min,
        shift_templates={
            ShiftType(t.shift_type): ShiftWindow(
                ShiftType(t.shift_type), parse_time_string(t.start_time), parse_time_string(t.end_time)
            )
            for t in templates
        },
        weekly=weekly,
        time_off=tuple(
            TimeOffPeriod(
                start_date=row.start_date,
                end_date=row.end_date,
                type=TimeOffType(row.type),
                reason=row.reason,
                id=row.id,
            )
            for row in time_off_rows
        ),
    )


def persist_availability_model(session: Session, doctor: Doctor, model: AvailabilityModel) -> None:
    """Upsert duration, templates and the weekly table; time-off rows are managed separately"""
    doctor.appointment_duration_min = model.appointment_duration_min

    existing_templates = {
        ShiftType(t.shift_type): t
        for t in session.exec(select(ShiftTemplate).where(ShiftTemplate.doctor_id == doctor.id)).all()
    }
    for shift_type, window in model.shift_templates.items():
        row = existing_templates.get(shift_type)
        if row is None:
            row = ShiftTemplate(doctor_id=doctor.id, shift_type=shift_type, start_time="", end_time="")
        row.start_time = format_time(window.start)
        row.end_time = format_time(window.end)
        session.add(row)

    existing_weekly = {
        (row.day_of_week, ShiftType(row.shift_type)): row
        for row in session.exec(
            select(WeeklyAvailability).where(WeeklyAvailability.doctor_id == doctor.id)
        ).all()
    }
    for (day_of_week, shift_type), enabled in model.weekly.items():
        row = existing_weekly.get((day_of_week, shift_type))
        if row is None:
            if not enabled:
                continue
            row = WeeklyAvailability(doctor_id=doctor.id, day_of_week=day_of_week, shift_type=shift_type)
        row.enabled = enabled
        session.add(row)

    if doctor.schedule_configured_at is None and model.is_fully_configured():
        doctor.schedule_configured_at = datetime.utcnow()

    session.add(doctor)
    session.flush()
