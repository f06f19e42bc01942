"""Shared fixtures: a throwaway SQLite database per test and a seeded clinic"""
import os

# Configure the app before any project module reads the environment
os.environ["CACHE_ENABLED"] = "false"
os.environ["USE_SQLITE"] = "true"

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from database import build_engine, create_db_and_tables, get_session
from models import Clinic, Doctor, ShiftType
from services.schedule_service import update_availability

WEEKDAYS = range(5)  # Monday to Friday


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'clinicq_test.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def now():
    """Monday 2026-03-02, 08:00 clinic time"""
    return datetime(2026, 3, 2, 8, 0)


@pytest.fixture
def clinic(session):
    clinic = Clinic(name="Riverside Family Clinic", timezone="America/Chicago")
    session.add(clinic)
    session.commit()
    session.refresh(clinic)
    return clinic


@pytest.fixture
def doctor_id(session, clinic):
    doctor = Doctor(clinic_id=clinic.id, full_name="Dr. Priya Raman", specialization="General Medicine")
    session.add(doctor)
    session.commit()
    session.refresh(doctor)
    return doctor.id


@pytest.fixture
def configure_schedule(session, now):
    """Apply a weekday schedule to a doctor; MORNING only unless an evening window is given"""
    def configure(doctor_id, duration=15, morning=("09:00", "13:00"), evening=None, days=WEEKDAYS):
        templates = {ShiftType.MORNING: morning}
        if evening is not None:
            templates[ShiftType.EVENING] = evening
        weekly = [
            (day, {ShiftType.MORNING: True, ShiftType.EVENING: evening is not None})
            for day in days
        ]
        return update_availability(
            session,
            doctor_id,
            {"appointment_duration_min": duration, "shift_templates": templates, "weekly": weekly},
            now=now,
        )
    return configure


@pytest.fixture
def client(engine):
    from main import app

    def get_test_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_test_session
    yield TestClient(app)
    app.dependency_overrides.clear()
