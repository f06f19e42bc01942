#!/usr/bin/env python3
"""
Quick seed script for a clinic with one configured doctor and two weeks of slots
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from datetime import timedelta
from sqlmodel import Session, select
from database import engine, create_db_and_tables
from models import Clinic, Doctor, ShiftType
from services.schedule_service import update_availability
from services.slot_generator import generate_slots
from utils.clinic_time import clinic_today

WEEKDAYS = range(5)  # Monday to Friday

def seed_clinic():
    create_db_and_tables()

    with Session(engine) as session:
        # Check if the clinic already exists
        existing = session.exec(select(Clinic).where(Clinic.name == "Riverside Family Clinic")).first()
        if existing:
            print("Clinic already exists")
            return

        clinic = Clinic(name="Riverside Family Clinic", timezone="America/Chicago")
        session.add(clinic)
        session.commit()
        session.refresh(clinic)

        doctor = Doctor(clinic_id=clinic.id, full_name="Dr. Priya Raman", specialization="General Medicine")
        session.add(doctor)
        session.commit()
        session.refresh(doctor)
        clinic_id, doctor_id = clinic.id, doctor.id

        update_availability(
            session,
            doctor_id,
            {
                "appointment_duration_min": 15,
                "shift_templates": {
                    ShiftType.MORNING: ("09:00", "13:00"),
                    ShiftType.EVENING: ("16:00", "19:00"),
                },
                "weekly": [
                    (day, {ShiftType.MORNING: True, ShiftType.EVENING: day != 2})
                    for day in WEEKDAYS
                ],
            },
        )

        today = clinic_today(clinic.timezone)
        result = generate_slots(session, doctor_id, today, today + timedelta(days=13))

        print("✅ Clinic seeded successfully!")
        print(f"   Clinic id: {clinic_id}")
        print(f"   Doctor id: {doctor_id}")
        print(f"   Slots created: {result['created']}")

if __name__ == "__main__":
    seed_clinic()
