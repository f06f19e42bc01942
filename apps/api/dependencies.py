"""Clinic-scoped lookups shared by the routers; anything outside the clinic is a 404"""
from fastapi import Depends, HTTPException, status
from sqlmodel import Session
from database import get_session
from models import Clinic, Doctor, Slot, Appointment, QueueEntry


def get_clinic(clinic_id: int, session: Session = Depends(get_session)) -> Clinic:
    clinic = session.get(Clinic, clinic_id)
    if not clinic:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Clinic not found"
        )
    return clinic

def get_clinic_doctor(
    doctor_id: int,
    clinic: Clinic = Depends(get_clinic),
    session: Session = Depends(get_session)
) -> Doctor:
    doctor = session.get(Doctor, doctor_id)
    if not doctor or doctor.clinic_id != clinic.id or not doctor.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Doctor not found"
        )
    return doctor

def get_clinic_slot(
    slot_id: int,
    clinic: Clinic = Depends(get_clinic),
    session: Session = Depends(get_session)
) -> Slot:
    slot = session.get(Slot, slot_id)
    if not slot or slot.clinic_id != clinic.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Slot not found"
        )
    return slot

def get_clinic_appointment(
    appointment_id: int,
    clinic: Clinic = Depends(get_clinic),
    session: Session = Depends(get_session)
) -> Appointment:
    appointment = session.get(Appointment, appointment_id)
    if not appointment or appointment.clinic_id != clinic.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Appointment not found"
        )
    return appointment

def get_clinic_queue_entry(
    entry_id: int,
    clinic: Clinic = Depends(get_clinic),
    session: Session = Depends(get_session)
) -> QueueEntry:
    entry = session.get(QueueEntry, entry_id)
    if not entry or entry.clinic_id != clinic.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Queue entry not found"
        )
    return entry
