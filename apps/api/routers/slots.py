from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session
from database import get_session
from models import Doctor, Slot, Appointment, SlotStatus
from schemas import (
    SlotGenerateRequest, SlotGenerateResponse, SlotResponse, SlotSummaryResponse, SlotClearResponse,
    BookSlotRequest, CancelAppointmentRequest, AppointmentResponse,
)
from dependencies import get_clinic_doctor, get_clinic_slot, get_clinic_appointment
from services import slot_generator, slot_store
from datetime import date
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clinics/{clinic_id}", tags=["Slots"])

@router.post("/doctors/{doctor_id}/slots/generate", response_model=SlotGenerateResponse)
def generate_slots(
    doctor_id: int,
    range_data: SlotGenerateRequest,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Materialize bookable slots for an inclusive date range"""
    result = slot_generator.generate_slots(session, doctor_id, range_data.start_date, range_data.end_date)
    return SlotGenerateResponse(
        created=result["created"],
        start_date=result["range"]["from"],
        end_date=result["range"]["to"],
    )

@router.delete("/doctors/{doctor_id}/slots", response_model=SlotClearResponse)
def clear_available_slots(
    doctor_id: int,
    from_date: date,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Delete unbooked slots from a date onwards; booked slots are kept"""
    return slot_store.clear_available_slots(session, doctor_id, from_date)

@router.get("/doctors/{doctor_id}/slots", response_model=List[SlotResponse])
def list_slots(
    doctor_id: int,
    slot_date: date = Query(alias="date"),
    slot_status: Optional[SlotStatus] = Query(default=None, alias="status"),
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """List a doctor's slots for one day"""
    return slot_store.list_slots(session, doctor_id, slot_date, slot_status)

@router.get("/doctors/{doctor_id}/slots/summary", response_model=SlotSummaryResponse)
def slot_status_summary(
    doctor_id: int,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Slot counts and the recorded generation range"""
    return slot_store.slot_status_summary(session, doctor_id)

@router.post("/slots/{slot_id}/book", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_slot(
    slot_id: int,
    booking_data: BookSlotRequest,
    slot: Slot = Depends(get_clinic_slot),
    session: Session = Depends(get_session)
):
    """Book an available slot for a patient"""
    return slot_store.book_appointment(session, slot_id, booking_data.patient_ref)

@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    cancel_data: Optional[CancelAppointmentRequest] = None,
    appointment: Appointment = Depends(get_clinic_appointment),
    session: Session = Depends(get_session)
):
    """Cancel an appointment and release its slot"""
    reason = cancel_data.reason if cancel_data else None
    return slot_store.cancel_appointment(session, appointment_id, reason)

@router.post("/appointments/{appointment_id}/no-show", response_model=AppointmentResponse)
def mark_no_show(
    appointment_id: int,
    appointment: Appointment = Depends(get_clinic_appointment),
    session: Session = Depends(get_session)
):
    """Record that the patient did not turn up for a booked appointment"""
    return slot_store.mark_no_show(session, appointment_id)

@router.post("/appointments/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    appointment: Appointment = Depends(get_clinic_appointment),
    session: Session = Depends(get_session)
):
    """Mark a booked appointment as moved and release its slot"""
    return slot_store.reschedule_appointment(session, appointment_id)
