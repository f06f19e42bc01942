from fastapi import APIRouter, Depends, status
from sqlmodel import Session
from database import get_session
from models import Doctor
from schemas import (
    ScheduleUpdate, ScheduleResponse, ScheduleUpdateResponse, ConflictCheckResponse,
    TimeOffCreate, TimeOffCreateResponse, TimeOffDeleteResponse,
)
from dependencies import get_clinic_doctor
from services import schedule_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clinics/{clinic_id}/doctors/{doctor_id}", tags=["Schedule"])

@router.get("/schedule", response_model=ScheduleResponse)
def get_schedule(
    doctor_id: int,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Get the doctor's shift templates, weekly table and time-off"""
    return schedule_service.get_schedule(session, doctor_id)

@router.post("/schedule/conflicts", response_model=ConflictCheckResponse)
def check_schedule_conflicts(
    doctor_id: int,
    schedule_data: ScheduleUpdate,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Preview which booked appointments a schedule change would invalidate"""
    return schedule_service.check_schedule_conflicts(session, doctor_id, schedule_data.to_change())

@router.put("/schedule", response_model=ScheduleUpdateResponse)
def update_schedule(
    doctor_id: int,
    schedule_data: ScheduleUpdate,
    cancel_conflicts: bool = False,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """
    Update duration, shift templates and/or the weekly table.

    Conflicting bookings reject the change with 409 unless
    ``cancel_conflicts`` is set, in which case they are cancelled and their
    slots released in the same transaction.
    """
    return schedule_service.update_availability_with_resolution(
        session,
        doctor_id,
        schedule_data.to_change(),
        cancel_conflicts=cancel_conflicts,
    )

@router.post("/time-off", response_model=TimeOffCreateResponse, status_code=status.HTTP_201_CREATED)
def create_time_off(
    doctor_id: int,
    time_off_data: TimeOffCreate,
    cancel_conflicts: bool = False,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Block out a date range (break, vacation, other)"""
    return schedule_service.create_time_off(
        session,
        doctor_id,
        start_date=time_off_data.start_date,
        end_date=time_off_data.end_date,
        type=time_off_data.type,
        reason=time_off_data.reason,
        cancel_conflicts=cancel_conflicts,
    )

@router.delete("/time-off/{time_off_id}", response_model=TimeOffDeleteResponse)
def delete_time_off(
    doctor_id: int,
    time_off_id: int,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Remove a time-off exception and restore its slots"""
    return schedule_service.delete_time_off(session, doctor_id, time_off_id)
