from fastapi import APIRouter, Depends, Query, Request, status
from sqlmodel import Session
from database import get_session
from models import Doctor, QueueEntry
from schemas import (
    QueueCheckInRequest, QueueTransitionRequest, QueueEntryResponse, QueueStatusResponse,
    DoctorPresenceResponse, PublicTokenRequest, PublicTokenResponse,
)
from dependencies import get_clinic_doctor, get_clinic_queue_entry
from services import public_token, queue_engine
from services.queue_status import cached_queue_status, find_entry_by_token
from utils.clinic_time import clinic_today
from slowapi import Limiter
from slowapi.util import get_remote_address
from datetime import date
from typing import List, Optional
import os
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clinics/{clinic_id}", tags=["Queue"])
limiter = Limiter(key_func=get_remote_address)

# Patient screens poll the status endpoints
QUEUE_STATUS_RATE_LIMIT = os.getenv("QUEUE_STATUS_RATE_LIMIT", "120/minute")


def _presence_response(doctor_id: int, checkin_date: date, record) -> DoctorPresenceResponse:
    return DoctorPresenceResponse(
        doctor_id=doctor_id,
        checkin_date=checkin_date,
        checked_in=record is not None and record.checked_out_at is None,
        checked_in_at=record.checked_in_at if record else None,
        checked_out_at=record.checked_out_at if record else None,
    )


@router.post("/doctors/{doctor_id}/queue", response_model=QueueEntryResponse, status_code=status.HTTP_201_CREATED)
def check_in(
    doctor_id: int,
    check_in_data: QueueCheckInRequest,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Add a patient to the doctor's queue and issue the next token"""
    return queue_engine.check_in(
        session,
        doctor_id,
        patient_ref=check_in_data.patient_ref,
        source=check_in_data.source,
        queue_date=check_in_data.queue_date,
        slot_id=check_in_data.slot_id,
        priority=check_in_data.priority,
        reason=check_in_data.reason,
    )

@router.get("/doctors/{doctor_id}/queue", response_model=List[QueueEntryResponse])
def list_queue(
    doctor_id: int,
    queue_date: Optional[date] = Query(default=None, alias="date"),
    include_closed: bool = True,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Queue of one day in calling order (clinic today by default)"""
    today = clinic_today(doctor.clinic.timezone)
    queue_engine.close_stale_entries(session, doctor_id, today)
    return queue_engine.list_queue(session, doctor_id, queue_date or today, include_closed)

@router.post("/queue/{entry_id}/transition", response_model=QueueEntryResponse)
def transition_entry(
    entry_id: int,
    transition_data: QueueTransitionRequest,
    entry: QueueEntry = Depends(get_clinic_queue_entry),
    session: Session = Depends(get_session)
):
    """Move a queue entry through its lifecycle"""
    return queue_engine.transition(session, entry_id, transition_data.status)

@router.get("/queue/{entry_id}/status", response_model=QueueStatusResponse)
@limiter.limit(QUEUE_STATUS_RATE_LIMIT)
def get_entry_status(
    request: Request,
    entry_id: int,
    entry: QueueEntry = Depends(get_clinic_queue_entry),
    session: Session = Depends(get_session)
):
    """Position, people ahead and estimated wait for a queue entry (public)"""
    return cached_queue_status(session, entry)

@router.get(
    "/doctors/{doctor_id}/queue/{queue_date}/tokens/{token}/status",
    response_model=QueueStatusResponse,
)
@limiter.limit(QUEUE_STATUS_RATE_LIMIT)
def get_token_status(
    request: Request,
    doctor_id: int,
    queue_date: date,
    token: int,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Same as the entry status, looked up by the token printed on the patient's slip"""
    entry = find_entry_by_token(session, doctor_id, queue_date, token)
    return cached_queue_status(session, entry)

@router.post("/doctors/{doctor_id}/presence", response_model=DoctorPresenceResponse)
def doctor_check_in(
    doctor_id: int,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Mark the doctor present for today"""
    record = queue_engine.doctor_check_in(session, doctor_id)
    return _presence_response(doctor_id, record.checkin_date, record)

@router.post("/doctors/{doctor_id}/presence/checkout", response_model=DoctorPresenceResponse)
def doctor_check_out(
    doctor_id: int,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Mark the doctor gone for the rest of today"""
    record = queue_engine.doctor_check_out(session, doctor_id)
    return _presence_response(doctor_id, record.checkin_date, record)

@router.get("/doctors/{doctor_id}/presence", response_model=DoctorPresenceResponse)
def get_doctor_presence(
    doctor_id: int,
    doctor: Doctor = Depends(get_clinic_doctor),
    session: Session = Depends(get_session)
):
    """Whether the doctor has checked in today"""
    today = clinic_today(doctor.clinic.timezone)
    record = queue_engine.get_doctor_check_in(session, doctor_id, today)
    return _presence_response(doctor_id, today, record)

@router.post(
    "/queue/{entry_id}/public-token",
    response_model=PublicTokenResponse,
    status_code=status.HTTP_201_CREATED,
)
def issue_public_token(
    entry_id: int,
    token_data: Optional[PublicTokenRequest] = None,
    entry: QueueEntry = Depends(get_clinic_queue_entry),
    session: Session = Depends(get_session)
):
    """Issue an expiring link the patient can use to follow their place in the queue"""
    ttl_minutes = token_data.ttl_minutes if token_data else public_token.DEFAULT_TOKEN_TTL_MINUTES
    return public_token.issue_public_token(session, entry_id, ttl_minutes)
