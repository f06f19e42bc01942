"""
Public tracking tokens

A patient gets an opaque link for their queue entry and polls it without
knowing clinic, doctor or entry ids. Tokens expire; the default lifetime
covers one clinic day.
"""

from datetime import datetime, timedelta
from typing import Optional
import logging
import uuid

from sqlmodel import Session, select

from errors import NotFound, TokenExpired, ValidationError
from models import Clinic, Doctor, PatientPublicToken, QueueEntry
from services.queue_status import cached_queue_status
from utils.clinic_time import clinic_now

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_MINUTES = 480
PUBLIC_PATH_PREFIX = "/api/public/queue"


def issue_public_token(
    session: Session,
    entry_id: int,
    ttl_minutes: int = DEFAULT_TOKEN_TTL_MINUTES,
    now: Optional[datetime] = None,
) -> dict:
    if ttl_minutes <= 0:
        raise ValidationError("ttl_minutes must be positive", ttl_minutes=ttl_minutes)

    entry = session.get(QueueEntry, entry_id)
    if not entry:
        raise NotFound("Queue entry not found", entry_id=entry_id)
    clinic = session.get(Clinic, entry.clinic_id)
    now = now or clinic_now(clinic.timezone)

    public_token = PatientPublicToken(
        clinic_id=entry.clinic_id,
        queue_entry_id=entry.id,
        token=uuid.uuid4().hex,
        expires_at=now + timedelta(minutes=ttl_minutes),
    )
    session.add(public_token)
    session.commit()
    session.refresh(public_token)

    logger.info(f"Public token issued for queue entry {entry_id}, expires {public_token.expires_at}")
    return {
        "token": public_token.token,
        "url_path": f"{PUBLIC_PATH_PREFIX}/{public_token.token}",
        "expires_at": public_token.expires_at,
    }


def get_status_by_public_token(session: Session, token: str, now: Optional[datetime] = None) -> dict:
    public_token = session.exec(
        select(PatientPublicToken).where(PatientPublicToken.token == token)
    ).first()
    if public_token is None:
        raise NotFound("Invalid token")

    clinic = session.get(Clinic, public_token.clinic_id)
    now = now or clinic_now(clinic.timezone)
    if public_token.expires_at < now:
        raise TokenExpired("Token expired")

    entry = session.get(QueueEntry, public_token.queue_entry_id)
    if entry is None:
        raise NotFound("Queue entry not found")
    doctor = session.get(Doctor, entry.doctor_id)

    return {
        **cached_queue_status(session, entry),
        "clinic_name": clinic.name,
        "doctor_name": doctor.full_name,
        "checked_in_at": entry.checked_in_at,
    }
