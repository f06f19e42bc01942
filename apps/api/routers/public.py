from fastapi import APIRouter, Depends, Request
from sqlmodel import Session
from database import get_session
from schemas import PublicQueueStatusResponse
from services.public_token import get_status_by_public_token
from slowapi import Limiter
from slowapi.util import get_remote_address
import os

router = APIRouter(prefix="/api/public", tags=["Public"])
limiter = Limiter(key_func=get_remote_address)

PUBLIC_STATUS_RATE_LIMIT = os.getenv("PUBLIC_STATUS_RATE_LIMIT", "60/minute")


@router.get("/queue/{token}", response_model=PublicQueueStatusResponse)
@limiter.limit(PUBLIC_STATUS_RATE_LIMIT)
def get_queue_by_token(
    request: Request,
    token: str,
    session: Session = Depends(get_session)
):
    """Queue status for the holder of a public tracking link; no clinic credentials needed"""
    return get_status_by_public_token(session, token)
