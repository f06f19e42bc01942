from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from models import (
    ShiftType, TimeOffType, SlotStatus, AppointmentStatus,
    QueueSource, QueuePriority, QueueStatus,
)
from datetime import datetime, date, time

# Schedule schemas
class ShiftTemplateIn(BaseModel):
    start: str  # "HH:MM"
    end: str

class WeeklyDayIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)  # 0=Monday
    shifts: Dict[ShiftType, Optional[bool]]

class ScheduleUpdate(BaseModel):
    """Partial schedule change; omitted parts keep their current value"""
    appointment_duration_min: Optional[int] = None
    shift_templates: Optional[Dict[ShiftType, ShiftTemplateIn]] = None
    weekly: Optional[List[WeeklyDayIn]] = None

    def to_change(self) -> Dict[str, Any]:
        return {
            "appointment_duration_min": self.appointment_duration_min,
            "shift_templates": {
                shift_type: (template.start, template.end)
                for shift_type, template in (self.shift_templates or {}).items()
            },
            "weekly": [(day.day_of_week, day.shifts) for day in (self.weekly or [])],
        }

class TimeOffCreate(BaseModel):
    start_date: date
    end_date: date
    type: TimeOffType = TimeOffType.OTHER
    reason: Optional[str] = None

class ConflictResponse(BaseModel):
    slot_id: int
    appointment_id: Optional[int] = None
    patient_ref: Optional[str] = None
    slot_date: date
    start_time: str
    end_time: str
    shift_type: ShiftType
    reason: str
    message: str

class ConflictCheckResponse(BaseModel):
    has_conflicts: bool
    conflicts: List[ConflictResponse]
    total_conflicts: int

class RegenerationResponse(BaseModel):
    from_date: date = Field(alias="from")
    to_date: date = Field(alias="to")
    deleted: int
    created: int

    class Config:
        populate_by_name = True

class TimeOffResponse(BaseModel):
    id: Optional[int] = None
    start_date: date
    end_date: date
    type: TimeOffType
    reason: Optional[str] = None

class ScheduleResponse(BaseModel):
    doctor_id: int
    appointment_duration_min: Optional[int] = None
    shift_templates: Dict[ShiftType, ShiftTemplateIn]
    weekly: List[WeeklyDayIn]
    time_off: List[TimeOffResponse]
    is_configured: bool
    schedule_configured_at: Optional[datetime] = None
    slots_generated_from: Optional[date] = None
    slots_generated_to: Optional[date] = None

class ScheduleUpdateResponse(BaseModel):
    applied: bool
    cancelled_appointments: List[int]
    conflicts: List[ConflictResponse]
    regenerated: Optional[RegenerationResponse] = None
    schedule: ScheduleResponse

class TimeOffCreateResponse(BaseModel):
    time_off: TimeOffResponse
    cancelled_appointments: List[int]
    conflicts: List[ConflictResponse]
    regenerated: Optional[RegenerationResponse] = None

class TimeOffDeleteResponse(BaseModel):
    deleted: bool
    regenerated: Optional[RegenerationResponse] = None

# Slot schemas
class SlotGenerateRequest(BaseModel):
    start_date: date
    end_date: date

class SlotGenerateResponse(BaseModel):
    created: int
    start_date: date
    end_date: date

class SlotResponse(BaseModel):
    id: int
    doctor_id: int
    slot_date: date
    start_time: time
    end_time: time
    shift_type: ShiftType
    status: SlotStatus

    class Config:
        from_attributes = True

class SlotSummaryResponse(BaseModel):
    total: int
    available: int
    booked: int
    generated_from: Optional[date] = None
    generated_to: Optional[date] = None

class SlotClearResponse(BaseModel):
    deleted_count: int

# Appointment schemas
class BookSlotRequest(BaseModel):
    patient_ref: str

class CancelAppointmentRequest(BaseModel):
    reason: Optional[str] = None

class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    slot_id: Optional[int] = None
    patient_ref: str
    starts_at: datetime
    ends_at: datetime
    status: AppointmentStatus
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# Queue schemas
class QueueCheckInRequest(BaseModel):
    patient_ref: str
    source: QueueSource
    slot_id: Optional[int] = None
    priority: QueuePriority = QueuePriority.NORMAL
    reason: Optional[str] = None
    queue_date: Optional[date] = None  # clinic today when omitted

class QueueTransitionRequest(BaseModel):
    status: QueueStatus

class QueueEntryResponse(BaseModel):
    id: int
    doctor_id: int
    queue_date: date
    token: int
    patient_ref: str
    source: QueueSource
    priority: QueuePriority
    status: QueueStatus
    appointment_id: Optional[int] = None
    reason: Optional[str] = None
    checked_in_at: datetime
    called_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class QueueStatusResponse(BaseModel):
    entry_id: int
    doctor_id: int
    token: int
    queue_date: date
    status: QueueStatus
    priority: QueuePriority
    position: Optional[int] = None
    people_ahead: int
    estimated_wait_minutes: Optional[int] = None
    doctor_checked_in: bool
    current_token: Optional[int] = None  # token now with the doctor
    doctor_available: bool

class PublicTokenRequest(BaseModel):
    ttl_minutes: int = Field(default=480, gt=0)

class PublicTokenResponse(BaseModel):
    token: str
    url_path: str
    expires_at: datetime

class PublicQueueStatusResponse(QueueStatusResponse):
    clinic_name: str
    doctor_name: str
    checked_in_at: datetime

class DoctorPresenceResponse(BaseModel):
    doctor_id: int
    checkin_date: date
    checked_in: bool
    checked_in_at: Optional[datetime] = None
    checked_out_at: Optional[datetime] = None
