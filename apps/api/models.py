from typing import Optional, List
from datetime import datetime, date, time
from sqlmodel import Field, SQLModel, Relationship
from sqlalchemy import Column, String, Index, UniqueConstraint, text
from enum import Enum


class ShiftType(str, Enum):
    MORNING = "MORNING"
    EVENING = "EVENING"

class TimeOffType(str, Enum):
    BREAK = "BREAK"
    VACATION = "VACATION"
    OTHER = "OTHER"

class SlotStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    BOOKED = "BOOKED"

class AppointmentStatus(str, Enum):
    BOOKED = "BOOKED"
    CHECKED_IN = "CHECKED_IN"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"

class QueueSource(str, Enum):
    APPOINTMENT = "APPOINTMENT"
    WALKIN = "WALKIN"

class QueuePriority(str, Enum):
    NORMAL = "NORMAL"
    URGENT = "URGENT"
    EMERGENCY = "EMERGENCY"

class QueueStatus(str, Enum):
    QUEUED = "QUEUED"
    WAITING = "WAITING"
    WITH_DOCTOR = "WITH_DOCTOR"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


ACTIVE_QUEUE_STATUSES = (QueueStatus.QUEUED, QueueStatus.WAITING)


class Clinic(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    timezone: str = Field(default="America/Chicago")  # IANA name
    created_at: datetime = Field(default_factory=datetime.utcnow)

    doctors: List["Doctor"] = Relationship(back_populates="clinic")

class Doctor(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinic.id", index=True)
    full_name: str
    specialization: str
    appointment_duration_min: Optional[int] = None
    is_active: bool = Field(default=True)

    # Schedule bookkeeping owned by the scheduling engine
    schedule_configured_at: Optional[datetime] = None
    slots_generated_from: Optional[date] = None
    slots_generated_to: Optional[date] = None

    clinic: Optional[Clinic] = Relationship(back_populates="doctors")

class ShiftTemplate(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("doctor_id", "shift_type", name="uq_shift_template_doctor_shift"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: int = Field(foreign_key="doctor.id", index=True)
    shift_type: ShiftType
    start_time: str  # Format: "HH:MM"
    end_time: str    # Format: "HH:MM"

class WeeklyAvailability(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("doctor_id", "day_of_week", "shift_type", name="uq_weekly_doctor_day_shift"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: int = Field(foreign_key="doctor.id", index=True)
    day_of_week: int = Field(ge=0, le=6)  # 0=Monday, 6=Sunday
    shift_type: ShiftType
    enabled: bool = Field(default=False)

class TimeOffException(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: int = Field(foreign_key="doctor.id", index=True)
    start_date: date
    end_date: date
    type: TimeOffType = Field(default=TimeOffType.OTHER, sa_column=Column(String(20), nullable=False))
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

class Slot(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("doctor_id", "slot_date", "start_time", name="uq_slot_doctor_date_start"),
        Index("ix_slot_doctor_date_status", "doctor_id", "slot_date", "status"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinic.id")
    doctor_id: int = Field(foreign_key="doctor.id")
    slot_date: date
    start_time: time
    end_time: time
    shift_type: ShiftType
    status: SlotStatus = Field(default=SlotStatus.AVAILABLE, sa_column=Column(String(20), nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)

class Appointment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinic.id")
    doctor_id: int = Field(foreign_key="doctor.id", index=True)
    slot_id: Optional[int] = Field(default=None, foreign_key="slot.id", index=True)  # cleared on release
    patient_ref: str
    starts_at: datetime  # clinic-local wall clock
    ends_at: datetime
    status: AppointmentStatus = Field(default=AppointmentStatus.BOOKED, sa_column=Column(String(20), nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)

    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None

class QueueEntry(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("doctor_id", "queue_date", "token", name="uq_queue_doctor_date_token"),
        Index("ix_queue_doctor_date_status", "doctor_id", "queue_date", "status"),
        # At most one patient with the doctor, whatever the date
        Index(
            "uq_queue_one_with_doctor",
            "doctor_id",
            unique=True,
            sqlite_where=text("status = 'WITH_DOCTOR'"),
            postgresql_where=text("status = 'WITH_DOCTOR'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinic.id")
    doctor_id: int = Field(foreign_key="doctor.id")
    queue_date: date
    token: int
    patient_ref: str
    source: QueueSource = Field(sa_column=Column(String(20), nullable=False))
    priority: QueuePriority = Field(default=QueuePriority.NORMAL, sa_column=Column(String(20), nullable=False))
    status: QueueStatus = Field(default=QueueStatus.QUEUED, sa_column=Column(String(20), nullable=False))
    appointment_id: Optional[int] = Field(default=None, foreign_key="appointment.id")
    reason: Optional[str] = None

    checked_in_at: datetime  # clinic-local wall clock
    called_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

class DoctorDailyCheckIn(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("doctor_id", "checkin_date", name="uq_checkin_doctor_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: int = Field(foreign_key="doctor.id")
    checkin_date: date
    checked_in_at: datetime
    checked_out_at: Optional[datetime] = None

class PatientPublicToken(SQLModel, table=True):
    """Opaque, expiring handle a patient uses to poll their queue status"""
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinic.id")
    queue_entry_id: int = Field(foreign_key="queueentry.id", index=True)
    token: str = Field(unique=True, index=True)
    expires_at: datetime  # clinic-local wall clock
    created_at: datetime = Field(default_factory=datetime.utcnow)
