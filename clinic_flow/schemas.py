from datetime import date, datetime
from typing import List, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator

from .models import (AppointmentStatus, AppointmentType, QueueStatus, TriageLevel,
                     MIN_APPOINTMENT_MINUTES, MAX_APPOINTMENT_MINUTES)
from .triage import Vitals


# --- HELPERS ---

def validate_not_blank(v: Optional[str], field_name: str):
    if v is None or not v.strip():
        raise ValueError(f"{field_name} must not be blank.")
    return v.strip()


# --- TRIAGE ---

class VitalsIn(BaseModel):
    temperature: float = Field(..., ge=90, le=110, description="Fahrenheit")
    heart_rate: int = Field(..., ge=30, le=200)
    blood_pressure_systolic: int = Field(..., ge=70, le=250)
    blood_pressure_diastolic: int = Field(..., ge=40, le=150)
    pain_level: int = Field(..., ge=0, le=10)

    def to_vitals(self) -> Vitals:
        return Vitals(**self.model_dump())


class TriageRequest(BaseModel):
    vitals: VitalsIn
    symptoms: str = Field(..., min_length=1)


class TriageResultSchema(BaseModel):
    score: int
    level: TriageLevel
    factors: List[str]
    model_config = ConfigDict(from_attributes=True)


# --- CHECK-IN ---

class CheckInRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=20)
    date_of_birth: Optional[date] = None
    gender: Optional[Literal["male", "female", "other"]] = None

    symptoms: str = Field(..., min_length=5)
    vitals: VitalsIn

    allergies: Optional[str] = None
    medications: Optional[str] = None

    @field_validator("first_name", "last_name")
    def check_names(cls, v, info):
        return validate_not_blank(v, info.field_name)

    model_config = ConfigDict(json_schema_extra={"example": {
        "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com",
        "symptoms": "Persistent cough and mild fever",
        "vitals": {"temperature": 100.2, "heart_rate": 92, "blood_pressure_systolic": 128,
                   "blood_pressure_diastolic": 84, "pain_level": 3},
    }})


class AppointmentCheckInRequest(BaseModel):
    symptoms: str = Field(..., min_length=5)
    vitals: VitalsIn


class CheckInResponse(BaseModel):
    tracking_token: str
    visit_id: int
    queue_entry_id: int
    patient_id: int
    first_name: str
    last_name: str
    triage_level: TriageLevel
    triage_score: int
    triage_factors: List[str]
    estimated_wait_time: int
    position: int


class TrackingClaims(BaseModel):
    visit_id: int
    patient_id: int
    triage_level: TriageLevel


# --- QUEUE ---

class QueueEntrySchema(BaseModel):
    id: int
    visit_id: int
    patient_id: int
    doctor_id: Optional[int] = None
    assigned_room: Optional[str] = None
    position: int
    status: QueueStatus
    priority: TriageLevel
    check_in_time: datetime
    called_time: Optional[datetime] = None
    consultation_start_time: Optional[datetime] = None
    consultation_end_time: Optional[datetime] = None
    estimated_wait_time: int
    actual_wait_time: Optional[int] = None
    consultation_duration: Optional[int] = None
    notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class QueueStatusUpdate(BaseModel):
    status: QueueStatus
    doctor_id: Optional[int] = None
    assigned_room: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = Field(default=None, max_length=1000)


class CallNextRequest(BaseModel):
    doctor_id: int = Field(..., gt=0)
    assigned_room: Optional[str] = Field(default=None, max_length=20)


class RecalculateResponse(BaseModel):
    success: bool = True
    message: str
    updated_count: int


class StatusBreakdown(BaseModel):
    status: QueueStatus
    count: int
    avg_wait_time: float


class QueueStatistics(BaseModel):
    total: int
    by_status: List[StatusBreakdown]
    visits_today: int
    triage_stats: dict
    average_wait_time: float
    longest_wait_time: float


# --- APPOINTMENTS ---

class AppointmentCreate(BaseModel):
    patient_id: int = Field(..., gt=0)
    doctor_id: int = Field(..., gt=0)
    scheduled_time: datetime
    duration: int = Field(default=30, ge=MIN_APPOINTMENT_MINUTES, le=MAX_APPOINTMENT_MINUTES)
    reason_for_visit: str = Field(..., min_length=1, max_length=500)
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    chief_complaint: Optional[str] = Field(default=None, max_length=1000)
    notes: Optional[str] = Field(default=None, max_length=2000)
    pre_appointment_instructions: Optional[str] = Field(default=None, max_length=1000)
    created_by: Optional[int] = None

    @field_validator("reason_for_visit")
    def check_reason(cls, v):
        return validate_not_blank(v, "Reason for visit")


class AppointmentUpdate(BaseModel):
    doctor_id: Optional[int] = Field(default=None, gt=0)
    scheduled_time: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=MIN_APPOINTMENT_MINUTES, le=MAX_APPOINTMENT_MINUTES)
    status: Optional[Literal["scheduled", "confirmed"]] = None
    reason_for_visit: Optional[str] = Field(default=None, max_length=500)
    appointment_type: Optional[AppointmentType] = None
    chief_complaint: Optional[str] = None
    notes: Optional[str] = None
    pre_appointment_instructions: Optional[str] = None


class AppointmentCancel(BaseModel):
    cancellation_reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("cancellation_reason")
    def check_reason(cls, v):
        return validate_not_blank(v, "Cancellation reason")


class AppointmentSchema(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    scheduled_time: datetime
    end_time: datetime
    duration: int
    status: AppointmentStatus
    appointment_type: AppointmentType
    reason_for_visit: str
    chief_complaint: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    visit_id: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


class ConflictSchema(BaseModel):
    id: int
    scheduled_time: datetime
    end_time: datetime
    status: AppointmentStatus
    model_config = ConfigDict(from_attributes=True)


class AvailabilityResponse(BaseModel):
    available: bool
    conflicts: List[ConflictSchema]
    suggested_times: List[datetime] = []


class AppointmentPage(BaseModel):
    appointments: List[AppointmentSchema]
    total: int
    page: int
    pages: int
