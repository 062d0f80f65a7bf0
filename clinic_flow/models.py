import datetime
import enum

from sqlalchemy import (Column, Integer, String, ForeignKey, DateTime, Date, Float,
                        Text, Enum, Boolean, JSON)
from sqlalchemy.orm import relationship, validates

from .database import Base
from .errors import ValidationError


def _values(enum_cls):
    # store the enum values ("in-progress"), not the member names
    return [member.value for member in enum_cls]


# --- ENUMS ---

class TriageLevel(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Higher rank is served first."""
        return PRIORITY_RANK[self]


PRIORITY_RANK = {TriageLevel.HIGH: 3, TriageLevel.MEDIUM: 2, TriageLevel.LOW: 1}


class QueueStatus(str, enum.Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Allowed queue status changes. Anything not listed is rejected.
QUEUE_TRANSITIONS = {
    QueueStatus.WAITING: {QueueStatus.IN_PROGRESS, QueueStatus.CANCELLED},
    QueueStatus.IN_PROGRESS: {QueueStatus.COMPLETED, QueueStatus.CANCELLED, QueueStatus.WAITING},
    QueueStatus.COMPLETED: set(),
    QueueStatus.CANCELLED: {QueueStatus.WAITING},
}


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked-in"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


# Statuses that occupy calendar time and take part in conflict checks
ACTIVE_APPOINTMENT_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.CHECKED_IN,
    AppointmentStatus.IN_PROGRESS,
)

# Statuses from which an appointment may still be moved or cancelled
MODIFIABLE_APPOINTMENT_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


class AppointmentType(str, enum.Enum):
    CHECKUP = "checkup"
    FOLLOW_UP = "follow-up"
    CONSULTATION = "consultation"
    PROCEDURE = "procedure"
    EMERGENCY = "emergency"


class StaffRole(str, enum.Enum):
    DOCTOR = "doctor"
    NURSE = "nurse"
    ADMIN = "admin"
    RECEPTIONIST = "receptionist"


# Entity-level duration bound; the scheduling rules apply a narrower one
MIN_APPOINTMENT_MINUTES = 5
MAX_APPOINTMENT_MINUTES = 240


# --- TABLES ---

class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(120), unique=True, index=True, nullable=False)
    phone = Column(String(20))
    date_of_birth = Column(Date)
    gender = Column(String(10))
    allergies = Column(Text)
    medications = Column(Text)
    created_at = Column(DateTime, default=datetime.datetime.now)

    visits = relationship("Visit", back_populates="patient")
    appointments = relationship("Appointment", back_populates="patient")


class Staff(Base):
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(120), unique=True, index=True, nullable=False)
    role = Column(Enum(StaffRole, values_callable=_values), nullable=False, default=StaffRole.DOCTOR)
    specialty = Column(String(100))
    is_active = Column(Boolean, default=True, nullable=False)

    queue_entries = relationship("QueueEntry", back_populates="doctor")
    appointments = relationship("Appointment", back_populates="doctor",
                                foreign_keys="Appointment.doctor_id")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Visit(Base):
    __tablename__ = "visits"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    symptoms = Column(Text, nullable=False)
    temperature = Column(Float, nullable=False)
    heart_rate = Column(Integer, nullable=False)
    blood_pressure_systolic = Column(Integer, nullable=False)
    blood_pressure_diastolic = Column(Integer, nullable=False)
    pain_level = Column(Integer, nullable=False)

    triage_level = Column(Enum(TriageLevel, values_callable=_values), nullable=False)
    triage_score = Column(Integer, nullable=False)
    triage_factors = Column(JSON, default=list)
    estimated_wait_time = Column(Integer, nullable=False)

    check_in_time = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    patient = relationship("Patient", back_populates="visits")
    appointment = relationship("Appointment", back_populates="visit")
    queue_entry = relationship("QueueEntry", back_populates="visit", uselist=False)


class QueueEntry(Base):
    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True, index=True)
    visit_id = Column(Integer, ForeignKey("visits.id"), unique=True, nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("staff.id"), nullable=True, index=True)
    assigned_room = Column(String(20), nullable=True)

    position = Column(Integer, nullable=False, default=1)
    status = Column(Enum(QueueStatus, values_callable=_values), nullable=False,
                    default=QueueStatus.WAITING, index=True)
    # fixed at check-in from the triage level
    priority = Column(Enum(TriageLevel, values_callable=_values), nullable=False, index=True)

    check_in_time = Column(DateTime, nullable=False, index=True)
    called_time = Column(DateTime, nullable=True)
    consultation_start_time = Column(DateTime, nullable=True)
    consultation_end_time = Column(DateTime, nullable=True)

    estimated_wait_time = Column(Integer, nullable=False, default=0)
    actual_wait_time = Column(Integer, nullable=True)
    consultation_duration = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    visit = relationship("Visit", back_populates="queue_entry")
    patient = relationship("Patient")
    doctor = relationship("Staff", back_populates="queue_entries")

    @property
    def sort_key(self):
        """Ordering used for position assignment."""
        return (-PRIORITY_RANK[self.priority], self.check_in_time, self.id)


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)
    scheduled_time = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=30)
    status = Column(Enum(AppointmentStatus, values_callable=_values), nullable=False,
                    default=AppointmentStatus.SCHEDULED, index=True)
    appointment_type = Column(Enum(AppointmentType, values_callable=_values), nullable=False,
                              default=AppointmentType.CONSULTATION)

    reason_for_visit = Column(String(500), nullable=False)
    chief_complaint = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    pre_appointment_instructions = Column(Text, nullable=True)

    created_by = Column(Integer, ForeignKey("staff.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.now)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    reminder_sent = Column(Boolean, default=False)

    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Staff", back_populates="appointments", foreign_keys=[doctor_id])
    visit = relationship("Visit", back_populates="appointment", uselist=False)

    @validates("duration")
    def validate_duration(self, key, value):
        if value is None or not (MIN_APPOINTMENT_MINUTES <= value <= MAX_APPOINTMENT_MINUTES):
            raise ValidationError(
                f"Appointment duration must be between {MIN_APPOINTMENT_MINUTES} "
                f"and {MAX_APPOINTMENT_MINUTES} minutes"
            )
        return value

    @property
    def visit_id(self):
        return self.visit.id if self.visit is not None else None

    @property
    def end_time(self) -> datetime.datetime:
        return self.scheduled_time + datetime.timedelta(minutes=self.duration)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_APPOINTMENT_STATUSES

    def can_be_cancelled(self, now: datetime.datetime) -> bool:
        return (self.status in MODIFIABLE_APPOINTMENT_STATUSES
                and now < self.scheduled_time - datetime.timedelta(hours=2))

    def can_be_rescheduled(self, now: datetime.datetime) -> bool:
        return (self.status in MODIFIABLE_APPOINTMENT_STATUSES
                and now < self.scheduled_time - datetime.timedelta(hours=1))
