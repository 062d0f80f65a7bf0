"""
Appointment scheduling: conflict detection, business-hours rules and
alternative slot search.
"""
import math
from datetime import datetime, time, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from .database import transaction, clinic_lock
from .errors import ConflictError, NotFoundError, ValidationError
from .logger import get_logger
from .models import (ACTIVE_APPOINTMENT_STATUSES, MAX_APPOINTMENT_MINUTES, Appointment,
                     AppointmentStatus, Patient, Staff, StaffRole)

logger = get_logger(__name__)

BUSINESS_START_HOUR = 9
BUSINESS_END_HOUR = 17
SLOT_STEP_MINUTES = 30
MIN_ADVANCE_NOTICE = timedelta(hours=1)

# Service-level bound; narrower than the entity's own 5-240 minutes
MIN_SCHEDULED_MINUTES = 15
MAX_SCHEDULED_MINUTES = 120

TIMING_FIELDS = ("scheduled_time", "doctor_id", "duration")


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open intervals [start, end) overlap."""
    return start_a < end_b and start_b < end_a


def as_local(value: datetime) -> datetime:
    """Naive local time; aware datetimes are converted first."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def conflict_payload(conflicts: List[Appointment]) -> List[dict]:
    return [
        {
            "id": a.id,
            "scheduled_time": a.scheduled_time.isoformat(),
            "end_time": a.end_time.isoformat(),
            "status": a.status.value,
        }
        for a in conflicts
    ]


class AppointmentScheduler:
    def __init__(self, db: Session, now: Callable[[], datetime] = datetime.now):
        self.db = db
        self.now = now

    # --- LOOKUPS ---

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    def get_active_doctor(self, doctor_id: int) -> Staff:
        doctor = self.db.query(Staff).filter(
            Staff.id == doctor_id,
            Staff.role == StaffRole.DOCTOR,
            Staff.is_active.is_(True),
        ).first()
        if doctor is None:
            raise NotFoundError("Active doctor", doctor_id)
        return doctor

    def active_appointments(self, doctor_id: int, window_start: datetime, window_end: datetime,
                            exclude_id: Optional[int] = None) -> List[Appointment]:
        """Active appointments of a doctor that could touch [window_start, window_end)."""
        # nothing can last longer than the entity bound, so earlier starts cannot reach the window
        earliest = window_start - timedelta(minutes=MAX_APPOINTMENT_MINUTES)
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            Appointment.scheduled_time < window_end,
            Appointment.scheduled_time > earliest,
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.scheduled_time).all()

    # --- CONFLICTS & RULES ---

    def find_conflicts(self, doctor_id: int, start: datetime, duration: int,
                       exclude_id: Optional[int] = None) -> List[Appointment]:
        start = as_local(start)
        end = start + timedelta(minutes=duration)
        return [
            a for a in self.active_appointments(doctor_id, start, end, exclude_id)
            if overlaps(start, end, a.scheduled_time, a.end_time)
        ]

    def validate_scheduling_rules(self, start: datetime, duration: int) -> None:
        """Business-hours gate; raises ValidationError on the first broken rule."""
        start = as_local(start)
        now = self.now()
        if start <= now:
            raise ValidationError("Appointment must be scheduled for a future time",
                                  constraint="scheduled_time > now")
        if not (BUSINESS_START_HOUR <= start.hour < BUSINESS_END_HOUR):
            raise ValidationError("Appointments can only be scheduled between 9 AM and 5 PM",
                                  constraint="9 <= hour < 17")
        if start - now < MIN_ADVANCE_NOTICE:
            raise ValidationError("Appointments must be scheduled at least 1 hour in advance",
                                  constraint="scheduled_time - now >= 1h")
        if duration < MIN_SCHEDULED_MINUTES or duration > MAX_SCHEDULED_MINUTES:
            raise ValidationError(
                f"Appointment duration must be between {MIN_SCHEDULED_MINUTES} "
                f"and {MAX_SCHEDULED_MINUTES} minutes",
                constraint=f"{MIN_SCHEDULED_MINUTES} <= duration <= {MAX_SCHEDULED_MINUTES}",
            )

    def suggest_alternative_slots(self, doctor_id: int, preferred_start: datetime, duration: int,
                                  max_suggestions: int = 3, horizon_days: int = 3,
                                  exclude_id: Optional[int] = None) -> List[datetime]:
        """
        Greedy scan of the 30-minute business-hours grid, starting on the
        preferred day, for slots without a conflict.

        The doctor's calendar for the whole horizon is read once and every
        candidate is checked in memory.
        """
        suggestions = []
        if max_suggestions <= 0 or horizon_days <= 0:
            return suggestions

        first_day = as_local(preferred_start).date()
        length = timedelta(minutes=duration)
        horizon_start = datetime.combine(first_day, time(BUSINESS_START_HOUR))
        horizon_end = datetime.combine(first_day + timedelta(days=horizon_days - 1),
                                       time(BUSINESS_END_HOUR)) + length
        booked = [(a.scheduled_time, a.end_time)
                  for a in self.active_appointments(doctor_id, horizon_start, horizon_end, exclude_id)]

        now = self.now()
        for day_offset in range(horizon_days):
            day = first_day + timedelta(days=day_offset)
            for hour in range(BUSINESS_START_HOUR, BUSINESS_END_HOUR):
                for minute in range(0, 60, SLOT_STEP_MINUTES):
                    slot = datetime.combine(day, time(hour, minute))
                    if slot <= now:
                        continue
                    slot_end = slot + length
                    if any(overlaps(slot, slot_end, s, e) for s, e in booked):
                        continue
                    suggestions.append(slot)
                    if len(suggestions) >= max_suggestions:
                        return suggestions
        return suggestions

    def check_availability(self, doctor_id: int, start: datetime, duration: int,
                           exclude_id: Optional[int] = None) -> dict:
        conflicts = self.find_conflicts(doctor_id, start, duration, exclude_id)
        available = len(conflicts) == 0
        suggested_times = []
        if not available:
            suggested_times = self.suggest_alternative_slots(doctor_id, start, duration,
                                                             exclude_id=exclude_id)
        return {"available": available, "conflicts": conflicts, "suggested_times": suggested_times}

    # --- LIFECYCLE ---

    def create_appointment(self, patient_id: int, doctor_id: int, scheduled_time: datetime,
                           duration: int = 30, reason_for_visit: str = "", **extra) -> Appointment:
        """Book an appointment after the conflict check and the scheduling rules pass."""
        if self.db.get(Patient, patient_id) is None:
            raise NotFoundError("Patient", patient_id)
        self.get_active_doctor(doctor_id)
        start = as_local(scheduled_time)

        conflicts = self.find_conflicts(doctor_id, start, duration)
        if conflicts:
            logger.warning("Booking for doctor %s at %s rejected: %s conflict(s)",
                           doctor_id, start, len(conflicts))
            raise ConflictError(
                f"Scheduling conflict: doctor is not available at the requested time. "
                f"Conflicts: {len(conflicts)}",
                conflicts=conflict_payload(conflicts),
            )
        self.validate_scheduling_rules(start, duration)

        with clinic_lock(f"doctor:{doctor_id}"), transaction(self.db):
            # re-check inside the write scope; a concurrent booking may have landed
            conflicts = self.find_conflicts(doctor_id, start, duration)
            if conflicts:
                raise ConflictError("Scheduling conflict detected while saving",
                                    conflicts=conflict_payload(conflicts))
            appointment = Appointment(
                patient_id=patient_id,
                doctor_id=doctor_id,
                scheduled_time=start,
                duration=duration,
                reason_for_visit=reason_for_visit,
                status=AppointmentStatus.SCHEDULED,
                created_at=self.now(),
                **extra,
            )
            self.db.add(appointment)
            self.db.flush()
        logger.info("Appointment %s booked: doctor %s, %s for %s min",
                    appointment.id, doctor_id, start, duration)
        return appointment

    def update_appointment(self, appointment_id: int, changes: dict) -> Appointment:
        """Apply changes; moving the slot or doctor re-runs the conflict check."""
        appointment = self.get_appointment(appointment_id)
        if not appointment.can_be_rescheduled(self.now()):
            raise ValidationError("Appointment cannot be modified (too close to scheduled time or not open)",
                                  status=appointment.status.value)

        changes = {k: v for k, v in changes.items() if v is not None}
        if "scheduled_time" in changes:
            changes["scheduled_time"] = as_local(changes["scheduled_time"])
        doctor_id = changes.get("doctor_id", appointment.doctor_id)
        start = changes.get("scheduled_time", appointment.scheduled_time)
        duration = changes.get("duration", appointment.duration)
        timing_changed = any(name in changes for name in TIMING_FIELDS)

        if timing_changed:
            if "doctor_id" in changes:
                self.get_active_doctor(doctor_id)
            self.validate_scheduling_rules(start, duration)

        with clinic_lock(f"doctor:{doctor_id}"), transaction(self.db):
            if timing_changed:
                conflicts = self.find_conflicts(doctor_id, start, duration, exclude_id=appointment.id)
                if conflicts:
                    raise ConflictError("Scheduling conflict: doctor is not available at the requested time",
                                        conflicts=conflict_payload(conflicts))
            if "status" in changes:
                changes["status"] = AppointmentStatus(changes["status"])
            for name, value in changes.items():
                setattr(appointment, name, value)
            self.db.flush()
        logger.info("Appointment %s updated (%s)", appointment.id, ", ".join(sorted(changes)))
        return appointment

    def cancel_appointment(self, appointment_id: int, reason: str) -> Appointment:
        if reason is None or not reason.strip():
            raise ValidationError("Cancellation reason is required",
                                  constraint="cancellation_reason must not be blank")
        appointment = self.get_appointment(appointment_id)
        if not appointment.can_be_cancelled(self.now()):
            raise ValidationError("Appointment cannot be cancelled (too close to scheduled time or not open)",
                                  status=appointment.status.value)
        with transaction(self.db):
            appointment.status = AppointmentStatus.CANCELLED
            appointment.cancellation_reason = reason.strip()
            appointment.cancelled_at = self.now()
        logger.info("Appointment %s cancelled: %s", appointment.id, appointment.cancellation_reason)
        return appointment

    def list_appointments(self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                          status=None, doctor_id: Optional[int] = None, patient_id: Optional[int] = None,
                          page: int = 1, limit: int = 20) -> dict:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        query = self.db.query(Appointment)
        if start_date and end_date:
            query = query.filter(Appointment.scheduled_time >= as_local(start_date),
                                 Appointment.scheduled_time <= as_local(end_date))
        if status:
            query = query.filter(Appointment.status == AppointmentStatus(status))
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)

        total = query.count()
        items = query.order_by(Appointment.scheduled_time).offset((page - 1) * limit).limit(limit).all()
        return {"appointments": items, "total": total, "page": page, "pages": math.ceil(total / limit)}
