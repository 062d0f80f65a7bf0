"""
Walk-in and appointment check-in.

A check-in touches several tables (patient, visit, queue entry, appointment)
and all of it happens in one transaction: if any step fails nothing is
persisted and the queue positions are left as they were.
"""
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .config import SETTINGS
from .database import transaction
from .errors import ConflictError, NotFoundError, ValidationError
from .logger import get_logger
from .models import (MODIFIABLE_APPOINTMENT_STATUSES, Appointment, AppointmentStatus,
                     Patient, QueueStatus, Visit)
from .queue_service import QueueCoordinator
from .schemas import AppointmentCheckInRequest, CheckInRequest
from .security import create_tracking_token
from .triage import Vitals, estimate_wait_time, score_triage, validate_vitals

logger = get_logger(__name__)


class CheckInService:
    def __init__(self, db: Session, now: Callable[[], datetime] = datetime.now,
                 avg_consult_minutes: Optional[int] = None):
        self.db = db
        self.now = now
        self.avg_consult_minutes = avg_consult_minutes or SETTINGS.avg_consult_minutes
        self.queue = QueueCoordinator(db, now=now)

    def check_in(self, data: CheckInRequest) -> dict:
        vitals = self._checked_vitals(data.vitals.to_vitals())
        with self.queue.lock, transaction(self.db):
            patient = self._find_or_create_patient(data)
            result = self._admit(patient, vitals, data.symptoms)
        logger.info("Walk-in check-in for patient %s: visit %s, %s priority",
                    result["patient_id"], result["visit_id"], result["triage_level"].value)
        return result

    def check_in_appointment(self, appointment_id: int, data: AppointmentCheckInRequest) -> dict:
        """Turn a booked appointment into a visit in the live queue."""
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        if appointment.status == AppointmentStatus.CHECKED_IN or appointment.visit is not None:
            raise ConflictError("Patient already checked in for this appointment",
                                conflicts=[{"appointment_id": appointment.id,
                                            "visit_id": appointment.visit_id}])
        if appointment.status not in MODIFIABLE_APPOINTMENT_STATUSES:
            raise ValidationError(f"Cannot check in an appointment that is {appointment.status.value}",
                                  status=appointment.status.value)

        vitals = self._checked_vitals(data.vitals.to_vitals())
        with self.queue.lock, transaction(self.db):
            result = self._admit(appointment.patient, vitals, data.symptoms, appointment=appointment)
            appointment.status = AppointmentStatus.CHECKED_IN
            self.db.flush()
        logger.info("Appointment %s checked in as visit %s", appointment.id, result["visit_id"])
        return result

    # --- STEPS ---

    def _checked_vitals(self, vitals: Vitals) -> Vitals:
        valid, warnings = validate_vitals(vitals)
        if not valid:
            logger.warning("Check-in rejected, implausible vitals: %s", "; ".join(warnings))
            raise ValidationError("Vital signs outside plausible ranges", warnings=warnings)
        return vitals

    def _find_or_create_patient(self, data: CheckInRequest) -> Patient:
        email = data.email.lower()
        patient = self.db.query(Patient).filter(Patient.email == email).first()
        if patient is not None:
            return patient
        patient = Patient(
            first_name=data.first_name,
            last_name=data.last_name,
            email=email,
            phone=data.phone,
            date_of_birth=data.date_of_birth,
            gender=data.gender,
            allergies=data.allergies,
            medications=data.medications,
            created_at=self.now(),
        )
        self.db.add(patient)
        self.db.flush()
        logger.info("Registered new patient %s", patient.id)
        return patient

    def _admit(self, patient: Patient, vitals: Vitals, symptoms: str,
               appointment: Optional[Appointment] = None) -> dict:
        """Score, estimate, create the visit and queue it.

        Caller holds the queue lock and owns the transaction, so the count, the
        new entry and the re-ranked positions are committed as one step.
        """
        triage = score_triage(vitals, symptoms)
        check_in_time = self.now()

        patients_ahead = self.queue.count_by_status(QueueStatus.WAITING, QueueStatus.IN_PROGRESS)
        wait = int(round(estimate_wait_time(patients_ahead, self.avg_consult_minutes)))

        visit = Visit(
            patient_id=patient.id,
            symptoms=symptoms,
            temperature=vitals.temperature,
            heart_rate=vitals.heart_rate,
            blood_pressure_systolic=vitals.blood_pressure_systolic,
            blood_pressure_diastolic=vitals.blood_pressure_diastolic,
            pain_level=vitals.pain_level,
            triage_level=triage.level,
            triage_score=triage.score,
            triage_factors=list(triage.factors),
            estimated_wait_time=wait,
            check_in_time=check_in_time,
        )
        if appointment is not None:
            visit.appointment = appointment
        self.db.add(visit)
        self.db.flush()

        entry = self.queue.enqueue(visit.id, patient.id, triage.level, wait, check_in_time=check_in_time)

        token = create_tracking_token(visit.id, patient.id, triage.level)
        return {
            "tracking_token": token,
            "visit_id": visit.id,
            "queue_entry_id": entry.id,
            "patient_id": patient.id,
            "first_name": patient.first_name,
            "last_name": patient.last_name,
            "triage_level": triage.level,
            "triage_score": triage.score,
            "triage_factors": list(triage.factors),
            "estimated_wait_time": wait,
            "position": entry.position,
        }
