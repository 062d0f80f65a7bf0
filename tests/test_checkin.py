import threading
from datetime import timedelta

import pytest
from jose import jwt

from clinic_flow.appointments import AppointmentScheduler
from clinic_flow.checkin import CheckInService
from clinic_flow.config import SETTINGS
from clinic_flow.errors import ConflictError, NotFoundError, ValidationError
from clinic_flow.models import (Appointment, AppointmentStatus, Patient, QueueEntry, QueueStatus,
                                TriageLevel, Visit)
from clinic_flow.queue_service import QueueCoordinator
from clinic_flow.schemas import AppointmentCheckInRequest
from clinic_flow.security import create_tracking_token, decode_tracking_token

from conftest import NOW, NORMAL_VITALS, make_checkin_request


@pytest.fixture
def service(db, clock):
    return CheckInService(db, now=clock)


def test_walk_in_creates_patient_visit_and_entry(db, service, clock):
    result = service.check_in(make_checkin_request("grace@example.com", "high"))

    visit = db.get(Visit, result["visit_id"])
    entry = db.get(QueueEntry, result["queue_entry_id"])
    assert visit.patient_id == result["patient_id"]
    assert visit.triage_level == TriageLevel.HIGH
    assert visit.triage_score == 70
    assert visit.check_in_time == clock()
    assert entry.visit_id == visit.id
    assert entry.status == QueueStatus.WAITING
    assert entry.priority == TriageLevel.HIGH
    assert result["position"] == 1
    assert result["last_name"] == "Grace"


def test_wait_estimate_counts_patients_ahead(service, doctor, db, clock):
    first = service.check_in(make_checkin_request("a@example.com"))
    second = service.check_in(make_checkin_request("b@example.com"))
    QueueCoordinator(db, now=clock).call_next(doctor.id)
    third = service.check_in(make_checkin_request("c@example.com"))

    assert first["estimated_wait_time"] == 15
    assert second["estimated_wait_time"] == 15
    # one in progress, one waiting
    assert third["estimated_wait_time"] == 30


def test_returning_patient_is_matched_by_email(db, service):
    first = service.check_in(make_checkin_request("Returning@Example.com"))
    second = service.check_in(make_checkin_request("returning@example.com", "medium"))
    assert first["patient_id"] == second["patient_id"]
    assert db.query(Patient).count() == 1
    assert db.query(Visit).count() == 2


def test_tracking_token_identifies_the_visit(service):
    result = service.check_in(make_checkin_request("token@example.com", "medium"))
    claims = decode_tracking_token(result["tracking_token"])
    assert claims["visit_id"] == result["visit_id"]
    assert claims["patient_id"] == result["patient_id"]
    assert claims["triage_level"] == "medium"
    assert claims["type"] == "tracking"


def test_failed_enqueue_rolls_back_everything(db, service, monkeypatch):
    def boom(self, *args, **kwargs):
        raise RuntimeError("queue unavailable")

    monkeypatch.setattr(QueueCoordinator, "enqueue", boom)
    with pytest.raises(RuntimeError):
        service.check_in(make_checkin_request("rollback@example.com"))

    assert db.query(Patient).count() == 0
    assert db.query(Visit).count() == 0
    assert db.query(QueueEntry).count() == 0


def test_implausible_vitals_are_rejected(db, service):
    request = make_checkin_request("hot@example.com")
    request.vitals.temperature = 115
    with pytest.raises(ValidationError) as exc:
        service.check_in(request)
    assert exc.value.detail["warnings"]
    assert db.query(Patient).count() == 0


def test_invalid_tracking_tokens():
    with pytest.raises(ValidationError):
        decode_tracking_token("not-a-token")

    forged = jwt.encode({"visit_id": 1, "type": "tracking", "iss": "clinic-flow"}, "wrong-secret", algorithm="HS256")
    with pytest.raises(ValidationError):
        decode_tracking_token(forged)


def test_token_of_another_type_is_rejected():
    other = jwt.encode({"visit_id": 1, "type": "access", "iss": "clinic-flow"},
                       SETTINGS.tracking_secret, algorithm="HS256")
    with pytest.raises(ValidationError):
        decode_tracking_token(other)


def test_expired_tracking_token():
    token = create_tracking_token(1, 2, "low", expires_delta=timedelta(seconds=-5))
    with pytest.raises(ValidationError):
        decode_tracking_token(token)


@pytest.fixture
def appointment(db, clock, patient, doctor):
    return AppointmentScheduler(db, now=clock).create_appointment(
        patient.id, doctor.id, NOW.replace(hour=10), 30, reason_for_visit="Annual checkup")


def appointment_request(level_vitals=None):
    vitals = dict(NORMAL_VITALS)
    vitals.update(level_vitals or {})
    return AppointmentCheckInRequest(symptoms="Routine annual checkup", vitals=vitals)


def test_appointment_check_in_links_visit(db, service, appointment, patient):
    result = service.check_in_appointment(appointment.id, appointment_request())

    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.CHECKED_IN
    assert appointment.visit_id == result["visit_id"]
    assert result["patient_id"] == patient.id
    assert db.get(Visit, result["visit_id"]).appointment_id == appointment.id


def test_appointment_cannot_be_checked_in_twice(service, appointment):
    service.check_in_appointment(appointment.id, appointment_request())
    with pytest.raises(ConflictError):
        service.check_in_appointment(appointment.id, appointment_request())


def test_cancelled_appointment_cannot_be_checked_in(db, service, appointment):
    appointment.status = AppointmentStatus.CANCELLED
    db.commit()
    with pytest.raises(ValidationError):
        service.check_in_appointment(appointment.id, appointment_request())
    assert db.query(Visit).count() == 0


def test_unknown_appointment(service):
    with pytest.raises(NotFoundError):
        service.check_in_appointment(404, appointment_request())


def test_appointment_check_in_rolls_back_on_failure(db, service, appointment, monkeypatch):
    def boom(self, *args, **kwargs):
        raise RuntimeError("queue unavailable")

    monkeypatch.setattr(QueueCoordinator, "enqueue", boom)
    with pytest.raises(RuntimeError):
        service.check_in_appointment(appointment.id, appointment_request())

    assert db.get(Appointment, appointment.id).status == AppointmentStatus.SCHEDULED
    assert db.query(Visit).count() == 0


def lock_state_at_commit(db, service, monkeypatch):
    """Record, at every commit, whether another thread could take the queue lock."""
    seen = []
    commit = db.commit

    def checked_commit():
        def try_lock():
            acquired = service.queue.lock.acquire(blocking=False)
            if acquired:
                service.queue.lock.release()
            seen.append(acquired)

        other = threading.Thread(target=try_lock)
        other.start()
        other.join()
        commit()

    monkeypatch.setattr(db, "commit", checked_commit)
    return seen


def test_walk_in_commits_while_holding_the_queue_lock(db, service, monkeypatch):
    seen = lock_state_at_commit(db, service, monkeypatch)
    service.check_in(make_checkin_request("locked@example.com", "high"))
    assert seen == [False]


def test_appointment_check_in_commits_while_holding_the_queue_lock(db, service, appointment, monkeypatch):
    seen = lock_state_at_commit(db, service, monkeypatch)
    service.check_in_appointment(appointment.id, appointment_request())
    assert seen == [False]
