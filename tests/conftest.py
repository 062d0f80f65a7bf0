import itertools
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinic_flow.checkin import CheckInService
from clinic_flow.database import get_db
from clinic_flow.main import app
from clinic_flow.models import Base, Patient, Staff, StaffRole
from clinic_flow.routers import get_clock
from clinic_flow.schemas import CheckInRequest

# Monday morning, before the clinic opens
NOW = datetime(2025, 3, 10, 8, 0)

engine = create_engine(
    "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NORMAL_VITALS = {
    "temperature": 98.6,
    "heart_rate": 72,
    "blood_pressure_systolic": 120,
    "blood_pressure_diastolic": 80,
    "pain_level": 0,
}

# symptoms + vitals overrides that land in each triage level
LEVEL_PRESETS = {
    "high": ("Crushing chest pain and sweating", {"temperature": 104.0}),  # 40 + 30
    "medium": ("Suspected broken bone in the wrist", {"pain_level": 5}),  # 25 + 10
    "low": ("Mild cough for two days", {}),
}


class FakeClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, minutes: float = 0, hours: float = 0):
        self.current += timedelta(minutes=minutes, hours=hours)
        return self.current

    def set(self, value: datetime):
        self.current = value


def make_checkin_request(email: str, level: str = "low", **vitals) -> CheckInRequest:
    symptoms, preset = LEVEL_PRESETS[level]
    payload = dict(NORMAL_VITALS)
    payload.update(preset)
    payload.update(vitals)
    return CheckInRequest(
        first_name="Test",
        last_name=email.split("@")[0].title(),
        email=email,
        symptoms=symptoms,
        vitals=payload,
    )


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db, clock):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def doctor(db):
    doc = Staff(first_name="Gregory", last_name="House", email="house@clinic.test",
                role=StaffRole.DOCTOR, specialty="Diagnostics", is_active=True)
    db.add(doc)
    db.commit()
    return doc


@pytest.fixture
def nurse(db):
    staff = Staff(first_name="Carla", last_name="Espinosa", email="carla@clinic.test",
                  role=StaffRole.NURSE, is_active=True)
    db.add(staff)
    db.commit()
    return staff


@pytest.fixture
def patient(db):
    p = Patient(first_name="Ada", last_name="Lovelace", email="ada@example.com")
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def check_in(db, clock):
    """Walk-in check-in; each call advances the clock by `advance` minutes first."""
    service = CheckInService(db, now=clock)
    counter = itertools.count(1)

    def _check_in(level: str = "low", advance: float = 1, email: str = None, **vitals):
        clock.advance(minutes=advance)
        email = email or f"walkin{next(counter)}@example.com"
        return service.check_in(make_checkin_request(email, level, **vitals))

    return _check_in
