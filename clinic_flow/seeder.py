from datetime import datetime
from typing import Callable, Optional

from faker import Faker
from sqlalchemy.orm import Session

from .checkin import CheckInService
from .database import SessionLocal, engine, transaction
from .logger import get_logger
from .models import Base, Staff, StaffRole
from .schemas import CheckInRequest

logger = get_logger(__name__)

SPECIALTIES = ["General Practice", "Emergency Medicine", "Internal Medicine", "Pediatrics", "Cardiology"]
SAMPLE_SYMPTOMS = [
    "Persistent cough and sore throat",
    "Mild headache since this morning",
    "Sprained ankle after a fall, possible broken bone",
    "Chest pain radiating to the left arm",
    "Fever and body aches for two days",
    "Allergic reaction with hives after lunch",
    "Lower back pain when bending",
]


def seed(db: Session, doctors: int = 3, patients: int = 10,
         now: Callable[[], datetime] = datetime.now, seed_value: Optional[int] = None) -> dict:
    """Create demo doctors and walk-in patients through the real check-in flow."""
    fake = Faker()
    if seed_value is not None:
        fake.seed_instance(seed_value)

    logger.info("Creating %s doctors", doctors)
    with transaction(db):
        db_doctors = []
        for _ in range(doctors):
            doc = Staff(
                first_name=fake.first_name(),
                last_name=fake.last_name(),
                email=fake.unique.email(),
                role=StaffRole.DOCTOR,
                specialty=fake.random_element(SPECIALTIES),
                is_active=True,
            )
            db.add(doc)
            db_doctors.append(doc)
        db.flush()

    logger.info("Checking in %s patients", patients)
    service = CheckInService(db, now=now)
    results = []
    for _ in range(patients):
        rnd = fake.random
        request = CheckInRequest(
            first_name=fake.first_name(),
            last_name=fake.last_name(),
            email=fake.unique.email(),
            phone=fake.numerify("555-###-####"),
            date_of_birth=fake.date_of_birth(minimum_age=1, maximum_age=90),
            gender=fake.random_element(["male", "female", "other"]),
            symptoms=fake.random_element(SAMPLE_SYMPTOMS),
            vitals={
                "temperature": round(rnd.uniform(97.0, 103.5), 1),
                "heart_rate": rnd.randint(55, 130),
                "blood_pressure_systolic": rnd.randint(95, 175),
                "blood_pressure_diastolic": rnd.randint(60, 105),
                "pain_level": rnd.randint(0, 9),
            },
        )
        results.append(service.check_in(request))

    return {
        "doctor_ids": [d.id for d in db_doctors],
        "visit_ids": [r["visit_id"] for r in results],
    }


if __name__ == "__main__":
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        summary = seed(session)
        logger.info("Seed finished: %s doctors, %s visits",
                    len(summary["doctor_ids"]), len(summary["visit_ids"]))
    finally:
        session.close()
