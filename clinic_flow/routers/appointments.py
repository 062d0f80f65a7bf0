from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..appointments import AppointmentScheduler
from ..checkin import CheckInService
from ..database import get_db
from ..models import AppointmentStatus
from . import get_clock

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
    responses={404: {"description": "Not found"}},
)


def get_scheduler(db: Session = Depends(get_db), clock=Depends(get_clock)) -> AppointmentScheduler:
    return AppointmentScheduler(db, now=clock)


@router.post("/", response_model=schemas.AppointmentSchema, status_code=status.HTTP_201_CREATED)
def create_appointment(data: schemas.AppointmentCreate,
                       scheduler: AppointmentScheduler = Depends(get_scheduler)):
    return scheduler.create_appointment(**data.model_dump())


@router.get("/", response_model=schemas.AppointmentPage)
def list_appointments(start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                      status: Optional[AppointmentStatus] = None, doctor_id: Optional[int] = None,
                      patient_id: Optional[int] = None,
                      page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                      scheduler: AppointmentScheduler = Depends(get_scheduler)):
    return scheduler.list_appointments(start_date=start_date, end_date=end_date, status=status,
                                       doctor_id=doctor_id, patient_id=patient_id, page=page, limit=limit)


@router.get("/availability", response_model=schemas.AvailabilityResponse)
def check_availability(doctor_id: int, scheduled_time: datetime, duration: int = Query(30, ge=5, le=240),
                       exclude_id: Optional[int] = None,
                       scheduler: AppointmentScheduler = Depends(get_scheduler)):
    return scheduler.check_availability(doctor_id, scheduled_time, duration, exclude_id=exclude_id)


@router.patch("/{appointment_id}", response_model=schemas.AppointmentSchema)
def update_appointment(appointment_id: int, data: schemas.AppointmentUpdate,
                       scheduler: AppointmentScheduler = Depends(get_scheduler)):
    return scheduler.update_appointment(appointment_id, data.model_dump(exclude_unset=True))


@router.post("/{appointment_id}/cancel", response_model=schemas.AppointmentSchema)
def cancel_appointment(appointment_id: int, data: schemas.AppointmentCancel,
                       scheduler: AppointmentScheduler = Depends(get_scheduler)):
    return scheduler.cancel_appointment(appointment_id, data.cancellation_reason)


@router.post("/{appointment_id}/check-in", response_model=schemas.CheckInResponse,
             status_code=status.HTTP_201_CREATED)
def check_in_appointment(appointment_id: int, data: schemas.AppointmentCheckInRequest,
                         db: Session = Depends(get_db), clock=Depends(get_clock)):
    return CheckInService(db, now=clock).check_in_appointment(appointment_id, data)
