from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..queue_service import QueueCoordinator
from ..stats import queue_statistics
from . import get_clock

router = APIRouter(
    prefix="/queue",
    tags=["Queue"],
    responses={404: {"description": "Not found"}},
)


def get_coordinator(db: Session = Depends(get_db), clock=Depends(get_clock)) -> QueueCoordinator:
    return QueueCoordinator(db, now=clock)


@router.get("/", response_model=List[schemas.QueueEntrySchema])
def read_queue(queue: QueueCoordinator = Depends(get_coordinator)):
    return queue.current_queue()


@router.get("/stats", response_model=schemas.QueueStatistics)
def read_stats(db: Session = Depends(get_db), clock=Depends(get_clock)):
    return queue_statistics(db, now=clock())


@router.get("/doctor/{doctor_id}", response_model=List[schemas.QueueEntrySchema])
def read_doctor_queue(doctor_id: int, queue: QueueCoordinator = Depends(get_coordinator)):
    return queue.doctor_queue(doctor_id)


@router.post("/call-next", response_model=schemas.QueueEntrySchema)
def call_next(data: schemas.CallNextRequest, queue: QueueCoordinator = Depends(get_coordinator)):
    return queue.call_next(data.doctor_id, data.assigned_room)


@router.post("/recalculate", response_model=schemas.RecalculateResponse)
def recalculate(queue: QueueCoordinator = Depends(get_coordinator)):
    count = queue.recalculate_positions()
    return {"success": True, "message": "Queue positions recalculated", "updated_count": count}


@router.patch("/{entry_id}/status", response_model=schemas.QueueEntrySchema)
def update_status(entry_id: int, data: schemas.QueueStatusUpdate,
                  queue: QueueCoordinator = Depends(get_coordinator)):
    return queue.transition(entry_id, data.status, doctor_id=data.doctor_id,
                            assigned_room=data.assigned_room, notes=data.notes)


@router.delete("/{entry_id}", response_model=schemas.QueueEntrySchema)
def remove_entry(entry_id: int, reason: str = Query(...),
                 queue: QueueCoordinator = Depends(get_coordinator)):
    return queue.remove_from_queue(entry_id, reason)
