from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..checkin import CheckInService
from ..database import get_db
from ..security import decode_tracking_token
from ..triage import score_triage
from . import get_clock

router = APIRouter(
    prefix="/visits",
    tags=["Visits"],
    responses={404: {"description": "Not found"}},
)


@router.post("/check-in", response_model=schemas.CheckInResponse, status_code=status.HTTP_201_CREATED)
def check_in(data: schemas.CheckInRequest, db: Session = Depends(get_db), clock=Depends(get_clock)):
    return CheckInService(db, now=clock).check_in(data)


@router.post("/triage", response_model=schemas.TriageResultSchema)
def triage_only(data: schemas.TriageRequest):
    """Score vitals and symptoms without creating a visit."""
    return score_triage(data.vitals.to_vitals(), data.symptoms)


@router.get("/track", response_model=schemas.TrackingClaims)
def track_visit(token: str = Query(..., min_length=1)):
    return decode_tracking_token(token)
