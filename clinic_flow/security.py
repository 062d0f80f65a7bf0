from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from .config import SETTINGS
from .errors import ValidationError

ALGORITHM = "HS256"
ISSUER = "clinic-flow"
TOKEN_TYPE = "tracking"


# --- TRACKING TOKEN (JWT) ---

def create_tracking_token(visit_id: int, patient_id: int, triage_level: str,
                          expires_delta: Optional[timedelta] = None) -> str:
    """Token handed to the patient at check-in to follow their visit."""
    if expires_delta is None:
        expires_delta = timedelta(hours=SETTINGS.tracking_token_hours)
    issued = datetime.now(timezone.utc)
    to_encode = {
        "visit_id": visit_id,
        "patient_id": patient_id,
        "triage_level": getattr(triage_level, "value", triage_level),
        "type": TOKEN_TYPE,
        "iss": ISSUER,
        "iat": issued,
        "exp": issued + expires_delta,
    }
    return jwt.encode(to_encode, SETTINGS.tracking_secret, algorithm=ALGORITHM)


def decode_tracking_token(token: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, SETTINGS.tracking_secret, algorithms=[ALGORITHM], issuer=ISSUER)
    except JWTError:
        raise ValidationError("Invalid or expired tracking token")

    if payload.get("type") != TOKEN_TYPE or payload.get("visit_id") is None:
        raise ValidationError("Invalid or expired tracking token")
    return payload
