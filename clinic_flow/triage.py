"""
Deterministic, rule-based triage scoring and wait-time estimation.

Both functions are pure: no I/O, no shared state, safe to call from any
thread. Range checking of the vitals lives in validate_vitals(); the scorer
itself accepts any numbers.
"""
from dataclasses import dataclass, field
from typing import List, Tuple

from .errors import ValidationError
from .models import TriageLevel

NORMAL_TEMPERATURE_F = 98.6
NORMAL_SYSTOLIC = 120
NORMAL_DIASTOLIC = 80

# (factor label, at-or-above, at-or-below, points); first matching band wins
TEMPERATURE_BANDS = (
    ("Critical temperature", 103.0, 95.0, 30),
    ("Elevated temperature", 101.5, 96.0, 20),
    ("Mild temperature abnormality", 100.0, 97.0, 10),
)

HEART_RATE_BANDS = (
    ("Critical heart rate", 120, 50, 25),
    ("Elevated heart rate", 110, 55, 15),
    ("Mild heart rate abnormality", 100, 60, 5),
)

BP_SYSTOLIC_CRITICAL = 40
BP_DIASTOLIC_CRITICAL = 30
BP_SYSTOLIC_SERIOUS = 25
BP_DIASTOLIC_SERIOUS = 20
BP_SYSTOLIC_MODERATE = 10
BP_DIASTOLIC_MODERATE = 10

# Every tier awards the systolic constant, including when only the
# diastolic delta crossed the threshold.
BLOOD_PRESSURE_BANDS = (
    ("Critical blood pressure", BP_SYSTOLIC_CRITICAL, BP_DIASTOLIC_CRITICAL, BP_SYSTOLIC_CRITICAL),
    ("Elevated blood pressure", BP_SYSTOLIC_SERIOUS, BP_DIASTOLIC_SERIOUS, BP_SYSTOLIC_SERIOUS),
    ("Mild blood pressure abnormality", BP_SYSTOLIC_MODERATE, BP_DIASTOLIC_MODERATE, BP_SYSTOLIC_MODERATE),
)

PAIN_BANDS = (
    ("Severe pain level", 8, 20),
    ("Moderate pain level", 5, 10),
    ("Mild pain level", 1, 3),
)

CRITICAL_SYMPTOMS = ("chest pain", "difficulty breathing", "severe bleeding",
                     "unconscious", "stroke", "heart attack")
CRITICAL_SYMPTOM_POINTS = 40
SERIOUS_SYMPTOMS = ("broken bone", "severe injury", "poisoning",
                    "shock", "seizure", "allergic reaction")
SERIOUS_SYMPTOM_POINTS = 25

HIGH_THRESHOLD = 60
MEDIUM_THRESHOLD = 30

DEFAULT_CONSULT_MINUTES = 15

# Physiologically plausible input ranges
VITAL_RANGES = {
    "temperature": (90, 110, "°F"),
    "heart_rate": (30, 200, "BPM"),
    "blood_pressure_systolic": (70, 250, "mmHg"),
    "blood_pressure_diastolic": (40, 150, "mmHg"),
    "pain_level": (0, 10, "/10"),
}


@dataclass(frozen=True)
class Vitals:
    temperature: float
    heart_rate: float
    blood_pressure_systolic: float
    blood_pressure_diastolic: float
    pain_level: float


@dataclass(frozen=True)
class TriageResult:
    score: int
    level: TriageLevel
    factors: List[str] = field(default_factory=list)


def _fmt(value) -> str:
    # 130.0 -> "130", 104.5 -> "104.5"
    return f"{value:g}" if isinstance(value, float) else str(value)


def level_for_score(score: int) -> TriageLevel:
    if score >= HIGH_THRESHOLD:
        return TriageLevel.HIGH
    if score >= MEDIUM_THRESHOLD:
        return TriageLevel.MEDIUM
    return TriageLevel.LOW


def score_triage(vitals: Vitals, symptoms: str) -> TriageResult:
    """
    Score a patient from vitals and free-text symptoms.

    Five independent rules each add points at most once, in this order:
    temperature, heart rate, blood pressure, pain, symptom keywords.
    `factors` gets one line per rule that fired, in the same order.
    """
    score = 0
    factors = []

    temp = vitals.temperature
    for label, high, low, points in TEMPERATURE_BANDS:
        if temp >= high or temp <= low:
            score += points
            factors.append(f"{label}: {_fmt(temp)}°F")
            break

    hr = vitals.heart_rate
    for label, high, low, points in HEART_RATE_BANDS:
        if hr >= high or hr <= low:
            score += points
            factors.append(f"{label}: {_fmt(hr)} BPM")
            break

    systolic_delta = abs(vitals.blood_pressure_systolic - NORMAL_SYSTOLIC)
    diastolic_delta = abs(vitals.blood_pressure_diastolic - NORMAL_DIASTOLIC)
    for label, sys_limit, dia_limit, points in BLOOD_PRESSURE_BANDS:
        if systolic_delta >= sys_limit or diastolic_delta >= dia_limit:
            score += points
            factors.append(
                f"{label}: {_fmt(vitals.blood_pressure_systolic)}/"
                f"{_fmt(vitals.blood_pressure_diastolic)} mmHg"
            )
            break

    pain = vitals.pain_level
    for label, threshold, points in PAIN_BANDS:
        if pain >= threshold:
            score += points
            factors.append(f"{label}: {_fmt(pain)}/10")
            break

    text = (symptoms or "").lower()
    if any(keyword in text for keyword in CRITICAL_SYMPTOMS):
        score += CRITICAL_SYMPTOM_POINTS
        factors.append("Critical symptoms detected")
    elif any(keyword in text for keyword in SERIOUS_SYMPTOMS):
        score += SERIOUS_SYMPTOM_POINTS
        factors.append("Serious symptoms detected")

    score = int(round(score))
    return TriageResult(score=score, level=level_for_score(score), factors=factors)


def estimate_wait_time(patients_ahead: int, avg_consult_minutes: float = DEFAULT_CONSULT_MINUTES):
    """Minutes until consultation; never less than one consult interval."""
    if patients_ahead < 0:
        raise ValidationError("Number of patients ahead cannot be negative",
                              constraint="patients_ahead >= 0")
    if avg_consult_minutes <= 0:
        raise ValidationError("Average consultation time must be positive",
                              constraint="avg_consult_minutes > 0")
    return max(patients_ahead * avg_consult_minutes, avg_consult_minutes)


def validate_vitals(vitals: Vitals) -> Tuple[bool, List[str]]:
    """Check vitals against plausible ranges; returns (is_valid, warnings)."""
    warnings = []
    for name, (low, high, unit) in VITAL_RANGES.items():
        value = getattr(vitals, name)
        if value < low or value > high:
            pretty = name.replace("_", " ")
            warnings.append(f"{pretty} {_fmt(value)}{unit} outside expected range ({low}-{high}{unit})")
    return len(warnings) == 0, warnings
