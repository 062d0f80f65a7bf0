"""
Queue coordination: position ordering, the visit status state machine and
"call next" selection over the shared waiting list.

Every mutation runs inside the clinic's serialization scope and a
transaction, so "read waiting entries -> compute positions -> write back"
is never interleaved with another writer in this process. Claiming an entry
is additionally a conditional UPDATE (only succeeds while the row is still
waiting), which protects against writers in other processes.
"""
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from .config import SETTINGS
from .database import transaction, clinic_lock
from .errors import (ConcurrencyError, ConflictError, EmptyQueueError,
                     InvalidTransitionError, NotFoundError, ValidationError)
from .logger import get_logger
from .models import (PRIORITY_RANK, QUEUE_TRANSITIONS, QueueEntry, QueueStatus,
                     Staff, StaffRole, TriageLevel)

logger = get_logger(__name__)

ACTIVE_QUEUE_STATUSES = (QueueStatus.WAITING, QueueStatus.IN_PROGRESS)


def _minutes_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    if start is None or end is None:
        return None
    return max(0, round((end - start).total_seconds() / 60))


def _call_order(entry: QueueEntry):
    return (-PRIORITY_RANK[entry.priority], entry.position, entry.check_in_time, entry.id)


def _display_order(entry: QueueEntry):
    # in-progress first, then by priority and position
    return (entry.status != QueueStatus.IN_PROGRESS, -PRIORITY_RANK[entry.priority], entry.position)


class QueueCoordinator:
    def __init__(self, db: Session, now: Callable[[], datetime] = datetime.now,
                 clinic_id: Optional[str] = None, claim_retries: Optional[int] = None):
        self.db = db
        self.now = now
        self.clinic_id = clinic_id or SETTINGS.clinic_id
        self.claim_retries = claim_retries or SETTINGS.claim_retries

    @property
    def lock(self):
        return clinic_lock(f"queue:{self.clinic_id}")

    # --- READS ---

    def get_entry(self, entry_id: int) -> QueueEntry:
        entry = self.db.get(QueueEntry, entry_id)
        if entry is None:
            raise NotFoundError("Queue entry", entry_id)
        return entry

    def current_queue(self) -> List[QueueEntry]:
        entries = self.db.query(QueueEntry).filter(QueueEntry.status.in_(ACTIVE_QUEUE_STATUSES)).all()
        return sorted(entries, key=_display_order)

    def doctor_queue(self, doctor_id: int) -> List[QueueEntry]:
        entries = self.db.query(QueueEntry).filter(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.status.in_(ACTIVE_QUEUE_STATUSES),
        ).all()
        return sorted(entries, key=_display_order)

    def count_by_status(self, *statuses: QueueStatus) -> int:
        return self.db.query(QueueEntry).filter(QueueEntry.status.in_(statuses)).count()

    def get_active_doctor(self, doctor_id: int) -> Staff:
        doctor = self.db.query(Staff).filter(
            Staff.id == doctor_id,
            Staff.role == StaffRole.DOCTOR,
            Staff.is_active.is_(True),
        ).first()
        if doctor is None:
            raise NotFoundError("Active doctor", doctor_id)
        return doctor

    # --- MUTATIONS ---

    def enqueue(self, visit_id: int, patient_id: int, priority, estimated_wait_time: int,
                check_in_time: Optional[datetime] = None) -> QueueEntry:
        """Add a visit to the waiting list and re-rank everyone waiting."""
        priority = TriageLevel(priority)
        with self.lock, transaction(self.db):
            existing = self.db.query(QueueEntry).filter(QueueEntry.visit_id == visit_id).first()
            if existing is not None:
                logger.warning("Visit %s already queued as entry %s", visit_id, existing.id)
                raise ConflictError("Visit already exists in queue",
                                    conflicts=[{"queue_entry_id": existing.id, "visit_id": visit_id}])

            entry = QueueEntry(
                visit_id=visit_id,
                patient_id=patient_id,
                priority=priority,
                status=QueueStatus.WAITING,
                position=self.count_by_status(QueueStatus.WAITING) + 1,
                check_in_time=check_in_time or self.now(),
                estimated_wait_time=int(estimated_wait_time),
            )
            self.db.add(entry)
            self.db.flush()
            self._recalculate()
            logger.info("Queued visit %s as entry %s (%s priority, position %s)",
                        visit_id, entry.id, priority.value, entry.position)
        return entry

    def transition(self, entry_id: int, target, doctor_id: Optional[int] = None,
                   assigned_room: Optional[str] = None, notes: Optional[str] = None) -> QueueEntry:
        """Move an entry to `target` if the transition table allows it."""
        try:
            target = QueueStatus(target)
        except ValueError:
            raise ValidationError(f"Unknown queue status '{target}'",
                                  allowed=[s.value for s in QueueStatus])

        with self.lock, transaction(self.db):
            entry = self.get_entry(entry_id)
            current = entry.status
            if target not in QUEUE_TRANSITIONS[current]:
                logger.warning("Rejected transition of entry %s: %s -> %s",
                               entry_id, current.value, target.value)
                raise InvalidTransitionError(current, target)

            if target == QueueStatus.IN_PROGRESS:
                if doctor_id is not None:
                    self.get_active_doctor(doctor_id)
                if not self._claim(entry, doctor_id, assigned_room):
                    raise ConcurrencyError(f"Queue entry {entry_id} was claimed by another caller")
            elif target == QueueStatus.COMPLETED:
                now = self.now()
                entry.status = target
                entry.consultation_end_time = now
                entry.actual_wait_time = _minutes_between(entry.check_in_time, entry.called_time)
                entry.consultation_duration = _minutes_between(entry.consultation_start_time, now)
            elif target == QueueStatus.WAITING:
                entry.status = target
                entry.doctor_id = None
                entry.assigned_room = None
                entry.called_time = None
                entry.consultation_start_time = None
            else:
                entry.status = target

            if notes is not None:
                entry.notes = notes
            self.db.flush()

            if QueueStatus.WAITING in (current, target):
                self._recalculate()
            logger.info("Queue entry %s: %s -> %s", entry_id, current.value, target.value)
        return entry

    def call_next(self, doctor_id: int, assigned_room: Optional[str] = None) -> QueueEntry:
        """Hand the best waiting patient to `doctor_id`."""
        self.get_active_doctor(doctor_id)
        for attempt in range(1, self.claim_retries + 1):
            with self.lock, transaction(self.db):
                waiting = self.db.query(QueueEntry).filter(QueueEntry.status == QueueStatus.WAITING).all()
                if not waiting:
                    raise EmptyQueueError()
                candidate = min(waiting, key=_call_order)
                if self._claim(candidate, doctor_id, assigned_room):
                    self._recalculate()
                    logger.info("Doctor %s called entry %s (%s priority)",
                                doctor_id, candidate.id, candidate.priority.value)
                    return candidate
            logger.warning("Claim of entry %s lost (attempt %s/%s)",
                           candidate.id, attempt, self.claim_retries)
        raise ConcurrencyError("Could not claim a waiting patient, please retry")

    def remove_from_queue(self, entry_id: int, reason: str) -> QueueEntry:
        if reason is None or not reason.strip():
            raise ValidationError("A reason is required to remove a patient from the queue",
                                  constraint="reason must not be blank")
        # transition re-ranks the waiting list when a waiting entry leaves it
        return self.transition(entry_id, QueueStatus.CANCELLED, notes=reason.strip())

    def recalculate_positions(self) -> int:
        """Full recompute of waiting positions; returns the number of waiting entries."""
        with self.lock, transaction(self.db):
            count = self._recalculate()
        logger.info("Queue positions recalculated for %s waiting patients", count)
        return count

    # --- INTERNALS ---

    def _recalculate(self) -> int:
        waiting = self.db.query(QueueEntry).filter(QueueEntry.status == QueueStatus.WAITING).all()
        waiting.sort(key=lambda e: e.sort_key)
        for position, entry in enumerate(waiting, start=1):
            if entry.position != position:
                entry.position = position
        self.db.flush()
        return len(waiting)

    def _claim(self, entry: QueueEntry, doctor_id: Optional[int], assigned_room: Optional[str]) -> bool:
        """Conditional update: waiting -> in-progress only if still waiting at write time."""
        now = self.now()
        values = {
            QueueEntry.status: QueueStatus.IN_PROGRESS,
            QueueEntry.called_time: now,
            QueueEntry.consultation_start_time: now,
        }
        if doctor_id is not None:
            values[QueueEntry.doctor_id] = doctor_id
        if assigned_room:
            values[QueueEntry.assigned_room] = assigned_room

        updated = self.db.query(QueueEntry).filter(
            QueueEntry.id == entry.id,
            QueueEntry.status == QueueStatus.WAITING,
        ).update(values, synchronize_session=False)
        self.db.refresh(entry)
        return updated == 1
