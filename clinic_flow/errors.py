"""
Error taxonomy of the patient flow engine.

Each error is an HTTPException so the API layer renders it without a
translation step; service code raises them the same way route code would.
"""
from fastapi import HTTPException, status


class PatientFlowError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra):
        detail = {"error": type(self).__name__, "message": message}
        detail.update(extra)
        super().__init__(status_code=self.status_code, detail=detail)
        self.message = message

    def __str__(self):
        return self.message


class ValidationError(PatientFlowError):
    """Input violates a business constraint. Not retryable."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(PatientFlowError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id=None):
        message = f"{resource} not found" if resource_id is None else f"{resource} {resource_id} not found"
        super().__init__(message, resource=resource, id=resource_id)


class ConflictError(PatientFlowError):
    """Overlapping appointment or duplicate queue entry."""
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, conflicts=None):
        self.conflicts = list(conflicts or [])
        super().__init__(message, conflicts=self.conflicts)


class InvalidTransitionError(PatientFlowError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current, attempted):
        self.current = getattr(current, "value", current)
        self.attempted = getattr(attempted, "value", attempted)
        super().__init__(
            f"Invalid status transition from {self.current} to {self.attempted}",
            current=self.current, attempted=self.attempted,
        )


class EmptyQueueError(PatientFlowError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "No patients waiting in queue"):
        super().__init__(message)


class ConcurrencyError(PatientFlowError):
    """Lost update detected; callers may retry once."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
