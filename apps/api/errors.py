"""Scheduling engine error taxonomy"""
from typing import Any, Dict, List, Optional
from fastapi import status


class SchedulingError(Exception):
    """Base class for every rejected scheduling or queue operation"""
    code = "SCHEDULING_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body = {"code": self.code, "detail": self.message, "retryable": self.retryable}
        body.update(self.details)
        return body


class ValidationError(SchedulingError):
    """Malformed range, time, duration or request combination"""
    code = "VALIDATION_ERROR"


class ConfigurationError(ValidationError):
    """Doctor schedule is missing a setting the operation needs"""
    code = "CONFIGURATION_ERROR"


class NotFound(SchedulingError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(SchedulingError):
    """Schedule change would invalidate booked slots and cancellation was not authorized"""
    code = "SCHEDULE_CONFLICT"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, conflicts: Optional[List[Any]] = None, **details: Any):
        self.conflicts = conflicts or []
        super().__init__(message, **details)

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["conflicts"] = [
            conflict.to_dict() if hasattr(conflict, "to_dict") else conflict
            for conflict in self.conflicts
        ]
        body["total_conflicts"] = len(self.conflicts)
        return body


class AlreadyBooked(SchedulingError):
    """Lost the race for a slot"""
    code = "ALREADY_BOOKED"
    status_code = status.HTTP_409_CONFLICT


class StateError(SchedulingError):
    """Illegal status transition"""
    code = "INVALID_STATE"
    status_code = status.HTTP_409_CONFLICT


class ConcurrencyError(SchedulingError):
    """Transaction serialization failure; retry the single operation"""
    code = "CONCURRENT_UPDATE"
    status_code = status.HTTP_409_CONFLICT
    retryable = True


class TokenExpired(ValidationError):
    """Public tracking token is past its expiry"""
    code = "TOKEN_EXPIRED"
