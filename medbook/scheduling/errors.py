"""Typed failures raised by the scheduling core.

Each error carries the HTTP status the routing layer should answer with, so
routes can translate any of them with a single ``except SchedulingError``.
"""

from fastapi import status


class SchedulingError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SchedulingError):
    """Malformed input: bad time range, missing field, out-of-range value."""
    status_code = status.HTTP_400_BAD_REQUEST


class AuthorizationError(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str = 'Resource'):
        super().__init__(f'{resource} not found.')
        self.resource = resource


class ConflictError(SchedulingError):
    """The requested time is no longer bookable at commit time."""
    status_code = status.HTTP_409_CONFLICT


class InvalidStateError(SchedulingError):
    """The appointment's current status does not allow the requested change."""
    status_code = status.HTTP_409_CONFLICT


class RefundError(Exception):
    """Raised by a refund gateway when the payment provider rejects a refund."""
