"""
Domain errors for the pass system and their mapping onto API responses.

Services raise these; views never build error payloads by hand. The DRF
exception handler at the bottom of this module turns them into
``{"error": ..., "message": ...}`` bodies.
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class PassError(Exception):
    """Base class for pass system errors."""

    title = 'Bad Request'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Invalid request'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInterval(PassError, ValueError):
    default_message = 'booked_from must be before booked_to'


class InvalidIdentifier(PassError, ValueError):
    default_message = 'Identifier must be a valid UUID'


class InvalidPin(PassError, ValueError):
    default_message = 'pinCode must be 4 to 8 digits'


class PassTypeInactive(PassError):
    default_message = 'Pass type is not active'


class UnknownReservation(PassError):
    """A webhook referenced a pass that does not exist; the payload is at fault."""
    default_message = 'reservationId not found - pass does not exist'


class NotFound(PassError):
    title = 'Not Found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found'


class PassTypeNotFound(NotFound):
    default_message = 'Pass type not found'


class PassNotFound(NotFound):
    default_message = 'Pass not found'


class ProfileNotFound(NotFound):
    default_message = 'Profile not found'


class LockCodeNotFound(NotFound):
    default_message = 'No PIN found for this reservation'


class SlotUnavailable(PassError):
    title = 'Conflict'
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, conflicts: int):
        self.conflicts = conflicts
        super().__init__(
            f"Time slot conflicts with {conflicts} existing booking(s)"
        )


class ProfileInUse(PassError):
    title = 'Conflict'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Cannot delete profile. It is assigned to one or more pass types.'


class DuplicateProfileCode(PassError):
    title = 'Conflict'
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, code: str):
        self.code = code
        super().__init__(f'A profile with code "{code}" already exists for this site.')


class BackupCodeUnavailable(PassError):
    title = 'Conflict'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'No backup codes available. Please contact support.'


class StorageError(PassError):
    title = 'Database Error'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Failed to query storage'


def api_exception_handler(exc, context):
    """Render PassError subclasses; defer everything else to DRF."""
    if isinstance(exc, PassError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.title, exc.message)
        body = {'error': exc.title, 'message': exc.message}
        if isinstance(exc, SlotUnavailable):
            body['conflicts'] = exc.conflicts
        return Response(body, status=exc.status_code)

    return exception_handler(exc, context)
