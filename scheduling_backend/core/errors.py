"""Domain errors raised by the scheduling services.

Every error carries the HTTP status it maps to and a message that is safe to
show to the caller. The request boundary in ``main.py`` turns them into
``{"error": message}`` responses.
"""


class SchedulingError(Exception):
    status_code = 500
    default_message = 'Internal server error'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationError(SchedulingError):
    status_code = 401
    default_message = 'Unauthorized'


class ValidationError(SchedulingError):
    status_code = 400
    default_message = 'Missing required fields'


class NotFoundError(SchedulingError):
    status_code = 404
    default_message = 'Not found'


class AuthorizationError(NotFoundError):
    """Caller does not own the record.

    Reported exactly like a missing record so that existence is not leaked.
    """

    default_message = 'Not found or unauthorized'


class SlotUnavailableError(SchedulingError):
    status_code = 400
    default_message = 'Event not available for booking'


class SlotBookedError(SchedulingError):
    status_code = 409
    default_message = 'Cannot delete an event that has an active booking'


class InvalidTransitionError(SchedulingError):
    status_code = 400
    default_message = 'Invalid booking status transition'

    def __init__(self, current_status: str | None = None, new_status: str | None = None):
        message = None
        if current_status and new_status:
            message = f'Cannot change booking status from {current_status} to {new_status}'
        super().__init__(message)
        self.current_status = current_status
        self.new_status = new_status


class InternalError(SchedulingError):
    status_code = 500
    default_message = 'Internal server error'
