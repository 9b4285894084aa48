"""
Presence Engine Errors
Every error carries an HTTP status, a stable error code and context data
"""


class PresenceError(Exception):
    """Base class for errors surfaced to callers"""

    status_code = 500
    error = 'internal_error'

    def __init__(self, message: str, data: dict = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.error,
            "message": self.message,
            "data": self.data
        }


class ConfigurationUnavailable(PresenceError):
    """Backing store unreachable"""
    status_code = 503
    error = 'configuration_unavailable'


class ValidationError(PresenceError):
    """Malformed time, date or response type"""
    status_code = 400
    error = 'validation_error'


class NotFound(PresenceError):
    """Referenced worker, session or reminder does not exist"""
    status_code = 404
    error = 'not_found'


class Conflict(PresenceError):
    """Duplicate open session, closed session, completed reminder"""
    status_code = 409
    error = 'conflict'


class RemoteWorkNotAllowed(PresenceError):
    status_code = 403
    error = 'remote_not_allowed'


class UpstreamDeliveryFailure(PresenceError):
    """Notification dispatcher failed to deliver a prompt"""
    status_code = 502
    error = 'delivery_failed'
