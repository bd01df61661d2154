"""Errors raised by the session core.

Every error carries a stable ``code`` (sent to clients in JSON bodies and
mapped back by the HTTP gateway) and the HTTP status it is served with.
"""


class SessionError(Exception):
    code = 'session_error'
    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class ValidationError(SessionError):
    code = 'validation_error'
    status_code = 400


class IllegalMove(ValidationError):
    """A move the game's rules do not allow (occupied cell, repeated letter...)."""
    code = 'illegal_move'


class NotFound(SessionError):
    code = 'not_found'
    status_code = 404


class InvalidState(SessionError):
    code = 'invalid_state'
    status_code = 409


class StaleMove(SessionError):
    code = 'stale_move'
    status_code = 409


class Conflict(SessionError):
    code = 'conflict'
    status_code = 409


class AlreadyJoined(SessionError):
    code = 'already_joined'
    status_code = 409


class ConditionFailed(Exception):
    """A conditional store write matched no row. Never leaves the core."""


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (ValidationError, IllegalMove, NotFound, InvalidState, StaleMove, Conflict, AlreadyJoined)
}


def error_from_code(code, message=None):
    return ERRORS_BY_CODE.get(code, SessionError)(message)
