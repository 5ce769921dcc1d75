class SessionError(Exception):
    """Base class for errors surfaced to the requesting connection."""

    code = 'session_error'
    message = 'Session error'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self):
        return {'error': self.code, 'message': self.message}


class NotFound(SessionError):
    code = 'not_found'
    message = 'Invalid game ID'


class SessionFull(SessionError):
    code = 'session_full'
    message = 'Game full'


class DuplicateConnection(SessionError):
    code = 'duplicate_connection'
    message = 'Already joined this game'


class SessionNotPlaying(SessionError):
    code = 'not_playing'
    message = 'Game is not in progress'


class PersistenceUnavailable(SessionError):
    code = 'persistence_unavailable'
    message = 'Game storage is unavailable'


class IllegalMove(SessionError):
    code = 'illegal_move'
    message = 'Illegal move'


class ConnectionClosed(SessionError):
    code = 'disconnected'
    message = 'Connection is closed'
