from flask_socketio import emit
from flask import current_app, request
from tictactoe import socketio
from tictactoe.services.games.errors import ConnectionClosed, PersistenceUnavailable, SessionError
from tictactoe.services.games.persistence import PersistenceGateway, RecordWriter
from tictactoe.services.games.state_machine import Publisher, SessionStateMachine
from tictactoe.services.games.store import SessionStore
from typing import Dict, Optional
import threading

NAMESPACE = '/ws'
SERVER_ERROR_MESSAGE = 'The game was closed after a server error'


def room_for(session_id: str) -> str:
    return f"session:{session_id}"


class RoomPublisher(Publisher):
    """Delivers session broadcasts through Socket.IO rooms."""

    def __init__(self, namespace: str = NAMESPACE):
        self.namespace = namespace

    def subscribe(self, session_id, connection_id):
        socketio.server.enter_room(connection_id, room_for(session_id), namespace=self.namespace)

    def unsubscribe(self, session_id, connection_id):
        socketio.server.leave_room(connection_id, room_for(session_id), namespace=self.namespace)

    def broadcast(self, session_id, payload):
        socketio.emit('game_update', payload, to=room_for(session_id), namespace=self.namespace)

    def close(self, session_id):
        socketio.close_room(room_for(session_id), namespace=self.namespace)


class ConnectionRouter:
    """Binds live connections to at most one session and routes their requests.

    Join, leave and disconnect for one connection run under that connection's
    lock, so a disconnect always sees every session the connection was
    admitted to.
    """

    def __init__(self, machine: SessionStateMachine, gateway: PersistenceGateway, logger=None):
        self.machine = machine
        self.gateway = gateway
        self._log = logger or current_app.logger
        self._bindings: Dict[str, str] = {}
        self._connections: Dict[str, threading.RLock] = {}
        self._lock = threading.Lock()

    def connect(self, connection_id: str) -> None:
        with self._lock:
            self._connections.setdefault(connection_id, threading.RLock())

    def session_of(self, connection_id: str) -> Optional[str]:
        with self._lock:
            return self._bindings.get(connection_id)

    def create_session(self) -> str:
        return self.machine.create()

    def _connection_lock(self, connection_id: str) -> Optional[threading.RLock]:
        with self._lock:
            return self._connections.get(connection_id)

    def _is_live(self, connection_id: str, lock) -> bool:
        with self._lock:
            return self._connections.get(connection_id) is lock

    def join(self, connection_id: str, session_id: str, display_name: str) -> dict:
        lock = self._connection_lock(connection_id)
        if lock is None:
            raise ConnectionClosed()
        with lock:
            if not self._is_live(connection_id, lock):
                raise ConnectionClosed()
            previous = self.session_of(connection_id)
            # A rejected admit leaves the current seat untouched.
            outcome = self._guarded(session_id, self.machine.admit, session_id, connection_id, display_name)
            if outcome.reply is None:
                return {'error': 'server_error', 'message': SERVER_ERROR_MESSAGE}
            with self._lock:
                self._bindings[connection_id] = session_id
            if previous is not None and previous != session_id:
                self._guarded(previous, self.machine.disconnect, previous, connection_id)
            return outcome.reply

    def move(self, connection_id: str, session_id: str, cell_index):
        return self._guarded(session_id, self.machine.move, session_id, connection_id, cell_index)

    def chat(self, connection_id: str, session_id: str, text):
        return self._guarded(session_id, self.machine.chat, session_id, connection_id, text)

    def leave(self, connection_id: str, session_id: Optional[str] = None):
        lock = self._connection_lock(connection_id)
        if lock is None:
            return None
        with lock:
            return self._leave(connection_id, session_id)

    def disconnect(self, connection_id: str):
        lock = self._connection_lock(connection_id)
        if lock is None:
            return None
        with lock:
            with self._lock:
                self._connections.pop(connection_id, None)
            # Connections that never joined a session have nothing to clean up.
            return self._leave(connection_id)

    def _leave(self, connection_id: str, session_id: Optional[str] = None):
        with self._lock:
            bound = self._bindings.get(connection_id)
            if bound is None or (session_id is not None and bound != session_id):
                return None
            del self._bindings[connection_id]
        return self._guarded(bound, self.machine.disconnect, bound, connection_id)

    def _guarded(self, session_id, operation, *args):
        try:
            outcome = operation(*args)
        except SessionError:
            raise
        except Exception:
            # Only the failing session is closed; the connection stays up.
            self._log.exception(f"[router-failure] session={session_id} op={operation.__name__}")
            self._forget(session_id)
            return self.machine.abort(session_id, SERVER_ERROR_MESSAGE)
        if outcome.evicted:
            self._forget(session_id)
        return outcome

    def _forget(self, session_id: str) -> None:
        with self._lock:
            for conn in [c for c, s in self._bindings.items() if s == session_id]:
                del self._bindings[conn]


def build_router(app) -> ConnectionRouter:
    gateway = PersistenceGateway()
    writer = RecordWriter(
        app=app,
        logger=app.logger,
        max_attempts=app.config.get('PERSIST_MAX_ATTEMPTS', 5),
        retry_delay=app.config.get('PERSIST_RETRY_DELAY_SEC', 0.5),
        background=not app.config.get('TESTING', False),
    )
    store = SessionStore(
        gateway,
        chat_limit=app.config.get('CHAT_LOG_LIMIT', 50),
        unjoined_ttl=app.config.get('UNJOINED_SESSION_TTL_SEC', 3600),
    )
    machine = SessionStateMachine(store, gateway, writer, publisher=RoomPublisher(), logger=app.logger)
    return ConnectionRouter(machine, gateway, logger=app.logger)


def _router() -> ConnectionRouter:
    return current_app.extensions['session_router']


def _get_sid() -> str:
    return request.sid  # type: ignore[attr-defined]


def _payload(data) -> dict:
    return data if isinstance(data, dict) else {}


def _bad_request(message: str) -> dict:
    return {'error': 'bad_request', 'message': message}


def handle_connect(auth=None):
    _router().connect(_get_sid())
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    _router().disconnect(_get_sid())


def handle_create_session(data=None):
    try:
        return {'session_id': _router().create_session()}
    except PersistenceUnavailable as exc:
        current_app.logger.error(f"[session-create-failed] error={exc.__cause__ or exc}")
        return exc.to_dict()


def handle_join_game(data):
    session_id = _payload(data).get('session_id')
    name = _payload(data).get('name')
    name = name.strip()[:64] if isinstance(name, str) else ''
    if not session_id or not name:
        return _bad_request('session_id and name are required')
    try:
        return _router().join(_get_sid(), str(session_id), name)
    except SessionError as exc:
        return exc.to_dict()


def handle_make_move(data):
    session_id = _payload(data).get('session_id') or _router().session_of(_get_sid())
    if not session_id:
        emit('error', _bad_request('session_id is required'))
        return
    try:
        _router().move(_get_sid(), str(session_id), _payload(data).get('index'))
    except SessionError as exc:
        emit('error', exc.to_dict())


def handle_send_message(data):
    session_id = _payload(data).get('session_id') or _router().session_of(_get_sid())
    if not session_id:
        emit('error', _bad_request('session_id is required'))
        return
    _router().chat(_get_sid(), str(session_id), _payload(data).get('message'))


def handle_leave_game(data=None):
    session_id = _payload(data).get('session_id')
    left = _router().leave(_get_sid(), str(session_id) if session_id else None)
    return {'left': left.session_id if left and left.applied else None}


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('create_session', handle_create_session, namespace=NAMESPACE)
    socketio.on_event('join_game', handle_join_game, namespace=NAMESPACE)
    socketio.on_event('make_move', handle_make_move, namespace=NAMESPACE)
    socketio.on_event('send_message', handle_send_message, namespace=NAMESPACE)
    socketio.on_event('leave_game', handle_leave_game, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
