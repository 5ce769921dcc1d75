import os
import sys
import pytest

# Ensure the backend root (containing the `tictactoe` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from tictactoe import create_app, db, socketio
from tictactoe.services.games.errors import PersistenceUnavailable
from tictactoe.services.games.persistence import RecordWriter
from tictactoe.services.games.state_machine import Publisher, SessionStateMachine
from tictactoe.services.games.store import SessionStore


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CHAT_LOG_LIMIT = 50
    HISTORY_LIMIT = 20
    PERSIST_MAX_ATTEMPTS = 3
    PERSIST_RETRY_DELAY_SEC = 0


class FakeGateway:
    """In-memory stand-in for the durable record gateway."""

    def __init__(self):
        self.records = {}
        self.calls = []
        self.fail = set()
        self._next = 0

    def _check(self, name):
        self.calls.append(name)
        if name in self.fail:
            raise PersistenceUnavailable(f'{name} failed')

    def create_record(self):
        self._check('create_record')
        self._next += 1
        record_id = f'rec{self._next}'
        self.records[record_id] = {'status': 'waiting'}
        return record_id

    def mark_playing(self, record_id):
        self._check('mark_playing')
        self.records[record_id]['status'] = 'in_progress'

    def finalize(self, record_id, participants, moves, result):
        self._check('finalize')
        self.records[record_id].update(
            status='finished', players=participants, moves=moves, result=result
        )


class RecordingPublisher(Publisher):

    def __init__(self):
        self.events = []
        self.rooms = {}

    def subscribe(self, session_id, connection_id):
        self.rooms.setdefault(session_id, set()).add(connection_id)

    def unsubscribe(self, session_id, connection_id):
        self.rooms.get(session_id, set()).discard(connection_id)

    def broadcast(self, session_id, payload):
        self.events.append((session_id, payload))

    def close(self, session_id):
        self.rooms.pop(session_id, None)

    def of_type(self, kind):
        return [p for _, p in self.events if p['type'] == kind]


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def publisher():
    return RecordingPublisher()


@pytest.fixture()
def machine(gateway, publisher):
    writer = RecordWriter(max_attempts=3, retry_delay=0, background=False)
    store = SessionStore(gateway, chat_limit=50)
    return SessionStateMachine(store, gateway, writer, publisher=publisher)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import tictactoe.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_sio_client(flask_app):
    created = []

    def _make():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        test_client.get_received('/ws')  # flush the connected event
        created.append(test_client)
        return test_client

    yield _make
    for test_client in created:
        if test_client.is_connected('/ws'):
            test_client.disconnect(namespace='/ws')


@pytest.fixture()
def sio_client(make_sio_client):
    return make_sio_client()
