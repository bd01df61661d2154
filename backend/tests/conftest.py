import os
import random
import sys
import pytest

# Ensure the backend root (containing the `duoplay` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from duoplay import create_app, db, socketio
from duoplay.models import GameKind
from duoplay.services.sessions.core import SessionCore


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = '*'
    CONDITIONAL_WRITES = True
    REMATCH_TIMEOUT_SEC = 30
    MEMORY_RESET_DELAY_MS = 1500
    MEMORY_GRID_ROWS = 4
    MEMORY_GRID_COLS = 4
    HANGMAN_MAX_ERRORS = 6


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


ALICE = {'id': 'player-alice', 'nickname': 'Alice'}
BOB = {'id': 'player-bob', 'nickname': 'Bob'}
CAROL = {'id': 'player-carol', 'nickname': 'Carol'}


def make_app(clock, config_class=TestConfig):
    application = create_app(config_class)
    # Rebuild the core so every component shares the test clock
    application.extensions['duoplay'] = SessionCore.from_app(
        application, socketio, clock=clock, rng=random.Random(1234)
    )
    return application


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def flask_app(clock):
    application = make_app(clock)
    with application.app_context():
        # Ensure models are imported so tables are created
        import duoplay.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def core(flask_app):
    return flask_app.extensions['duoplay']


@pytest.fixture()
def start_game(core):
    """Create a session as Alice, join it as Bob and return the playing record."""
    def _start(game_kind=GameKind.TIC_TAC_TOE, creator=ALICE, joiner=BOB):
        record = core.create_session(game_kind, creator)
        return core.join_session(record.id, joiner)
    return _start
