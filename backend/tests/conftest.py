import os
import sys
import pytest

# Ensure the backend root (containing the `squares` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from squares import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    DEFAULT_UNCLAIMED_RULE = 'REQUIRE_FULL'
    LOG_LEVEL = 'DEBUG'
    BCRYPT_LOG_ROUNDS = 4


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import squares.models  # noqa: F401
        db.create_all()
    # Requests push their own app context; sharing one across requests
    # would leak the logged-in user between test clients through `g`.
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def app_ctx(flask_app):
    """Push an app context for tests that use the database directly."""
    with flask_app.app_context():
        yield flask_app


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def login(flask_app):
    """Return a factory that registers a user and hands back a logged-in client."""
    def _login(username, display_name=None):
        test_client = flask_app.test_client()
        res = test_client.post('/register', json={
            'username': username,
            'password': 'password',
            'display_name': display_name or username.capitalize(),
        })
        assert res.status_code == 201
        return test_client, res.get_json()
    return _login


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
