import os
import tempfile
from urllib.parse import urlencode

# Config reads the environment at import time: keep logs out of the repo.
os.environ.setdefault("ENV", "test")
os.environ.setdefault("RENTAL_RT_DATA_DIR", tempfile.mkdtemp(prefix="rental_rt_"))

import pytest

from rental_realtime.hub import RealtimeHub
from rental_realtime.server import create_app
from rental_realtime.storage import MessageStore


class FakeSocketIO:
    """Records every emit instead of sending it."""

    def __init__(self):
        self.emitted = []

    def emit(self, event, data, to=None, namespace=None):
        self.emitted.append((to, event, data))

    def to(self, sid, event=None):
        return [(e, d) for (t, e, d) in self.emitted if t == sid and (event is None or e == event)]


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_socketio():
    return FakeSocketIO()


@pytest.fixture
def store(tmp_path):
    return MessageStore(str(tmp_path), history_limit=50)


@pytest.fixture
def hub(fake_socketio, store, clock):
    return RealtimeHub(fake_socketio, store, {"AUTO_JOIN_CONVERSATIONS": True}, clock=clock)


# =====================================================
#   FULL APP (Flask + Socket.IO test clients)
# =====================================================

@pytest.fixture
def settings(tmp_path):
    return {
        "DATA_DIR": str(tmp_path / "data"),
        "LOG_DIR": str(tmp_path / "logs"),
        "START_CLEANUP_TASK": False,
        "SOCKETIO_ASYNC_MODE": "threading",
        "ENFORCE_CONVERSATION_ACL": False,
        "AUTO_JOIN_CONVERSATIONS": True,
        "TOKEN_VERIFY_URL": "",
        "REQUIRE_TOKEN_VERIFICATION": False,
    }


@pytest.fixture
def server(settings):
    return create_app(settings)


@pytest.fixture
def app_hub(server):
    app, _ = server
    return app.extensions["realtime_hub"]


@pytest.fixture
def http(server):
    app, _ = server
    return app.test_client()


@pytest.fixture
def connect(server):
    app, socketio = server
    clients = []

    def _connect(user_id=None, user_name=None, token=None):
        params = {}
        if user_id is not None:
            params["userId"] = user_id
        if user_name is not None:
            params["userName"] = user_name
        if token is not None:
            params["token"] = token

        client = socketio.test_client(app, query_string=urlencode(params))
        clients.append(client)
        return client

    yield _connect

    for client in clients:
        if client.is_connected():
            client.disconnect()


@pytest.fixture
def frames():
    """Drain a test client and return the envelopes it received."""

    def _frames(client, event=None):
        out = []
        for received in client.get_received():
            args = received["args"]
            data = args[0] if isinstance(args, list) and args else args
            if not isinstance(data, dict) or "event" not in data:
                continue
            if event is None or data["event"] == event:
                out.append(data)
        return out

    return _frames
