from rental_realtime import auth


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def json(self):
        return self._body


def test_connect_requires_user_id(connect):
    client = connect()
    assert not client.is_connected()


def test_connect_sends_welcome_and_snapshot(connect, frames):
    client = connect("tenant-1", "Wanjiru")
    assert client.is_connected()

    received = frames(client)
    names = [f["event"] for f in received]
    assert names[:2] == ["connection_established", "online_users"]

    welcome = received[0]["payload"]
    assert welcome["userId"] == "tenant-1"
    assert welcome["userName"] == "Wanjiru"
    assert received[1]["payload"]["users"] == ["tenant-1"]


def test_user_name_defaults_to_user(connect, frames):
    client = connect("tenant-1")
    welcome = frames(client, "connection_established")[0]
    assert welcome["payload"]["userName"] == "User"


def test_invalid_token_is_refused(settings, monkeypatch):
    from rental_realtime.server import create_app

    settings["TOKEN_VERIFY_URL"] = "https://auth.example.test/verify"
    app, socketio = create_app(settings)
    monkeypatch.setattr(auth.requests, "post", lambda *a, **k: FakeResponse(200, {"valid": False}))

    client = socketio.test_client(app, query_string="userId=tenant-1&token=forged")
    assert not client.is_connected()


def test_valid_token_is_accepted(settings, monkeypatch):
    from rental_realtime.server import create_app

    settings["TOKEN_VERIFY_URL"] = "https://auth.example.test/verify"
    app, socketio = create_app(settings)
    monkeypatch.setattr(
        auth.requests, "post", lambda *a, **k: FakeResponse(200, {"valid": True, "userId": "tenant-1"})
    )

    client = socketio.test_client(app, query_string="userId=tenant-1&token=good")
    assert client.is_connected()
    client.disconnect()


def test_typing_reaches_the_other_participant_only(connect, frames):
    a = connect("tenant-1", "Alice")
    b = connect("landlord-1", "Bob")
    a.send({"event": "join_conversation", "payload": {"conversationId": "conv-1"}})
    b.send({"event": "join_conversation", "payload": {"conversationId": "conv-1"}})
    frames(a)
    frames(b)

    a.send({"event": "typing_start", "payload": {"conversationId": "conv-1"}})

    typing = frames(b, "typing_start")
    assert len(typing) == 1
    assert typing[0]["payload"]["userId"] == "tenant-1"
    assert typing[0]["payload"]["userName"] == "Alice"
    assert frames(a, "typing_start") == []


def test_named_events_are_dispatched_too(connect, frames, app_hub):
    a = connect("tenant-1", "Alice")

    a.emit("join_conversation", {"conversationId": "conv-1"})

    ack = frames(a, "join_conversation")
    assert ack[0]["payload"]["participants"] == 1
    assert app_hub.get_conversation_participants("conv-1") == ["tenant-1"]


def test_two_devices_presence(connect, app_hub):
    phone = connect("tenant-1")
    laptop = connect("tenant-1")
    assert app_hub.get_online_users() == ["tenant-1"]

    phone.disconnect()
    assert app_hub.get_online_users() == ["tenant-1"]

    laptop.disconnect()
    assert app_hub.get_online_users() == []


def test_unknown_event_yields_one_error(connect, frames, app_hub):
    a = connect("tenant-1")
    frames(a)
    before = app_hub.get_statistics()

    a.send({"event": "teleport", "payload": {}})

    received = frames(a)
    assert len(received) == 1
    assert received[0]["event"] == "error"
    assert received[0]["payload"]["event"] == "teleport"
    assert a.is_connected()
    assert app_hub.get_statistics() == before


def test_handler_error_keeps_connection_open(connect, frames):
    a = connect("tenant-1")
    frames(a)

    a.send({"event": "send_message", "payload": {"conversationId": "conv-1"}})

    error = frames(a, "error")[0]["payload"]
    assert error["event"] == "send_message"
    assert error["code"] == "validation_error"
    assert a.is_connected()

    a.send({"event": "ping"})
    assert frames(a, "pong")


def test_send_and_read_message(connect, frames):
    a = connect("tenant-1", "Alice")
    b = connect("landlord-1", "Bob")
    for client in (a, b):
        client.send({"event": "join_conversation", "payload": {"conversationId": "conv-1"}})
    frames(a)
    frames(b)

    a.send({"event": "send_message", "payload": {"conversationId": "conv-1", "content": "Viewing on Sat?"}})

    sent_to_b = frames(b, "message_sent")[0]["payload"]
    assert sent_to_b["message"]["content"] == "Viewing on Sat?"
    assert frames(a, "message_sent")

    b.send({"event": "mark_read", "payload": {"messageId": sent_to_b["message"]["_id"]}})

    read = frames(a, "message_read")[0]["payload"]
    assert read["userId"] == "landlord-1"


def test_disconnect_announces_offline_and_clears_typing(connect, frames, app_hub):
    a = connect("tenant-1", "Alice")
    b = connect("landlord-1", "Bob")
    for client in (a, b):
        client.send({"event": "join_conversation", "payload": {"conversationId": "conv-1"}})
    a.send({"event": "typing_start", "payload": {"conversationId": "conv-1"}})
    frames(b)

    a.disconnect()

    names = [f["event"] for f in frames(b)]
    assert "typing_stop" in names
    assert "user_offline" in names
    assert app_hub.get_typing_users("conv-1") == []
    assert app_hub.get_conversation_participants("conv-1") == ["landlord-1"]


def test_acl_blocks_non_participants(settings, frames):
    from rental_realtime.server import create_app

    settings["ENFORCE_CONVERSATION_ACL"] = True
    app, socketio = create_app(settings)
    store = app.extensions["realtime_hub"].store
    store.save_conversation("conv-1", ["tenant-1", "landlord-1"])

    outsider = socketio.test_client(app, query_string="userId=stranger")
    frames(outsider)

    outsider.send({"event": "join_conversation", "payload": {"conversationId": "conv-1"}})

    error = frames(outsider, "error")[0]["payload"]
    assert error["code"] == "forbidden"
    outsider.disconnect()


def test_auto_join_on_connect(settings, frames):
    from rental_realtime.server import create_app

    app, socketio = create_app(settings)
    app.extensions["realtime_hub"].store.save_conversation("conv-7", ["tenant-1", "landlord-1"])

    landlord = socketio.test_client(app, query_string="userId=landlord-1")
    frames(landlord)
    tenant = socketio.test_client(app, query_string="userId=tenant-1")

    welcome = frames(tenant, "connection_established")[0]["payload"]
    assert welcome["conversationIds"] == ["conv-7"]
    assert frames(landlord, "user_online")[0]["payload"]["userId"] == "tenant-1"

    tenant.disconnect()
    landlord.disconnect()
