import pytest
from starlette.websockets import WebSocketDisconnect


def create_room(ws):
    ws.send_json({"type": "CREATE_ROOM"})
    message = ws.receive_json()
    assert message["type"] == "ROOM_CREATED"
    return message["code"]


def test_create_and_join_round_trip(client, server_registry):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        code = create_room(a)
        assert len(code) == 4 and code.isdigit()

        b.send_json({"type": "JOIN_ROOM", "code": code})
        assert b.receive_json() == {"type": "CONNECTION_SUCCESS", "code": code}
        assert b.receive_json() == {"type": "ROOM_FULL", "code": code}
        assert a.receive_json() == {"type": "ROOM_FULL", "code": code}

        assert len(server_registry.get_room(code).participants) == 2


def test_root_path_also_serves_the_gateway(client):
    with client.websocket_connect("/") as a:
        create_room(a)


def test_partner_disconnect_and_room_deletion(client, server_registry, eventually):
    with client.websocket_connect("/ws") as a:
        code = create_room(a)
        with client.websocket_connect("/ws") as b:
            b.send_json({"type": "JOIN_ROOM", "code": code})
            b.receive_json()
            b.receive_json()
            a.receive_json()

        # B is gone
        assert a.receive_json() == {"type": "PARTNER_DISCONNECTED", "code": code}
        assert len(server_registry.get_room(code).participants) == 1

    # A is gone too
    eventually(lambda: server_registry.get_room(code) is None)
    eventually(lambda: server_registry.stats().active_connections == 0)


def test_third_peer_cannot_join_full_room(client, server_registry):
    with client.websocket_connect("/ws") as a, \
            client.websocket_connect("/ws") as b, \
            client.websocket_connect("/ws") as c:
        code = create_room(a)
        b.send_json({"type": "JOIN_ROOM", "code": code})
        b.receive_json()
        b.receive_json()
        participants = list(server_registry.get_room(code).participants)

        c.send_json({"type": "JOIN_ROOM", "code": code})
        error = c.receive_json()
        assert error["type"] == "ERROR"
        assert error["code"] == "RoomUnavailable"
        assert server_registry.get_room(code).participants == participants


def test_malformed_room_code_changes_nothing(client, server_registry):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        code = create_room(a)
        before = server_registry.stats()

        b.send_json({"type": "JOIN_ROOM", "code": "12a3"})
        error = b.receive_json()

        assert error["type"] == "ERROR"
        assert error["code"] == "InvalidRoomCode"
        assert server_registry.stats().total_rooms == before.total_rooms
        assert len(server_registry.get_room(code).participants) == 1


def test_sensor_data_arrives_in_order(client):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        code = create_room(a)
        b.send_json({"type": "JOIN_ROOM", "code": code})
        b.receive_json()
        b.receive_json()
        a.receive_json()

        for seq in (1, 2, 3):
            a.send_json({"type": "SENSOR_DATA", "payload": {"seq": seq}})
        a.send_json({"type": "CALIBRATION_DATA", "payload": {"baseline": 0.5}})

        received = [b.receive_json() for _ in range(4)]
        assert [m["payload"] for m in received[:3]] == [{"seq": 1}, {"seq": 2}, {"seq": 3}]
        assert received[3] == {"type": "CALIBRATION_DATA", "payload": {"baseline": 0.5}}


def test_bad_frames_keep_the_connection_open(client):
    with client.websocket_connect("/ws") as a:
        a.send_text("{not json")
        assert a.receive_json()["code"] == "InvalidMessageFormat"

        a.send_json({"type": "DANCE"})
        assert a.receive_json()["code"] == "UnknownMessageType"

        a.send_json({"type": "SENSOR_DATA", "payload": 1})
        assert a.receive_json()["code"] == "NoRoom"

        # still usable
        create_room(a)
        a.send_json({"type": "SENSOR_DATA", "payload": 1})
        assert a.receive_json()["code"] == "NoPartner"


def test_oversized_frame_is_rejected(client, test_settings):
    with client.websocket_connect("/ws") as a:
        a.send_json({"type": "SENSOR_DATA", "payload": "x" * (test_settings.max_payload + 1)})
        error = a.receive_json()
        assert error["code"] == "MessageTooLarge"
        a.send_json({"type": "PING", "n": 1})
        assert a.receive_json() == {"type": "PONG", "n": 1}


def test_leave_room_message(client, server_registry):
    with client.websocket_connect("/ws") as a:
        code = create_room(a)
        a.send_json({"type": "LEAVE_ROOM"})
        assert a.receive_json() == {"type": "ROOM_LEFT"}
        assert server_registry.get_room(code) is None


def test_unexpected_failure_becomes_server_error(client, relay_app, monkeypatch):
    async def explode(peer, envelope):
        raise RuntimeError("boom")

    monkeypatch.setattr(relay_app.state.gateway, "dispatch", explode)
    with client.websocket_connect("/ws") as a:
        a.send_json({"type": "CREATE_ROOM"})
        error = a.receive_json()
        assert error["code"] == "ServerError"
        assert error["retryable"] is True
        a.send_json({"type": "CREATE_ROOM"})
        assert a.receive_json()["code"] == "ServerError"


def test_sweep_closes_member_sockets(client, server_registry, clock, test_settings):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        code = create_room(a)
        b.send_json({"type": "JOIN_ROOM", "code": code})
        b.receive_json()
        b.receive_json()
        a.receive_json()

        clock.advance(1)
        assert client.portal.call(server_registry.sweep_expired, test_settings.room_max_age) == []
        assert server_registry.get_room(code) is not None

        clock.advance(test_settings.room_max_age)
        assert client.portal.call(server_registry.sweep_expired, test_settings.room_max_age) == [code]
        assert server_registry.get_room(code) is None

        for ws in (a, b):
            with pytest.raises(WebSocketDisconnect) as closed:
                ws.receive_json()
            assert closed.value.code == 1001


def test_connections_are_counted(client, server_registry, eventually):
    with client.websocket_connect("/ws") as a:
        create_room(a)
        assert server_registry.stats().active_connections == 1
    eventually(lambda: server_registry.stats().active_connections == 0)
