"""End-to-end scenarios over the real /ws endpoint."""
import pytest
from fastapi import WebSocketDisconnect

from broker.broadcast.connection_registry import connections
from broker.pending import pending_requests


def _connect(client):
    ws = client.websocket_connect("/ws")
    session = ws.__enter__()
    hello = session.receive_json()
    assert hello["event"] == "connected"
    return session, hello["data"]["connectionId"]


def _barrier(ws) -> None:
    """Everything this connection sent before has been handled once pong arrives."""
    ws.send_json({"event": "ping"})
    assert ws.receive_json() == {"event": "pong", "data": None}


class TestHttp:
    def test_index_page(self, client):
        res = client.get("/")
        assert res.status_code == 200
        assert "text/html" in res.headers["content-type"]
        assert "/ws" in res.text

    def test_index_page_never_renders_peer_markup(self, client):
        assert "innerHTML" not in client.get("/").text

    def test_status(self, client):
        assert client.get("/api/status").json() == {"connections": 0, "pending": 0}

    def test_cors_preflight(self, client):
        res = client.options(
            "/api/status",
            headers={"Origin": "http://example.test", "Access-Control-Request-Method": "GET"},
        )
        assert res.status_code == 200
        assert res.headers["access-control-allow-origin"] in ("*", "http://example.test")


class TestScenarios:
    def test_round_trip(self, client):
        a, a_id = _connect(client)
        b, b_id = _connect(client)
        try:
            assert a_id != b_id
            a.send_json({"event": "newRequest", "data": "fix the leak"})

            ack = a.receive_json()
            assert ack["event"] == "requestPending"
            request_id = ack["data"]

            offer = b.receive_json()
            assert offer == {
                "event": "requestReceived",
                "data": {"id": request_id, "text": "fix the leak", "requesterConnectionId": a_id},
            }
            assert client.get("/api/status").json() == {"connections": 2, "pending": 1}

            b.send_json({"event": "respondToRequest", "data": {"requestId": request_id, "status": "done"}})

            assert a.receive_json() == {
                "event": "requestResponse",
                "data": {"id": request_id, "status": "done", "text": "fix the leak"},
            }
            assert request_id not in pending_requests
        finally:
            b.__exit__(None, None, None)
            a.__exit__(None, None, None)

    def test_duplicate_response(self, client):
        a, _ = _connect(client)
        b, _ = _connect(client)
        c, _ = _connect(client)
        try:
            a.send_json({"event": "newRequest", "data": "fix the leak"})
            request_id = a.receive_json()["data"]
            assert b.receive_json()["event"] == "requestReceived"
            assert c.receive_json()["event"] == "requestReceived"

            b.send_json({"event": "respondToRequest", "data": {"id": request_id, "status": "done"}})
            assert a.receive_json()["data"]["status"] == "done"

            c.send_json({"event": "respondToRequest", "data": {"id": request_id, "status": "ignored"}})
            # C gets nothing back for the late answer, only its pong
            _barrier(c)
            # and nothing was queued for A ahead of its pong
            _barrier(a)
            _barrier(b)
        finally:
            for ws in (c, b, a):
                ws.__exit__(None, None, None)

    def test_disconnect_cleanup(self, client):
        a, _ = _connect(client)
        b, _ = _connect(client)
        try:
            a.send_json({"event": "newRequest", "data": "anyone?"})
            request_id = a.receive_json()["data"]
            assert b.receive_json()["data"]["id"] == request_id

            a.__exit__(None, None, None)
            assert request_id not in pending_requests
            assert client.get("/api/status").json() == {"connections": 1, "pending": 0}

            b.send_json({"event": "respondToRequest", "data": {"id": request_id, "status": "late"}})
            _barrier(b)
        finally:
            b.__exit__(None, None, None)

    def test_responder_disconnect_keeps_request(self, client):
        a, _ = _connect(client)
        b, _ = _connect(client)
        c, _ = _connect(client)
        try:
            a.send_json({"event": "newRequest", "data": "still open"})
            request_id = a.receive_json()["data"]
            b.receive_json()
            c.receive_json()

            b.__exit__(None, None, None)
            assert request_id in pending_requests

            c.send_json({"event": "respondToRequest", "data": {"id": request_id, "status": "mine"}})
            assert a.receive_json()["data"] == {"id": request_id, "status": "mine", "text": "still open"}
        finally:
            c.__exit__(None, None, None)
            a.__exit__(None, None, None)

    def test_late_joiner_sees_no_replay(self, client):
        a, _ = _connect(client)
        try:
            a.send_json({"event": "newRequest", "data": "before you came"})
            a.receive_json()

            b, _ = _connect(client)
            try:
                _barrier(b)
            finally:
                b.__exit__(None, None, None)
        finally:
            a.__exit__(None, None, None)


class TestBadInput:
    def test_empty_request_rejected(self, client):
        a, _ = _connect(client)
        b, _ = _connect(client)
        try:
            a.send_json({"event": "newRequest", "data": "   "})
            error = a.receive_json()
            assert error["event"] == "error"
            assert error["data"]["event"] == "newRequest"
            assert len(pending_requests) == 0
            # B saw nothing
            _barrier(b)
        finally:
            b.__exit__(None, None, None)
            a.__exit__(None, None, None)

    def test_garbage_frame_keeps_connection(self, client):
        a, _ = _connect(client)
        try:
            a.send_text("{not json")
            assert a.receive_json() == {
                "event": "error", "data": {"event": None, "detail": "Malformed message"},
            }
            _barrier(a)
        finally:
            a.__exit__(None, None, None)

    def test_unencodable_text_does_not_cut_off_peers(self, client):
        a, a_id = _connect(client)
        b, _ = _connect(client)
        try:
            a.send_text('{"event": "newRequest", "data": "bad \\ud800"}')
            error = a.receive_json()
            assert error["data"]["detail"] == "Message is not valid UTF-8"

            a.send_json({"event": "newRequest", "data": "fix the leak"})
            request_id = a.receive_json()["data"]

            assert b.receive_json() == {
                "event": "requestReceived",
                "data": {"id": request_id, "text": "fix the leak", "requesterConnectionId": a_id},
            }
            assert client.get("/api/status").json() == {"connections": 2, "pending": 1}
        finally:
            b.__exit__(None, None, None)
            a.__exit__(None, None, None)


class TestWriterFailure:
    def test_unencodable_event_is_skipped(self, client):
        a, _ = _connect(client)
        b, b_id = _connect(client)
        try:
            assert client.portal.call(connections.send_to, b_id, "requestReceived", "\ud800")

            a.send_json({"event": "newRequest", "data": "still flowing"})
            request_id = a.receive_json()["data"]

            offer = b.receive_json()
            assert offer["data"]["id"] == request_id
            _barrier(b)
        finally:
            b.__exit__(None, None, None)
            a.__exit__(None, None, None)

    def test_dead_writer_drops_the_connection(self, client):
        a, _ = _connect(client)
        b, b_id = _connect(client)
        try:
            b.send_json({"event": "newRequest", "data": "orphan"})
            request_id = b.receive_json()["data"]
            assert a.receive_json()["data"]["id"] == request_id

            # an event the writer cannot serialize kills it
            assert client.portal.call(connections.send_to, b_id, "boom", object())

            with pytest.raises(WebSocketDisconnect) as exc_info:
                b.receive_json()
            assert exc_info.value.code == 1011

            assert not connections.is_connected(b_id)
            assert request_id not in pending_requests
            assert client.get("/api/status").json() == {"connections": 1, "pending": 0}

            # the survivor is unaffected
            a.send_json({"event": "newRequest", "data": "anyone left?"})
            assert a.receive_json()["event"] == "requestPending"
        finally:
            b.__exit__(None, None, None)
            a.__exit__(None, None, None)
