"""
Tests for the WebSocket (JSON) RCON client against a local websockets server.
"""

import json
import threading
import time
import pytest
from websockets.sync.server import serve

from server_wrapper.errors import RemoteProtocolError
from server_wrapper.rcon import AUTHENTICATED
from server_wrapper.rcon.websocket import WebSocketRconClient


class FakeWebRcon:
    def __init__(self, password="secret"):
        self.password = password
        self.received = []
        self.paths = []
        self.connections = []
        self.server = serve(self._handler, "127.0.0.1", 0)
        self.port = self.server.socket.getsockname()[1]
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self._thread.start()

    def _handler(self, ws):
        self.paths.append(ws.request.path)
        if ws.request.path != f"/{self.password}":
            ws.close()
            return
        self.connections.append(ws)
        for raw in ws:
            msg = json.loads(raw)
            self.received.append(msg)
            if msg["Message"] == "silent":
                continue
            ws.send(json.dumps({"Identifier": msg["Identifier"], "Message": f"ok {msg['Message']}",
                                "Type": "Generic", "Stacktrace": ""}))

    def push(self, text):
        for ws in list(self.connections):
            ws.send(json.dumps({"Identifier": -1, "Message": text, "Type": "Chat"}))

    def drop(self):
        for ws in list(self.connections):
            ws.close()
        self.connections.clear()

    def close(self):
        self.server.shutdown()


@pytest.fixture
def webrcon():
    s = FakeWebRcon()
    yield s
    s.close()


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestWebSocketClient:
    def test_command_reply(self, webrcon):
        client = WebSocketRconClient("127.0.0.1", webrcon.port, "secret", timeout=2)
        assert client.send("serverinfo") == "ok serverinfo"
        assert client.state == AUTHENTICATED
        assert client.send("status") == "ok status"
        assert len(webrcon.connections) == 1
        first, second = webrcon.received
        assert first["Name"] == "WebRcon"
        assert second["Identifier"] > first["Identifier"]
        assert webrcon.paths == ["/secret"]
        client.close()

    def test_unsolicited_messages_reach_handlers(self, webrcon):
        client = WebSocketRconClient("127.0.0.1", webrcon.port, "secret", timeout=2)
        seen = []
        client.on_message(seen.append)
        client.send("status")
        webrcon.push("[CHAT] player: hello")
        assert _wait_for(lambda: seen == ["[CHAT] player: hello"])
        client.close()

    def test_timeout_tears_session_down(self, webrcon):
        client = WebSocketRconClient("127.0.0.1", webrcon.port, "secret", timeout=0.3)
        with pytest.raises(RemoteProtocolError):
            client.send("silent")
        assert client.send("status") == "ok status"
        assert len(webrcon.paths) == 2
        client.close()

    def test_reconnects_after_close(self, webrcon):
        client = WebSocketRconClient("127.0.0.1", webrcon.port, "secret", timeout=2)
        client.send("one")
        webrcon.drop()
        assert _wait_for(lambda: not client._alive())
        assert client.send("two") == "ok two"
        assert len(webrcon.paths) == 2
        client.close()

    def test_rejected_password(self, webrcon):
        client = WebSocketRconClient("127.0.0.1", webrcon.port, "wrong", timeout=0.5)
        with pytest.raises(RemoteProtocolError):
            client.send("status")
