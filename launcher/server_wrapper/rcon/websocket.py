"""
WebSocket RCON (JSON messages over one persistent socket).

Commands go out as ``{"Identifier": id, "Message": command, "Name": "WebRcon"}``.
Replies carry the same Identifier; anything else the server pushes (chat,
console echo) arrives with an unknown or non-positive Identifier and is handed
to the ``on_message`` handlers.
"""
from __future__ import annotations
import json
import queue
import threading
from typing import Optional
from urllib.parse import quote
from websockets.exceptions import WebSocketException
from websockets.sync.client import ClientConnection, connect
from ..errors import RemoteProtocolError
from .base import RconClient, log

CLIENT_NAME = "WebRcon"
_CLOSED = object()


class WebSocketRconClient(RconClient):
    name = "websocket"

    def __init__(self, host: str, port: int, password: str, timeout: float = 5.0):
        super().__init__(host, port, password, timeout)
        self.ws: Optional[ClientConnection] = None
        self._reader: Optional[threading.Thread] = None
        self._reader_done = threading.Event()

    @property
    def uri(self) -> str:
        return f"ws://{self.host}:{self.port}/{quote(self.password, safe='')}"

    def _connect(self) -> None:
        try:
            self.ws = connect(self.uri, open_timeout=self.timeout, close_timeout=self.timeout)
        except WebSocketException as e:
            raise RemoteProtocolError(f"websocket rcon handshake failed: {e}") from e
        self._reader_done = threading.Event()
        self._reader = threading.Thread(target=self._read_loop, args=(self.ws, self._reader_done),
                                        name="rcon-websocket", daemon=True)
        self._reader.start()

    def _alive(self) -> bool:
        return not self._reader_done.is_set()

    def _execute(self, command: str) -> str:
        request_id = self.next_id()
        waiter: queue.Queue = queue.Queue(maxsize=1)
        self.pending[request_id] = waiter
        try:
            self.ws.send(json.dumps({"Identifier": request_id, "Message": command, "Name": CLIENT_NAME}))
            reply = waiter.get(timeout=self.timeout)
        except WebSocketException as e:
            raise RemoteProtocolError(f"websocket rcon send failed: {e}") from e
        except queue.Empty:
            raise RemoteProtocolError(f"websocket rcon: no reply to {command!r} within {self.timeout}s")
        finally:
            self.pending.pop(request_id, None)
        if reply is _CLOSED:
            raise RemoteProtocolError("websocket rcon: connection closed while waiting for reply")
        return reply

    def _disconnect(self) -> None:
        if self.ws is not None:
            ws, self.ws = self.ws, None
            ws.close()
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(self.timeout)
        self._reader = None

    # ------------------------------------------------------------------ #
    def _read_loop(self, ws: ClientConnection, done: threading.Event) -> None:
        try:
            for raw in ws:
                self._handle_frame(raw)
        except WebSocketException as e:
            log.warning("websocket rcon connection lost: %s", e)
        except OSError as e:
            log.warning("websocket rcon socket error: %s", e)
        finally:
            done.set()
            for waiter in list(self.pending.values()):
                try:
                    waiter.put_nowait(_CLOSED)
                except queue.Full:
                    pass

    def _handle_frame(self, raw) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            self._dispatch(raw)
            return
        if not isinstance(msg, dict):
            self._dispatch(raw)
            return
        text = str(msg.get("Message", ""))
        waiter = self.pending.get(msg.get("Identifier"))
        if waiter is not None:
            try:
                waiter.put_nowait(text)
            except queue.Full:
                # duplicate reply for the same id: surface it rather than lose it
                self._dispatch(text)
            return
        if text:
            self._dispatch(text)
