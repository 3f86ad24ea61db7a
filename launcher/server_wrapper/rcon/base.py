from __future__ import annotations
import itertools
import threading
from typing import Callable, Dict, List, Optional
from ..errors import RemoteProtocolError
from ..logging_setup import get_logger

log = get_logger("server_wrapper.rcon")

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
AUTHENTICATED = "authenticated"

MessageHandler = Callable[[str], None]


class RconClient:
    """
    Shared session handling for the remote admin channel.

    The connection is opened lazily by the first ``send`` and reused after
    that. Any socket error tears the session down (request ids restart, pending
    requests are dropped) and the next ``send`` reconnects. Calls are serialized
    through one lock so there is never more than one socket in flight.
    """

    name = "rcon"

    def __init__(self, host: str, port: int, password: str, timeout: float = 5.0):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self.state = DISCONNECTED
        self.pending: Dict[int, object] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self._handlers: List[MessageHandler] = []

    # ------------------------------------------------------------------ #
    def on_message(self, handler: MessageHandler) -> None:
        """Register a callback for server-originated (unsolicited) messages."""
        self._handlers.append(handler)

    def next_id(self) -> int:
        return next(self._ids)

    def send(self, command: str) -> str:
        with self._lock:
            if self.state == AUTHENTICATED and not self._alive():
                self._reset()
            if self.state != AUTHENTICATED:
                self._open()
            try:
                return self._execute(command)
            except RemoteProtocolError:
                self._reset()
                raise
            except OSError as e:
                self._reset()
                raise RemoteProtocolError(f"{self.name} command failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._reset()

    def _open(self) -> None:
        self.state = CONNECTING
        try:
            self._connect()
        except RemoteProtocolError:
            self._reset()
            raise
        except OSError as e:
            self._reset()
            raise RemoteProtocolError(f"{self.name} connect to {self.host}:{self.port} failed: {e}") from e
        self.state = AUTHENTICATED
        log.info("%s session established with %s:%s", self.name, self.host, self.port)

    def _reset(self) -> None:
        was = self.state
        try:
            self._disconnect()
        except OSError:
            pass
        self.state = DISCONNECTED
        self.pending.clear()
        self._ids = itertools.count(1)
        if was == AUTHENTICATED:
            log.info("%s session to %s:%s closed", self.name, self.host, self.port)

    def _dispatch(self, text: str) -> None:
        for handler in list(self._handlers):
            try:
                handler(text)
            except Exception:
                log.exception("%s message handler failed", self.name)

    # variant hooks
    def _alive(self) -> bool:
        return True

    def _connect(self) -> None:
        raise NotImplementedError

    def _execute(self, command: str) -> str:
        raise NotImplementedError

    def _disconnect(self) -> None:
        raise NotImplementedError


def describe(client: Optional[RconClient]) -> dict:
    if client is None:
        return {"protocol": None, "state": DISCONNECTED}
    return {"protocol": client.name, "state": client.state, "host": client.host, "port": client.port}
