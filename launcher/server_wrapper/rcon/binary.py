"""
Binary RCON (Source engine style) over TCP.

Frame layout, all integers little-endian int32:
    {length}{request id}{type}{body bytes}{0x00}{0x00}
where length counts everything after itself.
"""
from __future__ import annotations
import socket
import struct
from typing import List, Optional, Tuple
from ..errors import AuthenticationError, RemoteProtocolError
from .base import RconClient, log

SERVERDATA_AUTH = 3
SERVERDATA_AUTH_RESPONSE = 2
SERVERDATA_EXECCOMMAND = 2
SERVERDATA_RESPONSE_VALUE = 0

HEADER = struct.Struct("<iii")
MAX_PACKET = 64 * 1024
DRAIN_TIMEOUT = 0.25

Packet = Tuple[int, int, bytes]


def encode_packet(request_id: int, ptype: int, body: str) -> bytes:
    payload = body.encode("utf-8")
    return HEADER.pack(len(payload) + 10, request_id, ptype) + payload + b"\x00\x00"


def decode_packet(data: bytes) -> Packet:
    """Decode one complete frame (including its length prefix)."""
    length, request_id, ptype = HEADER.unpack_from(data)
    body = data[HEADER.size:4 + length - 2]
    return request_id, ptype, body


class BinaryRconClient(RconClient):
    name = "binary"

    def __init__(self, host: str, port: int, password: str, timeout: float = 5.0):
        super().__init__(host, port, password, timeout)
        self.sock: Optional[socket.socket] = None

    def _connect(self) -> None:
        self.sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        auth_id = self.next_id()
        self.sock.sendall(encode_packet(auth_id, SERVERDATA_AUTH, self.password))
        packet = self._read_packet(self.timeout)
        if packet is None:
            raise RemoteProtocolError("binary rcon: no auth response")
        request_id, ptype, body = packet
        if request_id != -1 and ptype == SERVERDATA_RESPONSE_VALUE and not body:
            # Source servers put an empty value before the actual auth answer
            follow = self._read_packet(DRAIN_TIMEOUT)
            if follow is not None:
                request_id = follow[0]
        if request_id == -1:
            raise AuthenticationError("binary rcon: authentication rejected")

    def _execute(self, command: str) -> str:
        request_id = self.next_id()
        self.pending[request_id] = command
        self.sock.sendall(encode_packet(request_id, SERVERDATA_EXECCOMMAND, command))
        bodies: List[str] = []
        wait = self.timeout
        # responses are best effort: take what arrives, stop once the socket goes quiet
        while True:
            packet = self._read_packet(wait)
            if packet is None:
                break
            rid, _, body = packet
            text = body.decode("utf-8", errors="replace")
            if rid == request_id:
                bodies.append(text)
                wait = DRAIN_TIMEOUT
            elif text:
                self._dispatch(text)
        self.pending.pop(request_id, None)
        if not bodies:
            log.debug("binary rcon: no reply body for %r", command)
        return "".join(bodies)

    def _disconnect(self) -> None:
        if self.sock is not None:
            sock, self.sock = self.sock, None
            sock.close()

    # ------------------------------------------------------------------ #
    def _read_packet(self, wait: float) -> Optional[Packet]:
        """Read one frame; ``None`` when nothing at all arrived within ``wait``."""
        self.sock.settimeout(wait)
        try:
            first = self.sock.recv(4)
        except socket.timeout:
            return None
        if not first:
            raise RemoteProtocolError("binary rcon: connection closed by server")
        self.sock.settimeout(self.timeout)
        head = first + self._recv_exact(4 - len(first))
        (length,) = struct.unpack("<i", head)
        if length < 10 or length > MAX_PACKET:
            raise RemoteProtocolError(f"binary rcon: bad frame length {length}")
        return decode_packet(head + self._recv_exact(length))

    def _recv_exact(self, n: int) -> bytes:
        buf = b""
        while len(buf) < n:
            chunk = self.sock.recv(n - len(buf))
            if not chunk:
                raise RemoteProtocolError("binary rcon: connection closed mid-frame")
            buf += chunk
        return buf
