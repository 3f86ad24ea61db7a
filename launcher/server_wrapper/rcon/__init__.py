"""Remote admin (RCON) clients: one interface, a binary and a WebSocket variant."""
from __future__ import annotations
import importlib
from typing import Optional
from ..errors import BridgeUnavailableError
from ..settings import Settings
from .base import AUTHENTICATED, CONNECTING, DISCONNECTED, RconClient, describe

_VARIANTS = {
    "binary": ("binary", "BinaryRconClient"),
    "websocket": ("websocket", "WebSocketRconClient"),
}


def load_client_class(protocol: str) -> type:
    """Import the implementation for ``protocol``; a missing one is fatal for the bridge."""
    try:
        module_name, class_name = _VARIANTS[protocol]
    except KeyError:
        raise BridgeUnavailableError(f"unknown rcon protocol {protocol!r}")
    try:
        module = importlib.import_module(f".{module_name}", __name__)
    except ImportError as e:
        raise BridgeUnavailableError(f"rcon protocol {protocol!r} is not available: {e}") from e
    return getattr(module, class_name)


def create_client(settings: Settings) -> Optional[RconClient]:
    """Build the configured client, or ``None`` when no credentials are set."""
    cls = load_client_class(settings.rcon_protocol)
    if not settings.remote_configured:
        return None
    return cls(settings.rcon_host, settings.rcon_port, settings.rcon_password, timeout=settings.rcon_timeout)


__all__ = [
    "AUTHENTICATED", "CONNECTING", "DISCONNECTED", "RconClient",
    "create_client", "describe", "load_client_class",
]
