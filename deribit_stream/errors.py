"""Exception hierarchy shared by the streaming, hub, and REST layers."""

from __future__ import annotations

import builtins
from typing import Any, Dict, Optional


class BridgeError(Exception):
    """Base exception for the Deribit bridge."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class StreamError(BridgeError):
    """Failure raised by a streaming transport."""


class StreamConnectionError(StreamError, builtins.ConnectionError):
    """Resolution, TCP connect, TLS, or WebSocket handshake failed."""


class NotConnectedError(StreamError):
    """Operation attempted while the stream is not connected."""


class SendError(StreamError):
    """Writing a frame failed."""


class ReceiveError(StreamError):
    """Reading a frame failed or timed out."""

    def __init__(self, message: str, timed_out: bool = False, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, context)
        self.timed_out = timed_out


class MalformedMessageError(BridgeError, ValueError):
    """A payload could not be parsed where parsing is required."""


class ApiError(BridgeError):
    """JSON-RPC call returned an error or could not be completed."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        method: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, context)
        self.code = code
        self.method = method


class AuthenticationError(ApiError):
    """No usable access token could be obtained."""


__all__ = [
    "BridgeError",
    "StreamError",
    "StreamConnectionError",
    "NotConnectedError",
    "SendError",
    "ReceiveError",
    "MalformedMessageError",
    "ApiError",
    "AuthenticationError",
]
