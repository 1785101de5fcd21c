"""Client interfaces for the Deribit venue."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

FrameCallback = Callable[[str], Union[None, Awaitable[None]]]


class ConnectionState(enum.Enum):
    """Lifecycle of a streaming connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class VenueEndpoint:
    """Connection details for a venue.

    Attributes:
        name: Human readable venue identifier.
        rest_url: Base URL for JSON-RPC over HTTP.
        websocket_url: WebSocket endpoint for streaming data.
    """

    name: str
    rest_url: str
    websocket_url: str


DERIBIT_TESTNET = VenueEndpoint(
    name="deribit-testnet",
    rest_url="https://test.deribit.com/api/v2",
    websocket_url="wss://test.deribit.com/ws/api/v2",
)


class StreamTransport(Protocol):
    """Protocol describing a message-framed streaming connection."""

    async def connect(self) -> None:
        """Open the connection; a no-op when already connected."""

    async def disconnect(self) -> None:
        """Close the connection. Never raises."""

    async def send(self, message: str) -> None:
        """Write one complete frame."""

    async def receive(self, callback: FrameCallback) -> None:
        """Wait for one frame and hand its text to ``callback``."""

    def get_state(self) -> ConnectionState:
        """Return the current connection state."""

    def get_last_error(self) -> Optional[str]:
        """Return the most recent failure description."""


class TopicPublisher(Protocol):
    """Anything that can fan a payload out to the consumers of a topic."""

    async def broadcast(self, topic: str, message: str) -> Any:
        """Deliver ``message`` to every consumer of ``topic``."""


__all__ = [
    "ConnectionState",
    "DERIBIT_TESTNET",
    "FrameCallback",
    "StreamTransport",
    "TopicPublisher",
    "VenueEndpoint",
]
