"""Data access layer: the Deribit stream, REST client, and local broadcast hub."""

from .broadcast_hub import BroadcastHub
from .clients import ConnectionState, StreamTransport, VenueEndpoint
from .deribit_client import DeribitClient
from .stream_client import ConnectionConfig, StreamClient
from .websocket import BookSubscription, book_topic

__all__ = [
    "BroadcastHub",
    "BookSubscription",
    "ConnectionConfig",
    "ConnectionState",
    "DeribitClient",
    "StreamClient",
    "StreamTransport",
    "VenueEndpoint",
    "book_topic",
]
