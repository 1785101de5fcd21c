"""Message helpers for Deribit book subscriptions and hub consumer requests."""

from __future__ import annotations

import itertools
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from deribit_stream.errors import MalformedMessageError

SUBSCRIBE_METHOD = "public/subscribe"
NOTIFICATION_METHOD = "subscription"

_request_ids = itertools.count(1)


def book_topic(instrument: str, cadence: str) -> str:
    """Return the book channel name, e.g. ``book.BTC-PERPETUAL.100ms``."""

    return f"book.{instrument}.{cadence}"


@dataclass(frozen=True)
class BookSubscription:
    """Represents an order book subscription for one instrument."""

    instrument: str
    cadence: str = "100ms"

    def topic(self) -> str:
        """Return the channel used both upstream and as the hub routing key."""

        return book_topic(self.instrument, self.cadence)

    def subscribe_request(self, request_id: Optional[int] = None) -> str:
        return build_subscribe_request([self.topic()], request_id)


def jsonrpc_request(method: str, params: Dict[str, Any], request_id: Optional[int] = None) -> Dict[str, Any]:
    """Build a JSON-RPC 2.0 envelope."""

    return {
        "jsonrpc": "2.0",
        "method": method,
        "id": request_id if request_id is not None else next(_request_ids),
        "params": params,
    }


def build_subscribe_request(channels: Iterable[str], request_id: Optional[int] = None) -> str:
    """Serialize a ``public/subscribe`` command for the given channels."""

    channel_list = list(channels)
    if not channel_list:
        raise ValueError("at least one channel is required")
    return json.dumps(jsonrpc_request(SUBSCRIBE_METHOD, {"channels": channel_list}, request_id))


def extract_channel(payload: str) -> Optional[str]:
    """Return ``params.channel`` of a subscription notification, if any.

    Anything else (subscribe acknowledgements, heartbeats, invalid JSON)
    yields ``None``; the stream treats frames as opaque so this never raises.
    """

    try:
        message = json.loads(payload)
    except ValueError:
        return None
    if not isinstance(message, dict) or message.get("method") != NOTIFICATION_METHOD:
        return None
    params = message.get("params")
    if not isinstance(params, dict):
        return None
    channel = params.get("channel")
    return channel if isinstance(channel, str) else None


def parse_consumer_subscribe(raw: str | bytes) -> Optional[str]:
    """Extract the topic from a hub consumer's ``{"subscribe": "<topic>"}``.

    Returns ``None`` for a JSON object without a ``subscribe`` field and raises
    :class:`MalformedMessageError` when the payload is not usable at all.
    """

    try:
        message = json.loads(raw)
    except ValueError as exc:
        raise MalformedMessageError(f"consumer message is not valid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedMessageError(
            "consumer message must be a JSON object", context={"type": type(message).__name__}
        )
    if "subscribe" not in message:
        return None
    topic = message["subscribe"]
    if not isinstance(topic, str) or not topic:
        raise MalformedMessageError("subscribe field must be a non-empty string", context={"value": topic})
    return topic


__all__ = [
    "BookSubscription",
    "book_topic",
    "build_subscribe_request",
    "extract_channel",
    "jsonrpc_request",
    "parse_consumer_subscribe",
]
