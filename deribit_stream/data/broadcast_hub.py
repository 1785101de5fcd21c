"""Local WebSocket hub that fans stream payloads out to subscribed consumers.

Consumers connect over plaintext WebSocket and send ``{"subscribe": "<topic>"}``
for every topic they want. The hub identifies each connection by a generated
integer id; the topic table only ever holds ids, and the id -> connection
registry is cleared the moment a connection closes.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from typing import Any, Dict, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

from deribit_stream.data.websocket import parse_consumer_subscribe
from deribit_stream.errors import MalformedMessageError
from deribit_stream.infra.metrics import MetricsSink


class BroadcastHub:
    """Accepts consumer connections and routes topic updates to them."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8765,
        metrics: Optional[MetricsSink] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.host = host
        self.configured_port = port
        self.metrics = metrics or MetricsSink()
        self.logger = logger or logging.getLogger(__name__)

        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._connections: Dict[int, Any] = {}
        self._subscriptions: Dict[str, Set[int]] = defaultdict(set)
        self._server: Any = None

    # --- Lifecycle ----------------------------------------------------------
    async def start(self, port: Optional[int] = None) -> None:
        """Begin listening; connections are accepted until :meth:`stop`."""

        if self._server is not None:
            return
        listen_port = self.configured_port if port is None else port
        self._server = await websockets.serve(self._handle_connection, self.host, listen_port)
        self.logger.info(
            "Broadcast hub listening on %s:%s", self.host, self.port,
            extra={"event": "hub_started", "host": self.host, "port": self.port},
        )

    async def serve_forever(self, port: Optional[int] = None) -> None:
        await self.start(port)
        await self._server.wait_closed()

    async def stop(self) -> None:
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        await server.wait_closed()
        self.logger.info("Broadcast hub stopped", extra={"event": "hub_stopped"})

    @property
    def port(self) -> Optional[int]:
        """Actual bound port, useful when listening on port 0."""

        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    # --- Fan-out ------------------------------------------------------------
    async def broadcast(self, topic: str, message: str) -> int:
        """Send ``message`` verbatim to every consumer of ``topic``.

        Returns the number of consumers the frame was written to. Failures on
        one consumer are logged and do not affect the others.
        """

        async with self._lock:
            targets = [
                (consumer_id, self._connections[consumer_id])
                for consumer_id in self._subscriptions.get(topic, ())
                if consumer_id in self._connections
            ]
            if not targets:
                return 0
            results = await asyncio.gather(
                *(connection.send(message) for _, connection in targets), return_exceptions=True
            )

        delivered = 0
        for (consumer_id, _), result in zip(targets, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                self.metrics.incr("hub_send_failures")
                self.logger.warning(
                    "Failed to forward %s to consumer %s: %s", topic, consumer_id, result,
                    extra={"event": "hub_send_failed", "topic": topic, "consumer_id": consumer_id},
                )
                continue
            delivered += 1
        self.metrics.incr("hub_messages_forwarded", delivered)
        return delivered

    # --- Observers ----------------------------------------------------------
    @property
    def consumer_count(self) -> int:
        return len(self._connections)

    def topics(self) -> Dict[str, int]:
        """Snapshot of topic -> number of subscribed consumers."""

        return {topic: len(ids) for topic, ids in self._subscriptions.items() if ids}

    # --- Connection handling -----------------------------------------------
    async def _handle_connection(self, websocket: Any) -> None:
        consumer_id = await self._register(websocket)
        try:
            async for raw in websocket:
                await self._handle_message(consumer_id, raw)
        except ConnectionClosed as exc:
            self.logger.debug(
                "Consumer %s closed abruptly: %s", consumer_id, exc,
                extra={"event": "hub_consumer_closed_abruptly", "consumer_id": consumer_id},
            )
        finally:
            await self._unregister(consumer_id)

    async def _register(self, websocket: Any) -> int:
        async with self._lock:
            consumer_id = next(self._ids)
            self._connections[consumer_id] = websocket
            count = len(self._connections)
        self.metrics.set_gauge("hub_consumers", count)
        self.logger.info(
            "Consumer %s connected from %s", consumer_id, getattr(websocket, "remote_address", None),
            extra={"event": "hub_consumer_connected", "consumer_id": consumer_id},
        )
        return consumer_id

    async def _unregister(self, consumer_id: int) -> None:
        async with self._lock:
            self._connections.pop(consumer_id, None)
            for topic in list(self._subscriptions):
                members = self._subscriptions[topic]
                members.discard(consumer_id)
                if not members:
                    del self._subscriptions[topic]
            count = len(self._connections)
        self.metrics.set_gauge("hub_consumers", count)
        self.logger.info(
            "Consumer %s disconnected", consumer_id,
            extra={"event": "hub_consumer_disconnected", "consumer_id": consumer_id},
        )

    async def _handle_message(self, consumer_id: int, raw: str | bytes) -> None:
        try:
            topic = parse_consumer_subscribe(raw)
        except MalformedMessageError as exc:
            self.metrics.incr("hub_malformed_messages")
            self.logger.warning(
                "Discarding malformed message from consumer %s: %s", consumer_id, exc.message,
                extra={"event": "hub_malformed_message", "consumer_id": consumer_id},
            )
            return
        if topic is None:
            self.logger.debug(
                "Ignoring message without subscribe field from consumer %s", consumer_id,
                extra={"event": "hub_message_ignored", "consumer_id": consumer_id},
            )
            return

        async with self._lock:
            if consumer_id not in self._connections:
                return
            self._subscriptions[topic].add(consumer_id)
        self.logger.info(
            "Consumer %s subscribed to %s", consumer_id, topic,
            extra={"event": "hub_subscribed", "consumer_id": consumer_id, "topic": topic},
        )


__all__ = ["BroadcastHub"]
