"""Operator loop wiring the Deribit stream to the local broadcast hub."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from deribit_stream.data.clients import StreamTransport, TopicPublisher
from deribit_stream.data.websocket import BookSubscription, extract_channel
from deribit_stream.errors import NotConnectedError, ReceiveError, SendError, StreamConnectionError
from deribit_stream.infra.metrics import MetricsSink


class BookStreamOrchestrator:
    """Connect, subscribe, then pump frames from the stream into the hub.

    The receive loop runs as its own task. :meth:`stop` is cooperative: the
    flag is checked between ``receive`` calls, so a pending receive finishes or
    times out on its own before the loop exits.
    """

    def __init__(
        self,
        transport: StreamTransport,
        subscription: BookSubscription,
        publisher: Optional[TopicPublisher] = None,
        metrics: Optional[MetricsSink] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.transport = transport
        self.subscription = subscription
        self.publisher = publisher
        self.metrics = metrics or MetricsSink()
        self.logger = logger or logging.getLogger(__name__)

        self.stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Launch the receive loop on its own task."""

        if self._task is None or self._task.done():
            self.stop_event.clear()
            self._task = asyncio.create_task(self.run(), name="deribit-book-stream")
        return self._task

    async def stop(self) -> None:
        """Signal the loop, wait for it to finish, then disconnect."""

        self.stop_event.set()
        try:
            if self._task is not None:
                await self._task
        finally:
            self._task = None
            await self.transport.disconnect()

    async def run(self) -> bool:
        """Run until stopped or the stream fails. Returns False if it never connected."""

        topic = self.subscription.topic()
        try:
            await self.transport.connect()
            await self.transport.send(self.subscription.subscribe_request())
        except (StreamConnectionError, SendError) as exc:
            self.metrics.incr("stream_connect_failures")
            self.logger.error(
                "Could not start book stream for %s: %s", topic, exc,
                extra={"event": "stream_start_failed", "topic": topic},
            )
            await self.transport.disconnect()
            return False

        self.logger.info("Subscribed to %s", topic, extra={"event": "stream_subscribed", "topic": topic})
        while not self.stop_event.is_set():
            try:
                await self.transport.receive(self._on_frame)
            except ReceiveError as exc:
                self.metrics.incr("stream_receive_errors")
                if exc.timed_out:
                    continue
                self.logger.error(
                    "Book stream for %s failed: %s", topic, exc,
                    extra={"event": "stream_failed", "topic": topic},
                )
                await self.transport.disconnect()
                break
            except NotConnectedError:
                break
            except Exception:
                self.metrics.incr("stream_loop_failures")
                self.logger.exception(
                    "Book stream loop for %s crashed", topic,
                    extra={"event": "stream_loop_failed", "topic": topic},
                )
                await self.transport.disconnect()
                break
        return True

    async def _on_frame(self, payload: str) -> None:
        self.metrics.incr("stream_frames_received")
        channel = extract_channel(payload)
        if channel is None:
            self.logger.debug("Stream message: %s", payload[:512], extra={"event": "stream_message"})
            return
        if self.publisher is None:
            return
        delivered = await self.publisher.broadcast(channel, payload)
        self.logger.debug(
            "Forwarded %s update to %s consumers", channel, delivered,
            extra={"event": "stream_forwarded", "topic": channel, "consumers": delivered},
        )


__all__ = ["BookStreamOrchestrator"]
