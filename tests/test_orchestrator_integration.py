import asyncio
import inspect
import json
import unittest

import websockets

from deribit_stream.data.broadcast_hub import BroadcastHub
from deribit_stream.data.clients import ConnectionState
from deribit_stream.data.stream_client import ConnectionConfig, StreamClient
from deribit_stream.data.websocket import BookSubscription
from deribit_stream.errors import NotConnectedError, ReceiveError, StreamConnectionError
from deribit_stream.execution.orchestrator import BookStreamOrchestrator
from deribit_stream.infra.metrics import MetricsSink

TOPIC = "book.BTC-PERPETUAL.100ms"


def notification(channel: str, change_id: int) -> str:
    return json.dumps(
        {
            "jsonrpc": "2.0",
            "method": "subscription",
            "params": {"channel": channel, "data": {"change_id": change_id, "bids": [], "asks": []}},
        }
    )


SUBSCRIBE_ACK = json.dumps({"jsonrpc": "2.0", "id": 1, "result": [TOPIC]})


class ScriptedTransport:
    """In-memory stream transport that replays a list of frames."""

    def __init__(self, frames=(), connect_error: Exception | None = None) -> None:
        self.frames = list(frames)
        self.connect_error = connect_error
        self.sent = []
        self.state = ConnectionState.DISCONNECTED
        self.disconnects = 0

    async def connect(self) -> None:
        if self.connect_error:
            raise self.connect_error
        self.state = ConnectionState.CONNECTED

    async def disconnect(self) -> None:
        self.disconnects += 1
        self.state = ConnectionState.DISCONNECTED

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def receive(self, callback) -> None:
        if self.state is not ConnectionState.CONNECTED:
            raise NotConnectedError("not connected")
        if not self.frames:
            await asyncio.sleep(0.01)
            raise ReceiveError("read timed out", timed_out=True)
        frame = self.frames.pop(0)
        if isinstance(frame, Exception):
            raise frame
        result = callback(frame)
        if inspect.isawaitable(result):
            await result

    def get_state(self) -> ConnectionState:
        return self.state

    def get_last_error(self):
        return None


class RecordingPublisher:
    def __init__(self) -> None:
        self.published = []

    async def broadcast(self, topic: str, message: str) -> int:
        self.published.append((topic, message))
        return 1


class FailingPublisher:
    async def broadcast(self, topic: str, message: str) -> int:
        raise RuntimeError("publisher unavailable")


async def wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class OrchestratorTest(unittest.IsolatedAsyncioTestCase):
    async def test_forwards_notifications_by_channel(self) -> None:
        frames = [SUBSCRIBE_ACK, notification(TOPIC, 1), notification("book.ETH-PERPETUAL.100ms", 2)]
        transport = ScriptedTransport(frames)
        publisher = RecordingPublisher()
        metrics = MetricsSink()
        orchestrator = BookStreamOrchestrator(
            transport, BookSubscription("BTC-PERPETUAL"), publisher=publisher, metrics=metrics
        )

        orchestrator.start()
        await wait_for(lambda: not transport.frames)
        await orchestrator.stop()

        self.assertEqual("public/subscribe", json.loads(transport.sent[0])["method"])
        self.assertEqual([TOPIC], json.loads(transport.sent[0])["params"]["channels"])
        self.assertEqual(
            [(TOPIC, frames[1]), ("book.ETH-PERPETUAL.100ms", frames[2])],
            publisher.published,
        )
        self.assertEqual(3, metrics.export()["stream_frames_received"])

    async def test_stop_waits_for_loop_then_disconnects(self) -> None:
        transport = ScriptedTransport()
        orchestrator = BookStreamOrchestrator(transport, BookSubscription("BTC-PERPETUAL"))

        task = orchestrator.start()
        await wait_for(lambda: transport.state is ConnectionState.CONNECTED)
        self.assertTrue(orchestrator.running)

        await orchestrator.stop()

        self.assertTrue(task.done())
        self.assertFalse(orchestrator.running)
        self.assertEqual(ConnectionState.DISCONNECTED, transport.get_state())
        self.assertGreaterEqual(transport.disconnects, 1)

    async def test_connect_failure_is_reported_not_raised(self) -> None:
        transport = ScriptedTransport(connect_error=StreamConnectionError("refused"))
        publisher = RecordingPublisher()
        metrics = MetricsSink()
        orchestrator = BookStreamOrchestrator(
            transport, BookSubscription("BTC-PERPETUAL"), publisher=publisher, metrics=metrics
        )

        started = await orchestrator.run()

        self.assertFalse(started)
        self.assertEqual([], transport.sent)
        self.assertEqual([], publisher.published)
        self.assertEqual(1, metrics.export()["stream_connect_failures"])

    async def test_transport_failure_ends_loop_and_disconnects(self) -> None:
        transport = ScriptedTransport([notification(TOPIC, 1), ReceiveError("connection reset")])
        publisher = RecordingPublisher()
        orchestrator = BookStreamOrchestrator(transport, BookSubscription("BTC-PERPETUAL"), publisher=publisher)

        started = await asyncio.wait_for(orchestrator.run(), timeout=2.0)

        self.assertTrue(started)
        self.assertEqual(1, len(publisher.published))
        self.assertEqual(ConnectionState.DISCONNECTED, transport.get_state())

    async def test_publisher_failure_ends_loop_and_stop_still_disconnects(self) -> None:
        transport = ScriptedTransport([notification(TOPIC, 1), notification(TOPIC, 2)])
        metrics = MetricsSink()
        orchestrator = BookStreamOrchestrator(
            transport, BookSubscription("BTC-PERPETUAL"), publisher=FailingPublisher(), metrics=metrics
        )

        with self.assertLogs("deribit_stream.execution.orchestrator", level="ERROR") as logs:
            task = orchestrator.start()
            await asyncio.wait_for(task, timeout=2.0)

        self.assertTrue(task.result())
        self.assertFalse(orchestrator.running)
        self.assertEqual(1, metrics.export()["stream_loop_failures"])
        self.assertEqual([notification(TOPIC, 2)], transport.frames)
        self.assertEqual("publisher unavailable", str(logs.records[0].exc_info[1]))

        transport.state = ConnectionState.CONNECTED
        await orchestrator.stop()
        self.assertEqual(ConnectionState.DISCONNECTED, transport.get_state())

    async def test_stop_disconnects_even_if_loop_task_raised(self) -> None:
        transport = ScriptedTransport()
        orchestrator = BookStreamOrchestrator(transport, BookSubscription("BTC-PERPETUAL"))

        async def crash() -> bool:
            await transport.connect()
            raise RuntimeError("loop crashed")

        orchestrator._task = asyncio.create_task(crash())
        await asyncio.sleep(0)

        with self.assertRaises(RuntimeError):
            await orchestrator.stop()

        self.assertEqual(ConnectionState.DISCONNECTED, transport.get_state())
        self.assertFalse(orchestrator.running)


class StreamToHubEndToEndTest(unittest.IsolatedAsyncioTestCase):
    async def test_exchange_updates_reach_hub_consumers(self) -> None:
        async def exchange(websocket) -> None:
            request = json.loads(await websocket.recv())
            channel = request["params"]["channels"][0]
            await websocket.send(json.dumps({"jsonrpc": "2.0", "id": request["id"], "result": [channel]}))
            await consumer_ready.wait()
            for change_id in range(3):
                await websocket.send(notification(channel, change_id))
            await websocket.wait_closed()

        consumer_ready = asyncio.Event()
        exchange_server = await websockets.serve(exchange, "127.0.0.1", 0)
        exchange_port = exchange_server.sockets[0].getsockname()[1]
        hub = BroadcastHub(host="127.0.0.1", port=0)
        await hub.start()

        consumer = await websockets.connect(f"ws://127.0.0.1:{hub.port}")
        other = await websockets.connect(f"ws://127.0.0.1:{hub.port}")
        client = StreamClient(ConnectionConfig("127.0.0.1", exchange_port, "/ws/api/v2", secure=False, read_timeout=0.2))
        orchestrator = BookStreamOrchestrator(client, BookSubscription("BTC-PERPETUAL", "100ms"), publisher=hub)
        try:
            await consumer.send(json.dumps({"subscribe": TOPIC}))
            await other.send(json.dumps({"subscribe": "book.ETH-PERPETUAL.100ms"}))
            await wait_for(lambda: len(hub.topics()) == 2)
            orchestrator.start()
            consumer_ready.set()

            received = [json.loads(await asyncio.wait_for(consumer.recv(), timeout=2.0)) for _ in range(3)]
            self.assertEqual([0, 1, 2], [frame["params"]["data"]["change_id"] for frame in received])
            with self.assertRaises(asyncio.TimeoutError):
                await asyncio.wait_for(other.recv(), timeout=0.2)
        finally:
            await orchestrator.stop()
            await consumer.close()
            await other.close()
            await hub.stop()
            exchange_server.close()
            await exchange_server.wait_closed()

        self.assertEqual(ConnectionState.DISCONNECTED, client.get_state())


if __name__ == "__main__":
    unittest.main()
