import json
import unittest

from deribit_stream.data.websocket import (
    BookSubscription,
    book_topic,
    build_subscribe_request,
    extract_channel,
    parse_consumer_subscribe,
)
from deribit_stream.errors import MalformedMessageError


class SubscribeCommandTest(unittest.TestCase):
    def test_topic_format(self) -> None:
        self.assertEqual("book.ETH-PERPETUAL.100ms", book_topic("ETH-PERPETUAL", "100ms"))
        self.assertEqual("book.BTC-PERPETUAL.raw", BookSubscription("BTC-PERPETUAL", "raw").topic())

    def test_subscribe_request_envelope(self) -> None:
        request = json.loads(BookSubscription("ETH-PERPETUAL", "100ms").subscribe_request(request_id=7))
        self.assertEqual(
            {
                "jsonrpc": "2.0",
                "method": "public/subscribe",
                "id": 7,
                "params": {"channels": ["book.ETH-PERPETUAL.100ms"]},
            },
            request,
        )

    def test_subscribe_topic_matches_consumer_topic(self) -> None:
        subscription = BookSubscription("ETH-PERPETUAL", "100ms")
        upstream = json.loads(subscription.subscribe_request())["params"]["channels"][0]
        consumer = parse_consumer_subscribe(json.dumps({"subscribe": "book.ETH-PERPETUAL.100ms"}))
        self.assertEqual(upstream, consumer)

    def test_request_ids_increase_when_not_given(self) -> None:
        first = json.loads(build_subscribe_request(["a"]))["id"]
        second = json.loads(build_subscribe_request(["b"]))["id"]
        self.assertGreater(second, first)

    def test_subscribe_requires_a_channel(self) -> None:
        with self.assertRaises(ValueError):
            build_subscribe_request([])


class ExtractChannelTest(unittest.TestCase):
    def test_notification_channel(self) -> None:
        frame = json.dumps(
            {
                "jsonrpc": "2.0",
                "method": "subscription",
                "params": {"channel": "book.BTC-PERPETUAL.100ms", "data": {"bids": [], "asks": []}},
            }
        )
        self.assertEqual("book.BTC-PERPETUAL.100ms", extract_channel(frame))

    def test_non_notifications_have_no_channel(self) -> None:
        for frame in (
            json.dumps({"jsonrpc": "2.0", "id": 1, "result": ["book.BTC-PERPETUAL.100ms"]}),
            json.dumps({"method": "subscription", "params": "oops"}),
            json.dumps({"method": "heartbeat", "params": {"type": "test_request"}}),
            "not json",
            "[]",
        ):
            self.assertIsNone(extract_channel(frame), frame)


class ConsumerSubscribeTest(unittest.TestCase):
    def test_valid_subscribe(self) -> None:
        self.assertEqual("book.BTC-PERPETUAL.100ms", parse_consumer_subscribe('{"subscribe": "book.BTC-PERPETUAL.100ms"}'))
        self.assertEqual("t", parse_consumer_subscribe(b'{"subscribe": "t"}'))

    def test_object_without_subscribe_is_ignored(self) -> None:
        self.assertIsNone(parse_consumer_subscribe('{"hello": "world"}'))

    def test_malformed_payloads(self) -> None:
        for raw in ("{", "42", '["subscribe"]', '{"subscribe": 1}', '{"subscribe": ""}'):
            with self.assertRaises(MalformedMessageError, msg=raw):
                parse_consumer_subscribe(raw)

    def test_malformed_error_is_value_error(self) -> None:
        with self.assertRaises(ValueError):
            parse_consumer_subscribe("nope")


if __name__ == "__main__":
    unittest.main()
