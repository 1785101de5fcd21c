"""Process entry point: authenticate, stream Deribit books, and serve the hub."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys

from deribit_stream.dashboard.app import DashboardState, run_dashboard
from deribit_stream.data.broadcast_hub import BroadcastHub
from deribit_stream.data.clients import DERIBIT_TESTNET, VenueEndpoint
from deribit_stream.data.deribit_client import DeribitClient
from deribit_stream.data.stream_client import StreamClient
from deribit_stream.data.websocket import BookSubscription
from deribit_stream.errors import AuthenticationError
from deribit_stream.execution.orchestrator import BookStreamOrchestrator
from deribit_stream.infra.config import AppConfig, load_config
from deribit_stream.infra.logging import configure_logging
from deribit_stream.infra.metrics import MetricsSink

DEFAULT_CONFIG_PATH = os.getenv("CONFIG_PATH", "config/settings.yaml")


def build_rest_client(cfg: AppConfig) -> DeribitClient:
    endpoint = VenueEndpoint(
        name=DERIBIT_TESTNET.name,
        rest_url=cfg.exchange.rest_url,
        websocket_url=cfg.exchange.stream.uri,
    )
    return DeribitClient(
        client_id=cfg.credentials.client_id,
        client_secret=cfg.credentials.client_secret,
        endpoint=endpoint,
        scope=cfg.credentials.scope,
    )


async def run_bridge(config_path: str) -> int:
    configure_logging()
    cfg = load_config(config_path)
    logger = logging.getLogger("deribit_stream.app")

    rest = build_rest_client(cfg)
    try:
        await asyncio.to_thread(rest.authenticate)
    except AuthenticationError as exc:
        logger.critical("Authentication failed: %s", exc, extra={"event": "auth_failed", "code": exc.code})
        return 1

    metrics = MetricsSink()
    hub = BroadcastHub(cfg.hub.host, cfg.hub.port, metrics=metrics, logger=logger.getChild("hub"))
    stream = StreamClient(cfg.exchange.stream, logger=logger.getChild("stream"))
    subscription = BookSubscription(cfg.subscription.instrument, cfg.subscription.cadence)
    orchestrator = BookStreamOrchestrator(
        stream,
        subscription,
        publisher=hub if cfg.hub.enable else None,
        metrics=metrics,
        logger=logger.getChild("orchestrator"),
    )

    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            asyncio.get_running_loop().add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows/limited environments
            pass

    if cfg.hub.enable:
        await hub.start()
    orchestrator.start()
    state = DashboardState(stream=stream, metrics=metrics, hub=hub if cfg.hub.enable else None, topic=subscription.topic())
    dashboard = asyncio.create_task(run_dashboard(cfg.dashboard, state))

    await stop_event.wait()
    logger.info("Shutting down", extra={"event": "shutdown"})
    try:
        await orchestrator.stop()
    finally:
        dashboard.cancel()
        await asyncio.gather(dashboard, return_exceptions=True)
        await hub.stop()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Deribit order book stream bridge")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH)
    args = parser.parse_args()
    sys.exit(asyncio.run(run_bridge(args.config)))


if __name__ == "__main__":
    main()
