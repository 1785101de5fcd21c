"""FastAPI status endpoints for the stream bridge."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from deribit_stream.data.broadcast_hub import BroadcastHub
from deribit_stream.data.clients import StreamTransport
from deribit_stream.infra.config import DashboardConfig
from deribit_stream.infra.metrics import MetricsSink


@dataclass
class DashboardState:
    """Live objects the dashboard reports on."""

    stream: StreamTransport
    metrics: MetricsSink
    hub: Optional[BroadcastHub] = None
    topic: Optional[str] = None


def create_dashboard_app(state: DashboardState) -> FastAPI:
    app = FastAPI(title="Deribit Stream Bridge", version="0.1.0")

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "stream_state": state.stream.get_state().value,
            "last_error": state.stream.get_last_error(),
            "topic": state.topic,
            "consumers": state.hub.consumer_count if state.hub else 0,
        }

    @app.get("/topics")
    async def topics() -> Dict[str, Any]:
        return {"topics": state.hub.topics() if state.hub else {}}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics() -> str:
        return state.metrics.render_prometheus()

    return app


async def run_dashboard(config: DashboardConfig, state: DashboardState) -> None:
    """Serve the dashboard until cancelled, if enabled."""

    if not config.enable:
        return

    import uvicorn

    app = create_dashboard_app(state)
    server = uvicorn.Server(uvicorn.Config(app, host=config.host, port=config.port, log_level="info"))
    await server.serve()


__all__ = ["create_dashboard_app", "run_dashboard", "DashboardState"]
