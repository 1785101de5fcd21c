"""Config loading utilities for the stream bridge and dashboard."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from deribit_stream.data.clients import DERIBIT_TESTNET
from deribit_stream.data.stream_client import ConnectionConfig

DEFAULT_STREAM = ConnectionConfig(host="test.deribit.com")


@dataclass
class CredentialsConfig:
    client_id: str = ""
    client_secret: str = ""
    scope: str = "trade:read_write"


@dataclass
class ExchangeConfig:
    rest_url: str = DERIBIT_TESTNET.rest_url
    stream: ConnectionConfig = DEFAULT_STREAM


@dataclass
class SubscriptionConfig:
    instrument: str = "BTC-PERPETUAL"
    cadence: str = "100ms"


@dataclass
class HubConfig:
    host: str = "0.0.0.0"
    port: int = 8765
    enable: bool = True


@dataclass
class DashboardConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    enable: bool = True


@dataclass
class AppConfig:
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    subscription: SubscriptionConfig = field(default_factory=SubscriptionConfig)
    hub: HubConfig = field(default_factory=HubConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)


def load_config(path: str | Path) -> AppConfig:
    """Load YAML configuration, defaulting every missing section."""

    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        logging.getLogger(__name__).warning("Config file %s not found, using defaults", resolved)
        raw: Dict[str, Any] = {}
    else:
        with resolved.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    return parse_config(raw)


def parse_config(raw: Dict[str, Any]) -> AppConfig:
    credentials = raw.get("credentials") or {}
    exchange = raw.get("exchange") or {}
    stream = exchange.get("stream") or {}
    subscription = raw.get("subscription") or {}
    hub = raw.get("hub") or {}
    dashboard = raw.get("dashboard") or {}

    read_timeout = stream.get("read_timeout", DEFAULT_STREAM.read_timeout)
    return AppConfig(
        credentials=CredentialsConfig(
            client_id=env_or_default("DERIBIT_CLIENT_ID", credentials.get("client_id", "")),
            client_secret=env_or_default("DERIBIT_CLIENT_SECRET", credentials.get("client_secret", "")),
            scope=credentials.get("scope", "trade:read_write"),
        ),
        exchange=ExchangeConfig(
            rest_url=exchange.get("rest_url", DERIBIT_TESTNET.rest_url),
            stream=ConnectionConfig(
                host=stream.get("host", DEFAULT_STREAM.host),
                port=int(stream.get("port", DEFAULT_STREAM.port)),
                path=stream.get("path", DEFAULT_STREAM.path),
                verify_ssl=bool(stream.get("verify_ssl", True)),
                connect_timeout=float(stream.get("connect_timeout", DEFAULT_STREAM.connect_timeout)),
                read_timeout=float(read_timeout) if read_timeout else None,
                secure=bool(stream.get("secure", True)),
            ),
        ),
        subscription=SubscriptionConfig(
            instrument=subscription.get("instrument", "BTC-PERPETUAL"),
            cadence=subscription.get("cadence", "100ms"),
        ),
        hub=HubConfig(
            host=hub.get("host", "0.0.0.0"),
            port=int(hub.get("port", 8765)),
            enable=bool(hub.get("enable", True)),
        ),
        dashboard=DashboardConfig(
            host=dashboard.get("host", "0.0.0.0"),
            port=int(dashboard.get("port", 8000)),
            enable=bool(dashboard.get("enable", True)),
        ),
    )


def env_or_default(key: str, default: str) -> str:
    return os.getenv(key) or default


__all__ = [
    "load_config",
    "parse_config",
    "AppConfig",
    "CredentialsConfig",
    "DashboardConfig",
    "ExchangeConfig",
    "HubConfig",
    "SubscriptionConfig",
]
