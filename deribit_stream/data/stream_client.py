"""Deribit WebSocket stream client.

:class:`StreamClient` owns exactly one outbound TLS WebSocket connection and
exposes connect/disconnect/send/receive plus its observable state. Every
operation runs under a single :class:`asyncio.Lock` so a send or receive never
overlaps a state transition. Failures are surfaced to the caller; the client
never reconnects on its own.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import socket
import ssl
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import websockets

from deribit_stream.data.clients import ConnectionState, FrameCallback
from deribit_stream.errors import (
    NotConnectedError,
    ReceiveError,
    SendError,
    StreamConnectionError,
)


@dataclass(frozen=True)
class ConnectionConfig:
    """Immutable connection parameters for a :class:`StreamClient`."""

    host: str
    port: int = 443
    path: str = "/ws/api/v2"
    verify_ssl: bool = True
    connect_timeout: float = 10.0
    read_timeout: Optional[float] = 30.0
    secure: bool = True

    @property
    def uri(self) -> str:
        scheme = "wss" if self.secure else "ws"
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        return f"{scheme}://{self.host}:{self.port}{path}"


def build_ssl_context(verify_ssl: bool) -> ssl.SSLContext:
    """Return a client TLS context; ``verify_ssl=False`` is for development only."""

    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    if not verify_ssl:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class StreamClient:
    """Single-connection WebSocket client with an explicit state machine."""

    def __init__(
        self,
        config: ConnectionConfig,
        ping_interval: Optional[float] = 20.0,
        max_size: Optional[int] = 2**22,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.ping_interval = ping_interval
        self.max_size = max_size
        self.logger = logger or logging.getLogger(__name__)
        self._ssl_context = build_ssl_context(config.verify_ssl) if config.secure else None

        self._lock = asyncio.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._last_error: Optional[str] = None
        self._websocket: Any = None

    async def __aenter__(self) -> "StreamClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    # --- Connection management --------------------------------------------
    async def connect(self) -> None:
        """Resolve, connect, and complete the TLS and WebSocket handshakes."""

        async with self._lock:
            if self._state is ConnectionState.CONNECTED:
                return
            self._state = ConnectionState.CONNECTING
            self._last_error = None
            try:
                self._websocket = await self._open()
            except asyncio.CancelledError:
                self._state = ConnectionState.DISCONNECTED
                raise
            except Exception as exc:
                self._state = ConnectionState.DISCONNECTED
                if isinstance(exc, asyncio.TimeoutError):
                    step = str(exc) or "connect timed out"
                    self._last_error = f"{step} (connect_timeout={self.config.connect_timeout:g}s)"
                else:
                    self._last_error = self._describe(exc)
                self.logger.error(
                    "Stream connection to %s failed: %s", self.config.uri, self._last_error,
                    extra={"event": "stream_connect_failed", "uri": self.config.uri},
                )
                raise StreamConnectionError(self._last_error, context={"uri": self.config.uri}) from exc

            self._state = ConnectionState.CONNECTED
            self.logger.info(
                "Stream connected to %s", self.config.uri,
                extra={"event": "stream_connected", "uri": self.config.uri},
            )

    async def disconnect(self) -> None:
        """Close gracefully when connected; always ends ``DISCONNECTED``."""

        async with self._lock:
            websocket, self._websocket = self._websocket, None
            if self._state is ConnectionState.CONNECTED and websocket is not None:
                try:
                    await websocket.close()
                except Exception as exc:
                    self._last_error = self._describe(exc)
                    self.logger.warning(
                        "Error while closing stream: %s", self._last_error,
                        extra={"event": "stream_close_failed", "uri": self.config.uri},
                    )
                else:
                    self.logger.info(
                        "Stream disconnected from %s", self.config.uri,
                        extra={"event": "stream_disconnected", "uri": self.config.uri},
                    )
            self._state = ConnectionState.DISCONNECTED

    async def reconnect(self) -> None:
        """Drop the current connection and open a fresh one.

        Never called internally; retry policy belongs to the caller.
        """

        await self.disconnect()
        await self.connect()

    # --- Communication ----------------------------------------------------
    async def send(self, message: str) -> None:
        """Write ``message`` as one text frame."""

        async with self._lock:
            websocket = self._require_connected("send")
            try:
                await websocket.send(message)
            except Exception as exc:
                self._last_error = self._describe(exc)
                self.logger.error("Send error: %s", self._last_error, extra={"event": "stream_send_failed"})
                raise SendError(self._last_error) from exc

    async def receive(self, callback: FrameCallback) -> None:
        """Wait for exactly one frame and pass its text to ``callback``."""

        async with self._lock:
            websocket = self._require_connected("receive")
            timeout = self.config.read_timeout
            try:
                if timeout:
                    frame = await asyncio.wait_for(websocket.recv(), timeout=timeout)
                else:
                    frame = await websocket.recv()
            except asyncio.TimeoutError as exc:
                self._last_error = f"read timed out after {timeout:g}s"
                self.logger.warning("Receive error: %s", self._last_error, extra={"event": "stream_read_timeout"})
                raise ReceiveError(self._last_error, timed_out=True) from exc
            except Exception as exc:
                self._last_error = self._describe(exc)
                self.logger.error("Receive error: %s", self._last_error, extra={"event": "stream_receive_failed"})
                raise ReceiveError(self._last_error) from exc

        payload = frame if isinstance(frame, str) else bytes(frame).decode("utf-8", errors="replace")
        result = callback(payload)
        if inspect.isawaitable(result):
            await result

    # --- State and status -------------------------------------------------
    def get_state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def get_last_error(self) -> Optional[str]:
        return self._last_error

    # --- Handshake --------------------------------------------------------
    async def _open(self) -> Any:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.connect_timeout

        infos = await asyncio.wait_for(
            loop.getaddrinfo(self.config.host, self.config.port, type=socket.SOCK_STREAM),
            timeout=self._remaining(deadline, "resolving"),
        )
        sock = await self._connect_tcp(infos, deadline)

        options: dict = {
            "sock": sock,
            "proxy": None,
            "open_timeout": self._remaining(deadline, "handshaking"),
            "ping_interval": self.ping_interval,
            "max_size": self.max_size,
        }
        if self.config.secure:
            options["ssl"] = self._ssl_context
            options["server_hostname"] = self.config.host
        try:
            return await websockets.connect(self.config.uri, **options)
        except BaseException:
            sock.close()
            raise

    async def _connect_tcp(self, infos: List[Tuple[Any, ...]], deadline: float) -> socket.socket:
        """Try each resolved address until one accepts within the deadline."""

        loop = asyncio.get_running_loop()
        if not infos:
            raise OSError(f"no addresses found for {self.config.host}:{self.config.port}")

        last_exc: Optional[BaseException] = None
        for family, sock_type, proto, _canonname, address in infos:
            sock = socket.socket(family, sock_type, proto)
            sock.setblocking(False)
            try:
                await asyncio.wait_for(
                    loop.sock_connect(sock, address), timeout=self._remaining(deadline, "connecting")
                )
            except (OSError, asyncio.TimeoutError) as exc:
                sock.close()
                last_exc = exc
                if isinstance(exc, asyncio.TimeoutError):
                    break
                continue
            except BaseException:
                sock.close()
                raise
            return sock
        raise last_exc

    def _remaining(self, deadline: float, step: str) -> float:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise asyncio.TimeoutError(f"connect timed out while {step}")
        return remaining

    def _require_connected(self, operation: str) -> Any:
        if self._state is not ConnectionState.CONNECTED or self._websocket is None:
            raise NotConnectedError(
                f"cannot {operation}: stream is {self._state.value}", context={"state": self._state.value}
            )
        return self._websocket

    def _describe(self, exc: BaseException) -> str:
        detail = str(exc)
        return f"{type(exc).__name__}: {detail}" if detail else type(exc).__name__


__all__ = ["ConnectionConfig", "ConnectionState", "StreamClient", "build_ssl_context"]
