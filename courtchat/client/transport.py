"""Wire transports for the realtime connection."""

import asyncio
import json
import logging
from typing import Any, Protocol
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from courtchat.core.exceptions import ErrorCode, TransportError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """A bidirectional frame channel. Every failure surfaces as TransportError."""

    async def open(self, url: str, token: str) -> None: ...

    async def send(self, frame: dict[str, Any]) -> None: ...

    async def receive(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


class WebSocketTransport:
    """JSON frames over a websocket, authenticated with a ``token`` query parameter."""

    def __init__(self, open_timeout: float = 10.0):
        self._open_timeout = open_timeout
        self._ws = None

    async def open(self, url: str, token: str) -> None:
        separator = "&" if "?" in url else "?"
        target = f"{url}{separator}{urlencode({'token': token})}"
        try:
            self._ws = await websockets.connect(target, open_timeout=self._open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise TransportError(
                f"Could not connect to {url}: {exc}",
                code=ErrorCode.TRANSPORT_DISCONNECTED,
            ) from exc

    async def send(self, frame: dict[str, Any]) -> None:
        if self._ws is None:
            raise TransportError("Socket is not open", code=ErrorCode.TRANSPORT_DISCONNECTED)
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as exc:
            raise TransportError("Socket closed", code=ErrorCode.TRANSPORT_DISCONNECTED) from exc

    async def receive(self) -> dict[str, Any]:
        if self._ws is None:
            raise TransportError("Socket is not open", code=ErrorCode.TRANSPORT_DISCONNECTED)
        while True:
            try:
                raw = await self._ws.recv()
            except ConnectionClosed as exc:
                raise TransportError("Socket closed", code=ErrorCode.TRANSPORT_DISCONNECTED) from exc
            try:
                frame = json.loads(raw)
            except ValueError:
                logger.warning("Skipping non-JSON frame")
                continue
            if isinstance(frame, dict):
                return frame
            logger.warning("Skipping frame that is not an object")

    async def close(self) -> None:
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()
