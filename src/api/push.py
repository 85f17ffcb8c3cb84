# push channel transport: one websocket, JSON frames {"event": ..., "data": ...}
from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from core.channel import CONNECTION_DROPPED
from core.errors import ChannelDropped
from utils import config
from utils.logger import get_logger

_logger = get_logger(__name__)

Handler = Callable[[Any], Awaitable[None]]


class WebSocketPushTransport:
    """
    Dispatches incoming frames to handlers registered with ``on``.

    A dropped connection is logged, reported to the ``CONNECTION_DROPPED``
    handler and left closed; reconnecting is up to whoever owns the
    transport.
    """

    def __init__(
        self,
        url: str = config.PUSH_URL,
        token: Optional[Callable[[], Optional[str]]] = None,
    ) -> None:
        self._url = url
        # read on every connect so a re-login reconnects with the new token
        self._token = token
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._connecting: Optional[asyncio.Task] = None
        self._handlers: Dict[str, Handler] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        """Open the socket. Concurrent callers share one attempt; a
        ``disconnect`` during the attempt aborts it with ``ChannelDropped``."""
        if self.connected:
            return
        if self._connecting is None or self._connecting.done():
            self._connecting = asyncio.ensure_future(self._open())
        attempt = self._connecting
        try:
            await asyncio.shield(attempt)
        except asyncio.CancelledError:
            if not attempt.cancelled():
                # the caller itself is being cancelled
                raise
            raise ChannelDropped("Push channel connect was aborted.") from None
        finally:
            if self._connecting is attempt and attempt.done():
                self._connecting = None

    async def _open(self) -> None:
        token = self._token() if self._token is not None else None
        headers = {"Authorization": f"Bearer {token}"} if token else None
        http = aiohttp.ClientSession(headers=headers)
        try:
            ws = await http.ws_connect(self._url, heartbeat=25.0)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await http.close()
            raise ChannelDropped(f"Could not open push channel: {e}") from e
        except asyncio.CancelledError:
            await http.close()
            raise
        self._http = http
        self._ws = ws
        self._reader = asyncio.create_task(self._read_loop(ws), name="push-reader")
        _logger.info(f"push channel connected to {self._url}")

    async def join_room(self, user_id: str) -> None:
        await self.emit("buyer-join", user_id)

    async def emit(self, event: str, data: Any) -> None:
        if not self.connected:
            raise ChannelDropped("Push channel is not connected.")
        await self._ws.send_json({"event": event, "data": data})

    def on(self, event: str, handler: Handler) -> None:
        self._handlers[event] = handler

    def off(self, event: str) -> None:
        self._handlers.pop(event, None)

    async def disconnect(self) -> None:
        if self._connecting is not None and not self._connecting.done():
            self._connecting.cancel()
        self._connecting = None
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._http is not None:
            await self._http.close()
            self._http = None

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self._dispatch(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                _logger.warning(f"push channel error: {ws.exception()!r}")
                break
        _logger.warning("push channel dropped")
        await self._deliver(CONNECTION_DROPPED, None)

    async def _dispatch(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            _logger.warning("ignoring malformed push frame")
            return
        if not isinstance(frame, dict):
            return
        await self._deliver(frame.get("event"), frame.get("data"))

    async def _deliver(self, event: Optional[str], data: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            return
        try:
            await handler(data)
        except Exception:
            # a broken handler must not kill the read loop
            _logger.exception(f"handler for {event!r} failed")
