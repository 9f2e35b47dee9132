"""
Socket.IO transport for the squadron event bus.

Every client connects to a relay (see :mod:`multiplayer.relay`) and talks on
a single channel.  Outgoing messages are emitted as-is; incoming messages are
handed to :meth:`EventBus.receive`.
"""

import logging
from typing import Any, Dict, Optional

import socketio

from core.event_bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "module.squadron"


class SocketIOTransport:
    """Binds an :class:`EventBus` to a ``socketio.AsyncClient``"""

    def __init__(self, client: Optional[socketio.AsyncClient] = None, channel: str = DEFAULT_CHANNEL):
        self.client = client or socketio.AsyncClient()
        self.channel = channel
        self.bus: Optional[EventBus] = None

    def attach(self, bus: EventBus) -> None:
        """Route ``bus`` broadcasts through this transport and feed it peer messages"""
        self.bus = bus
        bus.transport = self
        self.client.on(self.channel, self._on_message)

    async def connect(self, url: str, session_id: str, **kwargs: Any) -> None:
        await self.client.connect(url, auth={"session_id": session_id}, **kwargs)
        logger.info(f"Connected to squadron relay {url} as {session_id}")

    async def disconnect(self) -> None:
        await self.client.disconnect()

    async def broadcast(self, message: Dict[str, Any]) -> None:
        await self.client.emit(self.channel, message)

    async def _on_message(self, message: Dict[str, Any]) -> None:
        if self.bus is None:
            logger.warning(f"Dropping {message.get('event')}: no event bus attached")
            return
        result = await self.bus.receive(message)
        if not result.ok:
            logger.warning(f"{len(result.failures)} handler(s) failed for {result.event}")
