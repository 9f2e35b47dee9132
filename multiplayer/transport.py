"""
In-process broadcast channel connecting several event buses.

Used to run several peer clients inside one process (simulations, tests).
Delivery is sequential and in connection order, which keeps runs
reproducible; real deployments use the socket.io transport instead.
"""

import logging
from typing import Any, Dict, List

from core.event_bus import EventBus

logger = logging.getLogger(__name__)


class LocalNetwork:
    """Hub that relays every broadcast to all the other connected buses"""

    def __init__(self):
        self.buses: List[EventBus] = []
        self.sent: List[Dict[str, Any]] = []

    def connect(self, bus: EventBus) -> "LocalTransport":
        transport = LocalTransport(self, bus)
        bus.transport = transport
        self.buses.append(bus)
        return transport

    def disconnect(self, bus: EventBus) -> None:
        if bus in self.buses:
            self.buses.remove(bus)
            bus.transport = None

    async def deliver(self, message: Dict[str, Any], sender: EventBus) -> None:
        self.sent.append(message)
        for bus in list(self.buses):
            if bus is sender:
                continue
            # Failures stay on the receiving peer, as they would remotely.
            try:
                await bus.receive(message)
            except Exception as e:
                logger.error(f"Peer failed to process {message.get('event')}: {e}")


class LocalTransport:
    """Transport bound to one bus of a :class:`LocalNetwork`"""

    def __init__(self, network: LocalNetwork, bus: EventBus):
        self.network = network
        self.bus = bus

    async def broadcast(self, message: Dict[str, Any]) -> None:
        await self.network.deliver(message, self.bus)
