"""Socket.IO adapter and relay wiring, with the network client mocked out."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from config.settings import SquadronSettings
from core.context import SquadronContext
from core.event_bus import EventBus
from core.events.topics import SquadronEvent
from modules.formation.store import InMemoryDocumentStore
from multiplayer.ownership import InMemorySessionRegistry
from multiplayer.relay import create_relay
from multiplayer.socket_transport import DEFAULT_CHANNEL, SocketIOTransport


@pytest.fixture
def client():
    client = MagicMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.emit = AsyncMock()
    return client


@pytest.fixture
def bus_and_transport(client):
    bus = EventBus()
    transport = SocketIOTransport(client)
    transport.attach(bus)
    return bus, transport


def test_attach_listens_on_the_squadron_channel(client, bus_and_transport):
    bus, transport = bus_and_transport
    assert bus.transport is transport
    client.on.assert_called_once_with(DEFAULT_CHANNEL, transport._on_message)


@pytest.mark.asyncio
async def test_connect_authenticates_with_session_id(client, bus_and_transport):
    _, transport = bus_and_transport
    await transport.connect("http://relay:8000", "gm-1")
    client.connect.assert_awaited_once_with("http://relay:8000", auth={"session_id": "gm-1"})
    await transport.disconnect()
    client.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_publish_is_emitted_on_the_channel(client, bus_and_transport):
    bus, _ = bus_and_transport
    await bus.publish(SquadronEvent.REMOVE_FOLLOWER, {"leaderId": "L"})
    client.emit.assert_awaited_once_with(
        DEFAULT_CHANNEL, {"event": "sq-remove-follower", "data": [{"leaderId": "L"}]}
    )


@pytest.mark.asyncio
async def test_incoming_messages_are_dispatched_locally(client, bus_and_transport):
    bus, transport = bus_and_transport
    received = []
    bus.subscribe(SquadronEvent.REMOVE_FOLLOWER, received.append)

    await transport._on_message({"event": "sq-remove-follower", "data": [{"leaderId": "L"}]})

    assert received == [{"leaderId": "L"}]
    client.emit.assert_not_awaited()


def test_relay_registers_the_channel_handler():
    sio = create_relay("custom.channel")
    assert "custom.channel" in sio.handlers["/"]
    assert "connect" in sio.handlers["/"]


@pytest.mark.asyncio
async def test_context_joins_the_configured_channel(client):
    context = SquadronContext(
        "gm-1",
        InMemoryDocumentStore(),
        InMemorySessionRegistry(),
        settings=SquadronSettings(channel="table.42"),
    )
    transport = await context.connect_relay("http://relay:8000", client)

    assert transport.channel == "table.42"
    assert context.bus.transport is transport
    client.on.assert_called_once_with("table.42", transport._on_message)
    client.connect.assert_awaited_once_with("http://relay:8000", auth={"session_id": "gm-1"})

    await context.bus.publish(SquadronEvent.REMOVE_LEADER, {"leaderId": "L"})
    assert client.emit.await_args.args[0] == "table.42"
