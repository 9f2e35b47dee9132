from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from core.event_bus import EventBus, WireMessage
from core.events.topics import SquadronEvent
from multiplayer.models import UnlinkPayload
from multiplayer.transport import LocalNetwork


@pytest.mark.asyncio
async def test_publish_broadcasts_then_loops_back():
    transport = AsyncMock()
    bus = EventBus(transport)
    received = []
    bus.subscribe(SquadronEvent.REMOVE_LEADER, lambda data: received.append(data))

    payload = UnlinkPayload(leader_id="L", follower_id="F", scene_id="s")
    result = await bus.publish(SquadronEvent.REMOVE_LEADER, payload)

    wire = {"leaderId": "L", "followerId": "F", "sceneId": "s"}
    transport.broadcast.assert_awaited_once_with({"event": "sq-remove-leader", "data": [wire]})
    assert received == [wire]
    assert result.handled == 1 and result.ok


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_the_others():
    bus = EventBus()
    calls = []

    def boom(*_):
        raise RuntimeError("boom")

    async def second(value):
        calls.append(value)

    bus.subscribe("topic", boom)
    bus.subscribe("topic", second)
    result = await bus.publish("topic", 7)

    assert calls == [7]
    assert result.handled == 1
    assert [type(f.error) for f in result.failures] == [RuntimeError]
    assert result.failures[0].handler is boom


@pytest.mark.asyncio
async def test_failures_can_propagate():
    bus = EventBus(propagate_handler_errors=True)
    bus.subscribe("topic", lambda: 1 / 0)
    with pytest.raises(ZeroDivisionError):
        await bus.publish("topic")


@pytest.mark.asyncio
async def test_once_handler_runs_a_single_time():
    bus = EventBus()
    calls = []
    bus.once("topic", lambda: calls.append(1))
    await bus.publish("topic")
    await bus.publish("topic")
    assert calls == [1]
    assert bus.get_subscribers("topic") == ()


@pytest.mark.asyncio
async def test_subscription_added_during_dispatch_waits_for_next_message():
    bus = EventBus()
    calls = []

    def late():
        calls.append("late")

    def first():
        calls.append("first")
        bus.subscribe("topic", late)

    bus.subscribe("topic", first)
    await bus.publish("topic")
    assert calls == ["first"]
    await bus.publish("topic")
    assert calls == ["first", "first", "late"]


def test_duplicate_subscription_is_ignored():
    bus = EventBus()
    handler = lambda: None  # noqa: E731
    bus.subscribe("topic", handler)
    bus.subscribe("topic", handler)
    assert bus.get_subscribers("topic") == (handler,)
    bus.unsubscribe("topic", handler)
    assert bus.get_subscribers("topic") == ()


@pytest.mark.asyncio
async def test_receive_rejects_malformed_messages():
    bus = EventBus()
    with pytest.raises(ValidationError):
        await bus.receive({"data": []})


@pytest.mark.asyncio
async def test_local_network_delivers_to_every_other_peer():
    network = LocalNetwork()
    buses = [EventBus() for _ in range(3)]
    inboxes = [[] for _ in buses]
    for bus, inbox in zip(buses, inboxes):
        network.connect(bus)
        bus.subscribe("hello", inbox.append)

    await buses[0].publish("hello", "world")

    assert inboxes == [["world"], ["world"], ["world"]]
    assert network.sent == [WireMessage(event="hello", data=["world"]).model_dump()]

    network.disconnect(buses[2])
    await buses[0].publish("hello", "again")
    assert inboxes[2] == ["world"]
