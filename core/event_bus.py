"""Peer-to-peer publish/subscribe bus with local loopback."""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from core.events.topics import SquadronEvent

__all__ = [
    "DispatchResult",
    "EventBus",
    "HandlerFailure",
    "Subscriber",
    "Topic",
    "Transport",
    "WireMessage",
]

logger = logging.getLogger(__name__)

Topic = str | SquadronEvent
Subscriber = Callable[..., Any]


class WireMessage(BaseModel):
    """Envelope broadcast verbatim to every peer: ``{event, data: [args...]}``."""

    event: str
    data: List[Any] = Field(default_factory=list)


class Transport(Protocol):
    """Outbound half of the external broadcast channel."""

    async def broadcast(self, message: Dict[str, Any]) -> None:
        """Send ``message`` to every other connected peer."""


@dataclass(frozen=True)
class HandlerFailure:
    event: str
    handler: Subscriber
    error: BaseException


@dataclass
class DispatchResult:
    """Outcome of the local dispatch of one message."""

    event: str
    handled: int = 0
    failures: List[HandlerFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(eq=False)
class _Subscription:
    callback: Subscriber
    once: bool = False


def _to_wire(value: Any) -> Any:
    if hasattr(value, "to_wire"):
        return value.to_wire()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class EventBus:
    """Event dispatcher shared by the peers of one broadcast channel.

    :meth:`publish` sends the message through the transport to every other
    peer and then runs the local subscribers (loopback).  Messages coming from
    peers enter through :meth:`receive` and are only dispatched locally.

    Subscribers of one event run sequentially in subscription order and may be
    coroutines; each one is awaited before the next starts.  The subscriber
    list is snapshotted when dispatch starts, so a subscription added by a
    handler only sees later messages.

    A raising subscriber is logged and recorded in the returned
    :class:`DispatchResult` while the remaining subscribers still run.  With
    ``propagate_handler_errors`` the first failure instead aborts the dispatch
    and propagates to the caller.
    """

    def __init__(self, transport: Optional[Transport] = None, *, propagate_handler_errors: bool = False) -> None:
        self._subscribers: MutableMapping[str, list[_Subscription]] = defaultdict(list)
        self.transport = transport
        self.propagate_handler_errors = propagate_handler_errors

    @staticmethod
    def _normalise_topic(topic: Topic) -> str:
        return topic.value if isinstance(topic, SquadronEvent) else str(topic)

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------
    def subscribe(self, topic: Topic, callback: Subscriber, *, once: bool = False) -> None:
        """Register ``callback`` for ``topic`` events."""

        key = self._normalise_topic(topic)
        if any(sub.callback == callback and sub.once == once for sub in self._subscribers[key]):
            return
        self._subscribers[key].append(_Subscription(callback, once))

    def once(self, topic: Topic, callback: Subscriber) -> None:
        """Register ``callback`` for the next ``topic`` event only."""

        self.subscribe(topic, callback, once=True)

    def unsubscribe(self, topic: Topic, callback: Subscriber) -> None:
        """Remove a previously registered subscription if present."""

        key = self._normalise_topic(topic)
        subscriptions = self._subscribers.get(key)
        if not subscriptions:
            return

        self._subscribers[key] = [sub for sub in subscriptions if sub.callback != callback]
        if not self._subscribers[key]:
            del self._subscribers[key]

    def _discard(self, key: str, subscription: _Subscription) -> None:
        subscriptions = self._subscribers.get(key)
        if subscriptions and subscription in subscriptions:
            subscriptions.remove(subscription)
            if not subscriptions:
                del self._subscribers[key]

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    async def publish(self, topic: Topic, *args: Any) -> DispatchResult:
        """Broadcast ``topic`` with ``args`` and run the local subscribers."""

        key = self._normalise_topic(topic)
        message = WireMessage(event=key, data=[_to_wire(arg) for arg in args])
        if self.transport is not None:
            await self.transport.broadcast(message.model_dump())
        return await self._dispatch(message)

    async def receive(self, message: Mapping[str, Any]) -> DispatchResult:
        """Dispatch a message that arrived from another peer."""

        return await self._dispatch(WireMessage.model_validate(message))

    async def _dispatch(self, message: WireMessage) -> DispatchResult:
        result = DispatchResult(event=message.event)
        for subscription in list(self._subscribers.get(message.event, ())):
            if subscription.once:
                self._discard(message.event, subscription)
            try:
                outcome = subscription.callback(*message.data)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                if self.propagate_handler_errors:
                    raise
                logger.exception(f"Subscriber error for {message.event}: {exc}")
                result.failures.append(HandlerFailure(message.event, subscription.callback, exc))
            else:
                result.handled += 1
        return result

    # ------------------------------------------------------------------
    # Introspection helpers (mostly for tests/debug)
    # ------------------------------------------------------------------
    def clear(self) -> None:
        """Remove all subscriptions from the bus."""

        self._subscribers.clear()

    def get_subscribers(self, topic: Topic) -> Sequence[Subscriber]:
        """Return all subscribers registered for ``topic``."""

        key = self._normalise_topic(topic)
        return tuple(sub.callback for sub in self._subscribers.get(key, ()))
