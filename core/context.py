"""
Per-client service container.

A :class:`SquadronContext` wires the event bus, relation store, ownership
resolver, collision detector and orchestrator of one client together.  Peers
simulated in one process each get their own context.
"""

import logging
from typing import Any, Optional, Protocol

from config.settings import SquadronSettings
from core.event_bus import EventBus, Transport
from modules.formation.api import SquadronAPI
from modules.formation.collision import CollisionDetector, CollisionQuery
from modules.formation.orchestrator import MovementOrchestrator
from modules.formation.store import DocumentStore, RelationStore
from multiplayer.ownership import OwnershipResolver, SessionRegistry
from multiplayer.socket_transport import SocketIOTransport

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """User-facing notification sink (toast, chat line...)"""

    def notify(self, level: str, message: str) -> None:
        ...


class LoggingNotifier:
    """Notifier that writes to the log; the default when no UI is attached"""

    _LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "warning": logging.WARNING, "error": logging.ERROR}

    def __init__(self, name: str = "squadron.notifications"):
        self.logger = logging.getLogger(name)

    def notify(self, level: str, message: str) -> None:
        self.logger.log(self._LEVELS.get(level, logging.INFO), message)


class SquadronContext:
    def __init__(
        self,
        session_id: str,
        documents: DocumentStore,
        registry: SessionRegistry,
        *,
        settings: Optional[SquadronSettings] = None,
        collision_query: Optional[CollisionQuery] = None,
        transport: Optional[Transport] = None,
        notifier: Optional[Notifier] = None,
        viewed_scene_id: Optional[str] = None,
    ):
        self.session_id = session_id
        self.documents = documents
        self.registry = registry
        self.settings = settings or SquadronSettings()
        # Scene currently displayed by this client; collision checks need its walls loaded.
        self.viewed_scene_id = viewed_scene_id

        self.bus = EventBus(transport, propagate_handler_errors=self.settings.propagate_handler_errors)
        self.relations = RelationStore(documents, user_id=session_id, namespace=self.settings.namespace)
        self.ownership = OwnershipResolver(registry, session_id)
        self.collisions = CollisionDetector(collision_query, self.settings.collide_walls)
        self.notifier = notifier or LoggingNotifier()

        self.orchestrator = MovementOrchestrator(self)
        self.api = SquadronAPI(self)
        self._started = False

    def start(self) -> "SquadronContext":
        if not self._started:
            self.orchestrator.register()
            self._started = True
            logger.info(f"Squadron context started for session {self.session_id}")
        return self

    def stop(self) -> None:
        if self._started:
            self.orchestrator.unregister()
            self._started = False
            logger.info(f"Squadron context stopped for session {self.session_id}")

    def view_scene(self, scene_id: Optional[str]) -> None:
        self.viewed_scene_id = scene_id

    async def connect_relay(self, url: str, client: Any = None, **kwargs: Any) -> SocketIOTransport:
        """Join a socket.io relay on the configured channel and route the bus through it"""
        transport = SocketIOTransport(client, channel=self.settings.channel)
        transport.attach(self.bus)
        await transport.connect(url, self.session_id, **kwargs)
        return transport
