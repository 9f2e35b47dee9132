"""
Authority resolution between peer clients.

There is no server deciding who applies a mutation.  Every client runs the
same deterministic rule over the same session list and only the winner acts,
so at most one client writes per logical event.
"""

import logging
from datetime import timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .models import PermissionLevel, Session

logger = logging.getLogger(__name__)


class SessionRegistry(Protocol):
    """Source of connected sessions and their per-entity permissions"""

    def query_active_sessions(self) -> Sequence[Session]:
        ...

    def query_permission(self, entity: Any, session_id: str) -> int:
        ...


class InMemorySessionRegistry:
    """Session registry shared by in-process peers (simulations, tests)"""

    def __init__(self):
        self.sessions: Dict[str, Session] = {}
        # (scene_id, entity_id) -> session_id -> level
        self.permissions: Dict[Tuple[str, str], Dict[str, int]] = {}

    def connect(self, session: Session) -> Session:
        self.sessions[session.id] = session
        logger.info(f"Session {session.id} connected (gm={session.is_gm})")
        return session

    def disconnect(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        if session:
            session.active = False
            logger.info(f"Session {session_id} disconnected")

    def grant(self, scene_id: str, entity_id: str, session_id: str,
              level: int = PermissionLevel.OWNER) -> None:
        self.permissions.setdefault((scene_id, entity_id), {})[session_id] = int(level)

    def query_active_sessions(self) -> List[Session]:
        return [s for s in self.sessions.values() if s.active]

    def query_permission(self, entity: Any, session_id: str) -> int:
        levels = self.permissions.get((entity.scene_id, entity.id), {})
        return levels.get(session_id, PermissionLevel.NONE)


class OwnershipResolver:
    """Decides which connected session is authoritative for an entity"""

    def __init__(self, registry: SessionRegistry, session_id: str,
                 min_level: int = PermissionLevel.OWNER):
        self.registry = registry
        self.session_id = session_id
        self.min_level = int(min_level)

    def first_owner(self, entity: Any) -> Optional[Session]:
        """
        Return the authoritative session for ``entity``.
        Any active GM wins (earliest connection first); otherwise the
        non-GM session with the highest permission level at or above
        ``min_level``, ties broken the same way.
        """
        if entity is None:
            return None

        sessions = sorted(self.registry.query_active_sessions(), key=_ordering_key)

        gms = [s for s in sessions if s.is_gm]
        if gms:
            return gms[0]

        best: Optional[Session] = None
        best_level = self.min_level - 1
        for session in sessions:
            level = int(self.registry.query_permission(entity, session.id))
            if level >= self.min_level and level > best_level:
                best, best_level = session, level
        return best

    def is_authoritative(self, entity: Any) -> bool:
        owner = self.first_owner(entity)
        authoritative = owner is not None and owner.id == self.session_id
        if not authoritative:
            entity_id = getattr(entity, "id", None)
            logger.debug(f"Session {self.session_id} is not authoritative for {entity_id}")
        return authoritative


def _ordering_key(session: Session):
    connected_at = session.connected_at
    if connected_at.tzinfo is None:
        connected_at = connected_at.replace(tzinfo=timezone.utc)
    return (connected_at, session.id)
