"""Entity documents and the relation store built on top of them.

The persistence layer is an injected collaborator described by
:class:`DocumentStore`.  :class:`InMemoryDocumentStore` is the reference
implementation used by simulations and tests; it also plays the role of the
world's change hooks, notifying every connected client after each write.
"""
from __future__ import annotations

import copy
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from core.errors import StoreWriteError
from modules.formation.records import (
    FOLLOWER_KEYS,
    LEADER_KEYS,
    RECORD_VERSION,
    FollowerState,
    LeaderState,
    migrate_record,
)

logger = logging.getLogger(__name__)

__all__ = [
    "BatchRecord",
    "DocumentStore",
    "Entity",
    "HOOK_DELETE",
    "HOOK_PRE_CREATE",
    "HOOK_UPDATE",
    "InMemoryDocumentStore",
    "RelationStore",
    "Scene",
]

HOOK_PRE_CREATE = "preCreateEntity"
"""Called with ``(entity, user_id)`` before an entity is stored."""

HOOK_UPDATE = "updateEntity"
"""Called with ``(previous, changes, options, user_id)`` after each entity update."""

HOOK_DELETE = "deleteEntity"
"""Called with ``(entity, user_id)`` after an entity has been removed."""

_POSITION_FIELDS = ("x", "y", "elevation", "rotation", "width", "height", "name")


@dataclass
class Entity:
    """Mobile object in a scene; ``x``/``y`` is its top-left corner."""

    id: str
    scene_id: str
    x: float = 0.0
    y: float = 0.0
    elevation: float = 0.0
    rotation: float = 0.0
    width: float = 100.0
    height: float = 100.0
    name: str = ""
    flags: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    @property
    def size(self) -> Tuple[float, float]:
        return self.width, self.height

    def get_flag(self, namespace: str, key: str, default: Any = None) -> Any:
        return self.flags.get(namespace, {}).get(key, default)

    def snapshot(self) -> "Entity":
        return copy.deepcopy(self)


@dataclass
class Scene:
    id: str
    grid_size: float = 100.0
    entities: Dict[str, Entity] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchRecord:
    """One accepted batch, kept by :class:`InMemoryDocumentStore` for inspection."""

    scene_id: str
    updates: Tuple[Dict[str, Any], ...]
    options: Dict[str, Any]
    user_id: Optional[str]


class DocumentStore(Protocol):
    """Persistence collaborator consumed by :class:`RelationStore`."""

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        ...

    def get_entity(self, scene_id: str, entity_id: str) -> Optional[Entity]:
        ...

    def list_scenes(self) -> Sequence[str]:
        ...

    def list_entities(self, scene_id: str) -> Sequence[Entity]:
        ...

    async def update_entities_batch(
        self,
        scene_id: str,
        updates: Sequence[Mapping[str, Any]],
        options: Optional[Mapping[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> List[Entity]:
        ...


Hook = Callable[..., Optional[Awaitable[None]]]


class InMemoryDocumentStore:
    """Shared world state kept in memory.

    Update documents look like ``{"_id": ..., "x": ..., "flags": {ns: {...}}}``.
    Inside a flag namespace a ``None`` value deletes the key; a ``None``
    namespace deletes the whole namespace.  A batch is validated before any
    entity is touched, so it applies entirely or not at all.
    """

    def __init__(self) -> None:
        self._scenes: Dict[str, Scene] = {}
        self._hooks: MutableMapping[str, List[Hook]] = defaultdict(list)
        self.history: List[BatchRecord] = []

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------
    def on(self, hook: str, callback: Hook) -> None:
        if callback not in self._hooks[hook]:
            self._hooks[hook].append(callback)

    def off(self, hook: str, callback: Hook) -> None:
        callbacks = self._hooks.get(hook)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    async def _call_hooks(self, hook: str, *args: Any) -> None:
        for callback in list(self._hooks.get(hook, ())):
            result = callback(*args)
            if result is not None:
                await result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def add_scene(self, scene_id: str, grid_size: float = 100.0) -> Scene:
        scene = self._scenes.setdefault(scene_id, Scene(scene_id, grid_size))
        return scene

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        return self._scenes.get(scene_id)

    def get_entity(self, scene_id: str, entity_id: str) -> Optional[Entity]:
        scene = self._scenes.get(scene_id)
        if scene is None:
            return None
        return scene.entities.get(entity_id)

    def list_scenes(self) -> List[str]:
        return list(self._scenes)

    def list_entities(self, scene_id: str) -> List[Entity]:
        scene = self._scenes.get(scene_id)
        return list(scene.entities.values()) if scene else []

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def create_entity(self, entity: Entity, user_id: Optional[str] = None) -> Entity:
        scene = self.add_scene(entity.scene_id)
        if entity.id in scene.entities:
            raise StoreWriteError(f"Entity {entity.id} already exists in scene {entity.scene_id}")
        await self._call_hooks(HOOK_PRE_CREATE, entity, user_id)
        scene.entities[entity.id] = entity
        return entity

    async def delete_entity(self, scene_id: str, entity_id: str, user_id: Optional[str] = None) -> Entity:
        entity = self.get_entity(scene_id, entity_id)
        if entity is None:
            raise StoreWriteError(f"Unknown entity {entity_id} in scene {scene_id}")
        del self._scenes[scene_id].entities[entity_id]
        await self._call_hooks(HOOK_DELETE, entity, user_id)
        return entity

    async def update_entities_batch(
        self,
        scene_id: str,
        updates: Sequence[Mapping[str, Any]],
        options: Optional[Mapping[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> List[Entity]:
        if not updates:
            return []
        scene = self._scenes.get(scene_id)
        if scene is None:
            raise StoreWriteError(f"Unknown scene {scene_id}")
        missing = [u.get("_id") for u in updates if u.get("_id") not in scene.entities]
        if missing:
            raise StoreWriteError(f"Unknown entities {missing} in scene {scene_id}")

        options = dict(options or {})
        applied: List[Tuple[Entity, Entity, Dict[str, Any]]] = []
        for update in updates:
            entity = scene.entities[update["_id"]]
            changes = {k: copy.deepcopy(v) for k, v in update.items() if k != "_id"}
            previous = entity.snapshot()
            self._apply(entity, changes)
            applied.append((previous, entity, changes))

        self.history.append(
            BatchRecord(scene_id, tuple(copy.deepcopy(dict(u)) for u in updates), options, user_id)
        )
        logger.debug(f"Applied {len(applied)} update(s) in scene {scene_id} for user {user_id}")

        for previous, _, changes in applied:
            await self._call_hooks(HOOK_UPDATE, previous, changes, options, user_id)
        return [entity for _, entity, _ in applied]

    @staticmethod
    def _apply(entity: Entity, changes: Mapping[str, Any]) -> None:
        for key in _POSITION_FIELDS:
            if key in changes:
                setattr(entity, key, changes[key])
        for namespace, values in (changes.get("flags") or {}).items():
            if values is None:
                entity.flags.pop(namespace, None)
                continue
            target = entity.flags.setdefault(namespace, {})
            for key, value in values.items():
                if value is None:
                    target.pop(key, None)
                else:
                    target[key] = value
            if not target:
                entity.flags.pop(namespace, None)


class RelationStore:
    """CRUD over the formation records of entities, for one client."""

    def __init__(self, documents: DocumentStore, *, user_id: Optional[str] = None, namespace: str = "squadron") -> None:
        self.documents = documents
        self.user_id = user_id
        self.namespace = namespace

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_entity(self, scene_id: str, entity_id: str) -> Optional[Entity]:
        return self.documents.get_entity(scene_id, entity_id)

    def get_record(self, entity: Entity) -> Dict[str, Any]:
        return migrate_record(entity.flags.get(self.namespace))

    def has_record(self, entity: Entity) -> bool:
        return bool(entity.flags.get(self.namespace))

    def get_leader_state(self, entity: Entity) -> LeaderState:
        record = self.get_record(entity)
        return LeaderState(followers=list(record.get("followers") or []))

    def get_follower_state(self, entity: Entity) -> Optional[FollowerState]:
        """Return the follower part of ``entity`` or ``None`` when it follows nobody."""

        record = self.get_record(entity)
        if not any(key in record for key in FOLLOWER_KEYS):
            return None
        return FollowerState.model_validate({key: record[key] for key in FOLLOWER_KEYS if key in record})

    # ------------------------------------------------------------------
    # Update documents
    # ------------------------------------------------------------------
    def _part_update(self, entity: Entity, values: Mapping[str, Any], other_keys: Iterable[str]) -> Dict[str, Any]:
        raw = entity.flags.get(self.namespace) or {}
        record = migrate_record(raw)
        remains = any(record.get(key) is not None for key in other_keys)
        if all(value is None for value in values.values()) and not remains:
            return {"_id": entity.id, "flags": {self.namespace: None}}
        payload = dict(values)
        if raw and "version" not in raw:
            # Rewrite legacy documents in the current layout.
            payload = {**record, **payload, "user": None}
        payload["version"] = RECORD_VERSION
        return {"_id": entity.id, "flags": {self.namespace: payload}}

    def leader_update(self, entity: Entity, state: Optional[LeaderState]) -> Dict[str, Any]:
        followers = state.followers if state and state.followers else None
        return self._part_update(entity, {"followers": followers}, FOLLOWER_KEYS)

    def follower_update(self, entity: Entity, state: Optional[FollowerState]) -> Dict[str, Any]:
        if state is None or not state.leaders:
            values: Dict[str, Any] = {key: None for key in FOLLOWER_KEYS}
        else:
            values = state.to_flags()
        return self._part_update(entity, values, LEADER_KEYS)

    def paused_update(self, entity: Entity, paused: bool) -> Dict[str, Any]:
        return self._part_update(entity, {"paused": paused}, ())

    def clear_update(self, entity: Entity) -> Dict[str, Any]:
        return {"_id": entity.id, "flags": {self.namespace: None}}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def update_batch(
        self,
        scene_id: str,
        updates: Sequence[Mapping[str, Any]],
        options: Optional[Mapping[str, Any]] = None,
    ) -> List[Entity]:
        if not updates:
            return []
        return await self.documents.update_entities_batch(scene_id, list(updates), options, self.user_id)

    async def write_leader_state(self, entity: Entity, state: Optional[LeaderState]) -> None:
        await self.update_batch(entity.scene_id, [self.leader_update(entity, state)])

    async def write_follower_state(self, entity: Entity, state: Optional[FollowerState]) -> None:
        await self.update_batch(entity.scene_id, [self.follower_update(entity, state)])

    async def set_paused(self, entity: Entity, paused: bool) -> None:
        await self.update_batch(entity.scene_id, [self.paused_update(entity, paused)])

    async def clear(self, scene_id: str, entities: Iterable[Entity]) -> List[Entity]:
        updates = [self.clear_update(entity) for entity in entities if self.has_record(entity)]
        return await self.update_batch(scene_id, updates)
