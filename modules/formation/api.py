"""Public squadron operations, as called by the (separate) user interface."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from core.errors import EntityNotFoundError, MissingLeaderError
from core.events.topics import SquadronEvent
from modules.formation.geometry import ORIENTATION_PRESETS, OrientationSpec, resolve_orientation
from modules.formation.records import Locks
from modules.formation.store import Entity
from multiplayer.models import LinkPayload

if TYPE_CHECKING:  # pragma: no cover
    from core.context import SquadronContext

__all__ = ["FollowConfig", "SquadronAPI"]

logger = logging.getLogger(__name__)


class FollowConfig(BaseModel):
    """Request to attach ``follower_ids`` to ``leader_id``."""

    scene_id: str
    leader_id: Optional[str] = None
    follower_ids: List[str] = Field(default_factory=list)
    orientation: OrientationSpec = ORIENTATION_PRESETS["DETECT"]
    locks: Locks = Field(default_factory=Locks)
    snap: bool = False

    @field_validator("orientation", mode="before")
    @classmethod
    def _preset_names(cls, value: Any) -> Any:
        if isinstance(value, str):
            return ORIENTATION_PRESETS[value.upper()]
        if isinstance(value, dict):
            return OrientationSpec.from_wire(value)
        return value


class SquadronAPI:
    def __init__(self, context: "SquadronContext") -> None:
        self.context = context

    def _entity(self, scene_id: str, entity_id: str) -> Entity:
        entity = self.context.relations.get_entity(scene_id, entity_id)
        if entity is None:
            raise EntityNotFoundError(f"Entity {entity_id} not found in scene {scene_id}")
        return entity

    async def start_follow(self, config: FollowConfig) -> List[LinkPayload]:
        """Link every follower of ``config`` to its leader.

        Each follower is announced with an add-follower message (for the
        leader's authority) then an add-leader message (for the follower's).

        Raises:
            MissingLeaderError: no leader was picked.
            ValueError: no follower was given.
            EntityNotFoundError: the leader is not in the scene.
        """

        if not config.leader_id:
            raise MissingLeaderError("Pick a target to follow")
        if not config.follower_ids:
            raise ValueError("At least one follower is required")

        leader = self._entity(config.scene_id, config.leader_id)
        orientation = resolve_orientation(config.orientation, leader.rotation)

        payloads: List[LinkPayload] = []
        for follower_id in config.follower_ids:
            if follower_id == leader.id:
                logger.warning(f"{leader.id} cannot follow itself")
                continue
            payload = LinkPayload(
                leader_id=leader.id,
                follower_id=follower_id,
                scene_id=config.scene_id,
                orientation=orientation,
                locks=config.locks,
                snap=config.snap,
                initiator=self.context.session_id,
            )
            await self.context.bus.publish(SquadronEvent.ADD_FOLLOWER, payload)
            await self.context.bus.publish(SquadronEvent.ADD_LEADER, payload)
            payloads.append(payload)

        if payloads:
            self.context.notifier.notify("info", f"{len(payloads)} follower(s) now follow {leader.name or leader.id}")
        return payloads

    async def follow(
        self,
        leader_id: Optional[str],
        follower_ids: List[str],
        scene_id: str,
        orientation: Union[str, OrientationSpec] = "DETECT",
        **options: Any,
    ) -> List[LinkPayload]:
        locks = Locks(
            elevation=options.pop("elevation", Locks().elevation),
            follow=options.pop("follow", False),
        )
        config = FollowConfig(
            scene_id=scene_id,
            leader_id=leader_id,
            follower_ids=list(follower_ids),
            orientation=orientation,
            locks=locks,
            **options,
        )
        return await self.start_follow(config)

    async def stop_following(self, entity_id: str, scene_id: str) -> int:
        """Detach ``entity_id`` from all its leaders; return how many it had."""

        entity = self._entity(scene_id, entity_id)
        count = await self.context.orchestrator.announce_stop_follow(entity)
        entity = self._entity(scene_id, entity_id)
        if self.context.relations.get_follower_state(entity) is not None:
            await self.context.relations.write_follower_state(entity, None)
        if count:
            self.context.notifier.notify("info", f"{entity.name or entity.id} stopped following")
        return count

    async def _set_paused(self, entity_id: str, scene_id: str, paused: bool) -> bool:
        entity = self._entity(scene_id, entity_id)
        if self.context.relations.get_follower_state(entity) is None:
            logger.debug(f"{entity_id} follows nobody, pause state left alone")
            return False
        await self.context.relations.set_paused(entity, paused)
        action = "paused" if paused else "resumed"
        self.context.notifier.notify("info", f"{entity.name or entity.id} {action} following")
        return True

    async def resume_following(self, entity_id: str, scene_id: str) -> bool:
        """Resume following; returns ``False`` when ``entity_id`` follows nobody."""

        return await self._set_paused(entity_id, scene_id, False)

    async def pause(self, entity_id: str, scene_id: str) -> bool:
        return await self._set_paused(entity_id, scene_id, True)

    async def disband_all(self, scope: Literal["scene", "world"] = "scene", scene_id: Optional[str] = None) -> int:
        """Erase squadron data from one scene or from every scene.

        Returns the number of entities that were cleared.
        """

        if scope == "scene":
            scene_id = scene_id or self.context.viewed_scene_id
            if scene_id is None:
                raise ValueError("disband_all(scope='scene') needs a scene id")
            scene_ids = [scene_id]
        elif scope == "world":
            scene_ids = list(self.context.documents.list_scenes())
        else:
            raise ValueError(f"Unknown disband scope {scope!r}")

        cleared = 0
        for sid in scene_ids:
            entities = self.context.documents.list_entities(sid)
            cleared += len(await self.context.relations.clear(sid, entities))
        logger.info(f"Disbanded {cleared} entities over {len(scene_ids)} scene(s)")
        self.context.notifier.notify("info", f"Disbanded squadrons on {cleared} token(s)")
        return cleared
