"""Movement orchestration: reacts to bus messages and world changes.

Every peer runs one :class:`MovementOrchestrator`.  Each handler first asks
the ownership resolver whether this client is authoritative for the entity it
would write; all other clients return without doing anything, so exactly one
client applies each mutation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from config.settings import CollisionPolicy
from core.events.topics import SquadronEvent
from modules.formation.geometry import (
    FollowVector,
    OrientationMode,
    compute_follower_delta,
    compute_follower_position,
    location_of,
    resolve_orientation,
    snap_to_grid,
)
from modules.formation.records import Delta, FollowerState, Relation
from modules.formation.store import HOOK_DELETE, HOOK_PRE_CREATE, HOOK_UPDATE, Entity
from multiplayer.models import CollisionNotice, LeaderInfo, LeaderMovePayload, LinkPayload, UnlinkPayload
from utils.logger import log_calls

if TYPE_CHECKING:  # pragma: no cover
    from core.context import SquadronContext

__all__ = ["MoveSummary", "MovePlan", "MovementOrchestrator", "SQUADRON_EVENT_OPTION", "TELEPORT_OPTION"]

logger = logging.getLogger(__name__)

SQUADRON_EVENT_OPTION = "squadron_event"
"""Update option naming the squadron event that caused a write."""

TELEPORT_OPTION = "teleport"

_TRACKED_FIELDS = ("x", "y", "elevation")


def should_track(changes: Mapping[str, Any], ignore_rotation: bool = False) -> bool:
    """Return ``True`` when ``changes`` move the entity (or turn it)."""

    moved = any(isinstance(changes.get(key), (int, float)) for key in _TRACKED_FIELDS)
    if ignore_rotation:
        return moved
    return moved or isinstance(changes.get("rotation"), (int, float))


@dataclass
class MovePlan:
    """Candidate update for one follower of a leader move."""

    follower: Entity
    update: Dict[str, Any]
    blocked: bool = False
    user: Optional[str] = None


@dataclass
class MoveSummary:
    """Batches written for one processed leader move."""

    moves: List[Dict[str, Any]] = field(default_factory=list)
    stops: List[MovePlan] = field(default_factory=list)
    teleports: List[Dict[str, Any]] = field(default_factory=list)


class MovementOrchestrator:
    """State machine linking followers to leaders for one client."""

    def __init__(self, context: "SquadronContext") -> None:
        self.context = context
        self._handlers = {
            SquadronEvent.LEADER_MOVE: self.handle_leader_move,
            SquadronEvent.ADD_FOLLOWER: self.handle_add_follower,
            SquadronEvent.ADD_LEADER: self.handle_add_leader,
            SquadronEvent.REMOVE_FOLLOWER: self.handle_remove_follower,
            SquadronEvent.REMOVE_LEADER: self.handle_remove_leader,
            SquadronEvent.NOTIFY_COLLISION: self.handle_notify_collision,
        }
        self._hooks = {
            HOOK_PRE_CREATE: self.sanitize_new_entity,
            HOOK_UPDATE: self.handle_entity_updated,
            HOOK_DELETE: self.handle_entity_deleted,
        }

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    @property
    def bus(self):
        return self.context.bus

    @property
    def relations(self):
        return self.context.relations

    def register(self) -> None:
        for event, handler in self._handlers.items():
            self.bus.subscribe(event, handler)
        add_hook = getattr(self.context.documents, "on", None)
        if callable(add_hook):
            for hook, callback in self._hooks.items():
                add_hook(hook, callback)

    def unregister(self) -> None:
        for event, handler in self._handlers.items():
            self.bus.unsubscribe(event, handler)
        remove_hook = getattr(self.context.documents, "off", None)
        if callable(remove_hook):
            for hook, callback in self._hooks.items():
                remove_hook(hook, callback)

    def _owned(self, scene_id: str, entity_id: str) -> Optional[Entity]:
        """Return the entity when this client is authoritative for it."""

        entity = self.relations.get_entity(scene_id, entity_id)
        if entity is None or not self.context.ownership.is_authoritative(entity):
            return None
        return entity

    # ------------------------------------------------------------------
    # Leader moves
    # ------------------------------------------------------------------
    def contains_owned_follower(self, payload: LeaderMovePayload) -> bool:
        scene_id = payload.leader.scene_id
        return any(self._owned(scene_id, follower_id) is not None for follower_id in payload.followers)

    @log_calls
    async def handle_leader_move(self, data: Any) -> Optional[MoveSummary]:
        """Reposition every follower this client owns after a leader move.

        Writes happen as three batches, in order: wall stops, teleports and
        plain moves.  Each batch is tagged with the leader-move event so the
        followers do not mistake the relocation for independent movement.
        A store failure propagates; batches already written stay written.
        """

        payload = LeaderMovePayload.model_validate(data)
        if not self.contains_owned_follower(payload):
            return None

        scene_id = payload.leader.scene_id
        follow_vector = FollowVector.from_wire(payload.leader.follow_vector)

        plans: List[MovePlan] = []
        for follower_id in payload.followers:
            plan = await self._plan_follower_move(follower_id, payload, follow_vector)
            if plan is not None:
                plans.append(plan)

        leader = self.relations.get_entity(scene_id, payload.leader.token_id)
        leader_size = leader.size if leader is not None else (0.0, 0.0)
        summary = self._classify(plans, follow_vector, leader_size)

        for stop in summary.stops:
            await self.bus.publish(
                SquadronEvent.NOTIFY_COLLISION,
                CollisionNotice(token_id=stop.follower.id, token_name=stop.follower.name, user=stop.user),
            )

        options = {SQUADRON_EVENT_OPTION: SquadronEvent.LEADER_MOVE.value}
        stop_updates = [self.relations.paused_update(stop.follower, True) for stop in summary.stops]
        await self.relations.update_batch(scene_id, stop_updates, options)
        await self.relations.update_batch(scene_id, summary.teleports, {**options, TELEPORT_OPTION: True})
        await self.relations.update_batch(scene_id, summary.moves, options)

        logger.debug(
            f"Leader {payload.leader.token_id}: {len(summary.moves)} moved, "
            f"{len(summary.stops)} stopped, {len(summary.teleports)} teleported"
        )
        return summary

    async def _plan_follower_move(
        self,
        follower_id: str,
        payload: LeaderMovePayload,
        follow_vector: FollowVector,
    ) -> Optional[MovePlan]:
        scene_id = payload.leader.scene_id
        leader_id = payload.leader.token_id
        follower = self._owned(scene_id, follower_id)
        if follower is None:
            return None

        state = self.relations.get_follower_state(follower)
        relation = state.relation_for(leader_id) if state else None
        if relation is None:
            # The leader lists a follower that does not track it: repair the leader side.
            logger.warning(f"Leader {leader_id} lists {follower_id} as follower, but it is not following")
            await self.bus.publish(
                SquadronEvent.REMOVE_FOLLOWER,
                UnlinkPayload(leader_id=leader_id, follower_id=follower_id, scene_id=scene_id),
            )
            return None

        if state.paused and not relation.locks.follow:
            return None

        position = compute_follower_position(follow_vector, relation, follower.size, (follower.x, follower.y))
        position.setdefault("x", follower.x)
        position.setdefault("y", follower.y)
        if relation.snap:
            scene = self.context.documents.get_scene(scene_id)
            position = snap_to_grid(position, scene.grid_size if scene else 0)

        has_moved = position["x"] != follower.x or position["y"] != follower.y
        changes = {key: value for key, value in position.items() if getattr(follower, key) != value}
        if not changes:
            return None

        blocked = False
        if self.context.collisions.should_test(scene_id, self.context.viewed_scene_id, has_moved):
            half_w, half_h = follower.width / 2, follower.height / 2
            blocked = await self.context.collisions.test_blocked(
                (follower.x + half_w, follower.y + half_h),
                (position["x"] + half_w, position["y"] + half_h),
            )

        return MovePlan(follower=follower, update={"_id": follower.id, **changes}, blocked=blocked, user=state.last_user)

    def _classify(
        self,
        plans: List[MovePlan],
        follow_vector: FollowVector,
        leader_size: Tuple[float, float],
    ) -> MoveSummary:
        summary = MoveSummary()
        step = self.context.settings.teleport_step
        corner_x = follow_vector.B.x - leader_size[0] / 2
        corner_y = follow_vector.B.y - leader_size[1] / 2
        for plan in plans:
            if not plan.blocked:
                summary.moves.append(plan.update)
            elif self.context.collisions.policy is CollisionPolicy.PAUSE:
                summary.stops.append(plan)
            else:
                offset = step * (len(summary.teleports) + 1)
                summary.teleports.append({**plan.update, "x": corner_x + offset, "y": corner_y + offset})
        return summary

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------
    async def handle_add_follower(self, data: Any) -> None:
        payload = LinkPayload.model_validate(data)
        leader = self._owned(payload.scene_id, payload.leader_id)
        if leader is None:
            return

        state = self.relations.get_leader_state(leader)
        if not state.add(payload.follower_id):
            return
        await self.relations.write_leader_state(leader, state)
        logger.info(f"{payload.follower_id} now follows {payload.leader_id}")

    async def handle_add_leader(self, data: Any) -> None:
        payload = LinkPayload.model_validate(data)
        follower = self._owned(payload.scene_id, payload.follower_id)
        if follower is None:
            return
        leader = self.relations.get_entity(payload.scene_id, payload.leader_id)
        if leader is None:
            logger.warning(f"Cannot follow {payload.leader_id}: not found in scene {payload.scene_id}")
            return

        orientation = payload.orientation
        if orientation.mode is OrientationMode.DETECT:
            orientation = resolve_orientation(orientation, leader.rotation)
        offset = compute_follower_delta(
            leader.center, leader.elevation, orientation, follower.center, follower.elevation
        )

        state = self.relations.get_follower_state(follower) or FollowerState()
        state.leaders[payload.leader_id] = Relation(
            delta=Delta(angle=offset.angle, distance=offset.distance, dz=offset.dz, orientation=orientation),
            locks=payload.locks,
            snap=payload.snap,
        )
        state.paused = False
        state.last_user = payload.initiator
        await self.relations.write_follower_state(follower, state)

    # ------------------------------------------------------------------
    # Leaves
    # ------------------------------------------------------------------
    async def handle_remove_follower(self, data: Any) -> None:
        await self._unlink(UnlinkPayload.model_validate(data))

    async def handle_remove_leader(self, data: Any) -> None:
        await self._unlink(UnlinkPayload.model_validate(data))

    async def _unlink(self, payload: UnlinkPayload) -> None:
        leader = self._owned(payload.scene_id, payload.leader_id)
        if leader is not None:
            state = self.relations.get_leader_state(leader)
            if state.remove(payload.follower_id):
                await self.relations.write_leader_state(leader, state)

        follower = self._owned(payload.scene_id, payload.follower_id)
        if follower is not None:
            state = self.relations.get_follower_state(follower)
            if state is not None and payload.leader_id in state.leaders:
                del state.leaders[payload.leader_id]
                await self.relations.write_follower_state(follower, state)

    async def announce_stop_follow(self, entity: Entity) -> int:
        """Tell every leader of ``entity`` that it no longer follows them."""

        state = self.relations.get_follower_state(entity)
        if state is None:
            return 0
        for leader_id in list(state.leaders):
            await self.bus.publish(
                SquadronEvent.REMOVE_FOLLOWER,
                UnlinkPayload(leader_id=leader_id, follower_id=entity.id, scene_id=entity.scene_id),
            )
        return len(state.leaders)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def handle_notify_collision(self, data: Any) -> None:
        notice = CollisionNotice.model_validate(data)
        if notice.user != self.context.session_id or self.context.settings.silent_collide:
            return
        self.context.notifier.notify(
            "warn", f"{notice.token_name} ({notice.token_id}) was stopped by a wall and paused following."
        )

    # ------------------------------------------------------------------
    # World hooks
    # ------------------------------------------------------------------
    def sanitize_new_entity(self, entity: Entity, user_id: Optional[str] = None) -> None:
        """Strip formation data so created or pasted copies start unlinked."""

        entity.flags.pop(self.relations.namespace, None)

    async def handle_entity_updated(
        self,
        previous: Entity,
        changes: Mapping[str, Any],
        options: Mapping[str, Any],
        user_id: Optional[str],
    ) -> None:
        # Only the client that made the change reacts to it.
        if user_id != self.context.session_id or not should_track(changes):
            return

        entity = self.relations.get_entity(previous.scene_id, previous.id)
        if entity is None:
            return

        followers = self.relations.get_leader_state(entity).followers
        if followers:
            follow_vector = FollowVector(location_of(previous), location_of(previous, changes))
            await self.bus.publish(
                SquadronEvent.LEADER_MOVE,
                LeaderMovePayload(
                    leader=LeaderInfo(
                        token_id=entity.id,
                        scene_id=entity.scene_id,
                        follow_vector=follow_vector.to_wire(),
                    ),
                    followers=list(followers),
                ),
            )

        if options.get(SQUADRON_EVENT_OPTION) == SquadronEvent.LEADER_MOVE.value:
            return

        state = self.relations.get_follower_state(entity)
        if (
            state is not None
            and state.leaders
            and not state.paused
            and not state.always_follows
            and should_track(changes, ignore_rotation=True)
        ):
            logger.info(f"{entity.id} moved on its own, pausing its formation")
            await self.relations.set_paused(entity, True)

    async def handle_entity_deleted(self, entity: Entity, user_id: Optional[str]) -> None:
        if user_id != self.context.session_id:
            return

        for follower_id in self.relations.get_leader_state(entity).followers:
            await self.bus.publish(
                SquadronEvent.REMOVE_LEADER,
                UnlinkPayload(leader_id=entity.id, follower_id=follower_id, scene_id=entity.scene_id),
            )
        await self.announce_stop_follow(entity)
