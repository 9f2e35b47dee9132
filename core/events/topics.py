"""Canonical registry of the squadron wire events.

Each entry is declared as a :class:`~enum.Enum` member and documents the
producer, the intended consumers and the payload guarantees for the associated
event.  The member values are the names used on the broadcast channel, so they
must stay stable across releases: peers running different builds still have
to understand each other.
"""

from __future__ import annotations

from enum import Enum

__all__ = ["SquadronEvent"]


class SquadronEvent(str, Enum):
    """Enumeration of every event exchanged between squadron peers."""

    LEADER_MOVE = "sq-leader-move"
    """Published by the client whose user moved a leader.

    Subscribers: :meth:`MovementOrchestrator.handle_leader_move` on every peer.
    Guarantees: one :class:`~multiplayer.models.LeaderMovePayload` carrying the
    leader id, its scene, the follow vector and the follower ids listed on the
    leader at the time of the move.
    """

    ADD_FOLLOWER = "sq-add-follower"
    """Published by :meth:`SquadronAPI.start_follow`, first half of a join.

    Subscribers: the leader's authority, which appends the follower id.
    Guarantees: one :class:`~multiplayer.models.LinkPayload`.
    """

    ADD_LEADER = "sq-add-leader"
    """Published by :meth:`SquadronAPI.start_follow`, second half of a join.

    Subscribers: the follower's authority, which stores the relation.
    Guarantees: the same :class:`~multiplayer.models.LinkPayload` as the
    matching ``ADD_FOLLOWER``.
    """

    REMOVE_FOLLOWER = "sq-remove-follower"
    """Published when a follower stops tracking a leader.

    Producers: explicit stops, follower deletion and reciprocity repair.
    Guarantees: one :class:`~multiplayer.models.UnlinkPayload`.
    """

    REMOVE_LEADER = "sq-remove-leader"
    """Published for every listed follower when a leader is deleted.

    Guarantees: one :class:`~multiplayer.models.UnlinkPayload`.
    """

    NOTIFY_COLLISION = "sq-notify-collision"
    """Published by the orchestrator before persisting wall-collision stops.

    Subscribers: the session named in the notice, to warn its user.
    Guarantees: one :class:`~multiplayer.models.CollisionNotice`.
    """
