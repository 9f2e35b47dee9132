from datetime import datetime, timedelta, timezone

import pytest

from modules.formation.store import Entity
from multiplayer.models import PermissionLevel, Session
from multiplayer.ownership import InMemorySessionRegistry, OwnershipResolver

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
TOKEN = Entity(id="tok", scene_id="s")


@pytest.fixture
def registry():
    return InMemorySessionRegistry()


def resolver(registry, session_id="any"):
    return OwnershipResolver(registry, session_id)


def test_earliest_gm_wins(registry):
    registry.connect(Session(id="late-gm", is_gm=True, connected_at=T0 + timedelta(minutes=5)))
    registry.connect(Session(id="gm", is_gm=True, connected_at=T0))
    registry.connect(Session(id="player", connected_at=T0 - timedelta(hours=1)))
    registry.grant("s", "tok", "player")

    assert resolver(registry).first_owner(TOKEN).id == "gm"
    assert resolver(registry, "gm").is_authoritative(TOKEN)
    assert not resolver(registry, "late-gm").is_authoritative(TOKEN)
    assert not resolver(registry, "player").is_authoritative(TOKEN)


def test_connection_tie_breaks_on_session_id(registry):
    registry.connect(Session(id="b", is_gm=True, connected_at=T0))
    registry.connect(Session(id="a", is_gm=True, connected_at=T0))
    assert resolver(registry).first_owner(TOKEN).id == "a"


def test_naive_timestamps_are_treated_as_utc(registry):
    registry.connect(Session(id="aware", is_gm=True, connected_at=T0 + timedelta(seconds=1)))
    registry.connect(Session(id="naive", is_gm=True, connected_at=T0.replace(tzinfo=None)))
    assert resolver(registry).first_owner(TOKEN).id == "naive"


def test_highest_permission_owner_without_gm(registry):
    registry.connect(Session(id="p1", connected_at=T0))
    registry.connect(Session(id="p2", connected_at=T0 + timedelta(seconds=1)))
    registry.connect(Session(id="p3", connected_at=T0 + timedelta(seconds=2)))
    registry.grant("s", "tok", "p1", PermissionLevel.OBSERVER)
    registry.grant("s", "tok", "p2", PermissionLevel.OWNER)
    registry.grant("s", "tok", "p3", PermissionLevel.OWNER)
    assert resolver(registry).first_owner(TOKEN).id == "p2"


def test_disconnected_gm_hands_over(registry):
    registry.connect(Session(id="gm", is_gm=True, connected_at=T0))
    registry.connect(Session(id="p1", connected_at=T0))
    registry.grant("s", "tok", "p1")
    registry.disconnect("gm")
    assert resolver(registry, "p1").is_authoritative(TOKEN)


def test_nobody_owns_without_sufficient_permission(registry):
    registry.connect(Session(id="p1", connected_at=T0))
    registry.grant("s", "tok", "p1", PermissionLevel.LIMITED)
    assert resolver(registry).first_owner(TOKEN) is None
    assert resolver(registry).first_owner(None) is None
    assert not resolver(registry, "p1").is_authoritative(TOKEN)
