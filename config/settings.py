"""Typed squadron settings built from the YAML configuration."""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from config.config_loader import ConfigLoader

__all__ = ["CollisionPolicy", "SquadronSettings", "load_settings"]


class CollisionPolicy(str, Enum):
    """What happens to a follower whose path crosses a wall."""

    OFF = "off"
    PAUSE = "pause"
    TELEPORT = "teleport"


class SquadronSettings(BaseModel):
    collide_walls: CollisionPolicy = CollisionPolicy.OFF
    teleport_step: float = Field(default=10.0, gt=0)
    silent_collide: bool = False
    propagate_handler_errors: bool = False
    channel: str = "module.squadron"
    namespace: str = "squadron"


def load_settings(config_file: str = "settings.yaml", loader: Optional[ConfigLoader] = None) -> SquadronSettings:
    """Read the ``squadron`` section of ``config_file``; missing keys keep their defaults."""

    loader = loader or ConfigLoader(config_file)
    section: Any = loader.get("squadron", default={})
    return SquadronSettings.model_validate(section or {})
