"""
Game definition lookup.

The game's parameter database is an external collaborator. Everything in Salvo
talks to it through ``GameDefinitionLookup``; misses never raise, they return
an "unknown" placeholder so that new game content does not break analysis.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from salvo.core.constants import ShipClass

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "unknown"


@dataclass(frozen=True)
class GameDefinition:
    """A resolved ship / consumable / weapon definition."""

    type_id: int | None
    name: str
    category: str = ShipClass.UNKNOWN
    tier: int = 0
    nation: str = ""
    damage_profile: dict[str, float] = field(default_factory=dict)

    @property
    def is_unknown(self) -> bool:
        return self.name == UNKNOWN_NAME


@dataclass(frozen=True)
class AchievementDefinition:
    achievement_id: int
    name: str
    description: str = ""

    @property
    def is_unknown(self) -> bool:
        return self.name == UNKNOWN_NAME


def unknown_definition(type_id: int | None) -> GameDefinition:
    return GameDefinition(type_id=type_id, name=UNKNOWN_NAME)


def unknown_achievement(achievement_id: int) -> AchievementDefinition:
    return AchievementDefinition(achievement_id=achievement_id, name=UNKNOWN_NAME)


class GameDefinitionLookup(ABC):
    """Read-only lookup keyed by numeric type / achievement ids."""

    @abstractmethod
    def resolve(self, type_id: int | None) -> GameDefinition:
        """Resolve a type id; unknown ids resolve to a placeholder."""

    @abstractmethod
    def resolve_achievement(self, achievement_id: int) -> AchievementDefinition:
        """Resolve an achievement id; unknown ids resolve to a placeholder."""


class NullLookup(GameDefinitionLookup):
    """Lookup with no data: everything resolves to a placeholder."""

    def resolve(self, type_id: int | None) -> GameDefinition:
        return unknown_definition(type_id)

    def resolve_achievement(self, achievement_id: int) -> AchievementDefinition:
        return unknown_achievement(achievement_id)


class StaticGameDefinitions(GameDefinitionLookup):
    """
    Dictionary-backed lookup, usually loaded from an exported definitions file.

    File layout (JSON or YAML):

        types:
          4181669680: {name: Yamato, category: Battleship, tier: 10, nation: japan}
          4293866416: {name: Damage Control Party, category: consumable}
        achievements:
          4277330864: {name: Kraken Unleashed, description: Destroy 5 ships}
    """

    def __init__(
        self,
        types: dict[int, GameDefinition] | None = None,
        achievements: dict[int, AchievementDefinition] | None = None,
    ):
        self.types = types or {}
        self.achievements = achievements or {}
        self._misses: set[tuple[str, int | None]] = set()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StaticGameDefinitions:
        types = {}
        for key, entry in (data.get("types") or {}).items():
            type_id = int(key)
            types[type_id] = GameDefinition(
                type_id=type_id,
                name=str(entry.get("name", UNKNOWN_NAME)),
                category=str(entry.get("category", ShipClass.UNKNOWN)),
                tier=int(entry.get("tier", 0) or 0),
                nation=str(entry.get("nation", "")),
                damage_profile={k: float(v) for k, v in (entry.get("damage_profile") or {}).items()},
            )
        achievements = {}
        for key, entry in (data.get("achievements") or {}).items():
            achievement_id = int(key)
            achievements[achievement_id] = AchievementDefinition(
                achievement_id=achievement_id,
                name=str(entry.get("name", UNKNOWN_NAME)),
                description=str(entry.get("description", "")),
            )
        return cls(types=types, achievements=achievements)

    @classmethod
    def from_file(cls, path: Path | str) -> StaticGameDefinitions:
        """Load definitions from a JSON or YAML file."""
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix in (".yaml", ".yml"):
            import yaml

            with open(path) as f:
                data = yaml.safe_load(f) or {}
        elif suffix == ".json":
            with open(path) as f:
                data = json.load(f)
        else:
            raise ValueError(f"Unknown definitions file format: {suffix}")

        lookup = cls.from_dict(data)
        logger.info(
            f"Loaded {len(lookup.types)} type and {len(lookup.achievements)} "
            f"achievement definitions from {path}"
        )
        return lookup

    def resolve(self, type_id: int | None) -> GameDefinition:
        definition = self.types.get(type_id) if type_id is not None else None
        if definition is None:
            self._note_miss("type", type_id)
            return unknown_definition(type_id)
        return definition

    def resolve_achievement(self, achievement_id: int) -> AchievementDefinition:
        definition = self.achievements.get(achievement_id)
        if definition is None:
            self._note_miss("achievement", achievement_id)
            return unknown_achievement(achievement_id)
        return definition

    def _note_miss(self, what: str, key: int | None) -> None:
        # Log each miss once; the same id is usually looked up many times
        if (what, key) not in self._misses:
            self._misses.add((what, key))
            logger.debug(f"No {what} definition for id {key}")
