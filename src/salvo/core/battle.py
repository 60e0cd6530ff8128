"""
Battle data model.

A ``Battle`` is the aggregate root for one match. It owns every entity,
player and log entry produced while reconstructing that match and shares
nothing with other battles.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from salvo.core.constants import DamageCategory, DamageKind
from salvo.core.events import FinalResult
from salvo.core.lookup import GameDefinition, unknown_definition


class AnomalyKind(StrEnum):
    STREAM_TRUNCATED = "stream_truncated"
    UNRESOLVED_REFERENCE = "unresolved_reference"
    UNKNOWN_EVENT_KIND = "unknown_event_kind"
    LOOKUP_MISS = "lookup_miss"
    CONSERVATION_VIOLATION = "conservation_violation"
    RESULT_DISCREPANCY = "result_discrepancy"


@dataclass
class Anomaly:
    """Something recoverable that went wrong while processing a battle."""

    kind: AnomalyKind
    message: str
    timestamp: float | None = None
    entity_id: int | None = None
    resolved: bool = False

    def to_dict(self) -> dict:
        return {
            "kind": str(self.kind),
            "message": self.message,
            "timestamp": self.timestamp,
            "entity_id": self.entity_id,
            "resolved": self.resolved,
        }


@dataclass
class StatusInterval:
    start: float
    end: float | None = None
    source_id: int | None = None

    @property
    def is_open(self) -> bool:
        return self.end is None

    def duration(self) -> float:
        return 0.0 if self.end is None else max(0.0, self.end - self.start)


@dataclass
class Entity:
    """One combatant (ship) for the duration of the battle."""

    entity_id: int
    team_id: int | None = None
    type_id: int | None = None
    player_id: int | None = None  # Owning account; None for AI/unmanned
    definition: GameDefinition = field(default_factory=lambda: unknown_definition(None))
    spawn_time: float | None = None
    destruction_time: float | None = None
    max_health: float = 0.0
    health: float = 0.0
    damage_taken: float = 0.0
    killer_id: int | None = None
    death_cause: str | None = None
    statuses: dict[str, list[StatusInterval]] = field(default_factory=dict)
    consumables_used: Counter = field(default_factory=Counter)
    is_placeholder: bool = False

    @property
    def is_destroyed(self) -> bool:
        return self.destruction_time is not None

    def active_status(self, status: str) -> StatusInterval | None:
        intervals = self.statuses.get(status)
        if intervals and intervals[-1].is_open:
            return intervals[-1]
        return None

    def status_time(self, status: str) -> float:
        return sum(i.duration() for i in self.statuses.get(status, []))


@dataclass
class Player:
    """A participant as announced by the roster."""

    entity_id: int
    name: str
    team_id: int
    account_id: int | None = None
    division_id: int | None = None
    clan_tag: str | None = None
    clan_color: int | None = None
    is_local: bool = False
    disconnected: bool = False
    result: FinalResult | None = None

    @property
    def is_bot(self) -> bool:
        return not self.account_id


@dataclass(frozen=True)
class DamageEvent:
    """An atomic damage interaction. Never mutated once recorded."""

    source_id: int
    target_id: int
    timestamp: float
    amount: float
    kind: DamageKind
    category: DamageCategory = DamageCategory.DEALT
    strike_id: str | None = None
    sequence: int | None = None

    @property
    def is_self_damage(self) -> bool:
        return self.source_id == self.target_id


@dataclass(frozen=True)
class HealEvent:
    source_id: int
    target_id: int
    timestamp: float
    amount: float


@dataclass(frozen=True)
class ConsumableUsage:
    entity_id: int
    consumable_id: int
    timestamp: float


@dataclass
class Battle:
    """Aggregate root for one match."""

    battle_id: str
    map_id: str = ""
    game_mode: str = ""
    game_type: str = ""
    start_time: datetime | None = None
    start_timestamp: float | None = None
    end_timestamp: float | None = None
    last_timestamp: float | None = None
    winner_team_id: int | None = None

    entities: dict[int, Entity] = field(default_factory=dict)
    players: dict[int, Player] = field(default_factory=dict)  # keyed by entity id
    damage_log: list[DamageEvent] = field(default_factory=list)
    heal_log: list[HealEvent] = field(default_factory=list)
    consumable_log: list[ConsumableUsage] = field(default_factory=list)
    final_results: dict[int, FinalResult] = field(default_factory=dict)

    anomalies: list[Anomaly] = field(default_factory=list)
    skipped_events: Counter = field(default_factory=Counter)
    duplicates_dropped: int = 0
    out_of_order_events: int = 0
    events_processed: int = 0

    finalized: bool = False
    incomplete: bool = False

    @property
    def duration(self) -> float:
        """Game seconds between battle start and battle end (or last event)."""
        start = self.start_timestamp or 0.0
        end = self.end_timestamp if self.end_timestamp is not None else self.last_timestamp
        if end is None:
            return 0.0
        return max(0.0, end - start)

    @property
    def teams(self) -> list[int]:
        team_ids = {e.team_id for e in self.entities.values() if e.team_id is not None}
        team_ids.update(p.team_id for p in self.players.values())
        return sorted(team_ids)

    def local_player(self) -> Player | None:
        for player in self.players.values():
            if player.is_local:
                return player
        return None

    def anomalies_of(self, kind: AnomalyKind, include_resolved: bool = False) -> list[Anomaly]:
        return [
            a for a in self.anomalies if a.kind == kind and (include_resolved or not a.resolved)
        ]

    @property
    def has_unresolved_references(self) -> bool:
        return bool(self.anomalies_of(AnomalyKind.UNRESOLVED_REFERENCE))
