"""
Typed battle events.

The replay decoder yields an ordered stream of records. Each record is turned
into one member of the closed ``Event`` family below; records whose ``kind``
tag is not part of the family become ``UnknownEvent`` so that reconstruction
stays forward-compatible with event kinds added by newer game versions.

Wire format (one JSON object per record):

    {"kind": "hit", "timestamp": 312.5, "seq": 1841,
     "source": 101, "target": 204, "amount": 4000,
     "damage_kind": "artillery", "category": "dealt"}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Union

from salvo.core.constants import DamageCategory, DamageKind

logger = logging.getLogger(__name__)


class EventDecodeError(ValueError):
    """A record has a known kind tag but is missing or mangling its fields."""


class EventKind(StrEnum):
    BATTLE_START = "battle_start"
    ROSTER = "roster"
    SPAWN = "spawn"
    HIT = "hit"
    HEAL = "heal"
    CONSUMABLE = "consumable"
    STATUS = "status"
    DISCONNECT = "disconnect"
    DEATH = "death"
    BATTLE_RESULTS = "battle_results"
    BATTLE_END = "battle_end"


# ============================================================================
# Final-result feed
# ============================================================================


@dataclass(frozen=True)
class FinalResult:
    """Server-reported end-of-battle result for one player."""

    account_id: int
    rank: int | None = None
    base_xp: int | None = None
    raw_xp: int | None = None
    achievement_ids: tuple[int, ...] = ()
    ribbons: dict[str, int] = field(default_factory=dict)
    survived: bool | None = None
    # Optional server-side damage figures, used for discrepancy checks
    damage: float | None = None
    spotting_damage: float | None = None
    potential_damage: float | None = None
    frags: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FinalResult:
        try:
            account_id = int(data["account_id"])
        except (KeyError, TypeError, ValueError) as e:
            raise EventDecodeError(f"final result without account_id: {data!r}") from e
        return cls(
            account_id=account_id,
            rank=_opt_int(data.get("rank")),
            base_xp=_opt_int(data.get("base_xp")),
            raw_xp=_opt_int(data.get("raw_xp")),
            achievement_ids=tuple(int(a) for a in data.get("achievements", ()) or ()),
            ribbons={str(k): int(v) for k, v in (data.get("ribbons") or {}).items()},
            survived=_opt_bool(data.get("survived")),
            damage=_opt_float(data.get("damage")),
            spotting_damage=_opt_float(data.get("spotting_damage")),
            potential_damage=_opt_float(data.get("potential_damage")),
            frags=_opt_int(data.get("frags")),
        )


# ============================================================================
# Event family
# ============================================================================


@dataclass(frozen=True)
class BattleStart:
    timestamp: float
    map_id: str
    game_mode: str = ""
    game_type: str = ""
    start_time: datetime | None = None
    sequence: int | None = None
    kind = EventKind.BATTLE_START


@dataclass(frozen=True)
class RosterAnnounce:
    """A participant and the vehicle entity they control."""

    timestamp: float
    entity_id: int
    name: str
    team_id: int
    account_id: int | None = None  # None (or 0) for bots
    division_id: int | None = None
    clan_tag: str | None = None
    clan_color: int | None = None
    is_local: bool = False
    sequence: int | None = None
    kind = EventKind.ROSTER


@dataclass(frozen=True)
class EntitySpawn:
    timestamp: float
    entity_id: int
    team_id: int
    type_id: int | None = None
    max_health: float = 0.0
    sequence: int | None = None
    kind = EventKind.SPAWN


@dataclass(frozen=True)
class Hit:
    timestamp: float
    source_id: int
    target_id: int
    amount: float
    damage_kind: DamageKind = DamageKind.OTHER
    category: DamageCategory = DamageCategory.DEALT
    strike_id: str | None = None  # Shared by all sub-munitions of one strike
    sequence: int | None = None
    kind = EventKind.HIT


@dataclass(frozen=True)
class Heal:
    timestamp: float
    source_id: int
    target_id: int
    amount: float
    sequence: int | None = None
    kind = EventKind.HEAL


@dataclass(frozen=True)
class ConsumableUse:
    timestamp: float
    entity_id: int
    consumable_id: int
    sequence: int | None = None
    kind = EventKind.CONSUMABLE


@dataclass(frozen=True)
class StatusChange:
    """A status effect starting or ending (fire, flooding, ...)."""

    timestamp: float
    entity_id: int
    status: str
    active: bool
    source_id: int | None = None  # Who caused it, for ignitions
    sequence: int | None = None
    kind = EventKind.STATUS


@dataclass(frozen=True)
class PlayerDisconnect:
    timestamp: float
    entity_id: int
    sequence: int | None = None
    kind = EventKind.DISCONNECT


@dataclass(frozen=True)
class Death:
    timestamp: float
    entity_id: int
    killer_id: int | None = None
    cause: str | None = None
    sequence: int | None = None
    kind = EventKind.DEATH


@dataclass(frozen=True)
class BattleResults:
    timestamp: float
    results: dict[int, FinalResult] = field(default_factory=dict)
    sequence: int | None = None
    kind = EventKind.BATTLE_RESULTS


@dataclass(frozen=True)
class BattleEnd:
    timestamp: float
    winner_team_id: int | None = None
    sequence: int | None = None
    kind = EventKind.BATTLE_END


@dataclass(frozen=True)
class UnknownEvent:
    """Any record whose kind is not part of the family above."""

    timestamp: float
    tag: str
    payload: dict[str, Any] = field(default_factory=dict)
    malformed: bool = False
    sequence: int | None = None
    kind = None


Event = Union[
    BattleStart,
    RosterAnnounce,
    EntitySpawn,
    Hit,
    Heal,
    ConsumableUse,
    StatusChange,
    PlayerDisconnect,
    Death,
    BattleResults,
    BattleEnd,
    UnknownEvent,
]


# ============================================================================
# Decoding
# ============================================================================


def _opt_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _opt_bool(value: Any) -> bool | None:
    # Only real booleans and integer flags; strings like "false" stay unknown
    if isinstance(value, (bool, int)):
        return bool(value)
    return None


def _parse_time(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _decode_battle_start(r: dict, ts: float, seq: int | None) -> BattleStart:
    return BattleStart(
        timestamp=ts,
        map_id=str(r["map_id"]),
        game_mode=str(r.get("game_mode", "")),
        game_type=str(r.get("game_type", "")),
        start_time=_parse_time(r.get("start_time")),
        sequence=seq,
    )


def _decode_roster(r: dict, ts: float, seq: int | None) -> RosterAnnounce:
    account_id = _opt_int(r.get("account_id"))
    return RosterAnnounce(
        timestamp=ts,
        entity_id=int(r["entity_id"]),
        name=str(r["name"]),
        team_id=int(r["team_id"]),
        account_id=account_id or None,
        division_id=_opt_int(r.get("division_id")) or None,
        clan_tag=r.get("clan_tag") or None,
        clan_color=_opt_int(r.get("clan_color")),
        is_local=bool(r.get("is_local", False)),
        sequence=seq,
    )


def _decode_spawn(r: dict, ts: float, seq: int | None) -> EntitySpawn:
    return EntitySpawn(
        timestamp=ts,
        entity_id=int(r["entity_id"]),
        team_id=int(r["team_id"]),
        type_id=_opt_int(r.get("type_id")),
        max_health=float(r.get("max_health", 0.0) or 0.0),
        sequence=seq,
    )


def _decode_hit(r: dict, ts: float, seq: int | None) -> Hit:
    try:
        category = DamageCategory(str(r.get("category", DamageCategory.DEALT)).lower())
    except ValueError as e:
        raise EventDecodeError(f"unknown damage category {r.get('category')!r}") from e
    strike_id = r.get("strike_id")
    return Hit(
        timestamp=ts,
        source_id=int(r["source"]),
        target_id=int(r["target"]),
        amount=float(r["amount"]),
        damage_kind=DamageKind.parse(r.get("damage_kind")),
        category=category,
        strike_id=str(strike_id) if strike_id is not None else None,
        sequence=seq,
    )


def _decode_heal(r: dict, ts: float, seq: int | None) -> Heal:
    target = int(r["target"])
    return Heal(
        timestamp=ts,
        source_id=int(r.get("source", target)),
        target_id=target,
        amount=float(r["amount"]),
        sequence=seq,
    )


def _decode_consumable(r: dict, ts: float, seq: int | None) -> ConsumableUse:
    return ConsumableUse(
        timestamp=ts,
        entity_id=int(r["entity_id"]),
        consumable_id=int(r["consumable_id"]),
        sequence=seq,
    )


def _decode_status(r: dict, ts: float, seq: int | None) -> StatusChange:
    return StatusChange(
        timestamp=ts,
        entity_id=int(r["entity_id"]),
        status=str(r["status"]).lower(),
        active=bool(r.get("active", True)),
        source_id=_opt_int(r.get("source")),
        sequence=seq,
    )


def _decode_disconnect(r: dict, ts: float, seq: int | None) -> PlayerDisconnect:
    return PlayerDisconnect(timestamp=ts, entity_id=int(r["entity_id"]), sequence=seq)


def _decode_death(r: dict, ts: float, seq: int | None) -> Death:
    return Death(
        timestamp=ts,
        entity_id=int(r["entity_id"]),
        killer_id=_opt_int(r.get("killer")),
        cause=r.get("cause"),
        sequence=seq,
    )


def _decode_results(r: dict, ts: float, seq: int | None) -> BattleResults:
    raw = r.get("results") or []
    if isinstance(raw, dict):
        raw = [dict(v, account_id=k) if "account_id" not in v else v for k, v in raw.items()]
    results = {}
    for item in raw:
        result = FinalResult.from_dict(item)
        results[result.account_id] = result
    return BattleResults(timestamp=ts, results=results, sequence=seq)


def _decode_battle_end(r: dict, ts: float, seq: int | None) -> BattleEnd:
    return BattleEnd(timestamp=ts, winner_team_id=_opt_int(r.get("winner_team_id")), sequence=seq)


_DECODERS = {
    EventKind.BATTLE_START: _decode_battle_start,
    EventKind.ROSTER: _decode_roster,
    EventKind.SPAWN: _decode_spawn,
    EventKind.HIT: _decode_hit,
    EventKind.HEAL: _decode_heal,
    EventKind.CONSUMABLE: _decode_consumable,
    EventKind.STATUS: _decode_status,
    EventKind.DISCONNECT: _decode_disconnect,
    EventKind.DEATH: _decode_death,
    EventKind.BATTLE_RESULTS: _decode_results,
    EventKind.BATTLE_END: _decode_battle_end,
}


def decode_event(record: dict[str, Any]) -> Event:
    """
    Decode one wire record into a typed event.

    Unknown kind tags decode to ``UnknownEvent``. Known tags with missing or
    invalid fields raise ``EventDecodeError``.
    """
    if not isinstance(record, dict):
        raise EventDecodeError(f"record is not an object: {type(record).__name__}")
    tag = str(record.get("kind", ""))
    try:
        timestamp = float(record.get("timestamp", 0.0))
        sequence = _opt_int(record.get("seq"))
    except (TypeError, ValueError) as e:
        raise EventDecodeError(f"bad timestamp/seq in {tag!r} record") from e

    try:
        kind = EventKind(tag)
    except ValueError:
        payload = {k: v for k, v in record.items() if k not in ("kind", "timestamp", "seq")}
        return UnknownEvent(timestamp=timestamp, tag=tag, payload=payload, sequence=sequence)

    try:
        return _DECODERS[kind](record, timestamp, sequence)
    except (KeyError, TypeError, ValueError) as e:
        if isinstance(e, EventDecodeError):
            raise
        raise EventDecodeError(f"malformed {tag!r} record: {e}") from e
