"""Cross-battle player encounter tracking.

Records who the replay owner played with and against, answers history
queries per player, and correlates a battle roster against the viewer list
of a live stream to flag possible stream snipers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from salvo.analysis.statistics import BattleStatistics
from salvo.core.config import TrackerConfig
from salvo.core.constants import TRACKED_GAME_TYPES
from salvo.infra.database import EncounterRecord, EncounterStore
from salvo.tracking.correlation import ViewerMatch, match_viewers

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


class RosterMember(Protocol):
    """Anything with roster identity: Player or PlayerStatistics."""

    entity_id: int
    name: str
    account_id: int | None
    division_id: int | None
    is_local: bool


@dataclass(frozen=True)
class PlayerOutcome:
    """One player's result in one battle, as stored in the encounter log."""

    player_id: int
    name: str
    clan_tag: str | None = None
    team_id: int | None = None
    relation: str | None = None  # "ally" / "enemy"
    ship_id: int | None = None
    ship_name: str | None = None
    outcome: str | None = None
    damage: float = 0.0
    frags: int = 0

    def to_row(self) -> dict[str, Any]:
        return {
            "player_id": self.player_id,
            "name": self.name,
            "clan_tag": self.clan_tag,
            "team_id": self.team_id,
            "relation": self.relation,
            "ship_id": self.ship_id,
            "ship_name": self.ship_name,
            "outcome": self.outcome,
            "damage": self.damage,
            "frags": self.frags,
        }


@dataclass
class ViewerCorrelation:
    """Roster players whose names resemble live viewers. Never persisted."""

    battle_id: str | None
    matches: dict[int, list[ViewerMatch]] = field(default_factory=dict)  # entity id -> ranked
    names: dict[int, str] = field(default_factory=dict)
    excluded: list[int] = field(default_factory=list)

    @property
    def flagged(self) -> list[int]:
        return sorted(self.matches)

    def as_tuples(self) -> list[tuple[str, str, float]]:
        """(player name, viewer name, confidence) for every reported match."""
        return [
            (self.names[entity_id], match.viewer_name, match.confidence)
            for entity_id in self.flagged
            for match in self.matches[entity_id]
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "battle_id": self.battle_id,
            "players": [
                {
                    "entity_id": entity_id,
                    "name": self.names[entity_id],
                    "matches": [m.to_dict() for m in self.matches[entity_id]],
                }
                for entity_id in self.flagged
            ],
            "excluded": sorted(self.excluded),
        }


class EncounterQuery:
    """
    Lazy, restartable view of one player's encounters, newest first.

    Every iteration starts a fresh keyset walk over the store, so rows
    appended meanwhile never invalidate it.
    """

    def __init__(
        self,
        store: EncounterStore,
        player_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
        page_size: int = 200,
    ):
        self.store = store
        self.player_id = player_id
        self.start = start
        self.end = end
        self.page_size = page_size

    def __iter__(self) -> Iterator[EncounterRecord]:
        return self.store.iter_encounters(self.player_id, self.start, self.end, self.page_size)

    def first(self) -> EncounterRecord | None:
        return next(iter(self), None)

    def to_list(self) -> list[EncounterRecord]:
        return list(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _excluded_for_local(roster: list[RosterMember], exclude_division_mates: bool) -> set[int]:
    """Entity ids of the local player and, optionally, their division mates."""
    local = next((p for p in roster if p.is_local), None)
    if local is None:
        return set()
    excluded = {local.entity_id}
    if exclude_division_mates and local.division_id:
        excluded.update(p.entity_id for p in roster if p.division_id == local.division_id)
    return excluded


def outcomes_from_statistics(
    stats: BattleStatistics, exclude_division_mates: bool = True
) -> list[PlayerOutcome]:
    """
    Encounter rows for a battle: everyone except bots, the replay owner and
    (by default) the owner's division.
    """
    excluded = _excluded_for_local(stats.players, exclude_division_mates)
    local = stats.local_player()
    outcomes = []
    for ps in stats.players:
        if ps.is_bot or ps.entity_id in excluded:
            continue
        relation = None
        if local is not None:
            relation = "ally" if ps.team_id == local.team_id else "enemy"
        outcomes.append(
            PlayerOutcome(
                player_id=ps.account_id,
                name=ps.name,
                clan_tag=ps.clan_tag,
                team_id=ps.team_id,
                relation=relation,
                ship_id=ps.ship_id,
                ship_name=ps.ship_name,
                outcome=str(ps.outcome),
                damage=ps.damage_total,
                frags=ps.frags,
            )
        )
    return outcomes


# ---------------------------------------------------------------------------
# SessionPlayerTracker
# ---------------------------------------------------------------------------


class SessionPlayerTracker:
    """Tracks player encounters across battles."""

    def __init__(self, store: EncounterStore, config: TrackerConfig | None = None) -> None:
        self.store = store
        self.config = config or TrackerConfig()

    def record(
        self,
        battle_id: str,
        outcomes: Iterable[PlayerOutcome],
        timestamp: datetime | None = None,
        battle_info: dict[str, Any] | None = None,
    ) -> int:
        """Idempotently store one battle's outcomes. Returns rows added."""
        rows = [o.to_row() for o in outcomes if o.player_id]
        if not rows:
            return 0
        return self.store.append_encounters(
            battle_id,
            timestamp or datetime.now(UTC),
            rows,
            battle_info=battle_info,
        )

    def record_statistics(self, stats: BattleStatistics) -> int:
        """Record a derived battle; only random and ranked battles are tracked."""
        if stats.game_type and stats.game_type not in TRACKED_GAME_TYPES:
            logger.debug(f"Not tracking {stats.game_type} battle {stats.battle_id}")
            return 0
        outcomes = outcomes_from_statistics(stats, self.config.exclude_division_mates)
        return self.record(
            stats.battle_id,
            outcomes,
            timestamp=stats.start_time,
            battle_info={"map_id": stats.map_id, "game_type": stats.game_type},
        )

    def query(
        self,
        player_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> EncounterQuery:
        """Encounters of ``player_id`` within [start, end], newest first."""
        return EncounterQuery(self.store, player_id, start, end, self.config.query_page_size)

    def encounter_count(self, player_id: int) -> int:
        return self.store.count_encounters(player_id)

    def repeat_opponents(
        self,
        roster: Iterable[RosterMember],
        since: datetime | None = None,
        exclude_battle: str | None = None,
    ) -> dict[int, list[EncounterRecord]]:
        """Roster players (by account id) met before, with their earlier encounters."""
        roster = list(roster)
        excluded = _excluded_for_local(roster, self.config.exclude_division_mates)
        ids = [p.account_id for p in roster if p.account_id and p.entity_id not in excluded]
        seen: dict[int, list[EncounterRecord]] = {}
        for record in self.store.encounters_for_players(ids, since, exclude_battle):
            seen.setdefault(record.player_id, []).append(record)
        return seen

    def correlate(
        self,
        roster: Iterable[RosterMember],
        viewer_names: Iterable[str],
        battle_id: str | None = None,
    ) -> ViewerCorrelation:
        """
        Match roster names against live viewer names.

        The local player and their division are never flagged. Matches below
        the configured similarity threshold are not reported.
        """
        roster = sorted(roster, key=lambda p: p.entity_id)
        viewers = sorted(set(viewer_names))
        excluded = _excluded_for_local(roster, self.config.exclude_division_mates)

        correlation = ViewerCorrelation(battle_id=battle_id, excluded=sorted(excluded))
        for player in roster:
            if player.entity_id in excluded:
                continue
            matches = match_viewers(
                player.name,
                viewers,
                threshold=self.config.similarity_threshold,
                max_distance=self.config.max_edit_distance,
                min_length=self.config.min_name_length,
            )
            if matches:
                correlation.matches[player.entity_id] = matches
                correlation.names[player.entity_id] = player.name

        if correlation.matches:
            logger.info(
                f"{len(correlation.matches)} roster players resemble live viewers"
                + (f" in battle {battle_id}" if battle_id else "")
            )
        return correlation
