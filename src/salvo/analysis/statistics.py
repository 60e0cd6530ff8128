"""
Statistics Derivation

Combines a reconstructed Battle, its DamageTable and (optionally) the
server's final results into per-player and per-team statistics.

Contains:
- PlayerStatistics: damage by category / kind / opposing entity, frags,
  fires and floods started, achievements, consumables, survival, rating
- TeamStatistics: rollups over every entity of a team, bots included
- BattleStatistics: the whole derivation result plus diagnostics
- derive_statistics / rescore

Diagnostics (never raised):
- conservation_violation when dealt and received totals disagree
- result_discrepancy when the server outcome or per-player server figures
  disagree with what the event log shows, or server results are partial
- every unresolved anomaly recorded during reconstruction
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from salvo.analysis.damage import ConservationReport, DamageAggregator, DamageTable, check_conservation
from salvo.analysis.rating import (
    PersonalRatingResult,
    ScoringInput,
    ScoringStrategy,
    build_scoring,
)
from salvo.core.battle import Anomaly, AnomalyKind, Battle, Entity, Player
from salvo.core.config import SalvoConfig
from salvo.core.constants import STATUS_FIRE, STATUS_FLOODING, BattleOutcome, DamageKind
from salvo.core.events import FinalResult
from salvo.core.lookup import GameDefinitionLookup, NullLookup

logger = logging.getLogger(__name__)


@dataclass
class PlayerStatistics:
    """Everything derived for one roster participant."""

    entity_id: int
    name: str
    team_id: int
    account_id: int | None = None
    clan_tag: str | None = None
    division_id: int | None = None
    is_bot: bool = False
    is_local: bool = False
    disconnected: bool = False

    # Ship
    ship_id: int | None = None
    ship_name: str = "unknown"
    ship_class: str = "unknown"
    tier: int = 0

    # Damage
    damage_total: float = 0.0  # As the game's scoreboard counts it
    damage_to_enemies: float = 0.0
    damage_received: float = 0.0
    potential_damage: float = 0.0
    potential_inflicted: float = 0.0
    spotting_damage: float = 0.0
    self_damage: float = 0.0
    team_damage: float = 0.0
    healed: float = 0.0
    hits: int = 0
    damage_by_kind: dict[str, float] = field(default_factory=dict)
    received_by_kind: dict[str, float] = field(default_factory=dict)
    damage_to: dict[int, float] = field(default_factory=dict)
    received_from: dict[int, float] = field(default_factory=dict)

    # Combat
    frags: int = 0
    fires_started: int = 0
    floods_started: int = 0
    survived: bool = False
    survival_time: float = 0.0
    killer_id: int | None = None

    # Server results
    rank: int | None = None
    base_xp: int | None = None
    raw_xp: int | None = None
    ribbons: dict[str, int] = field(default_factory=dict)
    achievements: list[dict[str, Any]] = field(default_factory=list)
    consumables: dict[str, int] = field(default_factory=dict)

    outcome: BattleOutcome = BattleOutcome.UNKNOWN
    scoring_input: ScoringInput | None = None
    rating: PersonalRatingResult | None = None

    @property
    def pr(self) -> float | None:
        return self.rating.pr if self.rating else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "name": self.name,
            "team_id": self.team_id,
            "account_id": self.account_id,
            "clan_tag": self.clan_tag,
            "division_id": self.division_id,
            "is_bot": self.is_bot,
            "is_local": self.is_local,
            "disconnected": self.disconnected,
            "ship": {
                "id": self.ship_id,
                "name": self.ship_name,
                "class": self.ship_class,
                "tier": self.tier,
            },
            "damage": {
                "total": self.damage_total,
                "to_enemies": self.damage_to_enemies,
                "received": self.damage_received,
                "potential": self.potential_damage,
                "potential_inflicted": self.potential_inflicted,
                "spotting": self.spotting_damage,
                "self": self.self_damage,
                "team": self.team_damage,
                "healed": self.healed,
                "hits": self.hits,
                "by_kind": dict(sorted(self.damage_by_kind.items())),
                "received_by_kind": dict(sorted(self.received_by_kind.items())),
                "to_entities": {str(k): v for k, v in sorted(self.damage_to.items())},
                "from_entities": {str(k): v for k, v in sorted(self.received_from.items())},
            },
            "frags": self.frags,
            "fires_started": self.fires_started,
            "floods_started": self.floods_started,
            "survived": self.survived,
            "survival_time": round(self.survival_time, 3),
            "killer_id": self.killer_id,
            "rank": self.rank,
            "base_xp": self.base_xp,
            "raw_xp": self.raw_xp,
            "ribbons": dict(sorted(self.ribbons.items())),
            "achievements": self.achievements,
            "consumables": dict(sorted(self.consumables.items())),
            "outcome": str(self.outcome),
            "scoring_input": self.scoring_input.to_dict() if self.scoring_input else None,
            "rating": self.rating.to_dict() if self.rating else None,
        }


@dataclass
class TeamStatistics:
    team_id: int
    total_damage: float = 0.0
    enemy_damage: float = 0.0
    frags: int = 0
    ships: int = 0
    survivors: int = 0
    players: int = 0
    bots: int = 0
    outcome: BattleOutcome = BattleOutcome.UNKNOWN
    server_outcome: BattleOutcome = BattleOutcome.UNKNOWN
    derived_outcome: BattleOutcome = BattleOutcome.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        return {
            "team_id": self.team_id,
            "total_damage": self.total_damage,
            "enemy_damage": self.enemy_damage,
            "frags": self.frags,
            "ships": self.ships,
            "survivors": self.survivors,
            "players": self.players,
            "bots": self.bots,
            "outcome": str(self.outcome),
            "server_outcome": str(self.server_outcome),
            "derived_outcome": str(self.derived_outcome),
        }


@dataclass
class BattleStatistics:
    """Derived statistics for one battle."""

    battle_id: str
    map_id: str = ""
    game_mode: str = ""
    game_type: str = ""
    start_time: datetime | None = None
    duration: float = 0.0
    finalized: bool = False
    incomplete: bool = False
    winner_team_id: int | None = None
    players: list[PlayerStatistics] = field(default_factory=list)
    teams: dict[int, TeamStatistics] = field(default_factory=dict)
    diagnostics: list[Anomaly] = field(default_factory=list)
    conservation: ConservationReport | None = None
    scoring_version: str | None = None

    def player(self, entity_id: int) -> PlayerStatistics | None:
        for player in self.players:
            if player.entity_id == entity_id:
                return player
        return None

    def by_account(self, account_id: int) -> PlayerStatistics | None:
        for player in self.players:
            if player.account_id == account_id:
                return player
        return None

    def local_player(self) -> PlayerStatistics | None:
        for player in self.players:
            if player.is_local:
                return player
        return None

    def diagnostics_of(self, kind: AnomalyKind) -> list[Anomaly]:
        return [d for d in self.diagnostics if d.kind == kind]

    @property
    def has_conservation_violation(self) -> bool:
        return bool(self.diagnostics_of(AnomalyKind.CONSERVATION_VIOLATION))

    def to_dict(self) -> dict[str, Any]:
        return {
            "battle_id": self.battle_id,
            "map_id": self.map_id,
            "game_mode": self.game_mode,
            "game_type": self.game_type,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "duration": round(self.duration, 3),
            "finalized": self.finalized,
            "incomplete": self.incomplete,
            "winner_team_id": self.winner_team_id,
            "scoring_version": self.scoring_version,
            "players": [p.to_dict() for p in self.players],
            "teams": {str(tid): t.to_dict() for tid, t in sorted(self.teams.items())},
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


# ============================================================================
# Derivation
# ============================================================================


def _server_or(result: FinalResult | None, name: str, fallback: float) -> float:
    value = getattr(result, name, None) if result is not None else None
    return fallback if value is None else value


def _kind_dict(values: Mapping[DamageKind, float]) -> dict[str, float]:
    return {str(kind): amount for kind, amount in sorted(values.items())}


def _count_ignitions(battle: Battle) -> tuple[Counter, Counter]:
    fires: Counter = Counter()
    floods: Counter = Counter()
    for entity in battle.entities.values():
        for interval in entity.statuses.get(STATUS_FIRE, []):
            if interval.source_id is not None:
                fires[interval.source_id] += 1
        for interval in entity.statuses.get(STATUS_FLOODING, []):
            if interval.source_id is not None:
                floods[interval.source_id] += 1
    return fires, floods


def _count_frags(battle: Battle) -> Counter:
    """Enemy ships destroyed per killer entity."""
    frags: Counter = Counter()
    for entity in battle.entities.values():
        if entity.killer_id is None or entity.killer_id == entity.entity_id:
            continue
        killer = battle.entities.get(entity.killer_id)
        killer_team = killer.team_id if killer else None
        if killer_team is not None and killer_team == entity.team_id:
            continue
        frags[entity.killer_id] += 1
    return frags


def _server_outcomes(battle: Battle) -> dict[int, BattleOutcome]:
    if battle.winner_team_id is None:
        return {}
    if battle.winner_team_id < 0:
        return {team: BattleOutcome.DRAW for team in battle.teams}
    return {
        team: BattleOutcome.WIN if team == battle.winner_team_id else BattleOutcome.LOSS
        for team in battle.teams
    }


def _derived_outcomes(battle: Battle) -> dict[int, BattleOutcome]:
    """Outcome by elimination: the only team with ships afloat wins."""
    if not battle.finalized:
        return {}
    alive: dict[int, int] = {}
    for entity in battle.entities.values():
        if entity.team_id is None:
            continue
        alive.setdefault(entity.team_id, 0)
        if not entity.is_destroyed:
            alive[entity.team_id] += 1

    surviving = [team for team, count in alive.items() if count > 0]
    if not alive:
        return {}
    if not surviving:
        return {team: BattleOutcome.DRAW for team in alive}
    if len(surviving) == 1:
        return {
            team: BattleOutcome.WIN if team == surviving[0] else BattleOutcome.LOSS for team in alive
        }
    # Decided on points or time; elimination says nothing
    return {}


def _survival_time(battle: Battle, entity: Entity | None) -> float:
    start = battle.start_timestamp or 0.0
    if entity is None:
        return 0.0
    if entity.spawn_time is not None:
        start = max(start, entity.spawn_time)
    end = entity.destruction_time
    if end is None:
        end = battle.end_timestamp if battle.end_timestamp is not None else battle.last_timestamp
    if end is None:
        return 0.0
    return max(0.0, end - start)


def _consumable_names(entity: Entity | None, lookup: GameDefinitionLookup) -> dict[str, int]:
    if entity is None:
        return {}
    names: dict[str, int] = {}
    for consumable_id, count in sorted(entity.consumables_used.items()):
        definition = lookup.resolve(consumable_id)
        name = f"unknown ({consumable_id})" if definition.is_unknown else definition.name
        names[name] = names.get(name, 0) + count
    return names


def _achievements(result: FinalResult | None, lookup: GameDefinitionLookup) -> list[dict[str, Any]]:
    if result is None:
        return []
    achievements = []
    for achievement_id in result.achievement_ids:
        definition = lookup.resolve_achievement(achievement_id)
        achievements.append(
            {
                "id": achievement_id,
                "name": definition.name,
                "description": definition.description,
            }
        )
    return achievements


class StatisticsDeriver:
    """Derives BattleStatistics; one instance can serve many battles."""

    def __init__(
        self,
        lookup: GameDefinitionLookup | None = None,
        scoring: ScoringStrategy | None = None,
        config: SalvoConfig | None = None,
    ):
        self.config = config or SalvoConfig()
        self.lookup = lookup or NullLookup()
        self.scoring = scoring or build_scoring(self.config.scoring)

    def derive(
        self,
        battle: Battle,
        table: DamageTable | None = None,
        final_results: Mapping[int, FinalResult] | None = None,
    ) -> BattleStatistics:
        aggregation = self.config.aggregation
        if table is None:
            table = DamageAggregator(aggregation).aggregate(battle)

        results = dict(battle.final_results)
        if final_results:
            results.update(final_results)

        stats = BattleStatistics(
            battle_id=battle.battle_id,
            map_id=battle.map_id,
            game_mode=battle.game_mode,
            game_type=battle.game_type,
            start_time=battle.start_time,
            duration=battle.duration,
            finalized=battle.finalized,
            incomplete=battle.incomplete,
            winner_team_id=battle.winner_team_id,
            scoring_version=self.scoring.version,
        )

        # Reconstruction anomalies that never got resolved carry through
        stats.diagnostics.extend(a for a in battle.anomalies if not a.resolved)

        report = check_conservation(battle, table, aggregation.conservation_tolerance)
        stats.conservation = report
        if not report.ok:
            stats.diagnostics.append(
                Anomaly(
                    kind=AnomalyKind.CONSERVATION_VIOLATION,
                    message=f"Damage not conserved: {report.describe()}",
                )
            )

        outcomes = self._team_outcomes(battle, stats)
        frags = _count_frags(battle)
        fires, floods = _count_ignitions(battle)

        ordered = sorted(battle.players.values(), key=lambda p: (p.team_id, p.entity_id))
        for player in ordered:
            stats.players.append(
                self._player_statistics(battle, player, table, results, outcomes, frags, fires, floods)
            )

        self._team_statistics(battle, table, stats, outcomes, frags)
        self._check_server_results(battle, table, stats, results)
        return stats

    # ------------------------------------------------------------------

    def _team_outcomes(self, battle: Battle, stats: BattleStatistics) -> dict[int, tuple]:
        server = _server_outcomes(battle)
        derived = _derived_outcomes(battle)
        outcomes = {}
        for team in battle.teams:
            server_outcome = server.get(team, BattleOutcome.UNKNOWN)
            derived_outcome = derived.get(team, BattleOutcome.UNKNOWN)
            if (
                server_outcome != BattleOutcome.UNKNOWN
                and derived_outcome != BattleOutcome.UNKNOWN
                and server_outcome != derived_outcome
            ):
                stats.diagnostics.append(
                    Anomaly(
                        kind=AnomalyKind.RESULT_DISCREPANCY,
                        message=(
                            f"Team {team}: server reports {server_outcome}, "
                            f"elimination gives {derived_outcome}"
                        ),
                    )
                )
            final = server_outcome if server_outcome != BattleOutcome.UNKNOWN else derived_outcome
            outcomes[team] = (final, server_outcome, derived_outcome)
        return outcomes

    def _player_statistics(
        self,
        battle: Battle,
        player: Player,
        table: DamageTable,
        results: Mapping[int, FinalResult],
        outcomes: dict[int, tuple],
        frags: Counter,
        fires: Counter,
        floods: Counter,
    ) -> PlayerStatistics:
        aggregation = self.config.aggregation
        entity = battle.entities.get(player.entity_id)
        totals = table.totals_for(player.entity_id)
        result = results.get(player.account_id) if player.account_id else None
        team_id = entity.team_id if entity and entity.team_id is not None else player.team_id

        ps = PlayerStatistics(
            entity_id=player.entity_id,
            name=player.name,
            team_id=team_id,
            account_id=player.account_id,
            clan_tag=player.clan_tag,
            division_id=player.division_id,
            is_bot=player.is_bot,
            is_local=player.is_local,
            disconnected=player.disconnected,
        )

        if entity is not None:
            ps.ship_id = entity.type_id
            ps.ship_name = entity.definition.name
            ps.ship_class = str(entity.definition.category)
            ps.tier = entity.definition.tier
            ps.killer_id = entity.killer_id

        total_policy = aggregation.policy("total_dealt")
        ps.damage_total = table.dealt_by(player.entity_id, total_policy)
        ps.damage_to_enemies = table.dealt_by(player.entity_id, aggregation.policy("enemy_damage"))
        ps.damage_received = table.received_by(player.entity_id, aggregation.policy("received"))
        ps.damage_by_kind = _kind_dict(table.dealt_by_kind(player.entity_id, total_policy))
        ps.received_by_kind = _kind_dict(totals.received_by_kind)
        ps.damage_to = dict(sorted(totals.dealt_to.items()))
        ps.received_from = dict(sorted(totals.received_from.items()))
        ps.potential_inflicted = totals.potential_inflicted
        # Server figures win; replays rarely carry spotting hits at all
        ps.potential_damage = _server_or(result, "potential_damage", totals.potential)
        ps.spotting_damage = _server_or(result, "spotting_damage", totals.spotting)
        ps.self_damage = totals.self_damage
        ps.team_damage = totals.team_damage
        ps.healed = totals.healed
        ps.hits = totals.hits

        ps.frags = frags.get(player.entity_id, 0)
        ps.fires_started = fires.get(player.entity_id, 0)
        ps.floods_started = floods.get(player.entity_id, 0)
        ps.survival_time = _survival_time(battle, entity)
        ps.consumables = _consumable_names(entity, self.lookup)

        if result is not None and result.survived is not None:
            ps.survived = result.survived
        else:
            ps.survived = entity is not None and not entity.is_destroyed

        if result is not None:
            ps.rank = result.rank
            ps.base_xp = result.base_xp
            ps.raw_xp = result.raw_xp
            ps.ribbons = dict(result.ribbons)

        ps.outcome = outcomes.get(team_id, (BattleOutcome.UNKNOWN,))[0]

        # Bots get no rating and no achievements
        if not ps.is_bot:
            ps.achievements = _achievements(result, self.lookup)
            ps.scoring_input = ScoringInput(
                ship_id=ps.ship_id,
                ship_class=ps.ship_class,
                tier=ps.tier,
                damage=ps.damage_to_enemies,
                frags=ps.frags,
                survived=ps.survived,
                won=ps.outcome == BattleOutcome.WIN,
            )
            ps.rating = self.scoring.score_one(ps.scoring_input)
        return ps

    def _team_statistics(
        self,
        battle: Battle,
        table: DamageTable,
        stats: BattleStatistics,
        outcomes: dict[int, tuple],
        frags: Counter,
    ) -> None:
        aggregation = self.config.aggregation
        total_policy = aggregation.policy("total_dealt")
        enemy_policy = aggregation.policy("enemy_damage")

        for team in battle.teams:
            final, server_outcome, derived_outcome = outcomes[team]
            stats.teams[team] = TeamStatistics(
                team_id=team,
                outcome=final,
                server_outcome=server_outcome,
                derived_outcome=derived_outcome,
            )

        for entity_id, entity in sorted(battle.entities.items()):
            if entity.team_id is None:
                continue
            team = stats.teams[entity.team_id]
            team.ships += 1
            team.total_damage += table.dealt_by(entity_id, total_policy)
            team.enemy_damage += table.dealt_by(entity_id, enemy_policy)
            team.frags += frags.get(entity_id, 0)
            if not entity.is_destroyed:
                team.survivors += 1

        for player in battle.players.values():
            team = stats.teams.get(player.team_id)
            if team is None:
                continue
            if player.is_bot:
                team.bots += 1
            else:
                team.players += 1

    def _check_server_results(
        self,
        battle: Battle,
        table: DamageTable,
        stats: BattleStatistics,
        results: Mapping[int, FinalResult],
    ) -> None:
        if not results:
            return

        humans = [p for p in battle.players.values() if not p.is_bot]
        missing = [p for p in humans if p.account_id not in results]
        if missing:
            names = ", ".join(sorted(p.name for p in missing))
            stats.diagnostics.append(
                Anomaly(
                    kind=AnomalyKind.RESULT_DISCREPANCY,
                    message=(
                        f"Server results missing for {len(missing)} of {len(humans)} players "
                        f"({names}); using derived figures"
                    ),
                )
            )

        if battle.incomplete:
            return

        tolerance = self.config.scoring.discrepancy_tolerance
        for ps in stats.players:
            result = results.get(ps.account_id) if ps.account_id else None
            if result is None:
                continue
            if result.damage is not None and abs(result.damage - ps.damage_total) > tolerance:
                stats.diagnostics.append(
                    Anomaly(
                        kind=AnomalyKind.RESULT_DISCREPANCY,
                        message=(
                            f"{ps.name}: server damage {result.damage:.0f}, "
                            f"event log {ps.damage_total:.0f}"
                        ),
                        entity_id=ps.entity_id,
                    )
                )
            if result.frags is not None and result.frags != ps.frags:
                stats.diagnostics.append(
                    Anomaly(
                        kind=AnomalyKind.RESULT_DISCREPANCY,
                        message=f"{ps.name}: server frags {result.frags}, event log {ps.frags}",
                        entity_id=ps.entity_id,
                    )
                )
            totals = table.totals_for(ps.entity_id)
            for label, server_value, logged in (
                ("spotting damage", result.spotting_damage, totals.spotting),
                ("potential damage", result.potential_damage, totals.potential),
            ):
                # A log without any such events has nothing to compare
                if server_value is None or not logged:
                    continue
                if abs(server_value - logged) > tolerance:
                    stats.diagnostics.append(
                        Anomaly(
                            kind=AnomalyKind.RESULT_DISCREPANCY,
                            message=(
                                f"{ps.name}: server {label} {server_value:.0f}, "
                                f"event log {logged:.0f}"
                            ),
                            entity_id=ps.entity_id,
                        )
                    )


def derive_statistics(
    battle: Battle,
    table: DamageTable | None = None,
    lookup: GameDefinitionLookup | None = None,
    scoring: ScoringStrategy | None = None,
    final_results: Mapping[int, FinalResult] | None = None,
    config: SalvoConfig | None = None,
) -> BattleStatistics:
    """
    Derive per-player and per-team statistics for a battle.

    Args:
        battle: Reconstructed battle (finalized or incomplete)
        table: Pre-computed damage table (aggregated here when omitted)
        lookup: Game definition lookup for ships, consumables and achievements
        scoring: Rating strategy (built from config when omitted)
        final_results: Server results supplied outside the event stream
        config: Salvo configuration

    Returns:
        BattleStatistics with diagnostics attached
    """
    deriver = StatisticsDeriver(lookup=lookup, scoring=scoring, config=config)
    return deriver.derive(battle, table=table, final_results=final_results)


def rescore(stats: BattleStatistics, strategy: ScoringStrategy) -> BattleStatistics:
    """Recompute ratings from stored scoring inputs, without touching events."""
    for player in stats.players:
        if player.scoring_input is not None:
            player.rating = strategy.score_one(player.scoring_input)
    stats.scoring_version = strategy.version
    return stats
