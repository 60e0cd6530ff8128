"""
Damage Interaction Aggregator

Turns a reconstructed Battle's damage / heal logs into a directed
(source, target, kind) table per damage category and per-entity totals.

Rules:
- Dealt, potential and spotting are disjoint: each event lands in exactly one
- Self damage stays keyed under source == target; whether it (or ally
  damage) counts is decided per statistic through a StatisticPolicy at
  query time, never while aggregating
- Sub-munitions of one strike (shared strike id, same target / tick / kind)
  count once
- Fire and flood ticks are separate timestamped events and are summed tick
  by tick
- Potential damage aimed at an already destroyed target is credited to a
  single source per tick: the lowest source id at that timestamp
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from salvo.core.battle import Battle, DamageEvent
from salvo.core.config import AggregationConfig, StatisticPolicy
from salvo.core.constants import DamageCategory, DamageKind

logger = logging.getLogger(__name__)

CellKey = tuple[int, int, DamageKind]


@dataclass
class EntityDamageTotals:
    """Per-entity rollup across every category."""

    entity_id: int
    team_id: int | None = None

    dealt: float = 0.0
    received: float = 0.0
    potential: float = 0.0  # Potential damage absorbed as a target
    potential_inflicted: float = 0.0  # Potential damage caused as a source
    spotting: float = 0.0
    self_damage: float = 0.0
    team_damage: float = 0.0  # Dealt to allies, self excluded
    healed: float = 0.0
    hits: int = 0
    dot_ticks: int = 0

    dealt_by_kind: dict[DamageKind, float] = field(default_factory=dict)
    received_by_kind: dict[DamageKind, float] = field(default_factory=dict)
    potential_by_kind: dict[DamageKind, float] = field(default_factory=dict)
    spotting_by_kind: dict[DamageKind, float] = field(default_factory=dict)
    dealt_to: dict[int, float] = field(default_factory=dict)
    received_from: dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "team_id": self.team_id,
            "dealt": self.dealt,
            "received": self.received,
            "potential": self.potential,
            "potential_inflicted": self.potential_inflicted,
            "spotting": self.spotting,
            "self_damage": self.self_damage,
            "team_damage": self.team_damage,
            "healed": self.healed,
            "hits": self.hits,
            "dot_ticks": self.dot_ticks,
            "dealt_by_kind": {str(k): v for k, v in sorted(self.dealt_by_kind.items())},
            "received_by_kind": {str(k): v for k, v in sorted(self.received_by_kind.items())},
        }


@dataclass
class ConservationReport:
    """Outcome of comparing total dealt against total received damage."""

    dealt_total: float
    received_total: float
    tolerance: float
    has_unresolved_references: bool = False

    @property
    def difference(self) -> float:
        return self.dealt_total - self.received_total

    @property
    def ok(self) -> bool:
        return abs(self.difference) <= self.tolerance

    def describe(self) -> str:
        return (
            f"dealt {self.dealt_total:.1f} vs received {self.received_total:.1f} "
            f"(difference {self.difference:+.1f})"
        )


@dataclass
class DamageTable:
    """Aggregated damage for one battle."""

    battle_id: str
    cells: dict[DamageCategory, dict[CellKey, float]] = field(
        default_factory=lambda: {category: {} for category in DamageCategory}
    )
    totals: dict[int, EntityDamageTotals] = field(default_factory=dict)
    teams: dict[int, int | None] = field(default_factory=dict)
    strikes_deduplicated: int = 0
    potential_dropped: int = 0

    def amount(
        self,
        source_id: int,
        target_id: int,
        kind: DamageKind,
        category: DamageCategory = DamageCategory.DEALT,
    ) -> float:
        return self.cells[category].get((source_id, target_id, kind), 0.0)

    def totals_for(self, entity_id: int) -> EntityDamageTotals:
        totals = self.totals.get(entity_id)
        if totals is None:
            return EntityDamageTotals(entity_id=entity_id, team_id=self.teams.get(entity_id))
        return totals

    def _counts(self, source_id: int, target_id: int, policy: StatisticPolicy) -> bool:
        if source_id == target_id:
            return policy.include_self
        source_team = self.teams.get(source_id)
        if source_team is not None and source_team == self.teams.get(target_id):
            return policy.include_allies
        return True

    def dealt_by(self, entity_id: int, policy: StatisticPolicy) -> float:
        """Dealt damage from ``entity_id`` filtered by a statistic policy."""
        return sum(self.dealt_by_kind(entity_id, policy).values())

    def dealt_by_kind(self, entity_id: int, policy: StatisticPolicy) -> dict[DamageKind, float]:
        by_kind: dict[DamageKind, float] = defaultdict(float)
        for (source, target, kind), amount in self.cells[DamageCategory.DEALT].items():
            if source == entity_id and self._counts(source, target, policy):
                by_kind[kind] += amount
        return dict(by_kind)

    def received_by(self, entity_id: int, policy: StatisticPolicy) -> float:
        """Dealt damage landing on ``entity_id`` filtered by a statistic policy."""
        return sum(
            amount
            for (source, target, _), amount in self.cells[DamageCategory.DEALT].items()
            if target == entity_id and self._counts(source, target, policy)
        )

    def conservation(self, tolerance: float = 0.5) -> ConservationReport:
        return ConservationReport(
            dealt_total=sum(t.dealt for t in self.totals.values()),
            received_total=sum(t.received for t in self.totals.values()),
            tolerance=tolerance,
        )


class DamageAggregator:
    """Builds a DamageTable from a Battle."""

    def __init__(self, config: AggregationConfig | None = None):
        self.config = config or AggregationConfig()

    def aggregate(self, battle: Battle) -> DamageTable:
        table = DamageTable(battle_id=battle.battle_id)
        for entity_id, entity in battle.entities.items():
            table.teams[entity_id] = entity.team_id
            table.totals[entity_id] = EntityDamageTotals(entity_id=entity_id, team_id=entity.team_id)

        credited_sources = self._resolve_posthumous_potential(battle)
        seen_strikes: set[tuple] = set()

        for event in battle.damage_log:
            if self.config.dedupe_strikes and event.strike_id is not None:
                key = (event.strike_id, event.target_id, event.timestamp, event.kind, event.category)
                if key in seen_strikes:
                    table.strikes_deduplicated += 1
                    continue
                seen_strikes.add(key)

            if event.category == DamageCategory.POTENTIAL:
                tick = (event.target_id, event.timestamp)
                if tick in credited_sources and credited_sources[tick] != event.source_id:
                    table.potential_dropped += 1
                    continue

            self._apply(table, event)

        for heal in battle.heal_log:
            self._totals(table, heal.target_id).healed += heal.amount

        if table.strikes_deduplicated or table.potential_dropped:
            logger.debug(
                f"Battle {battle.battle_id}: {table.strikes_deduplicated} strike duplicates, "
                f"{table.potential_dropped} posthumous potential hits dropped"
            )
        return table

    def _resolve_posthumous_potential(self, battle: Battle) -> dict[tuple[int, float], int]:
        """Map (target, tick) to the one source credited for potential damage after death."""
        credited: dict[tuple[int, float], int] = {}
        for event in battle.damage_log:
            if event.category != DamageCategory.POTENTIAL:
                continue
            target = battle.entities.get(event.target_id)
            if target is None or target.destruction_time is None:
                continue
            if event.timestamp < target.destruction_time:
                continue
            tick = (event.target_id, event.timestamp)
            if tick not in credited or event.source_id < credited[tick]:
                credited[tick] = event.source_id
        return credited

    @staticmethod
    def _totals(table: DamageTable, entity_id: int) -> EntityDamageTotals:
        totals = table.totals.get(entity_id)
        if totals is None:
            totals = EntityDamageTotals(entity_id=entity_id, team_id=table.teams.get(entity_id))
            table.totals[entity_id] = totals
        return totals

    def _apply(self, table: DamageTable, event: DamageEvent) -> None:
        cell = (event.source_id, event.target_id, event.kind)
        cells = table.cells[event.category]
        cells[cell] = cells.get(cell, 0.0) + event.amount

        source = self._totals(table, event.source_id)
        target = self._totals(table, event.target_id)

        if event.category == DamageCategory.DEALT:
            source.dealt += event.amount
            source.hits += 1
            source.dealt_by_kind[event.kind] = source.dealt_by_kind.get(event.kind, 0.0) + event.amount
            source.dealt_to[event.target_id] = source.dealt_to.get(event.target_id, 0.0) + event.amount
            if event.kind.is_damage_over_time:
                source.dot_ticks += 1

            target.received += event.amount
            target.received_by_kind[event.kind] = (
                target.received_by_kind.get(event.kind, 0.0) + event.amount
            )
            target.received_from[event.source_id] = (
                target.received_from.get(event.source_id, 0.0) + event.amount
            )

            if event.is_self_damage:
                source.self_damage += event.amount
            elif source.team_id is not None and source.team_id == target.team_id:
                source.team_damage += event.amount

        elif event.category == DamageCategory.POTENTIAL:
            target.potential += event.amount
            target.potential_by_kind[event.kind] = (
                target.potential_by_kind.get(event.kind, 0.0) + event.amount
            )
            source.potential_inflicted += event.amount

        elif event.category == DamageCategory.SPOTTING:
            source.spotting += event.amount
            source.spotting_by_kind[event.kind] = (
                source.spotting_by_kind.get(event.kind, 0.0) + event.amount
            )


def aggregate_damage(battle: Battle, config: AggregationConfig | None = None) -> DamageTable:
    """Convenience wrapper around ``DamageAggregator.aggregate``."""
    return DamageAggregator(config).aggregate(battle)


def check_conservation(
    battle: Battle, table: DamageTable, tolerance: float | None = None
) -> ConservationReport:
    """
    Compare total dealt against total received damage (dealt category only).

    Battles with unresolved entity references are flagged on the report so
    callers can tell a decoding gap from a logic fault.
    """
    if tolerance is None:
        tolerance = AggregationConfig().conservation_tolerance
    report = table.conservation(tolerance)
    report.has_unresolved_references = battle.has_unresolved_references
    if not report.ok:
        logger.warning(f"Battle {battle.battle_id}: damage not conserved, {report.describe()}")
    return report
