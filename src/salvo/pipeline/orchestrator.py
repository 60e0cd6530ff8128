"""
Battle Analysis Orchestrator - Main pipeline for processing event logs.

source -> reconstruct -> aggregate -> derive -> (optionally) record.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from salvo.analysis.damage import DamageAggregator, DamageTable
from salvo.analysis.rating import ScoringStrategy, build_scoring
from salvo.analysis.statistics import BattleStatistics, StatisticsDeriver
from salvo.core.battle import Battle
from salvo.core.config import SalvoConfig, get_config
from salvo.core.events import Event
from salvo.core.lookup import GameDefinitionLookup, NullLookup, StaticGameDefinitions
from salvo.core.sources import JsonLinesEventSource, TailingEventSource
from salvo.state_machine import reconstruct_battle

logger = logging.getLogger(__name__)


@dataclass
class BattleAnalysis:
    """Everything produced for one battle."""

    battle: Battle
    table: DamageTable
    statistics: BattleStatistics
    source_path: Path | None = None
    recorded: int = 0

    @property
    def battle_id(self) -> str:
        return self.battle.battle_id

    def to_dict(self) -> dict[str, Any]:
        result = self.statistics.to_dict()
        result["source"] = str(self.source_path) if self.source_path else None
        result["recorded_encounters"] = self.recorded
        result["events"] = {
            "processed": self.battle.events_processed,
            "duplicates_dropped": self.battle.duplicates_dropped,
            "out_of_order": self.battle.out_of_order_events,
            "skipped": dict(sorted(self.battle.skipped_events.items())),
        }
        return result


class BattleOrchestrator:
    """
    Orchestrates the complete battle analysis pipeline.

    Handles:
    - Opening the event source (file or live tail)
    - Reconstruction, damage aggregation and statistics derivation
    - Optional recording of encounters in the player tracker
    """

    def __init__(
        self,
        config: SalvoConfig | None = None,
        *,
        lookup: GameDefinitionLookup | None = None,
        scoring: ScoringStrategy | None = None,
        tracker=None,
    ):
        self.config = config or get_config()
        self.lookup = lookup or self._load_lookup()
        self.scoring = scoring or build_scoring(self.config.scoring)
        self.tracker = tracker
        self._aggregator = DamageAggregator(self.config.aggregation)
        self._deriver = StatisticsDeriver(self.lookup, self.scoring, self.config)

    def _load_lookup(self) -> GameDefinitionLookup:
        path = self.config.reconstruction.definitions_path
        if not path:
            return NullLookup()
        path = Path(path).expanduser()
        if not path.exists():
            logger.warning(f"Definitions file not found: {path}, names will be unknown")
            return NullLookup()
        return StaticGameDefinitions.from_file(path)

    def analyze_events(
        self,
        events: Iterable[Event],
        battle_id: str,
        *,
        cancel: threading.Event | None = None,
        source_path: Path | None = None,
    ) -> BattleAnalysis:
        """Run the pipeline over an already opened event sequence."""
        battle = reconstruct_battle(
            events,
            battle_id=battle_id,
            lookup=self.lookup,
            config=self.config.reconstruction,
            cancel=cancel,
        )
        table = self._aggregator.aggregate(battle)
        statistics = self._deriver.derive(battle, table=table)

        analysis = BattleAnalysis(
            battle=battle, table=table, statistics=statistics, source_path=source_path
        )
        if self.tracker is not None and not battle.incomplete:
            analysis.recorded = self.tracker.record_statistics(statistics)

        logger.info(
            f"Analyzed battle {battle_id}: {len(battle.entities)} entities, "
            f"{len(battle.damage_log)} damage events, {len(statistics.diagnostics)} diagnostics"
            + (" (incomplete)" if battle.incomplete else "")
        )
        return analysis

    def analyze_battle(
        self,
        path: Path | str,
        *,
        battle_id: str | None = None,
        live: bool = False,
        cancel: threading.Event | None = None,
    ) -> BattleAnalysis:
        """
        Execute the complete pipeline for one event log file.

        Args:
            path: JSON-lines event log
            battle_id: Identifier to use (defaults to the file stem)
            live: Follow the file while it is still being written
            cancel: Stops a live (or long) run early; the battle comes back incomplete

        Returns:
            BattleAnalysis for the file
        """
        path = Path(path)
        battle_id = battle_id or path.stem
        logger.info(f"Analyzing {path.name}" + (" (live)" if live else ""))

        if live:
            reconstruction = self.config.reconstruction
            source = TailingEventSource(
                path,
                cancel=cancel,
                poll_interval=reconstruction.live_poll_interval,
                idle_timeout=reconstruction.live_idle_timeout,
            )
            return self.analyze_events(source, battle_id, cancel=cancel, source_path=path)

        with JsonLinesEventSource(path) as source:
            return self.analyze_events(source, battle_id, cancel=cancel, source_path=path)


def analyze_battle(path: Path | str, config: SalvoConfig | None = None) -> BattleAnalysis:
    """Analyze one event log with default collaborators."""
    return BattleOrchestrator(config).analyze_battle(path)
