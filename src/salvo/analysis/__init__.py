"""
Salvo Analysis - Damage aggregation, statistics and ratings.

- damage: Who damaged whom, by kind and category, with conservation checks
- statistics: Per-player and per-team statistics with diagnostics
- rating: Pluggable performance rating strategies
- session: The replay owner's session summary
"""

from salvo.analysis.damage import DamageAggregator, DamageTable, aggregate_damage
from salvo.analysis.rating import ScoringStrategy, build_scoring, get_scoring_strategy
from salvo.analysis.session import SessionStats
from salvo.analysis.statistics import BattleStatistics, PlayerStatistics, derive_statistics, rescore

__all__ = [
    "DamageAggregator",
    "DamageTable",
    "aggregate_damage",
    "ScoringStrategy",
    "build_scoring",
    "get_scoring_strategy",
    "SessionStats",
    "BattleStatistics",
    "PlayerStatistics",
    "derive_statistics",
    "rescore",
]
