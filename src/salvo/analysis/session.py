"""
Session statistics for the replay owner.

Collects the local player's results across the battles of a play session and
summarizes them overall and per ship. Re-adding a battle replaces the earlier
copy, so a battle that is analyzed again (e.g. once server results arrive)
never counts twice.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from salvo.analysis.rating import PersonalRatingResult, ScoringInput, ScoringStrategy
from salvo.analysis.statistics import BattleStatistics
from salvo.core.constants import BattleOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PerGameStat:
    """The local player's figures for one battle."""

    battle_id: str
    ship_name: str
    ship_id: int | None
    ship_class: str
    tier: int
    start_time: datetime | None
    damage: float
    spotting_damage: float
    frags: int
    raw_xp: int
    base_xp: int
    survived: bool
    outcome: BattleOutcome

    @property
    def is_win(self) -> bool:
        return self.outcome == BattleOutcome.WIN

    @property
    def is_loss(self) -> bool:
        return self.outcome == BattleOutcome.LOSS

    @classmethod
    def from_statistics(cls, stats: BattleStatistics) -> PerGameStat | None:
        """Build from battle statistics; None if the battle has no local player."""
        me = stats.local_player()
        if me is None:
            return None
        return cls(
            battle_id=stats.battle_id,
            ship_name=me.ship_name,
            ship_id=me.ship_id,
            ship_class=me.ship_class,
            tier=me.tier,
            start_time=stats.start_time,
            damage=me.damage_to_enemies,
            spotting_damage=me.spotting_damage,
            frags=me.frags,
            raw_xp=me.raw_xp or 0,
            base_xp=me.base_xp or 0,
            survived=me.survived,
            outcome=me.outcome,
        )

    def scoring_input(self) -> ScoringInput:
        return ScoringInput(
            ship_id=self.ship_id,
            ship_class=self.ship_class,
            tier=self.tier,
            damage=self.damage,
            frags=self.frags,
            survived=self.survived,
            won=self.is_win,
        )


@dataclass
class PerformanceInfo:
    """One ship's performance aggregated over several games."""

    ship_id: int | None = None
    ship_name: str = ""
    wins: int = 0
    losses: int = 0
    total_games: int = 0
    total_frags: int = 0
    max_frags: int = 0
    total_damage: float = 0.0
    max_damage: float = 0.0
    total_spotting_damage: float = 0.0
    max_spotting_damage: float = 0.0
    total_xp: int = 0
    max_xp: int = 0
    total_win_adjusted_xp: int = 0
    max_win_adjusted_xp: int = 0
    games: list[PerGameStat] = field(default_factory=list)

    @classmethod
    def from_games(cls, games: Iterable[PerGameStat]) -> PerformanceInfo:
        info = cls()
        for game in games:
            if info.ship_id is None:
                info.ship_id = game.ship_id
                info.ship_name = game.ship_name
            if game.is_win:
                info.wins += 1
            elif game.is_loss:
                info.losses += 1

            info.total_frags += game.frags
            info.max_frags = max(info.max_frags, game.frags)
            info.total_damage += game.damage
            info.max_damage = max(info.max_damage, game.damage)
            info.total_spotting_damage += game.spotting_damage
            info.max_spotting_damage = max(info.max_spotting_damage, game.spotting_damage)
            info.total_xp += game.raw_xp
            info.max_xp = max(info.max_xp, game.raw_xp)
            info.total_win_adjusted_xp += game.base_xp
            info.max_win_adjusted_xp = max(info.max_win_adjusted_xp, game.base_xp)
            info.total_games += 1
            info.games.append(game)
        return info

    def _avg(self, total: float) -> float | None:
        if self.total_games == 0:
            return None
        return total / self.total_games

    @property
    def win_rate(self) -> float | None:
        decided = self.wins + self.losses
        if decided == 0:
            return None
        return self.wins / decided * 100.0

    @property
    def avg_damage(self) -> float | None:
        return self._avg(self.total_damage)

    @property
    def avg_frags(self) -> float | None:
        return self._avg(self.total_frags)

    @property
    def avg_spotting_damage(self) -> float | None:
        return self._avg(self.total_spotting_damage)

    @property
    def avg_xp(self) -> float | None:
        return self._avg(self.total_xp)

    @property
    def avg_win_adjusted_xp(self) -> float | None:
        return self._avg(self.total_win_adjusted_xp)

    def calculate_pr(self, strategy: ScoringStrategy) -> PersonalRatingResult | None:
        return strategy.score([g.scoring_input() for g in self.games])

    def to_dict(self) -> dict:
        return {
            "ship_id": self.ship_id,
            "ship_name": self.ship_name,
            "games": self.total_games,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": self.win_rate,
            "avg_damage": self.avg_damage,
            "max_damage": self.max_damage,
            "avg_frags": self.avg_frags,
            "max_frags": self.max_frags,
            "avg_spotting_damage": self.avg_spotting_damage,
            "avg_xp": self.avg_xp,
            "max_xp": self.max_xp,
        }


class SessionStats:
    """
    The local player's session.

    Usage:
        session = SessionStats(game_count_limit=10)
        for stats in analyzed_battles:
            session.add(stats)
        print(session.win_rate, session.ship_stats())
    """

    def __init__(self, game_count_limit: int | None = None):
        self.game_count_limit = game_count_limit
        self._games: dict[str, PerGameStat] = {}

    def add(self, stats: BattleStatistics) -> bool:
        """Add (or replace) a battle. Returns False if it has no local player."""
        game = PerGameStat.from_statistics(stats)
        if game is None:
            logger.debug(f"Battle {stats.battle_id} has no local player, not added to session")
            return False
        self._games[stats.battle_id] = game
        return True

    def clear(self) -> None:
        self._games.clear()

    def __len__(self) -> int:
        return len(self._games)

    def all_games(self) -> list[PerGameStat]:
        """Every game, oldest first."""
        return sorted(
            self._games.values(),
            key=lambda g: (g.start_time is None, g.start_time or datetime.min, g.battle_id),
        )

    def recent_games(self) -> list[PerGameStat]:
        """The most recent ``game_count_limit`` games, or all of them."""
        games = self.all_games()
        if self.game_count_limit is not None and self.game_count_limit < len(games):
            return games[len(games) - self.game_count_limit :]
        return games

    @property
    def games_played(self) -> int:
        return len(self.recent_games())

    @property
    def games_won(self) -> int:
        return sum(1 for g in self.recent_games() if g.is_win)

    @property
    def games_lost(self) -> int:
        return sum(1 for g in self.recent_games() if g.is_loss)

    @property
    def win_rate(self) -> float | None:
        if self.games_played == 0:
            return None
        return self.games_won / self.games_played * 100.0

    @property
    def total_frags(self) -> int:
        return sum(g.frags for g in self.recent_games())

    def max_damage(self) -> tuple[str, float] | None:
        games = self.recent_games()
        if not games:
            return None
        best = max(games, key=lambda g: g.damage)
        return best.ship_name, best.damage

    def max_frags(self) -> tuple[str, int] | None:
        games = self.recent_games()
        if not games:
            return None
        best = max(games, key=lambda g: g.frags)
        return best.ship_name, best.frags

    def ship_stats(self) -> dict[str, PerformanceInfo]:
        by_ship: dict[str, list[PerGameStat]] = {}
        for game in self.recent_games():
            by_ship.setdefault(game.ship_name, []).append(game)
        return {name: PerformanceInfo.from_games(games) for name, games in sorted(by_ship.items())}

    def calculate_pr(self, strategy: ScoringStrategy) -> PersonalRatingResult | None:
        return strategy.score([g.scoring_input() for g in self.recent_games()])

    def calculate_pr_per_ship(self, strategy: ScoringStrategy) -> dict[str, PersonalRatingResult]:
        ratings = {}
        for name, info in self.ship_stats().items():
            result = info.calculate_pr(strategy)
            if result is not None:
                ratings[name] = result
        return ratings
