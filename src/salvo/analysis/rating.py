"""
Performance Rating (PR) Scoring

The community PR formula is revised over time, so every formula lives behind
a versioned ``ScoringStrategy``: a pure function from ``ScoringInput`` records
to a score. Statistics keep their scoring inputs, which lets historical
battles be rescored with a newer strategy without replaying events.

Built-in strategies:

pr-wows-numbers-v1
    Expected values per ship (average damage, frags, win rate):
        rDmg = Σdamage / Σexpected_damage            nDmg = max(0, (rDmg - 0.4) / 0.6)
        rFrags = Σfrags / Σexpected_frags            nFrags = max(0, (rFrags - 0.1) / 0.9)
        rWins = Σwins / Σexpected_wins               nWins = max(0, (rWins - 0.7) / 0.3)
        PR = 700*nDmg + 300*nFrags + 150*nWins
    Ships without expected values are skipped; no scorable ship means no score.

class-tier-v1
    Same normalization, with expectations taken from per-class baselines
    scaled by tier, and survival standing in for wins. Works without any
    external data, so it is the default fallback.

Reference: https://wows-numbers.com/personal/rating
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from salvo.core.config import ScoringConfig
from salvo.core.constants import PR_CATEGORY_COLORS, PR_CATEGORY_THRESHOLDS, ShipClass

logger = logging.getLogger(__name__)

# Normalization constants shared by both strategies
PR_WEIGHTS = {"damage": 700.0, "frags": 300.0, "wins": 150.0}
PR_FLOORS = {"damage": 0.4, "frags": 0.1, "wins": 0.7}

# Tier 10 per-battle baselines for class-tier-v1
CLASS_BASELINES: dict[str, dict[str, float]] = {
    ShipClass.DESTROYER: {"damage": 42000.0, "frags": 0.75, "survival": 0.32},
    ShipClass.CRUISER: {"damage": 62000.0, "frags": 0.85, "survival": 0.30},
    ShipClass.BATTLESHIP: {"damage": 78000.0, "frags": 0.85, "survival": 0.38},
    ShipClass.AIRCRAFT_CARRIER: {"damage": 70000.0, "frags": 0.80, "survival": 0.60},
    ShipClass.SUBMARINE: {"damage": 45000.0, "frags": 0.70, "survival": 0.35},
}
DEFAULT_BASELINE = {"damage": 55000.0, "frags": 0.8, "survival": 0.35}


def get_rating_category(pr: float) -> str:
    """Category name for a PR value (Bad ... Super Unicum)."""
    for lower_bound, name in PR_CATEGORY_THRESHOLDS:
        if pr >= lower_bound:
            return name
    return PR_CATEGORY_THRESHOLDS[-1][1]


def get_rating_color(pr: float) -> str:
    """Display color (hex) for a PR value."""
    return PR_CATEGORY_COLORS[get_rating_category(pr)]


@dataclass(frozen=True)
class ScoringInput:
    """One ship's results, the documented input record of every strategy."""

    ship_id: int | None
    ship_class: str = ShipClass.UNKNOWN
    tier: int = 0
    damage: float = 0.0
    frags: int = 0
    survived: bool = False
    won: bool = False
    battles: int = 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScoringInput:
        return cls(**data)


@dataclass
class PersonalRatingResult:
    """A computed rating and the strategy that produced it."""

    pr: float
    strategy: str

    @property
    def category(self) -> str:
        return get_rating_category(self.pr)

    @property
    def color(self) -> str:
        return get_rating_color(self.pr)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pr": round(self.pr, 1),
            "category": self.category,
            "strategy": self.strategy,
        }


def _normalized_rating(
    actual: dict[str, float], expected: dict[str, float], strategy: str
) -> PersonalRatingResult | None:
    if expected["damage"] <= 0:
        return None

    def normalize(key: str) -> float:
        if expected[key] <= 0:
            return 0.0
        ratio = actual[key] / expected[key]
        floor = PR_FLOORS[key]
        return max(0.0, (ratio - floor) / (1.0 - floor))

    pr = sum(PR_WEIGHTS[key] * normalize(key) for key in PR_WEIGHTS)
    return PersonalRatingResult(pr=pr, strategy=strategy)


class ScoringStrategy(ABC):
    """Pure, versioned scoring function."""

    version: str = ""

    @abstractmethod
    def score(self, inputs: Sequence[ScoringInput]) -> PersonalRatingResult | None:
        """Score a set of ship results; None when nothing can be scored."""

    def score_one(self, item: ScoringInput) -> PersonalRatingResult | None:
        return self.score([item])


# ============================================================================
# pr-wows-numbers-v1
# ============================================================================


@dataclass(frozen=True)
class ShipExpectedValues:
    average_damage_dealt: float
    average_frags: float
    win_rate: float  # Percent


class ExpectedValues:
    """Per-ship expected values, as published by wows-numbers."""

    def __init__(self, ships: dict[int, ShipExpectedValues] | None = None, time: int = 0):
        self.ships = ships or {}
        self.time = time

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExpectedValues:
        ships = {}
        for key, entry in (data.get("data") or {}).items():
            # Ships with no data are published as an empty list
            if not isinstance(entry, dict):
                continue
            ships[int(key)] = ShipExpectedValues(
                average_damage_dealt=float(entry["average_damage_dealt"]),
                average_frags=float(entry["average_frags"]),
                win_rate=float(entry["win_rate"]),
            )
        return cls(ships=ships, time=int(data.get("time", 0) or 0))

    @classmethod
    def from_json(cls, path: Path | str) -> ExpectedValues:
        with open(path) as f:
            values = cls.from_dict(json.load(f))
        logger.info(f"Loaded PR expected values for {len(values.ships)} ships from {path}")
        return values

    def get(self, ship_id: int | None) -> ShipExpectedValues | None:
        if ship_id is None:
            return None
        return self.ships.get(ship_id)

    def __len__(self) -> int:
        return len(self.ships)


class PersonalRatingV1(ScoringStrategy):
    version = "pr-wows-numbers-v1"

    def __init__(self, expected_values: ExpectedValues | None = None):
        self.expected_values = expected_values or ExpectedValues()

    def score(self, inputs: Sequence[ScoringInput]) -> PersonalRatingResult | None:
        actual = {"damage": 0.0, "frags": 0.0, "wins": 0.0}
        expected = {"damage": 0.0, "frags": 0.0, "wins": 0.0}
        battles = 0

        for item in inputs:
            ev = self.expected_values.get(item.ship_id)
            if ev is None:
                continue
            battles += item.battles
            actual["damage"] += item.damage
            actual["frags"] += item.frags
            actual["wins"] += item.battles if item.won else 0
            expected["damage"] += ev.average_damage_dealt * item.battles
            expected["frags"] += ev.average_frags * item.battles
            expected["wins"] += ev.win_rate / 100.0 * item.battles

        if battles == 0:
            return None
        return _normalized_rating(actual, expected, self.version)


# ============================================================================
# class-tier-v1
# ============================================================================


def tier_scale(tier: int) -> float:
    """Fraction of the tier 10 baseline expected at ``tier``."""
    tier = min(max(tier, 1), 11)
    return 0.35 + 0.065 * tier


class ClassTierRating(ScoringStrategy):
    version = "class-tier-v1"

    def __init__(self, baselines: dict[str, dict[str, float]] | None = None):
        self.baselines = baselines or CLASS_BASELINES

    def expected_for(self, item: ScoringInput) -> dict[str, float]:
        baseline = self.baselines.get(item.ship_class, DEFAULT_BASELINE)
        scale = tier_scale(item.tier) if item.tier else 1.0
        return {
            "damage": baseline["damage"] * scale * item.battles,
            "frags": baseline["frags"] * item.battles,
            "wins": baseline["survival"] * item.battles,
        }

    def score(self, inputs: Sequence[ScoringInput]) -> PersonalRatingResult | None:
        if not inputs:
            return None
        actual = {"damage": 0.0, "frags": 0.0, "wins": 0.0}
        expected = {"damage": 0.0, "frags": 0.0, "wins": 0.0}
        for item in inputs:
            actual["damage"] += item.damage
            actual["frags"] += item.frags
            actual["wins"] += item.battles if item.survived else 0
            for key, value in self.expected_for(item).items():
                expected[key] += value
        return _normalized_rating(actual, expected, self.version)


class FallbackScoring(ScoringStrategy):
    """Tries each strategy in turn and returns the first score produced."""

    def __init__(self, *strategies: ScoringStrategy):
        if not strategies:
            raise ValueError("FallbackScoring needs at least one strategy")
        self.strategies = strategies
        self.version = strategies[0].version

    def score(self, inputs: Sequence[ScoringInput]) -> PersonalRatingResult | None:
        for strategy in self.strategies:
            result = strategy.score(inputs)
            if result is not None:
                return result
        return None


# ============================================================================
# Registry
# ============================================================================

SCORING_STRATEGIES: dict[str, Callable[..., ScoringStrategy]] = {
    PersonalRatingV1.version: PersonalRatingV1,
    ClassTierRating.version: ClassTierRating,
}


def get_scoring_strategy(name: str, expected_values: ExpectedValues | None = None) -> ScoringStrategy:
    """Instantiate a registered strategy by version name."""
    if name not in SCORING_STRATEGIES:
        raise ValueError(
            f"Unknown scoring strategy {name!r}; available: {', '.join(sorted(SCORING_STRATEGIES))}"
        )
    if name == PersonalRatingV1.version:
        return PersonalRatingV1(expected_values)
    return SCORING_STRATEGIES[name]()


def build_scoring(config: ScoringConfig | None = None) -> ScoringStrategy:
    """Build the configured strategy, chained with its fallback if one is set."""
    config = config or ScoringConfig()
    expected_values = None
    if config.expected_values_path:
        path = Path(config.expected_values_path).expanduser()
        if path.exists():
            expected_values = ExpectedValues.from_json(path)
        else:
            logger.warning(f"PR expected values file not found: {path}")

    primary = get_scoring_strategy(config.strategy, expected_values)
    if config.fallback_strategy and config.fallback_strategy != config.strategy:
        return FallbackScoring(primary, get_scoring_strategy(config.fallback_strategy, expected_values))
    return primary
