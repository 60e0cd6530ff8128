"""
Fuzzy matching of in-game names against live viewer names.

Names are normalized before comparison:
- Unicode NFKC folding and case folding
- zero-width characters and all whitespace removed
- a leading clan tag ("[CLAN]name") stripped

Similarity is 1 - levenshtein / max(len) with the edit distance bounded by
``max_distance``; anything farther apart scores 0. A viewer name that
contains the whole in-game name (e.g. "ttv_name_live") is treated as a
strong match as well.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

# Zero-width and BOM-like characters that survive NFKC
_ZERO_WIDTH = dict.fromkeys(map(ord, "\u200b\u200c\u200d\u2060\ufeff\u00ad"), None)
_CLAN_PREFIX = re.compile(r"^\s*\[[^\]]*\]\s*")
_WHITESPACE = re.compile(r"\s+")

# Confidence assigned when one name fully contains the other
CONTAINMENT_CONFIDENCE = 0.85


def normalize_name(name: str) -> str:
    """Canonical form of a display name for comparison."""
    name = unicodedata.normalize("NFKC", name or "")
    name = name.translate(_ZERO_WIDTH)
    name = _CLAN_PREFIX.sub("", name)
    name = _WHITESPACE.sub("", name)
    return name.casefold()


def levenshtein(a: str, b: str, max_distance: int | None = None) -> int:
    """
    Edit distance between two strings.

    With ``max_distance`` set, returns ``max_distance + 1`` as soon as the
    distance is known to exceed it.
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if max_distance is not None and len(a) - len(b) > max_distance:
        return max_distance + 1
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + (ca != cb),  # substitution
                )
            )
        if max_distance is not None and min(current) > max_distance:
            return max_distance + 1
        previous = current
    return previous[-1]


def name_similarity(
    player_name: str,
    viewer_name: str,
    max_distance: int = 3,
    min_length: int = 4,
) -> float:
    """Similarity in [0, 1] between an in-game name and a viewer name."""
    a = normalize_name(player_name)
    b = normalize_name(viewer_name)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    # Short names match too many viewers to mean anything
    if len(a) < min_length:
        return 0.0

    score = 0.0
    distance = levenshtein(a, b, max_distance)
    if distance <= max_distance:
        score = 1.0 - distance / max(len(a), len(b))
    if a in b:
        score = max(score, CONTAINMENT_CONFIDENCE)
    return score


@dataclass(frozen=True)
class ViewerMatch:
    """One viewer name that resembles a roster player's name."""

    viewer_name: str
    confidence: float
    distance: int

    def to_dict(self) -> dict:
        return {
            "viewer_name": self.viewer_name,
            "confidence": round(self.confidence, 4),
            "distance": self.distance,
        }


def match_viewers(
    player_name: str,
    viewer_names: list[str],
    threshold: float = 0.8,
    max_distance: int = 3,
    min_length: int = 4,
) -> list[ViewerMatch]:
    """
    All viewers resembling ``player_name`` at or above ``threshold``.

    Ranked by confidence (descending), then distance, then viewer name, so
    the result is deterministic for a given input.
    """
    normalized = normalize_name(player_name)
    matches = []
    for viewer in sorted(set(viewer_names)):
        confidence = name_similarity(player_name, viewer, max_distance, min_length)
        if confidence < threshold or confidence <= 0.0:
            continue
        distance = levenshtein(normalized, normalize_name(viewer), max_distance)
        matches.append(ViewerMatch(viewer_name=viewer, confidence=confidence, distance=distance))
    matches.sort(key=lambda m: (-m.confidence, m.distance, m.viewer_name))
    return matches
