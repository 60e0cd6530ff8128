"""Cross-battle player tracking and viewer name correlation."""

from salvo.tracking.player_tracker import PlayerOutcome, SessionPlayerTracker, ViewerCorrelation

__all__ = ["PlayerOutcome", "SessionPlayerTracker", "ViewerCorrelation"]
