"""
Salvo - Naval Battle Replay Analytics

Reconstructs battles from decoded replay event logs, aggregates who damaged
whom, derives per-player statistics and ratings, and tracks the players met
across battles.

Usage:
    from salvo import analyze_battle

    analysis = analyze_battle("battle.jsonl")
    for player in analysis.statistics.players:
        print(f"{player.name}: {player.damage_total:.0f} ({player.pr})")
"""

__version__ = "0.1.0"
__author__ = "Salvo Contributors"


def __getattr__(name):
    """Lazy import for heavy dependencies."""
    if name == "analyze_battle":
        from salvo.pipeline.orchestrator import analyze_battle
        return analyze_battle
    elif name == "BattleOrchestrator":
        from salvo.pipeline.orchestrator import BattleOrchestrator
        return BattleOrchestrator
    elif name == "reconstruct_battle":
        from salvo.state_machine import reconstruct_battle
        return reconstruct_battle
    elif name == "aggregate_damage":
        from salvo.analysis.damage import aggregate_damage
        return aggregate_damage
    elif name == "derive_statistics":
        from salvo.analysis.statistics import derive_statistics
        return derive_statistics
    elif name == "SessionPlayerTracker":
        from salvo.tracking.player_tracker import SessionPlayerTracker
        return SessionPlayerTracker
    elif name == "EventLogWatcher":
        from salvo.watcher import EventLogWatcher
        return EventLogWatcher
    raise AttributeError(f"module 'salvo' has no attribute '{name}'")


__all__ = [
    "__version__",
    "analyze_battle",
    "BattleOrchestrator",
    "reconstruct_battle",
    "aggregate_damage",
    "derive_statistics",
    "SessionPlayerTracker",
    "EventLogWatcher",
]
