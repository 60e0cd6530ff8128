"""
Salvo Pipeline - Battle analysis orchestration.

source -> reconstruct -> aggregate -> derive -> record
"""

from salvo.pipeline.orchestrator import BattleAnalysis, BattleOrchestrator, analyze_battle

__all__ = ["BattleAnalysis", "BattleOrchestrator", "analyze_battle"]
