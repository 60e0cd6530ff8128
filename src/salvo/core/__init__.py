"""
Salvo Core - Foundation modules for battle reconstruction.

This module contains the fundamental components:
- constants: Damage kinds, outcomes, ship classes and rating bands
- events: Typed battle events and the JSON-lines decoder
- sources: Event sources (in-memory, file, live tail)
- lookup: Game definition lookup (ships, consumables, achievements)
- battle: The reconstructed battle model and anomalies
- config: Application configuration management
"""

from salvo.core.battle import Anomaly, AnomalyKind, Battle, Entity, Player
from salvo.core.constants import BattleOutcome, DamageCategory, DamageKind, ShipClass
from salvo.core.events import EventDecodeError, EventKind, FinalResult, decode_event
from salvo.core.lookup import GameDefinition, GameDefinitionLookup, NullLookup, StaticGameDefinitions
from salvo.core.sources import EventSource, IterableEventSource, JsonLinesEventSource, TailingEventSource

__all__ = [
    # Battle model
    "Anomaly",
    "AnomalyKind",
    "Battle",
    "Entity",
    "Player",
    # Constants
    "BattleOutcome",
    "DamageCategory",
    "DamageKind",
    "ShipClass",
    # Events
    "EventDecodeError",
    "EventKind",
    "FinalResult",
    "decode_event",
    # Lookup
    "GameDefinition",
    "GameDefinitionLookup",
    "NullLookup",
    "StaticGameDefinitions",
    # Sources
    "EventSource",
    "IterableEventSource",
    "JsonLinesEventSource",
    "TailingEventSource",
]
