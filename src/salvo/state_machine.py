"""
Battle State Reconstruction Engine

Folds the ordered event stream of one replay into a self-contained ``Battle``:
players, ship entities, damage / heal / consumable logs and status effects.

Architecture:
- One reconstructor per battle, strictly sequential over its event stream
- Closed event family dispatched through a type -> handler table, with an
  explicit arm for unknown kinds
- Dedup by sequence key (the log replays segments after a reconnect)
- Placeholder entities for ids referenced before (or without) a spawn
- Truncated or cancelled streams still produce a Battle, flagged incomplete
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from salvo.core.battle import (
    Anomaly,
    AnomalyKind,
    Battle,
    ConsumableUsage,
    DamageEvent,
    Entity,
    HealEvent,
    Player,
    StatusInterval,
)
from salvo.core.config import ReconstructionConfig
from salvo.core.constants import DamageCategory
from salvo.core.events import (
    BattleEnd,
    BattleResults,
    BattleStart,
    ConsumableUse,
    Death,
    EntitySpawn,
    Event,
    Heal,
    Hit,
    PlayerDisconnect,
    RosterAnnounce,
    StatusChange,
    UnknownEvent,
)
from salvo.core.lookup import GameDefinitionLookup, NullLookup

logger = logging.getLogger(__name__)


class BattleReconstructor:
    """
    Incremental reconstructor for a single battle.

    Usage:
        reconstructor = BattleReconstructor("battle-1", lookup)
        for event in source:
            reconstructor.feed(event)
        battle = reconstructor.finish()
    """

    def __init__(
        self,
        battle_id: str,
        lookup: GameDefinitionLookup | None = None,
        config: ReconstructionConfig | None = None,
    ):
        self.battle = Battle(battle_id=battle_id)
        self.lookup = lookup or NullLookup()
        self.config = config or ReconstructionConfig()

        self._seen_sequences: set[tuple[str, int]] = set()
        self._unknown_tags: set[str] = set()
        self._finished = False

        self._handlers = {
            BattleStart: self._on_battle_start,
            RosterAnnounce: self._on_roster,
            EntitySpawn: self._on_spawn,
            Hit: self._on_hit,
            Heal: self._on_heal,
            ConsumableUse: self._on_consumable,
            StatusChange: self._on_status,
            PlayerDisconnect: self._on_disconnect,
            Death: self._on_death,
            BattleResults: self._on_results,
            BattleEnd: self._on_battle_end,
            UnknownEvent: self._on_unknown,
        }

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------

    def feed(self, event: Event) -> bool:
        """
        Apply one event.

        Returns:
            True if the event changed battle state, False if it was dropped
            (duplicate, skipped, or arriving after battle end).
        """
        if self._finished:
            raise RuntimeError(f"Battle {self.battle.battle_id} is already finished")

        battle = self.battle
        battle.events_processed += 1

        if event.sequence is not None and self.config.dedupe_by_sequence:
            key: tuple = (type(event).__name__, event.sequence)
            if isinstance(event, UnknownEvent):
                key += (event.tag,)
            if key in self._seen_sequences:
                battle.duplicates_dropped += 1
                return False
            self._seen_sequences.add(key)

        self._track_time(event.timestamp)

        if battle.finalized and not (
            isinstance(event, BattleResults) and self.config.accept_results_after_end
        ):
            battle.skipped_events["after_battle_end"] += 1
            logger.debug(f"Skipping {type(event).__name__} after battle end")
            return False

        handler = self._handlers.get(type(event))
        if handler is None:
            return self._on_unrecognized(event)
        return handler(event)

    def consume(self, events: Iterable[Event], cancel: threading.Event | None = None) -> Battle:
        """Feed every event from ``events`` and finish, stopping early on cancel."""
        for event in events:
            if cancel is not None and cancel.is_set():
                logger.info(f"Reconstruction of {self.battle.battle_id} cancelled")
                break
            self.feed(event)
        return self.finish()

    def finish(self) -> Battle:
        """Finalize entities and return the Battle."""
        if self._finished:
            return self.battle
        self._finished = True

        battle = self.battle
        if not battle.finalized:
            battle.incomplete = True
            battle.anomalies.append(
                Anomaly(
                    kind=AnomalyKind.STREAM_TRUNCATED,
                    message="Event stream ended before battle end",
                    timestamp=battle.last_timestamp,
                )
            )
            logger.warning(
                f"Battle {battle.battle_id} is incomplete "
                f"({battle.events_processed} events, no battle end)"
            )

        end = battle.end_timestamp if battle.end_timestamp is not None else battle.last_timestamp
        if end is not None:
            for entity in battle.entities.values():
                self._close_statuses(entity, end)

        return battle

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _track_time(self, timestamp: float) -> None:
        battle = self.battle
        if battle.start_timestamp is None:
            battle.start_timestamp = timestamp
        if battle.last_timestamp is None or timestamp >= battle.last_timestamp:
            battle.last_timestamp = timestamp
        else:
            battle.out_of_order_events += 1

    def _ensure_entity(self, entity_id: int, timestamp: float, role: str) -> Entity:
        """Return the entity, synthesizing a placeholder if it was never seen."""
        entity = self.battle.entities.get(entity_id)
        if entity is not None:
            return entity

        entity = Entity(entity_id=entity_id, spawn_time=timestamp, is_placeholder=True)
        player = self.battle.players.get(entity_id)
        if player is not None:
            entity.team_id = player.team_id
            entity.player_id = player.account_id
        self.battle.entities[entity_id] = entity

        self.battle.anomalies.append(
            Anomaly(
                kind=AnomalyKind.UNRESOLVED_REFERENCE,
                message=f"Entity {entity_id} referenced as {role} before spawn",
                timestamp=timestamp,
                entity_id=entity_id,
            )
        )
        logger.warning(
            f"Battle {self.battle.battle_id}: entity {entity_id} referenced as {role} "
            f"at t={timestamp:.1f} before spawn, using placeholder"
        )
        return entity

    def _resolve_reference_anomalies(self, entity_id: int) -> None:
        for anomaly in self.battle.anomalies:
            if anomaly.kind == AnomalyKind.UNRESOLVED_REFERENCE and anomaly.entity_id == entity_id:
                anomaly.resolved = True

    @staticmethod
    def _close_statuses(entity: Entity, timestamp: float) -> None:
        for intervals in entity.statuses.values():
            if intervals and intervals[-1].is_open:
                intervals[-1].end = max(timestamp, intervals[-1].start)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_battle_start(self, event: BattleStart) -> bool:
        battle = self.battle
        battle.map_id = event.map_id
        battle.game_mode = event.game_mode
        battle.game_type = event.game_type
        battle.start_time = event.start_time
        battle.start_timestamp = event.timestamp
        return True

    def _on_roster(self, event: RosterAnnounce) -> bool:
        battle = self.battle
        player = battle.players.get(event.entity_id)
        if player is None:
            player = Player(entity_id=event.entity_id, name=event.name, team_id=event.team_id)
            battle.players[event.entity_id] = player

        player.name = event.name
        player.team_id = event.team_id
        player.account_id = event.account_id
        player.division_id = event.division_id
        player.clan_tag = event.clan_tag
        player.clan_color = event.clan_color
        player.is_local = event.is_local
        if player.account_id in battle.final_results:
            player.result = battle.final_results[player.account_id]

        # The roster is authoritative about a vehicle existing, even before it spawns
        entity = battle.entities.get(event.entity_id)
        if entity is None:
            entity = Entity(entity_id=event.entity_id, is_placeholder=True)
            battle.entities[event.entity_id] = entity
        entity.player_id = event.account_id
        if entity.team_id is None:
            entity.team_id = event.team_id
        return True

    def _on_spawn(self, event: EntitySpawn) -> bool:
        battle = self.battle
        entity = battle.entities.get(event.entity_id)
        if entity is None:
            entity = Entity(entity_id=event.entity_id)
            battle.entities[event.entity_id] = entity
        elif entity.is_placeholder:
            self._resolve_reference_anomalies(event.entity_id)

        entity.is_placeholder = False
        entity.team_id = event.team_id
        entity.type_id = event.type_id
        entity.spawn_time = event.timestamp
        entity.max_health = event.max_health
        if not entity.is_destroyed:
            entity.health = max(0.0, event.max_health - entity.damage_taken)

        entity.definition = self.lookup.resolve(event.type_id)
        if entity.definition.is_unknown and event.type_id is not None:
            battle.anomalies.append(
                Anomaly(
                    kind=AnomalyKind.LOOKUP_MISS,
                    message=f"Unknown ship type {event.type_id}",
                    timestamp=event.timestamp,
                    entity_id=event.entity_id,
                )
            )

        player = battle.players.get(event.entity_id)
        if player is not None:
            entity.player_id = player.account_id
        return True

    def _on_hit(self, event: Hit) -> bool:
        self._ensure_entity(event.source_id, event.timestamp, "damage source")
        target = self._ensure_entity(event.target_id, event.timestamp, "damage target")

        self.battle.damage_log.append(
            DamageEvent(
                source_id=event.source_id,
                target_id=event.target_id,
                timestamp=event.timestamp,
                amount=event.amount,
                kind=event.damage_kind,
                category=event.category,
                strike_id=event.strike_id,
                sequence=event.sequence,
            )
        )

        if event.category == DamageCategory.DEALT and not target.is_destroyed:
            target.damage_taken += event.amount
            if target.max_health > 0:
                target.health = max(0.0, target.health - event.amount)
        return True

    def _on_heal(self, event: Heal) -> bool:
        self._ensure_entity(event.source_id, event.timestamp, "heal source")
        target = self._ensure_entity(event.target_id, event.timestamp, "heal target")

        self.battle.heal_log.append(
            HealEvent(
                source_id=event.source_id,
                target_id=event.target_id,
                timestamp=event.timestamp,
                amount=event.amount,
            )
        )
        if not target.is_destroyed and target.max_health > 0:
            target.health = min(target.max_health, target.health + event.amount)
        return True

    def _on_consumable(self, event: ConsumableUse) -> bool:
        entity = self._ensure_entity(event.entity_id, event.timestamp, "consumable user")
        self.battle.consumable_log.append(
            ConsumableUsage(
                entity_id=event.entity_id,
                consumable_id=event.consumable_id,
                timestamp=event.timestamp,
            )
        )
        entity.consumables_used[event.consumable_id] += 1
        return True

    def _on_status(self, event: StatusChange) -> bool:
        entity = self._ensure_entity(event.entity_id, event.timestamp, "status target")
        if event.source_id is not None:
            self._ensure_entity(event.source_id, event.timestamp, "status source")

        open_interval = entity.active_status(event.status)
        if event.active:
            if open_interval is not None or entity.is_destroyed:
                return False
            entity.statuses.setdefault(event.status, []).append(
                StatusInterval(start=event.timestamp, source_id=event.source_id)
            )
        else:
            if open_interval is None:
                logger.debug(f"Entity {event.entity_id}: {event.status} ended but was not active")
                return False
            open_interval.end = max(event.timestamp, open_interval.start)
        return True

    def _on_disconnect(self, event: PlayerDisconnect) -> bool:
        player = self.battle.players.get(event.entity_id)
        if player is None:
            logger.debug(f"Disconnect for entity {event.entity_id} with no roster entry")
            return False
        player.disconnected = True
        return True

    def _on_death(self, event: Death) -> bool:
        entity = self._ensure_entity(event.entity_id, event.timestamp, "death victim")
        if event.killer_id is not None:
            self._ensure_entity(event.killer_id, event.timestamp, "killer")
        if entity.is_destroyed:
            return False

        entity.destruction_time = event.timestamp
        entity.killer_id = event.killer_id
        entity.death_cause = event.cause
        entity.health = 0.0
        self._close_statuses(entity, event.timestamp)
        return True

    def _on_results(self, event: BattleResults) -> bool:
        battle = self.battle
        battle.final_results.update(event.results)
        for player in battle.players.values():
            if player.account_id in event.results:
                player.result = event.results[player.account_id]
        return True

    def _on_battle_end(self, event: BattleEnd) -> bool:
        battle = self.battle
        battle.finalized = True
        battle.end_timestamp = event.timestamp
        battle.winner_team_id = event.winner_team_id
        logger.debug(f"Battle {battle.battle_id} ended at t={event.timestamp:.1f}")
        return True

    def _on_unknown(self, event: UnknownEvent) -> bool:
        tag = event.tag or "unknown"
        self.battle.skipped_events[tag] += 1
        if tag not in self._unknown_tags:
            self._unknown_tags.add(tag)
            self.battle.anomalies.append(
                Anomaly(
                    kind=AnomalyKind.UNKNOWN_EVENT_KIND,
                    message=f"Skipped {'malformed' if event.malformed else 'unknown'} event {tag!r}",
                    timestamp=event.timestamp,
                )
            )
            logger.debug(f"Skipping unrecognized event kind {tag!r}")
        return False

    def _on_unrecognized(self, event: object) -> bool:
        tag = type(event).__name__
        self.battle.skipped_events[tag] += 1
        logger.debug(f"No handler for event type {tag}")
        return False


def reconstruct_battle(
    events: Iterable[Event],
    battle_id: str = "battle",
    lookup: GameDefinitionLookup | None = None,
    config: ReconstructionConfig | None = None,
    cancel: threading.Event | None = None,
) -> Battle:
    """
    Reconstruct one battle from an ordered event sequence.

    Args:
        events: Event source or any iterable of events
        battle_id: Identifier for the resulting Battle
        lookup: Game definition lookup (placeholders when omitted)
        config: Reconstruction settings
        cancel: Optional cancellation flag checked before every event

    Returns:
        The Battle; ``incomplete`` is set when the stream ended (or was
        cancelled) before the battle end event.
    """
    reconstructor = BattleReconstructor(battle_id, lookup=lookup, config=config)
    return reconstructor.consume(events, cancel=cancel)
