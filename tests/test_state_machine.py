"""
Tests for battle state reconstruction.

Covers the dispatch of every event kind, sequence dedup, truncation,
placeholder synthesis and forward-compatible skipping of unknown kinds.
"""

import threading

import pytest

from salvo.core.battle import AnomalyKind
from salvo.core.config import ReconstructionConfig
from salvo.core.constants import DamageCategory, DamageKind
from salvo.core.events import (
    BattleEnd,
    BattleResults,
    BattleStart,
    ConsumableUse,
    Death,
    EntitySpawn,
    FinalResult,
    Heal,
    Hit,
    PlayerDisconnect,
    RosterAnnounce,
    StatusChange,
    UnknownEvent,
)
from salvo.core.lookup import GameDefinition, StaticGameDefinitions
from salvo.state_machine import BattleReconstructor, reconstruct_battle

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SHIP_A = 101
SHIP_B = 204


def _two_ship_stream(with_end: bool = True) -> list:
    events = [
        EntitySpawn(timestamp=0.0, entity_id=SHIP_A, team_id=1, max_health=50000),
        EntitySpawn(timestamp=0.0, entity_id=SHIP_B, team_id=2, max_health=40000),
        Hit(
            timestamp=60.0,
            source_id=SHIP_A,
            target_id=SHIP_B,
            amount=4000,
            damage_kind=DamageKind.ARTILLERY,
            category=DamageCategory.DEALT,
            sequence=1,
        ),
        Death(timestamp=90.0, entity_id=SHIP_B, killer_id=SHIP_A, sequence=2),
    ]
    if with_end:
        events.append(BattleEnd(timestamp=100.0, winner_team_id=1, sequence=3))
    return events


def _lookup() -> StaticGameDefinitions:
    return StaticGameDefinitions(
        types={
            3001: GameDefinition(type_id=3001, name="Yamato", category="Battleship", tier=10),
            4001: GameDefinition(type_id=4001, name="Repair Party", category="consumable"),
        }
    )


class TestTwoShipBattle:
    """The minimal end-to-end battle."""

    def test_damage_logged_and_applied(self):
        battle = reconstruct_battle(_two_ship_stream())
        assert battle.finalized is True
        assert battle.incomplete is False
        assert len(battle.damage_log) == 1
        hit = battle.damage_log[0]
        assert (hit.source_id, hit.target_id, hit.amount) == (SHIP_A, SHIP_B, 4000)
        assert battle.entities[SHIP_B].damage_taken == 4000
        assert battle.entities[SHIP_B].health == 0.0

    def test_death_recorded(self):
        battle = reconstruct_battle(_two_ship_stream())
        b = battle.entities[SHIP_B]
        assert b.is_destroyed
        assert b.destruction_time == 90.0
        assert b.killer_id == SHIP_A
        assert not battle.entities[SHIP_A].is_destroyed

    def test_battle_end(self):
        battle = reconstruct_battle(_two_ship_stream())
        assert battle.winner_team_id == 1
        assert battle.duration == 100.0
        assert battle.teams == [1, 2]
        assert battle.anomalies == []


class TestSequenceDedup:
    def test_duplicate_hit_dropped(self):
        events = _two_ship_stream()
        events.insert(3, events[2])  # replayed segment
        battle = reconstruct_battle(events)
        assert len(battle.damage_log) == 1
        assert battle.entities[SHIP_B].damage_taken == 4000
        assert battle.duplicates_dropped == 1

    def test_same_sequence_different_type_kept(self):
        events = _two_ship_stream()
        events.insert(
            3, Heal(timestamp=61.0, source_id=SHIP_B, target_id=SHIP_B, amount=500, sequence=1)
        )
        battle = reconstruct_battle(events)
        assert len(battle.heal_log) == 1
        assert battle.duplicates_dropped == 0

    def test_events_without_sequence_always_applied(self):
        hit = Hit(timestamp=10.0, source_id=SHIP_A, target_id=SHIP_B, amount=100)
        events = _two_ship_stream()[:2] + [hit, hit]
        battle = reconstruct_battle(events)
        assert len(battle.damage_log) == 2

    def test_dedup_disabled(self):
        events = _two_ship_stream()
        events.insert(3, events[2])
        battle = reconstruct_battle(events, config=ReconstructionConfig(dedupe_by_sequence=False))
        assert len(battle.damage_log) == 2

    def test_out_of_order_counted(self):
        events = _two_ship_stream()
        events.insert(3, Hit(timestamp=30.0, source_id=SHIP_A, target_id=SHIP_B, amount=10, sequence=9))
        battle = reconstruct_battle(events)
        assert battle.out_of_order_events == 1


class TestTruncation:
    def test_missing_battle_end_flags_incomplete(self):
        battle = reconstruct_battle(_two_ship_stream(with_end=False))
        assert battle.finalized is False
        assert battle.incomplete is True
        truncated = battle.anomalies_of(AnomalyKind.STREAM_TRUNCATED)
        assert len(truncated) == 1

    def test_observed_damage_unchanged(self):
        full = reconstruct_battle(_two_ship_stream())
        cut = reconstruct_battle(_two_ship_stream(with_end=False))
        assert [e.amount for e in cut.damage_log] == [e.amount for e in full.damage_log]
        assert cut.entities[SHIP_B].damage_taken == full.entities[SHIP_B].damage_taken

    def test_open_statuses_closed_at_last_event(self):
        events = _two_ship_stream(with_end=False)[:2] + [
            StatusChange(timestamp=10.0, entity_id=SHIP_A, status="fire", active=True, source_id=SHIP_B),
            Hit(timestamp=25.0, source_id=SHIP_B, target_id=SHIP_A, amount=300, damage_kind=DamageKind.FIRE),
        ]
        battle = reconstruct_battle(events)
        interval = battle.entities[SHIP_A].statuses["fire"][0]
        assert interval.end == 25.0
        assert battle.entities[SHIP_A].status_time("fire") == 15.0

    def test_cancellation_stops_early(self):
        cancel = threading.Event()
        cancel.set()
        battle = reconstruct_battle(_two_ship_stream(), cancel=cancel)
        assert battle.events_processed == 0
        assert battle.incomplete is True


class TestPlaceholders:
    def test_hit_before_spawn_synthesizes_placeholder(self):
        events = [Hit(timestamp=5.0, source_id=7, target_id=8, amount=100)]
        battle = reconstruct_battle(events)
        assert battle.entities[7].is_placeholder
        assert battle.entities[8].is_placeholder
        unresolved = battle.anomalies_of(AnomalyKind.UNRESOLVED_REFERENCE)
        assert {a.entity_id for a in unresolved} == {7, 8}
        assert battle.has_unresolved_references

    def test_late_spawn_enriches_and_resolves(self):
        events = [
            Hit(timestamp=5.0, source_id=7, target_id=8, amount=100),
            EntitySpawn(timestamp=6.0, entity_id=8, team_id=2, type_id=3001, max_health=1000),
        ]
        battle = reconstruct_battle(events, lookup=_lookup())
        entity = battle.entities[8]
        assert not entity.is_placeholder
        assert entity.team_id == 2
        assert entity.definition.name == "Yamato"
        assert entity.damage_taken == 100
        assert entity.health == 900
        remaining = battle.anomalies_of(AnomalyKind.UNRESOLVED_REFERENCE)
        assert [a.entity_id for a in remaining] == [7]
        resolved = battle.anomalies_of(AnomalyKind.UNRESOLVED_REFERENCE, include_resolved=True)
        assert len(resolved) == 2

    def test_roster_creates_entity_without_anomaly(self):
        events = [RosterAnnounce(timestamp=0.0, entity_id=5, name="captain", team_id=1, account_id=99)]
        battle = reconstruct_battle(events)
        assert battle.entities[5].team_id == 1
        assert battle.entities[5].player_id == 99
        assert battle.anomalies_of(AnomalyKind.UNRESOLVED_REFERENCE) == []

    def test_lookup_miss_recorded(self):
        events = [EntitySpawn(timestamp=0.0, entity_id=1, team_id=0, type_id=123456)]
        battle = reconstruct_battle(events, lookup=_lookup())
        assert battle.entities[1].definition.is_unknown
        misses = battle.anomalies_of(AnomalyKind.LOOKUP_MISS)
        assert len(misses) == 1
        assert misses[0].entity_id == 1


class TestUnknownEvents:
    def test_unknown_kind_skipped_and_counted(self):
        events = _two_ship_stream()
        events.insert(2, UnknownEvent(timestamp=1.0, tag="minimap_ping"))
        events.insert(3, UnknownEvent(timestamp=2.0, tag="minimap_ping"))
        battle = reconstruct_battle(events)
        assert battle.skipped_events["minimap_ping"] == 2
        # One anomaly per tag, not per occurrence
        assert len(battle.anomalies_of(AnomalyKind.UNKNOWN_EVENT_KIND)) == 1
        assert battle.entities[SHIP_B].damage_taken == 4000

    def test_unrecognized_object_skipped(self):
        class FutureEvent:
            timestamp = 1.0
            sequence = None

        reconstructor = BattleReconstructor("b")
        assert reconstructor.feed(FutureEvent()) is False
        assert reconstructor.battle.skipped_events["FutureEvent"] == 1

    def test_unknown_tags_with_same_sequence_kept(self):
        events = _two_ship_stream()
        events.insert(2, UnknownEvent(timestamp=1.0, tag="minimap_ping", sequence=50))
        events.insert(3, UnknownEvent(timestamp=1.0, tag="chat", sequence=50))
        events.insert(4, UnknownEvent(timestamp=1.0, tag="chat", sequence=50))
        battle = reconstruct_battle(events)
        assert battle.skipped_events["minimap_ping"] == 1
        assert battle.skipped_events["chat"] == 1
        assert battle.duplicates_dropped == 1


class TestEventHandlers:
    def test_battle_start_metadata(self):
        battle = reconstruct_battle(
            [BattleStart(timestamp=0.0, map_id="16_OC_bees_to_honey", game_type="RandomBattle")]
        )
        assert battle.map_id == "16_OC_bees_to_honey"
        assert battle.game_type == "RandomBattle"

    def test_roster_and_results(self):
        result = FinalResult(account_id=99, raw_xp=1200)
        events = [
            RosterAnnounce(timestamp=0.0, entity_id=5, name="captain", team_id=1, account_id=99, is_local=True),
            BattleEnd(timestamp=10.0),
            BattleResults(timestamp=11.0, results={99: result}),
        ]
        battle = reconstruct_battle(events)
        assert battle.local_player().name == "captain"
        assert battle.players[5].result == result
        assert battle.final_results[99] == result

    def test_results_before_roster(self):
        result = FinalResult(account_id=99)
        events = [
            BattleResults(timestamp=0.0, results={99: result}),
            RosterAnnounce(timestamp=1.0, entity_id=5, name="captain", team_id=1, account_id=99),
        ]
        battle = reconstruct_battle(events)
        assert battle.players[5].result == result

    def test_events_after_end_skipped(self):
        events = _two_ship_stream() + [Hit(timestamp=120.0, source_id=SHIP_A, target_id=SHIP_B, amount=1)]
        battle = reconstruct_battle(events)
        assert len(battle.damage_log) == 1
        assert battle.skipped_events["after_battle_end"] == 1

    def test_heal_capped_at_max_health(self):
        events = [
            EntitySpawn(timestamp=0.0, entity_id=1, team_id=0, max_health=1000),
            Hit(timestamp=1.0, source_id=2, target_id=1, amount=300),
            Heal(timestamp=2.0, source_id=1, target_id=1, amount=500),
        ]
        battle = reconstruct_battle(events)
        assert battle.entities[1].health == 1000
        assert battle.heal_log[0].amount == 500

    def test_consumables_counted(self):
        events = [
            EntitySpawn(timestamp=0.0, entity_id=1, team_id=0),
            ConsumableUse(timestamp=1.0, entity_id=1, consumable_id=4001),
            ConsumableUse(timestamp=50.0, entity_id=1, consumable_id=4001),
        ]
        battle = reconstruct_battle(events)
        assert battle.entities[1].consumables_used[4001] == 2
        assert len(battle.consumable_log) == 2

    def test_status_interval(self):
        events = [
            EntitySpawn(timestamp=0.0, entity_id=1, team_id=0),
            EntitySpawn(timestamp=0.0, entity_id=2, team_id=1),
            StatusChange(timestamp=10.0, entity_id=1, status="fire", active=True, source_id=2),
            StatusChange(timestamp=12.0, entity_id=1, status="fire", active=True, source_id=2),
            StatusChange(timestamp=40.0, entity_id=1, status="fire", active=False),
        ]
        battle = reconstruct_battle(events)
        intervals = battle.entities[1].statuses["fire"]
        assert len(intervals) == 1
        assert intervals[0].source_id == 2
        assert intervals[0].duration() == 30.0

    def test_death_closes_statuses(self):
        events = [
            EntitySpawn(timestamp=0.0, entity_id=1, team_id=0),
            StatusChange(timestamp=10.0, entity_id=1, status="flooding", active=True),
            Death(timestamp=20.0, entity_id=1),
        ]
        battle = reconstruct_battle(events)
        assert battle.entities[1].statuses["flooding"][0].end == 20.0

    def test_second_death_ignored(self):
        events = [
            EntitySpawn(timestamp=0.0, entity_id=1, team_id=0),
            Death(timestamp=20.0, entity_id=1, killer_id=2),
            Death(timestamp=25.0, entity_id=1, killer_id=3),
        ]
        battle = reconstruct_battle(events)
        assert battle.entities[1].killer_id == 2

    def test_disconnect(self):
        events = [
            RosterAnnounce(timestamp=0.0, entity_id=5, name="captain", team_id=1, account_id=99),
            PlayerDisconnect(timestamp=30.0, entity_id=5),
        ]
        battle = reconstruct_battle(events)
        assert battle.players[5].disconnected is True


class TestReconstructor:
    def test_feed_after_finish_raises(self):
        reconstructor = BattleReconstructor("b")
        reconstructor.finish()
        with pytest.raises(RuntimeError, match="already finished"):
            reconstructor.feed(BattleEnd(timestamp=1.0))

    def test_finish_is_idempotent(self):
        reconstructor = BattleReconstructor("b")
        first = reconstructor.finish()
        second = reconstructor.finish()
        assert first is second
        assert len(first.anomalies_of(AnomalyKind.STREAM_TRUNCATED)) == 1

    def test_deterministic(self):
        a = reconstruct_battle(_two_ship_stream(), battle_id="x")
        b = reconstruct_battle(_two_ship_stream(), battle_id="x")
        assert a == b
