"""Tests for the damage interaction aggregator."""

import pytest

from salvo.analysis.damage import DamageAggregator, aggregate_damage, check_conservation
from salvo.core.config import AggregationConfig, StatisticPolicy
from salvo.core.constants import DamageCategory, DamageKind
from salvo.core.events import BattleEnd, Death, EntitySpawn, Heal, Hit
from salvo.state_machine import reconstruct_battle

ENEMY_ONLY = StatisticPolicy(include_self=False, include_allies=False)
EVERYTHING = StatisticPolicy(include_self=True, include_allies=True)


def _spawns(*teams: tuple[int, int]) -> list:
    return [EntitySpawn(timestamp=0.0, entity_id=eid, team_id=team) for eid, team in teams]


def _hit(source, target, amount, ts=10.0, kind=DamageKind.ARTILLERY, category=DamageCategory.DEALT, **kw):
    return Hit(
        timestamp=ts,
        source_id=source,
        target_id=target,
        amount=amount,
        damage_kind=kind,
        category=category,
        **kw,
    )


def _table(events, config=None):
    battle = reconstruct_battle(events + [BattleEnd(timestamp=1000.0)])
    return battle, aggregate_damage(battle, config)


class TestTwoShipExample:
    def test_dealt_and_received(self):
        events = _spawns((1, 1), (2, 2)) + [
            _hit(1, 2, 4000, sequence=1),
            Death(timestamp=20.0, entity_id=2, killer_id=1),
        ]
        _, table = _table(events)
        assert table.amount(1, 2, DamageKind.ARTILLERY) == 4000
        assert table.totals_for(1).dealt == 4000
        assert table.totals_for(2).received == 4000
        assert table.totals_for(1).dealt_to == {2: 4000}
        assert table.totals_for(2).received_from == {1: 4000}
        assert table.conservation().ok

    def test_duplicate_delivery_not_doubled(self):
        hit = _hit(1, 2, 4000, sequence=1)
        _, table = _table(_spawns((1, 1), (2, 2)) + [hit, hit])
        assert table.totals_for(1).dealt == 4000


class TestCategories:
    def test_categories_disjoint(self):
        events = _spawns((1, 1), (2, 2)) + [
            _hit(1, 2, 1000),
            _hit(1, 2, 5000, ts=11.0, kind=DamageKind.TORPEDO, category=DamageCategory.POTENTIAL),
            _hit(3, 2, 700, ts=12.0, category=DamageCategory.SPOTTING),
        ]
        _, table = _table(events)
        target = table.totals_for(2)
        assert target.received == 1000
        assert target.potential == 5000
        assert target.potential_by_kind == {DamageKind.TORPEDO: 5000}
        assert table.totals_for(1).potential_inflicted == 5000
        assert table.totals_for(1).dealt == 1000
        assert table.totals_for(3).spotting == 700
        assert table.totals_for(3).dealt == 0
        assert table.amount(1, 2, DamageKind.TORPEDO, DamageCategory.POTENTIAL) == 5000
        assert table.conservation().ok

    def test_damage_by_kind(self):
        events = _spawns((1, 1), (2, 2)) + [
            _hit(1, 2, 1000),
            _hit(1, 2, 2000, ts=11.0, kind=DamageKind.TORPEDO),
            _hit(1, 2, 500, ts=12.0, kind=DamageKind.SECONDARY),
        ]
        _, table = _table(events)
        assert table.totals_for(1).dealt_by_kind == {
            DamageKind.ARTILLERY: 1000,
            DamageKind.TORPEDO: 2000,
            DamageKind.SECONDARY: 500,
        }
        assert table.totals_for(2).received_by_kind[DamageKind.TORPEDO] == 2000
        assert table.totals_for(1).hits == 3


class TestDamageOverTime:
    def test_fire_ticks_summed(self):
        ticks = [_hit(1, 2, 150, ts=20.0 + i, kind=DamageKind.FIRE) for i in range(10)]
        _, table = _table(_spawns((1, 1), (2, 2)) + ticks)
        totals = table.totals_for(1)
        assert totals.dealt == pytest.approx(1500)
        assert totals.dot_ticks == 10
        assert table.amount(1, 2, DamageKind.FIRE) == pytest.approx(1500)

    def test_ticks_at_same_time_from_two_sources_kept(self):
        events = _spawns((1, 1), (3, 1), (2, 2)) + [
            _hit(1, 2, 100, ts=30.0, kind=DamageKind.FLOOD),
            _hit(3, 2, 100, ts=30.0, kind=DamageKind.FIRE),
        ]
        _, table = _table(events)
        assert table.totals_for(2).received == 200


class TestStrikeDedup:
    def test_sub_munitions_counted_once(self):
        events = _spawns((1, 1), (2, 2)) + [
            _hit(1, 2, 3000, ts=40.0, kind=DamageKind.AIRCRAFT, strike_id="s-1"),
            _hit(1, 2, 3000, ts=40.0, kind=DamageKind.AIRCRAFT, strike_id="s-1"),
            _hit(1, 2, 3000, ts=40.0, kind=DamageKind.AIRCRAFT, strike_id="s-1"),
        ]
        _, table = _table(events)
        assert table.totals_for(1).dealt == 3000
        assert table.strikes_deduplicated == 2

    def test_same_strike_different_targets_counted(self):
        events = _spawns((1, 1), (2, 2), (3, 2)) + [
            _hit(1, 2, 3000, ts=40.0, kind=DamageKind.AIRCRAFT, strike_id="s-1"),
            _hit(1, 3, 3000, ts=40.0, kind=DamageKind.AIRCRAFT, strike_id="s-1"),
        ]
        _, table = _table(events)
        assert table.totals_for(1).dealt == 6000

    def test_dedup_can_be_disabled(self):
        events = _spawns((1, 1), (2, 2)) + [
            _hit(1, 2, 3000, ts=40.0, strike_id="s-1"),
            _hit(1, 2, 3000, ts=40.0, strike_id="s-1"),
        ]
        _, table = _table(events, AggregationConfig(dedupe_strikes=False))
        assert table.totals_for(1).dealt == 6000


class TestPolicies:
    def _events(self):
        return _spawns((1, 1), (2, 1), (3, 2)) + [
            _hit(1, 3, 1000),
            _hit(1, 2, 200, ts=11.0),  # team damage
            _hit(1, 1, 50, ts=12.0, kind=DamageKind.RAM),  # self damage
        ]

    def test_self_damage_keyed_under_source(self):
        _, table = _table(self._events())
        assert table.amount(1, 1, DamageKind.RAM) == 50
        assert table.totals_for(1).self_damage == 50
        assert table.totals_for(1).team_damage == 200

    def test_policy_filters_at_query_time(self):
        _, table = _table(self._events())
        assert table.dealt_by(1, EVERYTHING) == 1250
        assert table.dealt_by(1, ENEMY_ONLY) == 1000
        assert table.dealt_by(1, StatisticPolicy(include_self=True)) == 1050
        assert table.dealt_by(1, StatisticPolicy(include_allies=True)) == 1200

    def test_received_by_policy(self):
        _, table = _table(self._events())
        assert table.received_by(1, EVERYTHING) == 50
        assert table.received_by(1, ENEMY_ONLY) == 0

    def test_conservation_includes_self_damage(self):
        _, table = _table(self._events())
        report = table.conservation()
        assert report.dealt_total == report.received_total == 1250
        assert report.ok


class TestPosthumousPotential:
    def test_single_source_credited_per_tick(self):
        events = _spawns((1, 1), (4, 1), (2, 2)) + [
            Death(timestamp=50.0, entity_id=2, killer_id=1),
            _hit(4, 2, 900, ts=55.0, category=DamageCategory.POTENTIAL),
            _hit(1, 2, 800, ts=55.0, category=DamageCategory.POTENTIAL),
        ]
        _, table = _table(events)
        assert table.totals_for(2).potential == 800
        assert table.totals_for(1).potential_inflicted == 800
        assert table.totals_for(4).potential_inflicted == 0
        assert table.potential_dropped == 1

    def test_before_death_all_sources_credited(self):
        events = _spawns((1, 1), (4, 1), (2, 2)) + [
            _hit(4, 2, 900, ts=45.0, category=DamageCategory.POTENTIAL),
            _hit(1, 2, 800, ts=45.0, category=DamageCategory.POTENTIAL),
            Death(timestamp=50.0, entity_id=2, killer_id=1),
        ]
        _, table = _table(events)
        assert table.totals_for(2).potential == 1700


class TestHeals:
    def test_heal_credited_to_target(self):
        events = _spawns((1, 1)) + [Heal(timestamp=5.0, source_id=1, target_id=1, amount=2500)]
        _, table = _table(events)
        assert table.totals_for(1).healed == 2500
        assert table.totals_for(1).received == 0


class TestConservation:
    def test_report_fields(self):
        events = _spawns((1, 1), (2, 2)) + [_hit(1, 2, 4000)]
        battle, table = _table(events)
        report = check_conservation(battle, table, tolerance=0.5)
        assert report.ok
        assert report.difference == 0
        assert report.has_unresolved_references is False

    def test_unresolved_references_flagged(self):
        battle, table = _table([_hit(7, 8, 100)])
        report = check_conservation(battle, table)
        assert report.ok
        assert report.has_unresolved_references is True

    def test_violation_detected(self):
        battle, table = _table(_spawns((1, 1), (2, 2)) + [_hit(1, 2, 4000)])
        table.totals[2].received -= 100
        report = check_conservation(battle, table, tolerance=0.5)
        assert not report.ok
        assert report.difference == pytest.approx(100)
        assert "difference" in report.describe()

    def test_unknown_entity_totals_are_empty(self):
        _, table = _table(_spawns((1, 1)))
        assert table.totals_for(999).dealt == 0


class TestAggregator:
    def test_deterministic(self):
        events = _spawns((1, 1), (2, 2)) + [_hit(1, 2, 4000), _hit(2, 1, 10, ts=12.0)]
        battle = reconstruct_battle(events)
        a = DamageAggregator().aggregate(battle)
        b = DamageAggregator().aggregate(battle)
        assert a == b
