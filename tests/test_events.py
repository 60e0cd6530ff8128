"""Tests for typed battle events and the wire decoder."""

from datetime import datetime

import pytest

from salvo.core.constants import DamageCategory, DamageKind
from salvo.core.events import (
    BattleEnd,
    BattleResults,
    BattleStart,
    EventDecodeError,
    FinalResult,
    Hit,
    RosterAnnounce,
    StatusChange,
    UnknownEvent,
    decode_event,
)


class TestDecodeEvent:
    """Tests for decode_event."""

    def test_hit(self):
        event = decode_event(
            {
                "kind": "hit",
                "timestamp": 312.5,
                "seq": 1841,
                "source": 101,
                "target": 204,
                "amount": 4000,
                "damage_kind": "artillery",
                "category": "dealt",
            }
        )
        assert isinstance(event, Hit)
        assert event.source_id == 101
        assert event.target_id == 204
        assert event.amount == 4000.0
        assert event.damage_kind == DamageKind.ARTILLERY
        assert event.category == DamageCategory.DEALT
        assert event.sequence == 1841

    def test_hit_defaults(self):
        event = decode_event({"kind": "hit", "timestamp": 1, "source": 1, "target": 2, "amount": 5})
        assert event.damage_kind == DamageKind.OTHER
        assert event.category == DamageCategory.DEALT
        assert event.sequence is None
        assert event.strike_id is None

    def test_decoder_ammo_names_map_to_kinds(self):
        event = decode_event(
            {"kind": "hit", "timestamp": 1, "source": 1, "target": 2, "amount": 5, "damage_kind": "damage_tpd_deep"}
        )
        assert event.damage_kind == DamageKind.TORPEDO

    def test_potential_category(self):
        event = decode_event(
            {"kind": "hit", "timestamp": 1, "source": 1, "target": 2, "amount": 5, "category": "POTENTIAL"}
        )
        assert event.category == DamageCategory.POTENTIAL

    def test_unknown_category_raises(self):
        with pytest.raises(EventDecodeError, match="category"):
            decode_event(
                {"kind": "hit", "timestamp": 1, "source": 1, "target": 2, "amount": 5, "category": "imaginary"}
            )

    def test_missing_field_raises(self):
        with pytest.raises(EventDecodeError):
            decode_event({"kind": "hit", "timestamp": 1, "source": 1, "amount": 5})

    def test_bad_timestamp_raises(self):
        with pytest.raises(EventDecodeError):
            decode_event({"kind": "hit", "timestamp": "soon"})

    def test_non_object_record_raises(self):
        with pytest.raises(EventDecodeError, match="not an object"):
            decode_event([1, 2])

    def test_unknown_kind(self):
        event = decode_event({"kind": "minimap_ping", "timestamp": 3.0, "seq": 9, "x": 1})
        assert isinstance(event, UnknownEvent)
        assert event.tag == "minimap_ping"
        assert event.payload == {"x": 1}
        assert event.sequence == 9
        assert event.malformed is False

    def test_roster_bot_has_no_account(self):
        event = decode_event(
            {"kind": "roster", "timestamp": 0, "entity_id": 7, "name": ":Bot:", "team_id": 1, "account_id": 0}
        )
        assert isinstance(event, RosterAnnounce)
        assert event.account_id is None
        assert event.is_local is False

    def test_battle_start_parses_time(self):
        event = decode_event(
            {
                "kind": "battle_start",
                "timestamp": 0,
                "map_id": "spaces/16_OC_bees_to_honey",
                "game_type": "RandomBattle",
                "start_time": "2024-05-01T18:30:00+00:00",
            }
        )
        assert isinstance(event, BattleStart)
        assert event.start_time == datetime.fromisoformat("2024-05-01T18:30:00+00:00")
        assert event.game_type == "RandomBattle"

    def test_status_defaults_active(self):
        event = decode_event({"kind": "status", "timestamp": 4, "entity_id": 2, "status": "FIRE", "source": 1})
        assert isinstance(event, StatusChange)
        assert event.status == "fire"
        assert event.active is True
        assert event.source_id == 1

    def test_battle_end(self):
        event = decode_event({"kind": "battle_end", "timestamp": 1200, "winner_team_id": 0})
        assert isinstance(event, BattleEnd)
        assert event.winner_team_id == 0

    def test_results_as_list_and_mapping(self):
        as_list = decode_event(
            {"kind": "battle_results", "timestamp": 1, "results": [{"account_id": 5, "raw_xp": 100}]}
        )
        as_mapping = decode_event(
            {"kind": "battle_results", "timestamp": 1, "results": {"5": {"raw_xp": 100}}}
        )
        assert isinstance(as_list, BattleResults)
        assert as_list.results[5].raw_xp == 100
        assert as_mapping.results[5].raw_xp == 100


class TestFinalResult:
    """Tests for FinalResult.from_dict."""

    def test_full_record(self):
        result = FinalResult.from_dict(
            {
                "account_id": "1000",
                "rank": 1,
                "base_xp": 1500,
                "raw_xp": 1800,
                "achievements": [4277330864],
                "ribbons": {"main_caliber": 12},
                "survived": True,
                "damage": 95000,
            }
        )
        assert result.account_id == 1000
        assert result.achievement_ids == (4277330864,)
        assert result.ribbons == {"main_caliber": 12}
        assert result.survived is True
        assert result.damage == 95000.0
        assert result.frags is None

    def test_missing_account_raises(self):
        with pytest.raises(EventDecodeError, match="account_id"):
            FinalResult.from_dict({"rank": 1})

    def test_survived_only_from_real_flags(self):
        assert FinalResult.from_dict({"account_id": 1, "survived": False}).survived is False
        assert FinalResult.from_dict({"account_id": 1, "survived": 1}).survived is True
        assert FinalResult.from_dict({"account_id": 1, "survived": "false"}).survived is None
        assert FinalResult.from_dict({"account_id": 1}).survived is None

    def test_server_spotting_and_potential(self):
        result = FinalResult.from_dict(
            {"account_id": 1, "spotting_damage": 25000, "potential_damage": "180000"}
        )
        assert result.spotting_damage == 25000.0
        assert result.potential_damage == 180000.0
