"""Tests for the battle analysis pipeline."""

import pytest

from conftest import battle_records, write_log
from salvo.core.battle import AnomalyKind
from salvo.core.config import SalvoConfig
from salvo.core.constants import BattleOutcome
from salvo.core.events import decode_event
from salvo.infra.database import EncounterStore
from salvo.pipeline.orchestrator import BattleOrchestrator, analyze_battle
from salvo.tracking.player_tracker import SessionPlayerTracker


@pytest.fixture
def tracker():
    store = EncounterStore(":memory:")
    yield SessionPlayerTracker(store)
    store.close()


class TestBattleOrchestrator:
    def test_analyze_file(self, event_log):
        analysis = BattleOrchestrator(SalvoConfig()).analyze_battle(event_log())
        stats = analysis.statistics

        assert analysis.battle_id == "battle"
        assert not stats.incomplete
        assert stats.map_id == "19_OC_prey"
        me = stats.local_player()
        assert me.damage_to_enemies == 3000
        assert me.damage_received == 1000
        assert me.frags == 1
        assert me.outcome == BattleOutcome.WIN
        assert analysis.recorded == 0

    def test_battle_id_override(self, event_log):
        analysis = BattleOrchestrator(SalvoConfig()).analyze_battle(event_log(), battle_id="custom")
        assert analysis.statistics.battle_id == "custom"

    def test_unknown_types_reported(self, event_log):
        stats = BattleOrchestrator(SalvoConfig()).analyze_battle(event_log()).statistics
        assert sorted(d.entity_id for d in stats.diagnostics_of(AnomalyKind.LOOKUP_MISS)) == [1, 2]
        assert stats.local_player().ship_name == "unknown"

    def test_definitions_file(self, event_log, tmp_path):
        definitions = tmp_path / "definitions.yaml"
        definitions.write_text(
            "types:\n"
            "  100: {name: Shimakaze, category: Destroyer, tier: 10}\n"
            "  200: {name: Yamato, category: Battleship, tier: 10}\n"
        )
        config = SalvoConfig()
        config.reconstruction.definitions_path = str(definitions)

        stats = BattleOrchestrator(config).analyze_battle(event_log()).statistics
        assert stats.local_player().ship_name == "Shimakaze"
        assert stats.player(2).ship_class == "Battleship"
        assert stats.diagnostics_of(AnomalyKind.LOOKUP_MISS) == []

    def test_missing_definitions_file(self, event_log, tmp_path):
        config = SalvoConfig()
        config.reconstruction.definitions_path = str(tmp_path / "missing.yaml")
        stats = BattleOrchestrator(config).analyze_battle(event_log()).statistics
        assert stats.local_player().ship_name == "unknown"

    def test_missing_log(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            BattleOrchestrator(SalvoConfig()).analyze_battle(tmp_path / "nope.jsonl")

    def test_truncated_log(self, event_log):
        analysis = BattleOrchestrator(SalvoConfig()).analyze_battle(event_log(finished=False))
        assert analysis.battle.incomplete
        assert analysis.statistics.local_player().outcome == BattleOutcome.UNKNOWN

    def test_live_mode_on_finished_log(self, event_log):
        analysis = BattleOrchestrator(SalvoConfig()).analyze_battle(event_log(), live=True)
        assert not analysis.battle.incomplete
        assert analysis.statistics.local_player().frags == 1

    def test_analyze_events(self):
        events = [decode_event(r) for r in battle_records()]
        analysis = BattleOrchestrator(SalvoConfig()).analyze_events(events, "in-memory")
        assert analysis.battle_id == "in-memory"
        assert analysis.source_path is None

    def test_to_dict(self, event_log):
        data = BattleOrchestrator(SalvoConfig()).analyze_battle(event_log()).to_dict()
        assert data["source"].endswith("battle.jsonl")
        assert data["events"]["processed"] == 9
        assert data["events"]["duplicates_dropped"] == 0
        assert data["recorded_encounters"] == 0

    def test_duplicate_lines_dropped(self, tmp_path):
        records = battle_records()
        path = tmp_path / "dupes.jsonl"
        write_log(path, records[:6] + records[5:])
        analysis = BattleOrchestrator(SalvoConfig()).analyze_battle(path)
        assert analysis.battle.duplicates_dropped == 1
        assert analysis.statistics.local_player().damage_to_enemies == 3000


class TestRecording:
    def test_records_complete_battle(self, event_log, tracker):
        analysis = BattleOrchestrator(SalvoConfig(), tracker=tracker).analyze_battle(event_log())
        assert analysis.recorded == 1
        record = tracker.query(2000).first()
        assert record.battle_id == "battle"
        assert record.clan_tag == "RAGE"
        assert record.relation == "enemy"

    def test_reanalysis_is_idempotent(self, event_log, tracker):
        orchestrator = BattleOrchestrator(SalvoConfig(), tracker=tracker)
        path = event_log()
        orchestrator.analyze_battle(path)
        assert orchestrator.analyze_battle(path).recorded == 0
        assert tracker.encounter_count(2000) == 1

    def test_incomplete_battle_not_recorded(self, event_log, tracker):
        orchestrator = BattleOrchestrator(SalvoConfig(), tracker=tracker)
        assert orchestrator.analyze_battle(event_log(finished=False)).recorded == 0
        assert tracker.encounter_count(2000) == 0

    def test_untracked_game_type(self, event_log, tracker):
        orchestrator = BattleOrchestrator(SalvoConfig(), tracker=tracker)
        assert orchestrator.analyze_battle(event_log(game_type="CooperativeBattle")).recorded == 0


def test_analyze_battle_function(event_log):
    analysis = analyze_battle(event_log(), config=SalvoConfig())
    assert analysis.statistics.local_player().name == "me"
