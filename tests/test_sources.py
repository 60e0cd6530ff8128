"""Tests for event sources."""

import json
import threading
import time

import pytest

from salvo.core.events import BattleEnd, EntitySpawn, Hit, RosterAnnounce, UnknownEvent
from salvo.core.sources import IterableEventSource, JsonLinesEventSource, TailingEventSource
from salvo.state_machine import reconstruct_battle


def _write_lines(path, records):
    with open(path, "a", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")


SPAWN = {"kind": "spawn", "timestamp": 0, "entity_id": 1, "team_id": 0}
HIT = {"kind": "hit", "timestamp": 5, "seq": 1, "source": 1, "target": 2, "amount": 100}
END = {"kind": "battle_end", "timestamp": 10}
ROSTER = {
    "kind": "roster",
    "timestamp": 0,
    "entity_id": 1,
    "name": "Адмирал",
    "team_id": 0,
    "account_id": 7,
}


class TestIterableEventSource:
    def test_next_until_exhausted(self):
        events = [EntitySpawn(timestamp=0, entity_id=1, team_id=0)]
        source = IterableEventSource(events)
        assert source.next() == events[0]
        assert source.next() is None
        assert source.next() is None

    def test_iteration(self):
        events = [EntitySpawn(timestamp=t, entity_id=t, team_id=0) for t in range(3)]
        assert list(IterableEventSource(events)) == events


class TestJsonLinesEventSource:
    def test_reads_events_in_order(self, tmp_path):
        path = tmp_path / "battle.jsonl"
        _write_lines(path, [SPAWN, HIT, END])
        with JsonLinesEventSource(path) as source:
            events = list(source)
        assert [type(e) for e in events] == [EntitySpawn, Hit, BattleEnd]

    def test_blank_lines_skipped(self, tmp_path):
        path = tmp_path / "battle.jsonl"
        path.write_text(json.dumps(SPAWN) + "\n\n   \n" + json.dumps(END) + "\n")
        with JsonLinesEventSource(path) as source:
            assert len(list(source)) == 2

    def test_invalid_json_becomes_malformed_unknown(self, tmp_path):
        path = tmp_path / "battle.jsonl"
        path.write_text(json.dumps(SPAWN) + "\n{not json\n" + json.dumps(END) + "\n")
        with JsonLinesEventSource(path) as source:
            events = list(source)
        assert len(events) == 3
        assert isinstance(events[1], UnknownEvent)
        assert events[1].malformed is True
        assert events[1].tag == "invalid_json"

    def test_malformed_known_kind_becomes_unknown(self, tmp_path):
        path = tmp_path / "battle.jsonl"
        _write_lines(path, [{"kind": "hit", "timestamp": 3, "source": 1}])
        with JsonLinesEventSource(path) as source:
            (event,) = list(source)
        assert isinstance(event, UnknownEvent)
        assert event.tag == "hit"
        assert event.malformed is True
        assert event.timestamp == 3.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            JsonLinesEventSource(tmp_path / "nope.jsonl")

    def test_bad_timestamp_on_known_kind(self, tmp_path):
        path = tmp_path / "battle.jsonl"
        _write_lines(path, [SPAWN, {"kind": "hit", "timestamp": "abc"}, END])
        with JsonLinesEventSource(path) as source:
            events = list(source)
        assert [type(e) for e in events] == [EntitySpawn, UnknownEvent, BattleEnd]
        assert events[1].tag == "hit"
        assert events[1].timestamp == 0.0
        assert events[1].malformed is True

    def test_non_object_record(self, tmp_path):
        path = tmp_path / "battle.jsonl"
        _write_lines(path, [SPAWN, [1, 2], "hello", END])
        with JsonLinesEventSource(path) as source:
            events = list(source)
        assert len(events) == 4
        for event in events[1:3]:
            assert isinstance(event, UnknownEvent)
            assert event.tag == "invalid_record"
            assert event.malformed is True
            assert event.payload == {}

    def test_invalid_utf8_line(self, tmp_path):
        path = tmp_path / "battle.jsonl"
        with open(path, "wb") as f:
            f.write(json.dumps(SPAWN).encode() + b"\n")
            f.write(b'{"kind": "chat", "timestamp": 4, "text": "\xff\xfe"}\n')
            f.write(json.dumps(END).encode() + b"\n")
        with JsonLinesEventSource(path) as source:
            events = list(source)
        assert [type(e) for e in events] == [EntitySpawn, UnknownEvent, BattleEnd]
        assert events[1].tag == "invalid_utf8"
        assert events[1].malformed is True

    def test_non_ascii_names(self, tmp_path):
        path = tmp_path / "battle.jsonl"
        path.write_text(json.dumps(ROSTER, ensure_ascii=False) + "\n", encoding="utf-8")
        with JsonLinesEventSource(path) as source:
            (event,) = list(source)
        assert event.name == "Адмирал"

    def test_malformed_lines_do_not_abort_reconstruction(self, tmp_path):
        path = tmp_path / "battle.jsonl"
        _write_lines(path, [SPAWN, {"kind": "hit", "timestamp": "abc"}, [1, 2], HIT, END])
        battle = reconstruct_battle(JsonLinesEventSource(path))
        assert battle.finalized
        assert battle.skipped_events["hit"] == 1
        assert battle.skipped_events["invalid_record"] == 1
        assert len(battle.damage_log) == 1

    def test_restart_by_reopening(self, tmp_path):
        path = tmp_path / "battle.jsonl"
        _write_lines(path, [SPAWN, HIT])
        with JsonLinesEventSource(path) as first:
            a = list(first)
        with JsonLinesEventSource(path) as second:
            b = list(second)
        assert a == b


class TestTailingEventSource:
    def test_stops_after_battle_end(self, tmp_path):
        path = tmp_path / "live.jsonl"
        _write_lines(path, [SPAWN, HIT, END])
        source = TailingEventSource(path, poll_interval=0.01, idle_timeout=5)
        events = list(source)
        assert isinstance(events[-1], BattleEnd)
        assert len(events) == 3

    def test_follows_appended_lines(self, tmp_path):
        path = tmp_path / "live.jsonl"
        _write_lines(path, [SPAWN])

        def writer():
            time.sleep(0.1)
            _write_lines(path, [HIT])
            time.sleep(0.1)
            _write_lines(path, [END])

        thread = threading.Thread(target=writer)
        thread.start()
        events = list(TailingEventSource(path, poll_interval=0.01, idle_timeout=5))
        thread.join()
        assert [type(e) for e in events] == [EntitySpawn, Hit, BattleEnd]

    def test_partial_line_waits_for_newline(self, tmp_path):
        path = tmp_path / "live.jsonl"
        line = json.dumps(HIT)
        path.write_text(line[:10])
        source = TailingEventSource(path, poll_interval=0.01, idle_timeout=0.2)
        assert source.next() is None

    def test_multibyte_character_split_across_writes(self, tmp_path):
        path = tmp_path / "live.jsonl"
        data = (json.dumps(ROSTER, ensure_ascii=False) + "\n").encode("utf-8")
        cut = data.index("А".encode("utf-8")) + 1
        path.write_bytes(data[:cut])

        def writer():
            time.sleep(0.1)
            with open(path, "ab") as f:
                f.write(data[cut:])

        thread = threading.Thread(target=writer)
        thread.start()
        source = TailingEventSource(path, poll_interval=0.01, idle_timeout=5)
        event = source.next()
        thread.join()
        assert isinstance(event, RosterAnnounce)
        assert event.name == "Адмирал"

    def test_idle_timeout(self, tmp_path):
        path = tmp_path / "live.jsonl"
        _write_lines(path, [SPAWN])
        source = TailingEventSource(path, poll_interval=0.01, idle_timeout=0.1)
        start = time.monotonic()
        events = list(source)
        assert len(events) == 1
        assert time.monotonic() - start < 5

    def test_cancellation(self, tmp_path):
        path = tmp_path / "live.jsonl"
        _write_lines(path, [SPAWN])
        cancel = threading.Event()
        source = TailingEventSource(path, cancel=cancel, poll_interval=0.01, idle_timeout=None)
        assert isinstance(source.next(), EntitySpawn)

        threading.Timer(0.1, cancel.set).start()
        start = time.monotonic()
        assert source.next() is None
        assert time.monotonic() - start < 5

    def test_stop(self, tmp_path):
        path = tmp_path / "live.jsonl"
        source = TailingEventSource(path, poll_interval=0.01, idle_timeout=None)
        source.stop()
        assert source.next() is None
