"""Shared fixtures: small decoded battle event logs on disk."""

import json

import pytest


def battle_records(winner: int = 0, finished: bool = True, game_type: str = "RandomBattle") -> list[dict]:
    """A two-ship battle in which the local destroyer sinks the enemy battleship."""
    records = [
        {"kind": "battle_start", "timestamp": 0.0, "seq": 1, "map_id": "19_OC_prey", "game_type": game_type,
         "start_time": "2024-05-01T20:00:00+00:00"},
        {"kind": "roster", "timestamp": 0.0, "seq": 2, "entity_id": 1, "name": "me", "team_id": 0,
         "account_id": 1000, "is_local": True},
        {"kind": "roster", "timestamp": 0.0, "seq": 3, "entity_id": 2, "name": "SnipeyBoi", "team_id": 1,
         "account_id": 2000, "clan_tag": "RAGE"},
        {"kind": "spawn", "timestamp": 0.0, "seq": 4, "entity_id": 1, "team_id": 0, "type_id": 100,
         "max_health": 20000},
        {"kind": "spawn", "timestamp": 0.0, "seq": 5, "entity_id": 2, "team_id": 1, "type_id": 200,
         "max_health": 50000},
        {"kind": "hit", "timestamp": 30.0, "seq": 6, "source": 1, "target": 2, "amount": 3000,
         "damage_kind": "torpedo"},
        {"kind": "hit", "timestamp": 31.0, "seq": 7, "source": 2, "target": 1, "amount": 1000,
         "damage_kind": "artillery"},
        {"kind": "death", "timestamp": 200.0, "seq": 8, "entity_id": 2, "killer": 1},
    ]
    if finished:
        records.append({"kind": "battle_end", "timestamp": 210.0, "seq": 9, "winner_team_id": winner})
    return records


def write_log(path, records) -> None:
    path.write_text("".join(json.dumps(r) + "\n" for r in records), encoding="utf-8")


@pytest.fixture
def event_log(tmp_path):
    """Factory writing a battle event log into ``tmp_path``."""

    def _make(name: str = "battle.jsonl", **kwargs):
        path = tmp_path / name
        write_log(path, battle_records(**kwargs))
        return path

    return _make
