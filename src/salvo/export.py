"""
Export Functionality for Salvo

Flattens derived battle statistics into one record per player per battle
and writes them as:
- JSON (full battle statistics or flat records)
- CSV
- Excel (XLSX), one sheet of player records and one of team rollups
"""

import csv
import json
import logging
from collections.abc import Iterable
from datetime import datetime
from io import StringIO
from pathlib import Path
from typing import Any

from salvo.analysis.statistics import BattleStatistics, PlayerStatistics
from salvo.core.constants import DamageKind

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv", "xlsx")


# ============================================================================
# Flat Records
# ============================================================================

def player_record(stats: BattleStatistics, player: PlayerStatistics) -> dict[str, Any]:
    """One flat row for ``player`` in ``stats``. Column order is stable."""
    record: dict[str, Any] = {
        "battle_id": stats.battle_id,
        "battle_time": stats.start_time.isoformat() if stats.start_time else None,
        "map_id": stats.map_id,
        "game_type": stats.game_type,
        "account_id": player.account_id,
        "entity_id": player.entity_id,
        "name": player.name,
        "clan_tag": player.clan_tag,
        "is_bot": player.is_bot,
        "ship_id": player.ship_id,
        "ship_name": player.ship_name,
        "ship_class": player.ship_class,
        "tier": player.tier,
        "team_id": player.team_id,
        "result": str(player.outcome),
        "survived": player.survived,
        "damage_total": player.damage_total,
        "damage_to_enemies": player.damage_to_enemies,
    }
    for kind in DamageKind:
        record[f"damage_{kind}"] = player.damage_by_kind.get(str(kind), 0.0)
    record.update(
        {
            "potential_damage": player.potential_damage,
            "spotting_damage": player.spotting_damage,
            "damage_received": player.damage_received,
            "frags": player.frags,
            "fires_started": player.fires_started,
            "floods_started": player.floods_started,
            "achievements": ";".join(a["name"] for a in player.achievements),
            "consumables": ";".join(f"{name}:{count}" for name, count in player.consumables.items()),
            "pr": round(player.pr, 1) if player.pr is not None else None,
            "pr_category": player.rating.category if player.rating else None,
        }
    )
    return record


def battle_records(battles: Iterable[BattleStatistics]) -> list[dict[str, Any]]:
    """Flat records for every player of every battle, in battle then entity order."""
    return [player_record(stats, player) for stats in battles for player in stats.players]


def team_records(battles: Iterable[BattleStatistics]) -> list[dict[str, Any]]:
    rows = []
    for stats in battles:
        for team_id, team in sorted(stats.teams.items()):
            rows.append({"battle_id": stats.battle_id, **team.to_dict(), "team_id": team_id})
    return rows


# ============================================================================
# JSON Export
# ============================================================================

def export_to_json(
    battles: list[BattleStatistics],
    output_path: Path | None = None,
    indent: int = 2,
    flat: bool = False,
    include_metadata: bool = True,
) -> str:
    """
    Export battle statistics to JSON.

    Args:
        battles: Derived statistics to export
        output_path: Optional path to write the file
        indent: JSON indentation level
        flat: Write flat player records instead of full statistics
        include_metadata: Whether to include export metadata

    Returns:
        JSON string
    """
    if flat:
        export_data: dict[str, Any] = {"records": battle_records(battles)}
    else:
        export_data = {"battles": [stats.to_dict() for stats in battles]}

    if include_metadata:
        export_data = {
            "_metadata": {
                "exported_at": datetime.now().isoformat(),
                "format": "salvo_json",
                "version": "1.0",
                "battles": len(battles),
            },
            **export_data,
        }

    json_str = json.dumps(export_data, indent=indent, default=str)

    if output_path:
        output_path.write_text(json_str, encoding="utf-8")
        logger.info(f"Exported JSON to: {output_path}")

    return json_str


# ============================================================================
# CSV Export
# ============================================================================

def export_to_csv(
    battles: list[BattleStatistics],
    output_path: Path | None = None,
    delimiter: str = ",",
    include_header: bool = True,
) -> str:
    """Export flat player records to CSV. Returns the CSV text."""
    rows = battle_records(battles)
    if not rows:
        return ""

    output = StringIO()
    writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()), delimiter=delimiter)
    if include_header:
        writer.writeheader()
    for row in rows:
        writer.writerow({k: "" if v is None else v for k, v in row.items()})

    csv_str = output.getvalue()

    if output_path:
        output_path.write_text(csv_str, encoding="utf-8", newline="")
        logger.info(f"Exported CSV to: {output_path}")

    return csv_str


# ============================================================================
# Excel Export
# ============================================================================

def export_to_excel(battles: list[BattleStatistics], output_path: Path) -> None:
    """
    Export to a workbook with a "Players" sheet of flat records, a "Teams"
    sheet of team rollups and a "Diagnostics" sheet when any battle has one.
    """
    import pandas as pd

    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        pd.DataFrame(battle_records(battles)).to_excel(writer, sheet_name="Players", index=False)

        teams = team_records(battles)
        if teams:
            pd.DataFrame(teams).to_excel(writer, sheet_name="Teams", index=False)

        diagnostics = [
            {"battle_id": stats.battle_id, **d.to_dict()}
            for stats in battles
            for d in stats.diagnostics
        ]
        if diagnostics:
            pd.DataFrame(diagnostics).to_excel(writer, sheet_name="Diagnostics", index=False)

    logger.info(f"Exported Excel to: {output_path}")


# ============================================================================
# Unified Export Function
# ============================================================================

def export_battles(
    battles: list[BattleStatistics],
    output_path: Path,
    format: str | None = None,
    indent: int = 2,
    delimiter: str = ",",
) -> None:
    """
    Export statistics in the given format.

    Format is detected from the file extension if not specified.
    """
    if format is None:
        format = output_path.suffix.lstrip(".").lower()

    if format == "json":
        export_to_json(battles, output_path, indent=indent)
    elif format == "csv":
        export_to_csv(battles, output_path, delimiter=delimiter)
    elif format in ("xlsx", "excel"):
        export_to_excel(battles, output_path)
    else:
        raise ValueError(f"Unsupported export format: {format}")
