"""
Salvo Naval Replay Analyzer - Constants

Defines damage kinds, damage categories, ship classes, status effects and the
rating category thresholds used across reconstruction and statistics.
"""

from enum import StrEnum


class DamageKind(StrEnum):
    """
    Source of a damage (or potential damage) event.

    The decoder reports fine-grained ammo types; they are folded into these
    kinds before reaching the reconstructor.
    """

    ARTILLERY = "artillery"  # Main battery AP / SAP / HE
    SECONDARY = "secondary"  # Secondary batteries (ATBA)
    TORPEDO = "torpedo"  # Ship launched torpedoes, incl. deep water
    AIRCRAFT = "aircraft"  # Carrier squadrons: bombs, rockets, air torpedoes
    AIRSTRIKE = "airstrike"  # Consumable air support strikes
    DEPTH_CHARGE = "depth_charge"
    FIRE = "fire"  # Damage-over-time tick
    FLOOD = "flood"  # Damage-over-time tick
    RAM = "ram"
    MINE = "mine"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> "DamageKind":
        """Parse a kind tag, mapping decoder ammo names and unknowns."""
        if not value:
            return cls.OTHER
        value = str(value).lower()
        try:
            return cls(value)
        except ValueError:
            return DAMAGE_TYPE_ALIASES.get(value, cls.OTHER)

    @property
    def is_damage_over_time(self) -> bool:
        return self in (DamageKind.FIRE, DamageKind.FLOOD)


class DamageCategory(StrEnum):
    """Disjoint accounting categories for a single raw hit."""

    DEALT = "dealt"  # Landed on the target
    POTENTIAL = "potential"  # Would have landed (near miss / decoy)
    SPOTTING = "spotting"  # Credited to the spotter of the damaged target


class ShipClass(StrEnum):
    """Ship species as reported by the game definitions."""

    DESTROYER = "Destroyer"
    CRUISER = "Cruiser"
    BATTLESHIP = "Battleship"
    AIRCRAFT_CARRIER = "AirCarrier"
    SUBMARINE = "Submarine"
    AUXILIARY = "Auxiliary"
    UNKNOWN = "unknown"


class BattleOutcome(StrEnum):
    """Result of a battle from one team's (or player's) point of view."""

    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"
    UNKNOWN = "unknown"


# Status names whose intervals count as fires and floods
STATUS_FIRE = "fire"
STATUS_FLOODING = "flooding"

# Decoder damage type tags (damage_main_ap, damage_tpd_deep, ...) → kind
DAMAGE_TYPE_ALIASES: dict[str, DamageKind] = {
    "damage_main_ap": DamageKind.ARTILLERY,
    "damage_main_cs": DamageKind.ARTILLERY,
    "damage_main_he": DamageKind.ARTILLERY,
    "damage_atba_ap": DamageKind.SECONDARY,
    "damage_atba_cs": DamageKind.SECONDARY,
    "damage_atba_he": DamageKind.SECONDARY,
    "damage_tpd_normal": DamageKind.TORPEDO,
    "damage_tpd_deep": DamageKind.TORPEDO,
    "damage_tpd_alter": DamageKind.TORPEDO,
    "damage_tpd_photon": DamageKind.TORPEDO,
    "damage_bomb": DamageKind.AIRCRAFT,
    "damage_bomb_alt": DamageKind.AIRCRAFT,
    "damage_tbomb": DamageKind.AIRCRAFT,
    "damage_tbomb_alt": DamageKind.AIRCRAFT,
    "damage_skip": DamageKind.AIRCRAFT,
    "damage_skip_alt": DamageKind.AIRCRAFT,
    "damage_rocket": DamageKind.AIRCRAFT,
    "damage_dbomb_airsupport": DamageKind.AIRSTRIKE,
    "damage_tbomb_airsupport": DamageKind.AIRSTRIKE,
    "damage_rocket_airsupport": DamageKind.AIRSTRIKE,
    "damage_skip_airsupport": DamageKind.AIRSTRIKE,
    "damage_dbomb_direct": DamageKind.DEPTH_CHARGE,
    "damage_dbomb_splash": DamageKind.DEPTH_CHARGE,
    "damage_fire": DamageKind.FIRE,
    "damage_flood": DamageKind.FLOOD,
    "damage_ram": DamageKind.RAM,
    "damage_sea_mine": DamageKind.MINE,
    # Potential damage ("agro") tags
    "agro_art": DamageKind.ARTILLERY,
    "agro_tpd": DamageKind.TORPEDO,
    "agro_air": DamageKind.AIRCRAFT,
    "agro_dbomb": DamageKind.DEPTH_CHARGE,
    # Short names
    "main": DamageKind.ARTILLERY,
    "atba": DamageKind.SECONDARY,
    "torpedoes": DamageKind.TORPEDO,
    "planes": DamageKind.AIRCRAFT,
    "flooding": DamageKind.FLOOD,
}

# Human-readable labels for export headers and CLI tables
DAMAGE_KIND_LABELS: dict[DamageKind, str] = {
    DamageKind.ARTILLERY: "Artillery",
    DamageKind.SECONDARY: "Secondaries",
    DamageKind.TORPEDO: "Torpedoes",
    DamageKind.AIRCRAFT: "Aircraft",
    DamageKind.AIRSTRIKE: "Air Support",
    DamageKind.DEPTH_CHARGE: "Depth Charges",
    DamageKind.FIRE: "Fire",
    DamageKind.FLOOD: "Flooding",
    DamageKind.RAM: "Ram",
    DamageKind.MINE: "Sea Mine",
    DamageKind.OTHER: "Other",
}

# Game types that feed the player encounter tracker
TRACKED_GAME_TYPES = frozenset({"RandomBattle", "RankedBattle"})

# Personal Rating category thresholds (lower bound inclusive)
PR_CATEGORY_THRESHOLDS: list[tuple[float, str]] = [
    (2450.0, "Super Unicum"),
    (2100.0, "Unicum"),
    (1750.0, "Great"),
    (1550.0, "Very Good"),
    (1350.0, "Good"),
    (1100.0, "Average"),
    (750.0, "Below Average"),
    (0.0, "Bad"),
]

PR_CATEGORY_COLORS: dict[str, str] = {
    "Bad": "#FF0000",
    "Below Average": "#FE7903",
    "Average": "#FFC71F",
    "Good": "#44B300",
    "Very Good": "#318000",
    "Great": "#02C9B3",
    "Unicum": "#D042F3",
    "Super Unicum": "#A00DC5",
}
