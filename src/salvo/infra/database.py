"""
Salvo Encounter Store.

Append-only persistence of player encounters (one row per player per battle)
across many battles, used for session history, repeat-opponent tracking and
stream-sniper correlation.

Uses SQLite with SQLAlchemy ORM. Appends are serialized by a process-wide
lock and are idempotent on (player_id, battle_id); reads use their own short
sessions and only ever see committed rows.
"""

import logging
import os
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
    and_,
    create_engine,
    func,
    or_,
)
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def _to_utc_naive(value: datetime) -> datetime:
    """SQLite stores naive datetimes; keep everything in UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.replace(tzinfo=None)


def _from_utc_naive(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=UTC)


logger = logging.getLogger(__name__)

# Database configuration
DEFAULT_DB_PATH = Path.home() / ".salvo" / "encounters.db"
Base = declarative_base()

# Appends from concurrently finalizing battles go through one writer at a time
_APPEND_LOCK = threading.Lock()


# =============================================================================
# Database Models
# =============================================================================


class BattleRecord(Base):
    """Battle metadata, one row per recorded battle."""

    __tablename__ = "battles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    battle_id = Column(String(128), unique=True, nullable=False, index=True)
    map_id = Column(String(100))
    game_type = Column(String(50))
    started_at = Column(DateTime, index=True)
    recorded_at = Column(DateTime, default=lambda: _to_utc_naive(_utc_now()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "battle_id": self.battle_id,
            "map_id": self.map_id,
            "game_type": self.game_type,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }


class PlayerEncounter(Base):
    """One player's appearance in one battle. Never updated once written."""

    __tablename__ = "player_encounters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(BigInteger, nullable=False)
    battle_id = Column(String(128), nullable=False)
    timestamp = Column(DateTime, nullable=False)

    name = Column(String(100), nullable=False)
    clan_tag = Column(String(20))
    team_id = Column(Integer)
    relation = Column(String(10))  # ally / enemy, relative to the replay owner
    ship_id = Column(BigInteger)
    ship_name = Column(String(100))
    outcome = Column(String(10))
    damage = Column(Float, default=0.0)
    frags = Column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("player_id", "battle_id", name="uq_encounter_player_battle"),
        Index("idx_encounter_player_time", "player_id", "timestamp"),
    )


@dataclass(frozen=True)
class EncounterRecord:
    """Detached, immutable view of a stored encounter."""

    id: int
    player_id: int
    battle_id: str
    timestamp: datetime
    name: str
    clan_tag: str | None = None
    team_id: int | None = None
    relation: str | None = None
    ship_id: int | None = None
    ship_name: str | None = None
    outcome: str | None = None
    damage: float = 0.0
    frags: int = 0

    @classmethod
    def from_row(cls, row: PlayerEncounter) -> "EncounterRecord":
        return cls(
            id=row.id,
            player_id=row.player_id,
            battle_id=row.battle_id,
            timestamp=_from_utc_naive(row.timestamp),
            name=row.name,
            clan_tag=row.clan_tag,
            team_id=row.team_id,
            relation=row.relation,
            ship_id=row.ship_id,
            ship_name=row.ship_name,
            outcome=row.outcome,
            damage=row.damage or 0.0,
            frags=row.frags or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_id": self.player_id,
            "battle_id": self.battle_id,
            "timestamp": self.timestamp.isoformat(),
            "name": self.name,
            "clan_tag": self.clan_tag,
            "team_id": self.team_id,
            "relation": self.relation,
            "ship_id": self.ship_id,
            "ship_name": self.ship_name,
            "outcome": self.outcome,
            "damage": self.damage,
            "frags": self.frags,
        }


_ENCOUNTER_FIELDS = (
    "name",
    "clan_tag",
    "team_id",
    "relation",
    "ship_id",
    "ship_name",
    "outcome",
    "damage",
    "frags",
)


# =============================================================================
# Store
# =============================================================================


class EncounterStore:
    """
    Manages the encounter database.

    ``db_path`` may be ":memory:" for a private in-memory store (tests).
    """

    def __init__(self, db_path: Path | str | None = None, append_retries: int = 3):
        if db_path is None:
            db_path = os.environ.get("SALVO_DB_PATH", DEFAULT_DB_PATH)

        self.append_retries = max(1, append_retries)

        if str(db_path) == ":memory:":
            self.db_path = None
            self.engine = create_engine(
                "sqlite://",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.db_path = Path(db_path).expanduser()
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False},
            )

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

        logger.info(f"Encounter store initialized at: {self.db_path or ':memory:'}")

    def get_session(self) -> Session:
        """Get a database session."""
        return self.SessionLocal()

    def close(self) -> None:
        self.engine.dispose()

    # =========================================================================
    # Writes
    # =========================================================================

    def append_encounters(
        self,
        battle_id: str,
        timestamp: datetime,
        encounters: Iterable[dict[str, Any]],
        battle_info: dict[str, Any] | None = None,
    ) -> int:
        """
        Append encounters for one battle, skipping players already recorded.

        Args:
            battle_id: Battle identifier
            timestamp: Battle start time (stored as UTC)
            encounters: Dicts with ``player_id`` plus optional encounter fields
            battle_info: Optional battle metadata (map_id, game_type)

        Returns:
            Number of newly written rows
        """
        rows = {}
        for item in encounters:
            rows.setdefault(int(item["player_id"]), item)
        stored_at = _to_utc_naive(timestamp)

        with _APPEND_LOCK:
            for attempt in range(1, self.append_retries + 1):
                try:
                    return self._append_once(battle_id, stored_at, rows, battle_info)
                except (IntegrityError, OperationalError) as e:
                    # Another writer (e.g. a second process) got there first;
                    # the next attempt re-reads what is already stored
                    if attempt == self.append_retries:
                        raise
                    logger.debug(f"Append for battle {battle_id} collided ({e}), retrying")
        return 0

    def _append_once(
        self,
        battle_id: str,
        stored_at: datetime,
        rows: dict[int, dict[str, Any]],
        battle_info: dict[str, Any] | None,
    ) -> int:
        session = self.get_session()
        try:
            existing = {
                player_id
                for (player_id,) in session.query(PlayerEncounter.player_id).filter(
                    PlayerEncounter.battle_id == battle_id
                )
            }

            if session.query(BattleRecord).filter(BattleRecord.battle_id == battle_id).first() is None:
                info = battle_info or {}
                session.add(
                    BattleRecord(
                        battle_id=battle_id,
                        map_id=info.get("map_id"),
                        game_type=info.get("game_type"),
                        started_at=stored_at,
                    )
                )

            added = 0
            for player_id, item in rows.items():
                if player_id in existing:
                    continue
                values = {key: item[key] for key in _ENCOUNTER_FIELDS if key in item}
                values.setdefault("name", str(player_id))
                session.add(
                    PlayerEncounter(
                        player_id=player_id,
                        battle_id=battle_id,
                        timestamp=stored_at,
                        **values,
                    )
                )
                added += 1

            session.commit()
            if added:
                logger.info(f"Recorded {added} encounters for battle {battle_id}")
            else:
                logger.debug(f"Battle {battle_id} already recorded")
            return added
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Reads
    # =========================================================================

    def fetch_page(
        self,
        player_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
        after: tuple[datetime, int] | None = None,
        limit: int = 200,
    ) -> list[EncounterRecord]:
        """
        One page of a player's encounters, newest first.

        ``after`` is the (timestamp, id) keyset cursor of the last row of the
        previous page.
        """
        session = self.get_session()
        try:
            query = session.query(PlayerEncounter).filter(PlayerEncounter.player_id == player_id)
            if start is not None:
                query = query.filter(PlayerEncounter.timestamp >= _to_utc_naive(start))
            if end is not None:
                query = query.filter(PlayerEncounter.timestamp <= _to_utc_naive(end))
            if after is not None:
                after_ts, after_id = _to_utc_naive(after[0]), after[1]
                query = query.filter(
                    or_(
                        PlayerEncounter.timestamp < after_ts,
                        and_(PlayerEncounter.timestamp == after_ts, PlayerEncounter.id < after_id),
                    )
                )
            rows = (
                query.order_by(PlayerEncounter.timestamp.desc(), PlayerEncounter.id.desc())
                .limit(limit)
                .all()
            )
            return [EncounterRecord.from_row(row) for row in rows]
        finally:
            session.close()

    def iter_encounters(
        self,
        player_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
        page_size: int = 200,
    ) -> Iterator[EncounterRecord]:
        """Lazily walk a player's encounters page by page, newest first."""
        cursor = None
        while True:
            page = self.fetch_page(player_id, start, end, after=cursor, limit=page_size)
            yield from page
            if len(page) < page_size:
                return
            cursor = (page[-1].timestamp, page[-1].id)

    def count_encounters(self, player_id: int) -> int:
        session = self.get_session()
        try:
            return (
                session.query(func.count(PlayerEncounter.id))
                .filter(PlayerEncounter.player_id == player_id)
                .scalar()
                or 0
            )
        finally:
            session.close()

    def encounters_for_players(
        self,
        player_ids: Iterable[int],
        since: datetime | None = None,
        exclude_battle: str | None = None,
    ) -> list[EncounterRecord]:
        """All encounters of any of ``player_ids``, newest first."""
        ids = sorted(set(player_ids))
        if not ids:
            return []
        session = self.get_session()
        try:
            query = session.query(PlayerEncounter).filter(PlayerEncounter.player_id.in_(ids))
            if since is not None:
                query = query.filter(PlayerEncounter.timestamp >= _to_utc_naive(since))
            if exclude_battle is not None:
                query = query.filter(PlayerEncounter.battle_id != exclude_battle)
            rows = query.order_by(PlayerEncounter.timestamp.desc(), PlayerEncounter.id.desc()).all()
            return [EncounterRecord.from_row(row) for row in rows]
        finally:
            session.close()

    def recent_battles(self, limit: int = 20) -> list[dict[str, Any]]:
        session = self.get_session()
        try:
            rows = (
                session.query(BattleRecord)
                .order_by(BattleRecord.started_at.desc(), BattleRecord.id.desc())
                .limit(limit)
                .all()
            )
            return [row.to_dict() for row in rows]
        finally:
            session.close()

    def get_global_stats(self) -> dict[str, int]:
        session = self.get_session()
        try:
            return {
                "battles": session.query(func.count(BattleRecord.id)).scalar() or 0,
                "encounters": session.query(func.count(PlayerEncounter.id)).scalar() or 0,
                "players": session.query(func.count(func.distinct(PlayerEncounter.player_id))).scalar()
                or 0,
            }
        finally:
            session.close()
