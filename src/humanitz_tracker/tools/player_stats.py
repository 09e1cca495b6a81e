"""
Per-player statistics derived from log events.

Death lines only carry a display name, while most other lines carry the
17-digit player id as well. Names are mapped to ids as soon as any line (or
the PlayerIDMapped.txt file) links them. Counts recorded under a bare name
before that are merged into the id record. The death counts kept here are
the authoritative source the stat reconciler uses to detect deaths.
"""

import logging
from dataclasses import dataclass, asdict, fields
from datetime import datetime
from typing import Dict, Any, Optional

from ..base import JSONStateFile
from ..log.events import (
    LogEvent, Death, Build, DamageTaken, Loot, RaidHit,
    AdminAccess, CheatFlag, Connect, Disconnect,
)
from .pvp_correlator import PvpKillRecord

logger = logging.getLogger(__name__)

NAME_KEY_PREFIX = 'name:'

COUNT_FIELDS = (
    'deaths', 'builds', 'loots', 'raid_hits', 'raids_destroyed', 'damage_taken',
    'pvp_kills', 'pvp_deaths', 'connects', 'admin_access', 'cheat_flags',
)


@dataclass
class PlayerLogRecord:
    name: str
    player_id: Optional[str] = None
    deaths: int = 0
    builds: int = 0
    loots: int = 0
    raid_hits: int = 0
    raids_destroyed: int = 0
    damage_taken: int = 0
    pvp_kills: int = 0
    pvp_deaths: int = 0
    connects: int = 0
    admin_access: int = 0
    cheat_flags: int = 0
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None

    def seen(self, ts: datetime) -> None:
        stamp = ts.isoformat()
        if self.first_seen is None or stamp < self.first_seen:
            self.first_seen = stamp
        if self.last_seen is None or stamp > self.last_seen:
            self.last_seen = stamp

    def merge(self, other: 'PlayerLogRecord') -> None:
        for name in COUNT_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        for stamp in (other.first_seen, other.last_seen):
            if stamp:
                self.seen(datetime.fromisoformat(stamp))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlayerLogRecord':
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        record = cls(**values)
        for name in COUNT_FIELDS:
            setattr(record, name, int(getattr(record, name) or 0))
        return record


class PlayerLogStats:
    """Log-derived counters per player, keyed by player id when known."""

    def __init__(self, file_path: Optional[str] = None) -> None:
        self.state_file = JSONStateFile(file_path) if file_path else None
        self.records: Dict[str, PlayerLogRecord] = {}
        self.name_index: Dict[str, str] = {}
        self._dirty = False

    def load(self) -> int:
        if self.state_file is None:
            return 0

        data = self.state_file.load({}, validate=lambda d: isinstance(d, dict)
                                    and isinstance(d.get('players', {}), dict))
        self.records = {}
        self.name_index = {}
        for key, entry in (data.get('players') or {}).items():
            try:
                record = PlayerLogRecord.from_dict(entry)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable player stats for {key}: {e}")
                continue
            self.records[key] = record
            if record.player_id:
                self.name_index[record.name.lower()] = record.player_id
        self._dirty = False
        return len(self.records)

    def resolve(self, name: str) -> Optional[str]:
        """Player id for a display name, if known."""
        return self.name_index.get(name.strip().lower())

    def learn(self, name: str, player_id: str) -> None:
        """
        Link a display name to a player id and fold any name-keyed record into it.
        """
        lower = name.strip().lower()
        if not lower or not player_id:
            return

        if self.name_index.get(lower) != player_id:
            self.name_index[lower] = player_id
            self._dirty = True

        record = self.records.get(player_id)
        if record is None:
            record = PlayerLogRecord(name=name.strip(), player_id=player_id)
            self.records[player_id] = record
            self._dirty = True
        elif record.name != name.strip():
            record.name = name.strip()
            self._dirty = True

        pending = self.records.pop(NAME_KEY_PREFIX + lower, None)
        if pending is not None:
            record.merge(pending)
            logger.debug(f"Merged name-only stats for {name} into {player_id}")
            self._dirty = True

    def load_id_map(self, mapping: Dict[str, str]) -> int:
        """Learn every name -> id pair from PlayerIDMapped.txt. Returns the number of pairs."""
        for name, player_id in mapping.items():
            self.learn(name, player_id)
        return len(mapping)

    def key_for(self, name: str, player_id: Optional[str] = None) -> str:
        """Durable key for a player: the id when known, else the lower-cased name."""
        if player_id:
            return player_id
        return self.resolve(name) or NAME_KEY_PREFIX + name.strip().lower()

    def _record(self, name: str, player_id: Optional[str] = None) -> PlayerLogRecord:
        key = self.key_for(name, player_id)
        record = self.records.get(key)
        if record is None:
            record = PlayerLogRecord(name=name.strip(), player_id=key if not key.startswith(NAME_KEY_PREFIX) else None)
            self.records[key] = record
        return record

    def record(self, event: LogEvent) -> None:
        """Update counters for one log event."""
        if isinstance(event, (Connect, Disconnect, Build, CheatFlag)):
            self.learn(event.player, event.player_id)
        elif isinstance(event, Loot):
            self.learn(event.looter, event.looter_id)

        if isinstance(event, Death):
            record = self._record(event.player)
            record.deaths += 1
        elif isinstance(event, Build):
            record = self._record(event.player, event.player_id)
            record.builds += 1
        elif isinstance(event, Loot):
            record = self._record(event.looter, event.looter_id)
            record.loots += 1
        elif isinstance(event, RaidHit):
            record = self._record(event.attacker, event.attacker_id)
            if event.owner_id:
                record.raid_hits += 1
            if event.destroyed:
                record.raids_destroyed += 1
        elif isinstance(event, DamageTaken):
            record = self._record(event.victim)
            record.damage_taken += 1
        elif isinstance(event, AdminAccess):
            record = self._record(event.player)
            record.admin_access += 1
        elif isinstance(event, CheatFlag):
            record = self._record(event.player, event.player_id)
            record.cheat_flags += 1
        elif isinstance(event, Connect):
            record = self._record(event.player, event.player_id)
            record.connects += 1
        elif isinstance(event, Disconnect):
            record = self._record(event.player, event.player_id)
        else:
            return

        record.seen(event.ts)
        self._dirty = True

    def record_pvp_kill(self, kill: PvpKillRecord) -> None:
        self._record(kill.killer).pvp_kills += 1
        self._record(kill.victim).pvp_deaths += 1
        self._dirty = True

    def get(self, name_or_id: str) -> Optional[PlayerLogRecord]:
        if name_or_id in self.records:
            return self.records[name_or_id]
        return self.records.get(self.key_for(name_or_id))

    def death_count(self, player_id: str) -> int:
        record = self.records.get(player_id)
        return record.deaths if record else 0

    def death_counts(self) -> Dict[str, int]:
        """Death count of every player with a known id."""
        return {key: record.deaths for key, record in self.records.items()
                if not key.startswith(NAME_KEY_PREFIX)}

    def save_if_dirty(self) -> bool:
        if not self._dirty or self.state_file is None:
            return False
        self.state_file.write({'players': {key: record.to_dict() for key, record in self.records.items()}})
        self._dirty = False
        return True
