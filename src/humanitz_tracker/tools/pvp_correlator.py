#!/usr/bin/env python3
"""
HumanitZ Log Tracker - PvP Correlator

Joins player-sourced damage with subsequent deaths to attribute PvP kills.

The server log has minute-precision timestamps, so a damage-weighted model is
unreliable. The correlator credits the last distinct attacker that hit the
victim within the attribution window; repeated hits by that same attacker add
up into the reported damage.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any

from ..base import JSONStateFile
from ..log.events import DamageTaken, Death
from ..log.line_parser import is_player_source

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60
DEFAULT_HISTORY_SIZE = 50


@dataclass
class PvpDamageRecord:
    attacker: str
    timestamp: datetime
    cumulative_damage: float


@dataclass
class PvpKillRecord:
    killer: str
    victim: str
    damage: float
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'killer': self.killer,
            'victim': self.victim,
            'damage': self.damage,
            'timestamp': self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PvpKillRecord':
        """
        Build a record from its JSON form.

        Raises:
            KeyError, TypeError, ValueError: If required fields are missing or malformed.
        """
        return cls(
            killer=str(data['killer']),
            victim=str(data['victim']),
            damage=float(data.get('damage', 0)),
            timestamp=datetime.fromisoformat(data['timestamp']),
        )


class PvpKillHistory:
    """Capped, persisted list of the most recent PvP kills."""

    def __init__(self, file_path: Optional[str] = None, max_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self.state_file = JSONStateFile(file_path) if file_path else None
        self.max_size = max_size
        self.records: List[PvpKillRecord] = []
        self._dirty = False

    def load(self) -> int:
        """
        Load the history file. Entries that cannot be read are skipped.

        Returns:
            Number of records loaded.
        """
        if self.state_file is None:
            return 0

        raw = self.state_file.load([], validate=lambda d: isinstance(d, list))
        records = []
        for entry in raw:
            try:
                records.append(PvpKillRecord.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable PvP kill record {entry!r}: {e}")
        self.records = records[-self.max_size:]
        self._dirty = False
        return len(self.records)

    def append(self, record: PvpKillRecord) -> None:
        self.records.append(record)
        if len(self.records) > self.max_size:
            del self.records[:len(self.records) - self.max_size]
        self._dirty = True

    def recent(self, count: int = 10) -> List[PvpKillRecord]:
        """Return the last ``count`` kills, oldest first."""
        if count <= 0:
            return []
        return list(self.records[-count:])

    def save_if_dirty(self) -> bool:
        if not self._dirty or self.state_file is None:
            return False
        self.state_file.write([record.to_dict() for record in self.records])
        self._dirty = False
        return True

    def __len__(self) -> int:
        return len(self.records)


class PvpCorrelator:
    """
    Per-victim state machine: Idle -> Tracked -> (consumed | expired).

    Victims are keyed case-insensitively by display name because death lines
    carry no player id.
    """

    def __init__(self, window_seconds: float = DEFAULT_WINDOW_SECONDS, enabled: bool = True,
                 history: Optional[PvpKillHistory] = None) -> None:
        """
        Initialize the correlator.

        Args:
            window_seconds: Maximum age of the last hit for a death to count as a PvP kill.
            enabled: When False, damage is ignored and no kills are attributed.
            history: Kill history that attributed kills are appended to.
        """
        self.window = timedelta(seconds=window_seconds)
        self.enabled = enabled
        self.history = history if history is not None else PvpKillHistory()
        self.tracked: Dict[str, PvpDamageRecord] = {}

    def record_damage(self, event: DamageTaken) -> bool:
        """
        Track damage dealt to a player by another player.

        Args:
            event: Damage event from the log.

        Returns:
            True if the damage was tracked as PvP damage.
        """
        if not self.enabled or not is_player_source(event.source):
            return False

        victim_key = event.victim.lower()
        if event.source.lower() == victim_key:
            return False

        existing = self.tracked.get(victim_key)
        if existing and existing.attacker.lower() == event.source.lower():
            existing.cumulative_damage += event.amount
            existing.timestamp = event.ts
        else:
            # A different attacker takes over: last hit wins
            self.tracked[victim_key] = PvpDamageRecord(
                attacker=event.source, timestamp=event.ts, cumulative_damage=event.amount)
        return True

    def resolve_death(self, event: Death) -> Optional[PvpKillRecord]:
        """
        Decide whether a death was a PvP kill.

        Args:
            event: Death event from the log.

        Returns:
            The kill record if the last tracked hit is within the window, else None.
            Any tracked record for the victim is removed either way.
        """
        record = self.tracked.pop(event.player.lower(), None)
        if record is None or not self.enabled:
            return None

        elapsed = event.ts - record.timestamp
        if elapsed < timedelta(0) or elapsed > self.window:
            logger.debug(f"Dropped stale PvP damage on {event.player} by {record.attacker} ({elapsed})")
            return None

        kill = PvpKillRecord(killer=record.attacker, victim=event.player,
                             damage=record.cumulative_damage, timestamp=event.ts)
        self.history.append(kill)
        logger.info(f"PvP kill: {kill.killer} killed {kill.victim} ({kill.damage:.0f} damage)")
        return kill

    def sweep(self, now: datetime) -> int:
        """
        Drop tracked records older than twice the attribution window.

        Returns:
            Number of records removed.
        """
        cutoff = now - 2 * self.window
        stale = [key for key, record in self.tracked.items() if record.timestamp < cutoff]
        for key in stale:
            del self.tracked[key]
        if stale:
            logger.debug(f"Swept {len(stale)} stale PvP damage record(s)")
        return len(stale)
