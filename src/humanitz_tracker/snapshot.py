"""
Player snapshot model and snapshot sources.

A PlayerSnapshot is what the external save-file parser reports for one
player at one point in time. Session counters reset whenever the character
dies. Servers with extended accounting also report lifetime counters that
never reset.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from typing import Dict, Any, List, Optional

from .log.transport import FileTransport

logger = logging.getLogger(__name__)

KILL_KEYS = (
    'zeeks_killed', 'headshots', 'melee_kills', 'gun_kills',
    'blast_kills', 'fist_kills', 'takedown_kills', 'vehicle_kills',
)
SURVIVAL_KEYS = ('days_survived',)
COUNTER_KEYS = KILL_KEYS + SURVIVAL_KEYS

ACTIVITY_SCALAR_KEYS = ('times_bitten', 'fish_caught', 'fish_caught_pike')
ACTIVITY_ARRAY_KEYS = (
    'crafting_recipes', 'building_recipes', 'unlocked_skills', 'unlocked_professions',
    'lore', 'unique_loots', 'crafted_uniques',
)


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass
class Counters:
    """Fixed record of kill and survival counters."""
    zeeks_killed: int = 0
    headshots: int = 0
    melee_kills: int = 0
    gun_kills: int = 0
    blast_kills: int = 0
    fist_kills: int = 0
    takedown_kills: int = 0
    vehicle_kills: int = 0
    days_survived: int = 0

    def __add__(self, other: 'Counters') -> 'Counters':
        return Counters(**{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)})

    def __sub__(self, other: 'Counters') -> 'Counters':
        return Counters(**{f.name: getattr(self, f.name) - getattr(other, f.name) for f in fields(self)})

    def clamped(self) -> 'Counters':
        """Copy with negative values raised to zero."""
        return Counters(**{f.name: max(0, getattr(self, f.name)) for f in fields(self)})

    def positive_delta(self, previous: 'Counters') -> Dict[str, int]:
        """Keys that increased since ``previous``, with the increase."""
        delta = {}
        for key in COUNTER_KEYS:
            diff = getattr(self, key) - getattr(previous, key)
            if diff > 0:
                delta[key] = diff
        return delta

    def to_dict(self) -> Dict[str, int]:
        return {key: getattr(self, key) for key in COUNTER_KEYS}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Counters':
        """Build counters from a dict, defaulting missing or unreadable fields to zero."""
        data = data or {}
        return cls(**{key: _as_int(data.get(key, 0)) for key in COUNTER_KEYS})


@dataclass
class PlayerSnapshot:
    player_id: str
    name: str = ''
    counters: Counters = field(default_factory=Counters)
    lifetime: Optional[Counters] = None
    activity_scalars: Dict[str, int] = field(default_factory=dict)
    activity_arrays: Dict[str, List[str]] = field(default_factory=dict)
    challenges: Dict[str, int] = field(default_factory=dict)

    @property
    def has_extended_accounting(self) -> bool:
        return self.lifetime is not None

    @classmethod
    def from_dict(cls, player_id: str, data: Dict[str, Any]) -> 'PlayerSnapshot':
        """
        Build a snapshot from the save parser's JSON export.

        Lifetime counters are only used when ``has_extended_accounting`` is true
        (or absent) and a ``lifetime`` object is present.
        """
        lifetime = None
        if data.get('has_extended_accounting', True) and isinstance(data.get('lifetime'), dict):
            lifetime = Counters.from_dict(data['lifetime'])

        arrays = {}
        for key in ACTIVITY_ARRAY_KEYS:
            values = data.get(key)
            if isinstance(values, list):
                arrays[key] = [str(v) for v in values]

        challenges = {str(k): _as_int(v) for k, v in (data.get('challenges') or {}).items()}

        return cls(
            player_id=str(player_id),
            name=str(data.get('name') or ''),
            counters=Counters.from_dict(data.get('counters')),
            lifetime=lifetime,
            activity_scalars={key: _as_int(data[key]) for key in ACTIVITY_SCALAR_KEYS if key in data},
            activity_arrays=arrays,
            challenges=challenges,
        )


class SnapshotSource(ABC):
    """Provider of the latest per-player snapshots."""

    @abstractmethod
    def fetch_latest_snapshot(self) -> Dict[str, PlayerSnapshot]:
        """
        Return the latest snapshot of every known player, keyed by player id.

        Raises:
            TransportError: If the snapshot could not be fetched.
        """


class JSONSnapshotSource(SnapshotSource):
    """Reads ``{"players": {id: {...}}}`` exported by the save parser."""

    def __init__(self, transport: FileTransport, path: str) -> None:
        self.transport = transport
        self.path = path

    def fetch_latest_snapshot(self) -> Dict[str, PlayerSnapshot]:
        raw = self.transport.read_whole(self.path)
        try:
            document = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            raise ValueError(f"Snapshot export {self.path} is not valid JSON: {e}") from e

        players = document.get('players') if isinstance(document, dict) else None
        if not isinstance(players, dict):
            raise ValueError(f"Snapshot export {self.path} has no 'players' object")

        snapshots = {}
        for player_id, data in players.items():
            if not isinstance(data, dict):
                logger.warning(f"Skipping malformed snapshot entry for {player_id}")
                continue
            snapshots[str(player_id)] = PlayerSnapshot.from_dict(player_id, data)

        logger.debug(f"Fetched {len(snapshots)} player snapshot(s) from {self.path}")
        return snapshots
