"""
Typed events produced by the line parser.

All timestamps are timezone-aware UTC datetimes.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class LogEvent:
    ts: datetime

    kind = 'event'

    @property
    def subject(self) -> str:
        """Display name of the player the event is about."""
        return ''

    @property
    def subject_id(self) -> Optional[str]:
        """17-digit id of that player, when the line carried one."""
        return None


@dataclass
class Death(LogEvent):
    player: str

    kind = 'death'

    @property
    def subject(self) -> str:
        return self.player


@dataclass
class Build(LogEvent):
    player: str
    player_id: str
    item: str

    kind = 'build'

    @property
    def subject(self) -> str:
        return self.player

    @property
    def subject_id(self) -> Optional[str]:
        return self.player_id


@dataclass
class DamageTaken(LogEvent):
    victim: str
    source: str
    amount: float

    kind = 'damage'

    @property
    def subject(self) -> str:
        return self.victim


@dataclass
class Loot(LogEvent):
    looter: str
    looter_id: str
    owner_id: str
    container_kind: str

    kind = 'loot'

    @property
    def subject(self) -> str:
        return self.looter

    @property
    def subject_id(self) -> Optional[str]:
        return self.looter_id


@dataclass
class RaidHit(LogEvent):
    attacker: str
    attacker_id: Optional[str]
    owner_id: Optional[str]
    structure_kind: str
    destroyed: bool

    kind = 'raid_hit'

    @property
    def subject(self) -> str:
        return self.attacker

    @property
    def subject_id(self) -> Optional[str]:
        return self.attacker_id


@dataclass
class AdminAccess(LogEvent):
    player: str

    kind = 'admin'

    @property
    def subject(self) -> str:
        return self.player


@dataclass
class CheatFlag(LogEvent):
    player: str
    player_id: str
    flag: str

    kind = 'cheat'

    @property
    def subject(self) -> str:
        return self.player

    @property
    def subject_id(self) -> Optional[str]:
        return self.player_id


@dataclass
class Connect(LogEvent):
    player: str
    player_id: str

    kind = 'connect'

    @property
    def subject(self) -> str:
        return self.player

    @property
    def subject_id(self) -> Optional[str]:
        return self.player_id


@dataclass
class Disconnect(LogEvent):
    player: str
    player_id: str

    kind = 'disconnect'

    @property
    def subject(self) -> str:
        return self.player

    @property
    def subject_id(self) -> Optional[str]:
        return self.player_id
