#!/usr/bin/env python3
"""
HumanitZ Log Tracker - Line Parser

Turns raw HMZLog.log / PlayerConnectedLog.txt lines into typed events.

Lines are matched against an ordered list of (pattern, constructor) grammars
and the first matching grammar wins. Several grammars overlap on purpose (the
owned and unowned structure damage lines share a prefix), so the order is part
of the parser's contract. A constructor may return None to discard a line it
matched, in which case no later grammar is tried.
"""

import logging
import re
from datetime import datetime, timezone, tzinfo
from typing import Callable, Dict, List, Optional, Pattern, Tuple

from .events import (
    LogEvent, Death, Build, DamageTaken, Loot, RaidHit,
    AdminAccess, CheatFlag, Connect, Disconnect,
)

logger = logging.getLogger(__name__)

BOM = '\ufeff'

# Attacker names the server uses for decay and the zombie NPC
DECAY_SENTINEL = 'Decayfalse'
NPC_SENTINEL = 'Zeek'
SENTINEL_SOURCES = frozenset({DECAY_SENTINEL, NPC_SENTINEL})

NON_PLAYER_SOURCE_PATTERN = re.compile(
    r'Zombie|Wolf|Bear|Deer|Snake|Spider|Human|KaiHuman|Mutant|Runner|Brute|Pudge'
    r'|Dogzombie|Police|Cop|Military|Hazmat|Camo',
    re.IGNORECASE
)

ID_MAP_LINE_PATTERN = re.compile(r'^(?P<player_id>\d{17})_\+_\|[^@]+@(?P<name>.+)$')

CONTAINER_NAMES = (
    ('VehicleStorage', 'Vehicle Storage'),
    ('CupboardContainer', 'Cupboard'),
    ('StorageContainer', 'Storage Container'),
    ('Fridge', 'Fridge'),
    ('Barrel', 'Barrel'),
)


def clean_line(raw: str) -> str:
    """Strip a leading byte-order mark and surrounding whitespace."""
    return raw.replace(BOM, '').strip()


def is_player_source(source: str) -> bool:
    """
    Guess whether a damage source is another player.

    This is a denylist: anything that is not a blueprint actor, a sentinel or
    a known creature/NPC name is assumed to be a player name. Unlisted NPC
    names are therefore misread as players.
    """
    source = source.strip()
    if not source or source in SENTINEL_SOURCES:
        return False
    if source.startswith('BP_'):
        return False
    return not NON_PLAYER_SOURCE_PATTERN.search(source)


def simplify_blueprint(raw_name: str) -> str:
    """
    Turn an engine blueprint class name into a readable name.

    BP_GlassWindow_C_2147481025 -> GlassWindow
    BP_Wood_Wall_C -> Wood Wall
    """
    name = re.sub(r'^BP_', '', raw_name)
    name = re.sub(r'_C_\d+.*$', '', name)
    name = re.sub(r'_C$', '', name)
    return name.replace('_', ' ').strip()


def simplify_container(raw_name: str) -> str:
    """Map a container actor name onto a short storage kind."""
    for marker, label in CONTAINER_NAMES:
        if marker in raw_name:
            return label
    name = re.sub(r'^(ChildActor_GEN_VARIABLE_|Storage_GEN_VARIABLE_)?BP_', '', raw_name)
    name = re.sub(r'_C_CAT_\w+$', '', name)
    name = re.sub(r'_C_\w+$', '', name)
    return name.replace('_', ' ').strip()


def parse_id_map(text: str) -> Dict[str, str]:
    """
    Parse a PlayerIDMapped.txt document.

    Each line reads ``<17-digit id>_+_|<guid>@<display name>``.

    Args:
        text: Whole file content.

    Returns:
        Mapping of display name to player id.
    """
    mapping = {}
    for raw in text.splitlines():
        match = ID_MAP_LINE_PATTERN.match(clean_line(raw))
        if match:
            mapping[match.group('name').strip()] = match.group('player_id')
    return mapping


Grammar = Tuple[str, Pattern, Callable]


class LineParser:
    """
    Stateless parser for HumanitZ server log lines.

    The source timezone is required because the server writes local wall-clock
    times without a zone marker.
    """

    # (DD/MM/YYYY HH:MM[:SS]) with '/', '-' or '.' separators and an optional comma in the year
    TIMESTAMP = r'\((\d{1,2})[/\-.](\d{1,2})[/\-.](\d{1,2},?\d{3})\s+(\d{1,2}):(\d{1,2})(?::\d{1,2})?\)'

    TIMESTAMPED_LINE_PATTERN = re.compile(r'^' + TIMESTAMP + r'\s+(?P<body>.+)$')
    CONNECT_PATTERN = re.compile(
        r'^Player (?P<action>Connected|Disconnected)\s+(?P<name>.+?)\s+NetID\((?P<player_id>\d{17})[^)]*\)\s*'
        + TIMESTAMP
    )

    DEATH_PATTERN = re.compile(r'^Player died \((?P<name>.+)\)$')
    BUILD_PATTERN = re.compile(r'^(?P<name>.+?)\((?P<player_id>\d{17})[^)]*\)\s*finished building\s+(?P<item>.+)$')
    DAMAGE_PATTERN = re.compile(r'^(?P<victim>.+?)\s+took\s+(?P<amount>[\d.]+)\s+damage from\s+(?P<source>.+)$')
    LOOT_PATTERN = re.compile(
        r'^(?P<name>.+?)\s*\((?P<player_id>\d{17})[^)]*\)\s*looted a container\s*'
        r'\((?P<container>[^)]+)\)\s*owner by\s*(?P<owner_id>\d{17})'
    )
    OWNED_RAID_PATTERN = re.compile(
        r'^Building \((?P<structure>[^)]+)\) owned by \((?P<owner>\d{17}[^)]*)\) damaged \([\d.]+\) '
        r'by (?P<attacker>.+?)(?:\((?P<attacker_id>\d{17})[^)]*\))?(?P<destroyed>\s*\(Destroyed\))?$'
    )
    UNOWNED_RAID_PATTERN = re.compile(
        r'^Building \((?P<structure>[^)]+)\) owned by \(\) damaged \([\d.]+\) '
        r'by (?P<attacker>.+?)(?:\((?P<attacker_id>\d{17})[^)]*\))?(?P<destroyed>\s*\(Destroyed\))?$'
    )
    ADMIN_PATTERN = re.compile(r'^(?P<name>.+?)\s+gained admin access!$')
    CHEAT_PATTERN = re.compile(
        r'^(?P<flag>Stack limit detected in drop function|Odd behavior.*?Cheat)\s*'
        r'\((?P<name>.+?)\s*-\s*(?P<player_id>\d{17})'
    )

    def __init__(self, source_tz: tzinfo) -> None:
        """
        Initialize the parser.

        Args:
            source_tz: Timezone the server writes its log timestamps in.
        """
        if source_tz is None:
            raise ValueError("source_tz is required")
        self.source_tz = source_tz

        self.body_grammars: List[Grammar] = [
            ('death', self.DEATH_PATTERN, self._death),
            ('build', self.BUILD_PATTERN, self._build),
            ('damage', self.DAMAGE_PATTERN, self._damage),
            ('loot', self.LOOT_PATTERN, self._loot),
            ('owned_raid', self.OWNED_RAID_PATTERN, self._owned_raid),
            ('unowned_raid', self.UNOWNED_RAID_PATTERN, self._unowned_raid),
            ('admin', self.ADMIN_PATTERN, self._admin),
            ('cheat', self.CHEAT_PATTERN, self._cheat),
        ]

    @property
    def grammar_order(self) -> List[str]:
        """Names of all grammars in the order they are tried."""
        return ['connect'] + [name for name, _, _ in self.body_grammars]

    def to_utc(self, day: str, month: str, year: str, hour: str, minute: str) -> Optional[datetime]:
        """
        Convert the log's local date/time fields to an aware UTC datetime.

        Returns:
            The UTC datetime, or None if the fields do not form a valid date.
        """
        try:
            local = datetime(int(year.replace(',', '')), int(month), int(day),
                             int(hour), int(minute), tzinfo=self.source_tz)
        except ValueError:
            logger.debug(f"Invalid log timestamp {day}/{month}/{year} {hour}:{minute}")
            return None
        return local.astimezone(timezone.utc)

    def parse_line(self, raw_line: str) -> Optional[LogEvent]:
        """
        Parse one raw log line.

        Args:
            raw_line: Line as read from the file (BOM and whitespace tolerated).

        Returns:
            The parsed event, or None if the line is not a tracked event.
        """
        line = clean_line(raw_line)
        if not line:
            return None

        connect_match = self.CONNECT_PATTERN.match(line)
        if connect_match:
            return self._connect(connect_match)

        line_match = self.TIMESTAMPED_LINE_PATTERN.match(line)
        if not line_match:
            return None

        ts = self.to_utc(*line_match.groups()[:5])
        if ts is None:
            return None

        body = line_match.group('body')
        for _, pattern, constructor in self.body_grammars:
            match = pattern.match(body)
            if match:
                return constructor(match, ts)
        return None

    def parse_lines(self, lines: List[str]) -> List[LogEvent]:
        """Parse many lines, keeping file order and dropping non-events."""
        events = []
        for line in lines:
            event = self.parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def _connect(self, match) -> Optional[LogEvent]:
        day, month, year, hour, minute = match.groups()[3:8]
        ts = self.to_utc(day, month, year, hour, minute)
        if ts is None:
            return None
        name = match.group('name').strip()
        if match.group('action') == 'Connected':
            return Connect(ts=ts, player=name, player_id=match.group('player_id'))
        return Disconnect(ts=ts, player=name, player_id=match.group('player_id'))

    def _death(self, match, ts: datetime) -> LogEvent:
        return Death(ts=ts, player=match.group('name').strip())

    def _build(self, match, ts: datetime) -> LogEvent:
        return Build(ts=ts, player=match.group('name').strip(), player_id=match.group('player_id'),
                     item=simplify_blueprint(match.group('item').strip()))

    def _damage(self, match, ts: datetime) -> Optional[LogEvent]:
        try:
            amount = float(match.group('amount'))
        except ValueError:
            return None
        if amount <= 0:
            return None
        return DamageTaken(ts=ts, victim=match.group('victim').strip(),
                           source=match.group('source').strip(), amount=amount)

    def _loot(self, match, ts: datetime) -> LogEvent:
        return Loot(ts=ts, looter=match.group('name').strip(), looter_id=match.group('player_id'),
                    owner_id=match.group('owner_id'),
                    container_kind=simplify_container(match.group('container')))

    def _owned_raid(self, match, ts: datetime) -> Optional[LogEvent]:
        attacker = match.group('attacker').strip()
        if attacker in SENTINEL_SOURCES:
            return None

        owner_id = match.group('owner')[:17]
        attacker_id = match.group('attacker_id')
        if attacker_id and attacker_id == owner_id:
            # Players damaging their own structures are not raids
            return None

        return RaidHit(ts=ts, attacker=attacker, attacker_id=attacker_id, owner_id=owner_id,
                       structure_kind=simplify_blueprint(match.group('structure')),
                       destroyed=bool(match.group('destroyed')))

    def _unowned_raid(self, match, ts: datetime) -> Optional[LogEvent]:
        attacker = match.group('attacker').strip()
        if attacker in SENTINEL_SOURCES or not match.group('destroyed'):
            return None
        return RaidHit(ts=ts, attacker=attacker, attacker_id=match.group('attacker_id'), owner_id=None,
                       structure_kind=simplify_blueprint(match.group('structure')), destroyed=True)

    def _admin(self, match, ts: datetime) -> LogEvent:
        return AdminAccess(ts=ts, player=match.group('name').strip())

    def _cheat(self, match, ts: datetime) -> LogEvent:
        return CheatFlag(ts=ts, player=match.group('name').strip(), player_id=match.group('player_id'),
                         flag=match.group('flag').strip())
