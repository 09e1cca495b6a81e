#!/usr/bin/env python3
"""
HumanitZ Log Tracker - Calendar Bucketer

Counts log events into a per-day bucket in the configured timezone and rolls
the bucket over when the date changes. A rollover is triggered either by an
event carrying a later date or by the proactive check, which runs on a timer
so a quiet night still closes the previous day promptly. The same check
resets the weekly baseline once the weekly reset boundary has passed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional, Set, Any

from ..base import JSONStateFile
from ..log.events import LogEvent, RaidHit
from ..server_calendar import ServerCalendar

logger = logging.getLogger(__name__)

COUNTER_KINDS = (
    'connects', 'disconnects', 'deaths', 'builds', 'damage', 'loots',
    'raid_hits', 'destroyed', 'admin', 'cheat', 'pvp_kills',
)

EVENT_COUNTERS = {
    'connect': 'connects',
    'disconnect': 'disconnects',
    'death': 'deaths',
    'build': 'builds',
    'damage': 'damage',
    'loot': 'loots',
    'admin': 'admin',
    'cheat': 'cheat',
}

SnapshotProvider = Callable[[], Dict[str, Dict[str, int]]]


@dataclass
class DaySummary:
    date: str
    counters: Dict[str, int]
    unique_players: int

    @property
    def total(self) -> int:
        return sum(self.counters.values())


@dataclass
class DayBucket:
    date: str
    counters: Dict[str, int] = field(default_factory=lambda: {kind: 0 for kind in COUNTER_KINDS})
    players: Set[str] = field(default_factory=set)

    def increment(self, kind: str, amount: int = 1) -> None:
        self.counters[kind] = self.counters.get(kind, 0) + amount

    @property
    def total(self) -> int:
        return sum(self.counters.values())

    def summary(self) -> DaySummary:
        return DaySummary(date=self.date, counters=dict(self.counters), unique_players=len(self.players))

    def to_dict(self) -> Dict[str, Any]:
        return {'date': self.date, 'counters': dict(self.counters), 'players': sorted(self.players)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DayBucket':
        bucket = cls(date=str(data['date']))
        for kind, value in (data.get('counters') or {}).items():
            if isinstance(value, int) and not isinstance(value, bool):
                bucket.counters[kind] = value
        bucket.players = {str(p) for p in data.get('players') or []}
        return bucket


class WeeklyBaseline:
    """
    Per-player counter values captured at the start of the current week.

    Weekly figures are the difference between a player's current all-time
    counters and this baseline.
    """

    def __init__(self, file_path: Optional[str] = None) -> None:
        self.state_file = JSONStateFile(file_path) if file_path else None
        self.week_start: Optional[datetime] = None
        self.players: Dict[str, Dict[str, int]] = {}
        self._dirty = False

    def load(self) -> bool:
        """Load the baseline file. Returns True if a baseline was restored."""
        if self.state_file is None:
            return False

        data = self.state_file.load(None, validate=lambda d: isinstance(d, dict) and 'week_start' in d)
        if data is None:
            return False

        try:
            self.week_start = datetime.fromisoformat(data['week_start'])
        except (TypeError, ValueError):
            logger.warning(f"Weekly baseline has an unreadable week_start {data.get('week_start')!r}. Starting fresh.")
            return False

        players = data.get('players') or {}
        self.players = {str(pid): dict(values) for pid, values in players.items() if isinstance(values, dict)}
        self._dirty = False
        return True

    def is_stale(self, calendar: ServerCalendar, now: datetime) -> bool:
        return self.week_start is None or calendar.is_new_week(self.week_start, now)

    def reset(self, week_start: datetime, players: Dict[str, Dict[str, int]]) -> None:
        self.week_start = week_start
        self.players = {pid: dict(values) for pid, values in players.items()}
        self._dirty = True
        logger.info(f"Weekly baseline reset for week starting {week_start.isoformat()} "
                    f"({len(self.players)} player(s))")

    def ensure_player(self, player_id: str, values: Dict[str, int]) -> None:
        """Give a player first seen mid-week a baseline of their current values."""
        if player_id not in self.players:
            self.players[player_id] = dict(values)
            self._dirty = True

    def weekly_delta(self, player_id: str, current: Dict[str, int]) -> Dict[str, int]:
        """This week's gains for a player, never negative."""
        base = self.players.get(player_id, {})
        return {key: max(0, value - base.get(key, 0)) for key, value in current.items()}

    def save_if_dirty(self) -> bool:
        if not self._dirty or self.state_file is None or self.week_start is None:
            return False
        self.state_file.write({'week_start': self.week_start.isoformat(), 'players': self.players})
        self._dirty = False
        return True


class CalendarBucketer:
    """Routes events into today's bucket and handles day and week rollover."""

    def __init__(self, calendar: ServerCalendar, file_path: Optional[str] = None,
                 baseline: Optional[WeeklyBaseline] = None,
                 snapshot_provider: Optional[SnapshotProvider] = None) -> None:
        """
        Initialize the bucketer.

        Args:
            calendar: Calendar used for every date computation.
            file_path: Optional day-bucket snapshot file.
            baseline: Weekly baseline to reset when a week ends.
            snapshot_provider: Returns the per-player counters to use for a new weekly baseline.
        """
        self.calendar = calendar
        self.state_file = JSONStateFile(file_path) if file_path else None
        self.baseline = baseline if baseline is not None else WeeklyBaseline()
        self.snapshot_provider = snapshot_provider
        self.current: Optional[DayBucket] = None
        self._dirty = False

    def load(self, now: datetime) -> bool:
        """
        Restore today's counts after a restart.

        A snapshot from another date is discarded.

        Returns:
            True if today's bucket was restored.
        """
        if self.state_file is None:
            return False

        data = self.state_file.load(None, validate=lambda d: isinstance(d, dict) and 'date' in d)
        if data is None:
            return False

        today = self.calendar.today_key(now)
        if data['date'] != today:
            logger.info(f"Discarding day snapshot for {data['date']} (today is {today})")
            return False

        self.current = DayBucket.from_dict(data)
        logger.info(f"Restored day bucket for {today} ({self.current.total} event(s))")
        return True

    def _open(self, date_key: str) -> None:
        self.current = DayBucket(date=date_key)
        self._dirty = True

    def _roll(self, date_key: str, moment: datetime) -> Optional[DaySummary]:
        closed = self.current
        self._open(date_key)
        logger.info(f"Day rollover {closed.date} -> {date_key}")

        self.check_weekly(moment)

        if closed.total > 0:
            return closed.summary()
        return None

    def check_weekly(self, now: datetime) -> bool:
        """
        Reset the weekly baseline if a weekly boundary has passed since it was taken.

        Returns:
            True if the baseline was reset.
        """
        if not self.baseline.is_stale(self.calendar, now):
            return False
        players = self.snapshot_provider() if self.snapshot_provider else {}
        self.baseline.reset(self.calendar.week_start(now), players)
        return True

    def record(self, event: LogEvent, identity: Optional[str] = None) -> Optional[DaySummary]:
        """
        Count an event into the bucket for its date.

        Events dated before the open bucket (late lines after a rollover) are
        counted into the open bucket.

        Args:
            event: Parsed log event.
            identity: Durable player key to count as a unique player. Defaults to
                the event's player id, then its lower-cased name.

        Returns:
            The summary of the day closed by this event, if it closed a non-empty day.
        """
        summary = None
        date_key = self.calendar.date_key(event.ts)
        if self.current is None:
            self._open(date_key)
        elif date_key > self.current.date:
            summary = self._roll(date_key, event.ts)

        if isinstance(event, RaidHit):
            if event.owner_id:
                self.current.increment('raid_hits')
            if event.destroyed:
                self.current.increment('destroyed')
        elif event.kind in EVENT_COUNTERS:
            self.current.increment(EVENT_COUNTERS[event.kind])

        player = identity or event.subject_id or (event.subject.lower() if event.subject else None)
        if player:
            self.current.players.add(player)

        self._dirty = True
        return summary

    def record_pvp_kill(self) -> None:
        if self.current is not None:
            self.current.increment('pvp_kills')
            self._dirty = True

    def check_rollover(self, now: datetime) -> Optional[DaySummary]:
        """
        Proactively roll the bucket if the configured timezone's date has moved on,
        and reset the weekly baseline if the weekly boundary has passed.

        The weekly check runs on every call since the reset time can fall mid-day.

        Returns:
            The summary of the closed day if it had any events.
        """
        summary = None
        today = self.calendar.today_key(now)
        if self.current is None:
            self._open(today)
        elif today > self.current.date:
            summary = self._roll(today, now)
        self.check_weekly(now)
        return summary

    def save_if_dirty(self) -> bool:
        written = self.baseline.save_if_dirty()
        if self._dirty and self.state_file is not None and self.current is not None:
            self.state_file.write(self.current.to_dict())
            self._dirty = False
            written = True
        return written
