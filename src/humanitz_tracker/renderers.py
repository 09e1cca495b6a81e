"""
Plain-text rendering of tracker output for the sink.
"""

from typing import Callable, Dict, List, Optional

from .log.events import (
    LogEvent, Death, RaidHit, AdminAccess, CheatFlag, Connect, Disconnect,
)
from .server_calendar import ServerCalendar
from .sink import RenderedEvent
from .tools.coalescer import CoalescedBatch, LoopSummary, KIND_LOOT, KIND_BUILD, KIND_RAID
from .tools.day_bucket import DaySummary
from .tools.pvp_correlator import PvpKillRecord
from .tools.stat_reconciler import PlayerUpdate

KILL_LABELS = {
    'headshots': 'headshot',
    'melee_kills': 'melee',
    'gun_kills': 'gun',
    'blast_kills': 'blast',
    'fist_kills': 'fist',
    'takedown_kills': 'takedown',
    'vehicle_kills': 'vehicle',
}

DAY_LABELS = (
    ('connects', 'Connects'),
    ('disconnects', 'Disconnects'),
    ('deaths', 'Deaths'),
    ('pvp_kills', 'PvP Kills'),
    ('builds', 'Items Built'),
    ('loots', 'Containers Looted'),
    ('raid_hits', 'Raid Hits'),
    ('destroyed', 'Structures Destroyed'),
    ('damage', 'Damage Hits'),
    ('admin', 'Admin Access'),
    ('cheat', 'Anti-Cheat Flags'),
)

ACTIVITY_LABELS = {
    'times_bitten': 'bitten {n} time(s)',
    'fish_caught': 'caught {n} fish',
    'fish_caught_pike': 'caught {n} pike',
    'crafting_recipes': 'learned recipe',
    'building_recipes': 'learned blueprint',
    'unlocked_skills': 'unlocked skill',
    'unlocked_professions': 'unlocked profession',
    'lore': 'found lore',
    'unique_loots': 'found unique',
    'crafted_uniques': 'crafted unique',
}

NameLookup = Callable[[Optional[str]], str]


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" + ('' if count == 1 else 's')


def _top(counts: Dict[str, int], limit: int = 5) -> str:
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    text = ', '.join(f"{name} x{count}" if count > 1 else name for name, count in ranked[:limit])
    if len(ranked) > limit:
        text += f" +{len(ranked) - limit} more"
    return text


def render_event(event: LogEvent, calendar: ServerCalendar) -> Optional[RenderedEvent]:
    """Render events that are narrated one by one. Returns None for batched kinds."""
    footer = calendar.format_time(event.ts)
    if isinstance(event, Death):
        return RenderedEvent(title='Player Death', lines=[f"{event.player} died"], timestamp=event.ts, footer=footer)
    if isinstance(event, Connect):
        return RenderedEvent(title='Player Connected', lines=[event.player], timestamp=event.ts, footer=footer)
    if isinstance(event, Disconnect):
        return RenderedEvent(title='Player Disconnected', lines=[event.player], timestamp=event.ts, footer=footer)
    if isinstance(event, AdminAccess):
        return RenderedEvent(title='Admin Access', lines=[f"{event.player} gained admin access"],
                             timestamp=event.ts, footer=footer)
    if isinstance(event, CheatFlag):
        return RenderedEvent(title='Anti-Cheat Alert', lines=[event.player, event.flag],
                             timestamp=event.ts, footer=footer)
    if isinstance(event, RaidHit) and event.owner_id is None:
        return RenderedEvent(title='Building Destroyed',
                             lines=[f"{event.attacker} destroyed {event.structure_kind}"],
                             timestamp=event.ts, footer=footer)
    return None


def render_pvp_kill(kill: PvpKillRecord, calendar: ServerCalendar) -> RenderedEvent:
    return RenderedEvent(title='PvP Kill', lines=[f"{kill.killer} killed {kill.victim}"], timestamp=kill.timestamp,
                         footer=f"{kill.damage:.0f} damage dealt - {calendar.format_time(kill.timestamp)}")


def render_batch(batch: CoalescedBatch, calendar: ServerCalendar, owner_name: NameLookup) -> RenderedEvent:
    """Render one flushed loot, build or raid batch."""
    when = calendar.format_time(batch.first_ts)
    if batch.last_ts != batch.first_ts:
        when += f" - {calendar.format_time(batch.last_ts)}"

    if batch.kind == KIND_LOOT:
        lines = [f"{batch.subject} looted {_plural(batch.count, 'container')} "
                 f"owned by {owner_name(batch.owner_id)}",
                 _top(batch.sub_kinds)]
        title = 'Containers Looted'
    elif batch.kind == KIND_BUILD:
        lines = [f"{batch.subject} built {_plural(batch.count, 'item')}", _top(batch.sub_kinds)]
        title = 'Building'
    elif batch.kind == KIND_RAID:
        parts = []
        if batch.destroyed:
            parts.append(f"{batch.destroyed} destroyed")
        if batch.damaged:
            parts.append(f"{batch.damaged} damaged")
        lines = [f"{batch.subject} hit structures owned by {owner_name(batch.owner_id)}",
                 ', '.join(parts), _top(batch.sub_kinds)]
        title = 'Raid'
    else:
        raise ValueError(f"Unknown batch kind: {batch.kind}")

    return RenderedEvent(title=title, lines=lines, timestamp=batch.last_ts, footer=when)


def render_loop(summary: LoopSummary, calendar: ServerCalendar) -> RenderedEvent:
    return RenderedEvent(
        title='Respawn Loop Detected',
        lines=[f"{summary.subject} died {summary.occurrences} times since "
               f"{calendar.format_time(summary.window_start)}",
               f"{summary.suppressed} repeat(s) not shown"],
        timestamp=summary.last_ts,
    )


def render_day_summary(summary: DaySummary, calendar: ServerCalendar) -> RenderedEvent:
    lines = [f"{label}: {summary.counters[key]}" for key, label in DAY_LABELS if summary.counters.get(key)]
    lines.append(f"Unique Players: {summary.unique_players}")
    return RenderedEvent(title=f"Daily Summary - {calendar.format_date(summary.date)}", lines=lines)


def render_kill_feed(updates: List[PlayerUpdate]) -> Optional[RenderedEvent]:
    """One line per player, e.g. "Bob killed 12 zeeks (3 headshot, 2 melee)"."""
    lines = []
    for update in updates:
        zeeks = update.kill_deltas.get('zeeks_killed', 0)
        details = [f"{update.kill_deltas[key]} {label}" for key, label in KILL_LABELS.items()
                   if update.kill_deltas.get(key)]
        if not zeeks and not details:
            continue
        line = f"{update.name} killed {_plural(zeeks, 'zeek')}"
        if details:
            line += f" ({', '.join(details)})"
        lines.append(line)
    if not lines:
        return None
    return RenderedEvent(title='Kill Feed', lines=lines)


def render_survival_feed(updates: List[PlayerUpdate]) -> Optional[RenderedEvent]:
    lines = [f"{update.name} +{_plural(update.survival_deltas['days_survived'], 'day')} survived"
             for update in updates if update.survival_deltas.get('days_survived')]
    if not lines:
        return None
    return RenderedEvent(title='Survival', lines=lines)


def render_activity_feed(updates: List[PlayerUpdate]) -> Optional[RenderedEvent]:
    lines = []
    for update in updates:
        for key, delta in update.activity.scalar_deltas.items():
            lines.append(f"{update.name} {ACTIVITY_LABELS.get(key, key + ' +{n}').format(n=delta)}")
        for key, items in update.activity.new_items.items():
            label = ACTIVITY_LABELS.get(key, key)
            lines.append(f"{update.name} {label}: {', '.join(items)}")
    if not lines:
        return None
    return RenderedEvent(title='Progress', lines=lines)


def render_challenges(updates: List[PlayerUpdate]) -> Optional[RenderedEvent]:
    lines = [f"{update.name} completed {challenge.replace('_', ' ')}"
             for update in updates for challenge in update.activity.completed_challenges]
    if not lines:
        return None
    return RenderedEvent(title='Challenge Completed', lines=lines)
