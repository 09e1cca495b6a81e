"""
Event coalescing for high-frequency log events.

Loot, build and raid-hit lines arrive in bursts. They are grouped per
correlation key and flushed as one summary a fixed delay after the first
event of the batch. RepeatSuppressor separately mutes identical repeats for
one subject (respawn loops) and reports them once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..log.events import Build, Loot, RaidHit

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 60
DEFAULT_LOOP_THRESHOLD = 3
DEFAULT_LOOP_WINDOW_SECONDS = 300

KIND_LOOT = 'loot'
KIND_BUILD = 'build'
KIND_RAID = 'raid'


@dataclass
class CoalescedBatch:
    kind: str
    key: str
    subject: str
    subject_id: Optional[str]
    owner_id: Optional[str]
    opened_at: datetime
    first_ts: datetime
    last_ts: datetime
    count: int = 0
    sub_kinds: Dict[str, int] = field(default_factory=dict)
    destroyed: int = 0
    damaged: int = 0

    def add(self, sub_kind: str, ts: datetime) -> None:
        self.count += 1
        self.sub_kinds[sub_kind] = self.sub_kinds.get(sub_kind, 0) + 1
        self.last_ts = max(self.last_ts, ts)


@dataclass
class LoopSummary:
    subject: str
    occurrences: int
    suppressed: int
    window_start: datetime
    last_ts: datetime


class EventCoalescer:
    """Debounced batches keyed by looter/owner, builder, or attacker/owner."""

    def __init__(self, delay_seconds: float = DEFAULT_DELAY_SECONDS) -> None:
        self.delay = timedelta(seconds=delay_seconds)
        self.batches: Dict[str, CoalescedBatch] = {}

    def _batch(self, kind: str, key: str, subject: str, subject_id: Optional[str],
               owner_id: Optional[str], ts: datetime, now: datetime) -> CoalescedBatch:
        batch_key = f"{kind}:{key}"
        batch = self.batches.get(batch_key)
        if batch is None:
            batch = CoalescedBatch(kind=kind, key=key, subject=subject, subject_id=subject_id,
                                   owner_id=owner_id, opened_at=now, first_ts=ts, last_ts=ts)
            self.batches[batch_key] = batch
        else:
            # Keep the newest display name for the subject
            batch.subject = subject
        return batch

    def add_loot(self, event: Loot, now: datetime) -> bool:
        """
        Add a container loot event.

        Returns:
            False if the player looted their own container (not reported).
        """
        if event.looter_id == event.owner_id:
            return False
        batch = self._batch(KIND_LOOT, f"{event.looter_id}|{event.owner_id}", event.looter,
                            event.looter_id, event.owner_id, event.ts, now)
        batch.add(event.container_kind, event.ts)
        return True

    def add_build(self, event: Build, now: datetime) -> bool:
        batch = self._batch(KIND_BUILD, event.player_id, event.player, event.player_id, None, event.ts, now)
        batch.add(event.item, event.ts)
        return True

    def add_raid(self, event: RaidHit, now: datetime) -> bool:
        attacker_key = event.attacker_id or event.attacker.lower()
        batch = self._batch(KIND_RAID, f"{attacker_key}|{event.owner_id}", event.attacker,
                            event.attacker_id, event.owner_id, event.ts, now)
        batch.add(event.structure_kind, event.ts)
        if event.destroyed:
            batch.destroyed += 1
        else:
            batch.damaged += 1
        return True

    def flush_due(self, now: datetime) -> List[CoalescedBatch]:
        """
        Remove and return every batch whose delay since its first event has passed.

        Returns:
            Flushed batches in the order they were opened.
        """
        due = [key for key, batch in self.batches.items() if now - batch.opened_at >= self.delay]
        return [self.batches.pop(key) for key in due]

    def flush_all(self) -> List[CoalescedBatch]:
        """Remove and return all pending batches regardless of their deadline."""
        flushed = list(self.batches.values())
        self.batches.clear()
        if flushed:
            logger.debug(f"Flushed {len(flushed)} pending batch(es)")
        return flushed

    def __len__(self) -> int:
        return len(self.batches)


@dataclass
class _RepeatWindow:
    subject: str
    window_start: datetime
    last_ts: datetime
    count: int = 1
    suppressed: int = 0


class RepeatSuppressor:
    """
    Mutes repeated identical events for one subject inside a window.

    The first ``threshold`` occurrences in a window are narrated. Later ones
    are suppressed until the window ends, after which one LoopSummary reports
    them. Callers keep counting suppressed occurrences in their statistics.
    """

    def __init__(self, threshold: int = DEFAULT_LOOP_THRESHOLD,
                 window_seconds: float = DEFAULT_LOOP_WINDOW_SECONDS) -> None:
        self.threshold = threshold
        self.window = timedelta(seconds=window_seconds)
        self.windows: Dict[str, _RepeatWindow] = {}
        self._finished: List[LoopSummary] = []

    def observe(self, subject: str, ts: datetime) -> bool:
        """
        Record one occurrence.

        Returns:
            True if the occurrence should be narrated, False if it is suppressed.
        """
        key = subject.lower()
        current = self.windows.get(key)
        if current is not None and ts - current.window_start > self.window:
            self._close(key)
            current = None

        if current is None:
            self.windows[key] = _RepeatWindow(subject=subject, window_start=ts, last_ts=ts)
            return True

        current.count += 1
        current.last_ts = max(current.last_ts, ts)
        if current.count > self.threshold:
            current.suppressed += 1
            if current.suppressed == 1:
                logger.info(f"Repeated events for {subject}, muting until the window ends")
            return False
        return True

    def _close(self, key: str) -> None:
        window = self.windows.pop(key)
        if window.suppressed:
            self._finished.append(LoopSummary(subject=window.subject, occurrences=window.count,
                                              suppressed=window.suppressed,
                                              window_start=window.window_start, last_ts=window.last_ts))

    def expire(self, now: datetime) -> List[LoopSummary]:
        """
        Close windows that have ended.

        Returns:
            One summary per closed window that suppressed anything.
        """
        for key in [k for k, w in self.windows.items() if now - w.window_start >= self.window]:
            self._close(key)
        finished, self._finished = self._finished, []
        return finished

    def flush_all(self) -> List[LoopSummary]:
        """Close every open window (used on shutdown)."""
        for key in list(self.windows):
            self._close(key)
        finished, self._finished = self._finished, []
        return finished
