#!/usr/bin/env python3
"""
Tests for event batching and respawn-loop suppression.
"""

import sys
import os
from datetime import datetime, timedelta, timezone

# Add the src directory to the path so we can import the modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from humanitz_tracker.log.events import Build, Loot, RaidHit
from humanitz_tracker.tools.coalescer import EventCoalescer, RepeatSuppressor, KIND_LOOT, KIND_RAID

ALICE_ID = '76561198000000001'
BOB_ID = '76561198000000002'
T0 = datetime(2026, 10, 17, 20, 0, tzinfo=timezone.utc)


def at(seconds):
    return T0 + timedelta(seconds=seconds)


def loot(seconds, kind='Storage Container', looter_id=ALICE_ID, owner_id=BOB_ID):
    return Loot(ts=at(seconds), looter='Alice', looter_id=looter_id, owner_id=owner_id, container_kind=kind)


def test_burst_of_loots_becomes_one_batch():
    coalescer = EventCoalescer(delay_seconds=60)
    for i in range(5):
        coalescer.add_loot(loot(i, kind='Fridge' if i == 0 else 'Storage Container'), now=at(i))

    assert len(coalescer) == 1
    assert coalescer.flush_due(at(59)) == []

    batches = coalescer.flush_due(at(60))
    assert len(batches) == 1
    batch = batches[0]
    assert batch.kind == KIND_LOOT
    assert batch.count == 5
    assert batch.sub_kinds == {'Fridge': 1, 'Storage Container': 4}
    assert batch.first_ts == at(0)
    assert batch.last_ts == at(4)
    assert len(coalescer) == 0


def test_self_loot_is_ignored():
    coalescer = EventCoalescer()
    assert coalescer.add_loot(loot(0, owner_id=ALICE_ID), now=at(0)) is False
    assert len(coalescer) == 0


def test_different_owners_get_separate_batches():
    coalescer = EventCoalescer()
    coalescer.add_loot(loot(0), now=at(0))
    coalescer.add_loot(loot(1, owner_id='76561198000000003'), now=at(1))
    assert len(coalescer) == 2


def test_deadline_counts_from_first_event():
    coalescer = EventCoalescer(delay_seconds=60)
    coalescer.add_build(Build(ts=at(0), player='Alice', player_id=ALICE_ID, item='Wood Wall'), now=at(0))
    coalescer.add_build(Build(ts=at(50), player='Alice', player_id=ALICE_ID, item='Wood Wall'), now=at(50))

    batches = coalescer.flush_due(at(61))
    assert len(batches) == 1
    assert batches[0].count == 2


def test_raid_batches_count_destroyed_and_damaged():
    coalescer = EventCoalescer()
    for i, destroyed in enumerate((False, False, True)):
        coalescer.add_raid(RaidHit(ts=at(i), attacker='Alice', attacker_id=ALICE_ID, owner_id=BOB_ID,
                                   structure_kind='Wood Wall', destroyed=destroyed), now=at(i))

    batch = coalescer.flush_all()[0]
    assert batch.kind == KIND_RAID
    assert batch.owner_id == BOB_ID
    assert batch.destroyed == 1
    assert batch.damaged == 2
    assert coalescer.flush_all() == []


def test_loop_suppression_mutes_after_threshold():
    suppressor = RepeatSuppressor(threshold=3, window_seconds=300)
    narrated = [suppressor.observe('Bob', at(i * 10)) for i in range(6)]
    assert narrated == [True, True, True, False, False, False]

    assert suppressor.expire(at(100)) == []
    summaries = suppressor.expire(at(300))
    assert len(summaries) == 1
    assert summaries[0].subject == 'Bob'
    assert summaries[0].occurrences == 6
    assert summaries[0].suppressed == 3
    assert suppressor.expire(at(400)) == []


def test_loop_without_suppression_has_no_summary():
    suppressor = RepeatSuppressor(threshold=3, window_seconds=300)
    suppressor.observe('Bob', at(0))
    suppressor.observe('Bob', at(10))
    assert suppressor.expire(at(301)) == []


def test_new_window_after_expiry_narrates_again():
    suppressor = RepeatSuppressor(threshold=1, window_seconds=60)
    assert suppressor.observe('Bob', at(0)) is True
    assert suppressor.observe('Bob', at(10)) is False
    assert suppressor.observe('Bob', at(70)) is True
    # The closed window is reported on the next expiry pass
    assert [s.suppressed for s in suppressor.expire(at(75))] == [1]


def test_flush_all_closes_open_loops():
    suppressor = RepeatSuppressor(threshold=1, window_seconds=300)
    suppressor.observe('Bob', at(0))
    suppressor.observe('Bob', at(5))
    summaries = suppressor.flush_all()
    assert len(summaries) == 1
    assert suppressor.windows == {}
