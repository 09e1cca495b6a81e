#!/usr/bin/env python3
"""
End-to-end tests for the tracker engine over a local log directory.
"""

import sys
import os
import json
from datetime import datetime, timedelta, timezone

import pytest

# Add the src directory to the path so we can import the modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from humanitz_tracker.engine import TrackerEngine, build_transport
from humanitz_tracker.log.transport import LocalFileTransport, TransportError
from humanitz_tracker.sink import (
    Sink, GROUP_ACTIVITY, GROUP_PVP_KILLS, GROUP_KILL_FEED, GROUP_DAILY_SUMMARY,
)

ALICE_ID = '76561198000000001'
BOB_ID = '76561198000000002'


class RecordingSink(Sink):
    def __init__(self):
        self.posts = []

    def post(self, group_key, rendered):
        self.posts.append((group_key, rendered))

    def titles(self, group_key):
        return [rendered.title for group, rendered in self.posts if group == group_key]


class BrokenSink(Sink):
    def post(self, group_key, rendered):
        raise RuntimeError("webhook down")


class FlakyTransport(LocalFileTransport):
    """Local transport whose range fetches fail while `fail` is set."""

    def __init__(self, root):
        super().__init__(root)
        self.fail = False

    def fetch_range(self, path, start, end):
        if self.fail:
            raise TransportError("connection reset")
        return super().fetch_range(path, start, end)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def server_dir(tmp_path):
    server = tmp_path / 'server'
    server.mkdir()
    (server / 'HMZLog.log').write_bytes(b'(17/10/2026 08:00) Player died (Old History)\n')
    (server / 'PlayerIDMapped.txt').write_text(f'{ALICE_ID}_+_|aaa@Alice\n{BOB_ID}_+_|bbb@Bob\n')
    return server


def make_config(tmp_path, server_dir):
    return {
        'general': {'state_dir': str(tmp_path / 'state'), 'timezone': 'UTC'},
        'logs': {
            'source_timezone': 'UTC',
            'files': {'HMZLog': '/HMZLog.log', 'ConnectLog': '/PlayerConnectedLog.txt'},
            'id_map_path': '/PlayerIDMapped.txt',
        },
        'transport': {'type': 'local', 'local_root': str(server_dir)},
        'snapshots': {'path': '/snapshots.json'},
        'coalescer': {'delay_seconds': 60, 'loop_threshold': 3, 'loop_window_seconds': 300},
    }


def append(path, text):
    with open(path, 'a', encoding='utf-8') as f:
        f.write(text)


def make_engine(tmp_path, server_dir, sink=None, clock=None):
    clock = clock or FakeClock(datetime(2026, 10, 17, 20, 1, tzinfo=timezone.utc))
    return TrackerEngine(make_config(tmp_path, server_dir), sink=sink or RecordingSink(), clock=clock)


def test_build_transport():
    assert isinstance(build_transport({'transport': {'type': 'local', 'local_root': '.'}}), LocalFileTransport)
    with pytest.raises(ValueError):
        build_transport({'transport': {'type': 'carrier-pigeon'}})


def test_first_poll_does_not_replay_history(tmp_path, server_dir):
    engine = make_engine(tmp_path, server_dir)
    assert engine.poll_logs() == 0
    assert engine.sink.posts == []
    assert os.path.exists(tmp_path / 'state' / 'log_cursors.json')


def test_pvp_kill_is_attributed_and_posted(tmp_path, server_dir):
    engine = make_engine(tmp_path, server_dir)
    engine.poll_logs()

    append(server_dir / 'HMZLog.log',
           '(17/10/2026 20:00) Bob took 30 damage from Alice\n'
           '(17/10/2026 20:00) Player died (Bob)\n')
    assert engine.poll_logs() == 2

    assert engine.sink.titles(GROUP_PVP_KILLS) == ['PvP Kill']
    assert engine.sink.titles(GROUP_ACTIVITY) == []
    assert [k.killer for k in engine.get_pvp_kills()] == ['Alice']
    assert engine.player_stats.get(BOB_ID).pvp_deaths == 1
    assert engine.bucketer.current.counters['pvp_kills'] == 1

    with open(tmp_path / 'state' / 'pvp_kills.json', encoding='utf-8') as f:
        assert json.load(f)[0]['victim'] == 'Bob'


def test_plain_death_is_narrated(tmp_path, server_dir):
    engine = make_engine(tmp_path, server_dir)
    engine.poll_logs()
    append(server_dir / 'HMZLog.log', '(17/10/2026 20:00) Player died (Bob)\n')
    engine.poll_logs()
    assert engine.sink.titles(GROUP_ACTIVITY) == ['Player Death']
    assert engine.sink.titles(GROUP_PVP_KILLS) == []


def test_loot_burst_is_flushed_by_tick(tmp_path, server_dir):
    clock = FakeClock(datetime(2026, 10, 17, 20, 1, tzinfo=timezone.utc))
    engine = make_engine(tmp_path, server_dir, clock=clock)
    engine.poll_logs()

    line = (f'(17/10/2026 20:00) Alice ({ALICE_ID}_+_|aaa) looted a container '
            f'(BP_StorageContainer_C_1) owner by {BOB_ID}\n')
    append(server_dir / 'HMZLog.log', line * 5)
    engine.poll_logs()
    assert engine.sink.posts == []

    clock.advance(61)
    engine.tick()
    assert len(engine.sink.posts) == 1
    group, rendered = engine.sink.posts[0]
    assert group == GROUP_ACTIVITY
    assert rendered.lines[0] == 'Alice looted 5 containers owned by Bob'


def test_day_summary_is_posted_at_rollover(tmp_path, server_dir):
    clock = FakeClock(datetime(2026, 10, 17, 20, 1, tzinfo=timezone.utc))
    engine = make_engine(tmp_path, server_dir, clock=clock)
    engine.poll_logs()
    append(server_dir / 'HMZLog.log', '(17/10/2026 20:00) Player died (Bob)\n')
    engine.poll_logs()

    clock.now = datetime(2026, 10, 18, 0, 1, tzinfo=timezone.utc)
    engine.tick()
    assert engine.sink.titles(GROUP_DAILY_SUMMARY) == ['Daily Summary - Saturday 17 October 2026']


def test_snapshot_poll_publishes_kill_feed(tmp_path, server_dir):
    engine = make_engine(tmp_path, server_dir)
    snapshots = server_dir / 'snapshots.json'

    snapshots.write_text(json.dumps({'players': {ALICE_ID: {
        'name': 'Alice', 'counters': {'zeeks_killed': 3}, 'lifetime': {'zeeks_killed': 100},
    }}}))
    report = engine.poll_snapshots()
    assert report.new_players == [ALICE_ID]
    assert engine.sink.titles(GROUP_KILL_FEED) == []

    snapshots.write_text(json.dumps({'players': {ALICE_ID: {
        'name': 'Alice', 'counters': {'zeeks_killed': 8, 'headshots': 2},
        'lifetime': {'zeeks_killed': 105, 'headshots': 2},
    }}}))
    engine.poll_snapshots()
    feed = [r for g, r in engine.sink.posts if g == GROUP_KILL_FEED]
    assert feed[0].lines == ['Alice killed 5 zeeks (2 headshot)']
    assert engine.weekly_stats(ALICE_ID)['zeeks_killed'] == 5


def test_bad_snapshot_is_skipped(tmp_path, server_dir):
    engine = make_engine(tmp_path, server_dir)
    (server_dir / 'snapshots.json').write_text('{truncated')
    assert engine.poll_snapshots() is None


def test_broken_sink_does_not_stop_the_cycle(tmp_path, server_dir):
    engine = make_engine(tmp_path, server_dir, sink=BrokenSink())
    engine.poll_logs()
    append(server_dir / 'HMZLog.log', '(17/10/2026 20:00) Player died (Bob)\n')
    assert engine.poll_logs() == 1
    assert engine.player_stats.death_count(BOB_ID) == 1


def test_state_survives_restart(tmp_path, server_dir):
    engine = make_engine(tmp_path, server_dir)
    engine.poll_logs()
    append(server_dir / 'HMZLog.log', '(17/10/2026 20:00) Player died (Bob)\n')
    engine.poll_logs()
    engine.stop()

    append(server_dir / 'HMZLog.log', '(17/10/2026 20:01) Player died (Bob)\n')
    restarted = make_engine(tmp_path, server_dir)
    assert restarted.poll_logs() == 1
    assert restarted.player_stats.death_count(BOB_ID) == 2
    assert restarted.bucketer.current.counters['deaths'] == 2


def test_run_once(tmp_path, server_dir):
    engine = make_engine(tmp_path, server_dir)
    result = engine.run_once()
    assert result == {'events': 0, 'players_updated': 0}


def connect_line(minute):
    return f'Player Connected Alice NetID({ALICE_ID}_+_|aaa) (17/10/2026 20:{minute:02d})\n'


def test_transport_error_aborts_cycle_without_losing_lines(tmp_path, server_dir):
    (server_dir / 'PlayerConnectedLog.txt').write_text(connect_line(0))
    transport = FlakyTransport(str(server_dir))
    engine = TrackerEngine(make_config(tmp_path, server_dir), transport=transport,
                           sink=RecordingSink(), clock=FakeClock(datetime(2026, 10, 17, 20, 1, tzinfo=timezone.utc)))
    engine.poll_logs()
    offsets = {label: cursor.byte_offset for label, cursor in engine.tailer.cursors.items()}

    append(server_dir / 'HMZLog.log', '(17/10/2026 20:01) Player died (Bob)\n')
    append(server_dir / 'PlayerConnectedLog.txt', connect_line(1))
    transport.fail = True
    assert engine.poll_logs() == 0
    assert {label: cursor.byte_offset for label, cursor in engine.tailer.cursors.items()} == offsets

    transport.fail = False
    assert engine.poll_logs() == 2
    assert engine.player_stats.death_count(BOB_ID) == 1


def test_processing_error_in_one_file_does_not_stop_the_others(tmp_path, server_dir, caplog):
    (server_dir / 'PlayerConnectedLog.txt').write_text(connect_line(0))
    engine = make_engine(tmp_path, server_dir)
    engine.poll_logs()

    parse_lines = engine.parser.parse_lines
    calls = []

    def fail_first_file(lines):
        calls.append(lines)
        if len(calls) == 1:
            raise RuntimeError("unexpected line shape")
        return parse_lines(lines)

    engine.parser.parse_lines = fail_first_file
    append(server_dir / 'HMZLog.log', '(17/10/2026 20:01) Player died (Bob)\n')
    append(server_dir / 'PlayerConnectedLog.txt', connect_line(1))

    assert engine.poll_logs() == 1
    assert 'Failed to process new lines of HMZLog' in caplog.text
    assert engine.player_stats.death_count(BOB_ID) == 0


def test_stop_flushes_pending_batches_and_loop_summaries(tmp_path, server_dir):
    engine = make_engine(tmp_path, server_dir)
    engine.poll_logs()

    loot = (f'(17/10/2026 20:00) Alice ({ALICE_ID}_+_|aaa) looted a container '
            f'(BP_StorageContainer_C_1) owner by {BOB_ID}\n')
    append(server_dir / 'HMZLog.log', loot * 2 + '(17/10/2026 20:00) Player died (Bob)\n' * 5)
    engine.poll_logs()
    assert engine.sink.titles(GROUP_ACTIVITY) == ['Player Death'] * 3

    engine.stop()
    titles = engine.sink.titles(GROUP_ACTIVITY)
    assert titles[3:] == ['Containers Looted', 'Respawn Loop Detected']
    assert engine.coalescer.flush_all() == []
    assert engine.suppressor.flush_all() == []
