#!/usr/bin/env python3
"""
HumanitZ Log Tracker - Engine

Owns every tracker state object and drives them from three timers:

* the log poll, which tails the server logs and feeds parsed events through
  the PvP correlator, the coalescer, the day bucketer and the player stats;
* the snapshot poll, which reconciles player snapshots into lifetime stats;
* the fast tick, which handles day rollover, coalescer deadlines and
  respawn-loop windows.

Each timer runs its cycles one after another; a lock serialises access to
the shared state between the timers. State files are written at the end of
each cycle, and only when something changed.
"""

import argparse
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from .base import FileBasedTool, TrackerTool
from .log.cursor_store import CursorStore
from .log.events import LogEvent, Death, DamageTaken, Loot, Build, RaidHit
from .log.line_parser import LineParser, parse_id_map
from .log.tailer import IncrementalTailer
from .log.transport import FileTransport, LocalFileTransport, RemoteFileNotFound, TransportError
from .renderers import (
    render_event, render_pvp_kill, render_batch, render_loop, render_day_summary,
    render_kill_feed, render_survival_feed, render_activity_feed, render_challenges,
)
from .server_calendar import ServerCalendar, utc_now
from .sink import (
    Sink, LoggingSink, RenderedEvent, post_safely,
    GROUP_ACTIVITY, GROUP_PVP_KILLS, GROUP_DAILY_SUMMARY, GROUP_KILL_FEED,
    GROUP_SURVIVAL_FEED, GROUP_PROGRESS_FEED, GROUP_CHALLENGES,
)
from .snapshot import JSONSnapshotSource, SnapshotSource
from .tools.coalescer import EventCoalescer, RepeatSuppressor
from .tools.day_bucket import CalendarBucketer, WeeklyBaseline
from .tools.player_stats import PlayerLogStats
from .tools.pvp_correlator import PvpCorrelator, PvpKillHistory, PvpKillRecord
from .tools.stat_reconciler import LifetimeStatReconciler, ReconcileReport

logger = logging.getLogger(__name__)

MIN_SNAPSHOT_INTERVAL_SECONDS = 60

CURSOR_FILE = 'log_cursors.json'
KILL_ACCOUNT_FILE = 'kill_accounts.json'
PVP_HISTORY_FILE = 'pvp_kills.json'
DAY_BUCKET_FILE = 'day_bucket.json'
WEEKLY_BASELINE_FILE = 'weekly_baseline.json'
PLAYER_STATS_FILE = 'player_stats.json'


def build_transport(config: Dict[str, Any]) -> FileTransport:
    """
    Create the file transport selected by ``transport.type``.

    Raises:
        ValueError: If the transport type is unknown.
    """
    transport_type = (config.get('transport') or {}).get('type', 'local')
    if transport_type == 'local':
        return LocalFileTransport((config.get('transport') or {}).get('local_root', '.'))
    if transport_type == 'nitrado':
        from .nitrado.api_client import NitradoAPIClient
        return NitradoAPIClient(config)
    raise ValueError(f"Unknown transport type: {transport_type}")


class TrackerEngine(FileBasedTool):
    """Log tracker: state owner and poll loop driver."""

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 transport: Optional[FileTransport] = None,
                 sink: Optional[Sink] = None,
                 snapshot_source: Optional[SnapshotSource] = None,
                 clock: Callable[[], datetime] = utc_now) -> None:
        """
        Initialize the engine and all state objects.

        Args:
            config: Configuration dictionary from Config.
            transport: File transport (built from config if omitted).
            sink: Output sink (logs rendered events if omitted).
            snapshot_source: Player snapshot source (JSON export from config if omitted).
            clock: Returns the current aware UTC time.
        """
        super().__init__(config)
        self.initialize_directories()
        self.clock = clock

        self.calendar = ServerCalendar(
            self.get_config('general.timezone', 'UTC'),
            self.get_config('calendar.weekly_reset_day', 0),
            self.get_config('calendar.weekly_reset_time', '00:00'),
        )
        self.parser = LineParser(ZoneInfo(self.get_config('logs.source_timezone', 'UTC')))
        self.transport = transport or build_transport(self.config)
        self.sink = sink or LoggingSink()

        snapshot_path = self.get_config('snapshots.path')
        if snapshot_source is None and snapshot_path:
            snapshot_source = JSONSnapshotSource(self.transport, snapshot_path)
        self.snapshot_source = snapshot_source

        log_files = self.get_config('logs.files', {}) or {}
        self.tailer = IncrementalTailer(self.transport, log_files, CursorStore(self.state_path(CURSOR_FILE)))
        self.id_map_path = self.get_config('logs.id_map_path')

        self.kill_history = PvpKillHistory(self.state_path(PVP_HISTORY_FILE),
                                           self.get_config('pvp.history_size', 50))
        self.correlator = PvpCorrelator(self.get_config('pvp.kill_window_seconds', 60),
                                        self.get_config('pvp.enabled', True), self.kill_history)
        self.coalescer = EventCoalescer(self.get_config('coalescer.delay_seconds', 60))
        self.suppressor = RepeatSuppressor(self.get_config('coalescer.loop_threshold', 3),
                                           self.get_config('coalescer.loop_window_seconds', 300))
        self.player_stats = PlayerLogStats(self.state_path(PLAYER_STATS_FILE))
        self.reconciler = LifetimeStatReconciler(self.state_path(KILL_ACCOUNT_FILE),
                                                 self.get_config('reconciler.challenge_targets', {}))
        self.baseline = WeeklyBaseline(self.state_path(WEEKLY_BASELINE_FILE))
        self.bucketer = CalendarBucketer(self.calendar, self.state_path(DAY_BUCKET_FILE), self.baseline,
                                         snapshot_provider=self.reconciler.all_time_table)

        self.log_interval = self.get_config('polling.log_interval_seconds', 30)
        self.snapshot_interval = max(MIN_SNAPSHOT_INTERVAL_SECONDS,
                                     self.get_config('polling.snapshot_interval_seconds', 300))
        self.tick_interval = self.get_config('polling.tick_interval_seconds', 60)

        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._loaded = False
        self._id_map_missing_logged = False

    # State lifecycle

    def load_state(self) -> None:
        """Restore every persisted store. Safe to call more than once."""
        with self._lock:
            if self._loaded:
                return
            now = self.clock()
            self.tailer.restore()
            self.kill_history.load()
            self.player_stats.load()
            self.reconciler.load()
            self.baseline.load()
            self.bucketer.load(now)
            self.bucketer.check_rollover(now)
            self.bucketer.check_weekly(now)
            self._loaded = True

    def persist(self) -> None:
        """Write every dirty store."""
        with self._lock:
            self.tailer.save()
            self.kill_history.save_if_dirty()
            self.player_stats.save_if_dirty()
            self.reconciler.save_if_dirty()
            self.bucketer.save_if_dirty()

    def _post(self, group_key: str, rendered: Optional[RenderedEvent]) -> None:
        if rendered is not None:
            post_safely(self.sink, group_key, rendered)

    def _owner_name(self, player_id: Optional[str]) -> str:
        if not player_id:
            return 'nobody'
        record = self.player_stats.records.get(player_id)
        return record.name if record else player_id

    # Log poll

    def poll_logs(self) -> int:
        """
        Run one log poll cycle over every watched file.

        A missing file is skipped. A transport error aborts the rest of the
        cycle; cursors of files already processed keep their progress. Any
        other error while handling one file's lines is logged and the cycle
        continues with the next file.

        Returns:
            Number of events handled.
        """
        with self._lock:
            self.load_state()
            handled = 0
            try:
                for label in list(self.tailer.cursors):
                    try:
                        lines = self.tailer.poll_lines(label)
                    except RemoteFileNotFound:
                        logger.debug(f"{label} does not exist yet, will retry")
                        continue

                    try:
                        handled += self._process_lines(lines)
                    except Exception:
                        logger.exception(f"Failed to process new lines of {label}")

                self.correlator.sweep(self.clock())
                self._refresh_id_map()
            except TransportError as e:
                logger.warning(f"Log poll aborted, will retry next cycle: {e}")
            finally:
                self.persist()

            if handled:
                logger.debug(f"Log poll handled {handled} event(s)")
            return handled

    def _process_lines(self, lines: List[str]) -> int:
        events = self.parser.parse_lines(lines)
        for event in events:
            self.handle_event(event)
        return len(events)

    def _refresh_id_map(self) -> None:
        if not self.id_map_path:
            return
        try:
            mapping = parse_id_map(self.tailer.read_whole(self.id_map_path))
        except RemoteFileNotFound:
            if not self._id_map_missing_logged:
                logger.info(f"Player id map {self.id_map_path} not found; names resolve from log lines only")
                self._id_map_missing_logged = True
            return
        self.player_stats.load_id_map(mapping)

    def handle_event(self, event: LogEvent) -> None:
        """Route one parsed event through the pipeline."""
        self.player_stats.record(event)
        identity = self.player_stats.key_for(event.subject, event.subject_id) if event.subject else None

        summary = self.bucketer.record(event, identity)
        if summary is not None:
            self._post(GROUP_DAILY_SUMMARY, render_day_summary(summary, self.calendar))

        now = self.clock()
        if isinstance(event, Death):
            self._handle_death(event)
        elif isinstance(event, DamageTaken):
            self.correlator.record_damage(event)
        elif isinstance(event, Loot):
            self.coalescer.add_loot(event, now)
        elif isinstance(event, Build):
            self.coalescer.add_build(event, now)
        elif isinstance(event, RaidHit) and event.owner_id:
            self.coalescer.add_raid(event, now)
        else:
            self._post(GROUP_ACTIVITY, render_event(event, self.calendar))

    def _handle_death(self, event: Death) -> None:
        kill = self.correlator.resolve_death(event)
        narrate = self.suppressor.observe(event.player, event.ts)

        if kill is not None:
            self.bucketer.record_pvp_kill()
            self.player_stats.record_pvp_kill(kill)
            if self.get_config('feeds.pvp_kill_feed', True):
                self._post(GROUP_PVP_KILLS, render_pvp_kill(kill, self.calendar))
        elif narrate:
            self._post(GROUP_ACTIVITY, render_event(event, self.calendar))

    def get_pvp_kills(self, count: int = 10) -> List[PvpKillRecord]:
        """Most recent PvP kills, oldest first."""
        with self._lock:
            return self.kill_history.recent(count)

    # Snapshot poll

    def poll_snapshots(self) -> Optional[ReconcileReport]:
        """
        Run one snapshot poll and publish the derived feeds.

        Returns:
            The reconcile report, or None if no snapshot could be fetched.
        """
        with self._lock:
            self.load_state()
            if self.snapshot_source is None:
                return None

            try:
                snapshots = self.snapshot_source.fetch_latest_snapshot()
            except (TransportError, ValueError) as e:
                logger.warning(f"Snapshot poll failed, will retry next cycle: {e}")
                return None

            for player_id, snapshot in snapshots.items():
                if snapshot.name:
                    self.player_stats.learn(snapshot.name, player_id)

            report = self.reconciler.reconcile(snapshots, self.player_stats.death_counts())
            for player_id in report.new_players:
                self.baseline.ensure_player(player_id, self.reconciler.all_time(player_id).to_dict())

            self._publish_feeds(report)
            self.persist()
            return report

    def _publish_feeds(self, report: ReconcileReport) -> None:
        if self.get_config('feeds.kill_feed', True):
            self._post(GROUP_KILL_FEED, render_kill_feed(report.updates))
            self._post(GROUP_SURVIVAL_FEED, render_survival_feed(report.updates))
        if self.get_config('feeds.activity_feed', True):
            self._post(GROUP_PROGRESS_FEED, render_activity_feed(report.updates))
            self._post(GROUP_CHALLENGES, render_challenges(report.updates))

    def weekly_stats(self, player_id: str) -> Dict[str, int]:
        """This week's gains for a player, relative to the weekly baseline."""
        with self._lock:
            all_time = self.reconciler.all_time(player_id)
            if all_time is None:
                return {}
            return self.baseline.weekly_delta(player_id, all_time.to_dict())

    # Fast tick

    def tick(self) -> None:
        """Proactive day and week rollover, due coalescer batches and finished loop windows."""
        with self._lock:
            self.load_state()
            now = self.clock()

            summary = self.bucketer.check_rollover(now)
            if summary is not None:
                self._post(GROUP_DAILY_SUMMARY, render_day_summary(summary, self.calendar))

            for batch in self.coalescer.flush_due(now):
                self._post(GROUP_ACTIVITY, render_batch(batch, self.calendar, self._owner_name))
            for loop in self.suppressor.expire(now):
                self._post(GROUP_ACTIVITY, render_loop(loop, self.calendar))

            self.persist()

    def flush(self) -> None:
        """Emit every pending batch and loop summary immediately."""
        with self._lock:
            for batch in self.coalescer.flush_all():
                self._post(GROUP_ACTIVITY, render_batch(batch, self.calendar, self._owner_name))
            for loop in self.suppressor.flush_all():
                self._post(GROUP_ACTIVITY, render_loop(loop, self.calendar))

    # Timers

    def _run_every(self, name: str, interval: float, action: Callable[[], Any]) -> None:
        while not self._stop_event.is_set():
            try:
                action()
            except Exception:
                logger.exception(f"{name} cycle failed")
            if self._stop_event.wait(interval):
                break

    def start(self) -> None:
        """Load state and start the three timers."""
        if self._threads:
            return
        self.load_state()
        self._stop_event.clear()
        for name, interval, action in (
            ('log-poll', self.log_interval, self.poll_logs),
            ('snapshot-poll', self.snapshot_interval, self.poll_snapshots),
            ('tick', self.tick_interval, self.tick),
        ):
            thread = threading.Thread(target=self._run_every, args=(name, interval, action),
                                      name=f"tracker-{name}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"Tracker started: logs every {self.log_interval}s, snapshots every "
                    f"{self.snapshot_interval}s, rollover check every {self.tick_interval}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the timers, flush pending batches and persist all state."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        self.flush()
        self.persist()
        logger.info("Tracker stopped")

    def run_once(self) -> Dict[str, Any]:
        """Run one cycle of every timer, then flush and persist."""
        handled = self.poll_logs()
        report = self.poll_snapshots()
        self.tick()
        self.flush()
        self.persist()
        return {
            'events': handled,
            'players_updated': len(report.updates) if report else 0,
        }

    def run(self) -> Dict[str, Any]:
        """Run until interrupted."""
        self.start()
        try:
            while not self._stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        finally:
            self.stop()
        return {'success': True}


def main():
    parser = argparse.ArgumentParser(
        description="Tail HumanitZ server logs and keep reconciled player statistics"
    )
    TrackerTool.add_standard_arguments(parser)
    parser.add_argument("--once", action="store_true",
                        help="Run a single log, snapshot and rollover cycle, then exit")

    args = parser.parse_args()

    config = TrackerTool.load_config(args.profile)
    if not config:
        logger.error(f"Failed to load configuration profile: {args.profile}")
        return 1

    if args.console:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled via command line flag")

    try:
        engine = TrackerEngine(config)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    if args.once:
        result = engine.run_once()
        logger.info(f"Handled {result['events']} event(s), updated {result['players_updated']} player(s)")
        return 0

    result = engine.run()
    return 0 if result.get("success", False) else 1


if __name__ == "__main__":
    exit(main())
