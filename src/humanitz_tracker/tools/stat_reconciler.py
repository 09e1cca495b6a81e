#!/usr/bin/env python3
"""
HumanitZ Log Tracker - Lifetime Stat Reconciler

Merges periodically polled player snapshots into durable all-time and
current-life statistics.

Two upstream accounting regimes exist:

* Legacy: snapshot counters cover the current life only and drop back to
  (near) zero when the character dies. A decrease of the zeek kill counter is
  taken as a death; the previous snapshot is banked into a cumulative total
  before the new, lower values are recorded.
* Extended: the snapshot also carries lifetime counters that never reset.
  They are trusted directly and any banked legacy total is discarded.

Each account is a LegacyAccount or an ExtendedAccount. An account moves from
legacy to extended the first time its snapshot reports lifetime counters and
never moves back.

Current-life statistics for extended accounts rely on a death checkpoint.
Deaths are detected from the log-derived death counter rather than from the
snapshot, and at the first poll after a death the checkpoint is set to
``lifetime - session``. The session counters subtracted here already include
kills made since respawning, so the checkpoint isolates the pre-death total
even when the poll is late.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Any, List, Mapping, Optional

from ..base import JSONStateFile
from ..snapshot import Counters, PlayerSnapshot, KILL_KEYS, SURVIVAL_KEYS

logger = logging.getLogger(__name__)

# Progress value at which a challenge counts as completed; unlisted challenges complete at 1
DEFAULT_CHALLENGE_TARGETS = {
    'kill_50_zombies': 50,
    'catch_20_fish': 20,
}


@dataclass
class ActivityChanges:
    scalar_deltas: Dict[str, int] = field(default_factory=dict)
    new_items: Dict[str, List[str]] = field(default_factory=dict)
    completed_challenges: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.scalar_deltas or self.new_items or self.completed_challenges)


@dataclass
class PlayerUpdate:
    player_id: str
    name: str
    kill_deltas: Dict[str, int] = field(default_factory=dict)
    survival_deltas: Dict[str, int] = field(default_factory=dict)
    activity: ActivityChanges = field(default_factory=ActivityChanges)
    reset_detected: bool = False
    migrated: bool = False
    checkpoint_set: bool = False


@dataclass
class ReconcileReport:
    updates: List[PlayerUpdate] = field(default_factory=list)
    new_players: List[str] = field(default_factory=list)


def _split_deltas(deltas: Dict[str, int]):
    kills = {k: v for k, v in deltas.items() if k in KILL_KEYS}
    survival = {k: v for k, v in deltas.items() if k in SURVIVAL_KEYS}
    return kills, survival


class KillAccount(ABC):
    """State shared by both accounting regimes."""

    has_extended_accounting = False

    def __init__(self, name: str = '', last_snapshot: Optional[Counters] = None,
                 last_known_death_count: int = 0,
                 activity_scalars: Optional[Dict[str, int]] = None,
                 activity_arrays: Optional[Dict[str, List[str]]] = None,
                 challenges: Optional[Dict[str, int]] = None) -> None:
        self.name = name
        self.last_snapshot = last_snapshot or Counters()
        self.last_known_death_count = last_known_death_count
        self.activity_scalars = dict(activity_scalars or {})
        self.activity_arrays = {k: list(v) for k, v in (activity_arrays or {}).items()}
        self.challenges = dict(challenges or {})

    @abstractmethod
    def all_time(self) -> Counters:
        pass

    @abstractmethod
    def current_life(self) -> Counters:
        pass

    @abstractmethod
    def observe(self, snapshot: PlayerSnapshot, death_count: int, update: PlayerUpdate) -> Dict[str, int]:
        """Apply a snapshot's counters. Returns the counter increases to report."""
        pass

    def diff_activity(self, snapshot: PlayerSnapshot, targets: Mapping[str, int]) -> ActivityChanges:
        """
        Compare activity fields with the previous snapshot and store the new values.

        Fields seen for the first time only set a baseline. Fields missing from
        the snapshot keep their previous value.
        """
        changes = ActivityChanges()

        for key, value in snapshot.activity_scalars.items():
            previous = self.activity_scalars.get(key)
            if previous is not None and value > previous:
                changes.scalar_deltas[key] = value - previous
            self.activity_scalars[key] = value

        for key, values in snapshot.activity_arrays.items():
            previous = self.activity_arrays.get(key)
            if previous is not None:
                known = set(previous)
                added = []
                for value in values:
                    if value not in known:
                        added.append(value)
                        known.add(value)
                if added:
                    changes.new_items[key] = added
            self.activity_arrays[key] = list(values)

        for key, progress in snapshot.challenges.items():
            previous = self.challenges.get(key)
            target = targets.get(key, 1)
            if previous is not None and previous < target <= progress:
                changes.completed_challenges.append(key)
            self.challenges[key] = progress

        return changes

    def _base_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'has_extended_accounting': self.has_extended_accounting,
            'last_snapshot_counters': self.last_snapshot.to_dict(),
            'last_known_death_count': self.last_known_death_count,
            'activity_scalar_snapshot': dict(self.activity_scalars),
            'activity_array_snapshot': {k: list(v) for k, v in self.activity_arrays.items()},
            'challenge_snapshot': dict(self.challenges),
        }

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        pass

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'KillAccount':
        """Rebuild the right account type from its JSON form, defaulting missing fields."""
        common = dict(
            name=str(data.get('name') or ''),
            last_snapshot=Counters.from_dict(data.get('last_snapshot_counters')),
            last_known_death_count=int(data.get('last_known_death_count') or 0),
            activity_scalars={str(k): int(v) for k, v in (data.get('activity_scalar_snapshot') or {}).items()},
            activity_arrays={str(k): [str(x) for x in v]
                             for k, v in (data.get('activity_array_snapshot') or {}).items()},
            challenges={str(k): int(v) for k, v in (data.get('challenge_snapshot') or {}).items()},
        )
        if data.get('has_extended_accounting'):
            checkpoint = data.get('death_checkpoint')
            return ExtendedAccount(
                lifetime_snapshot=Counters.from_dict(data.get('lifetime_snapshot')),
                death_checkpoint=Counters.from_dict(checkpoint) if checkpoint is not None else None,
                **common)
        return LegacyAccount(banked_cumulative=Counters.from_dict(data.get('banked_cumulative')), **common)


class LegacyAccount(KillAccount):
    """Per-life counters with banking on detected resets."""

    def __init__(self, banked_cumulative: Optional[Counters] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.banked_cumulative = banked_cumulative or Counters()

    def all_time(self) -> Counters:
        return self.banked_cumulative + self.last_snapshot

    def current_life(self) -> Counters:
        return Counters(**self.last_snapshot.to_dict())

    def observe(self, snapshot: PlayerSnapshot, death_count: int, update: PlayerUpdate) -> Dict[str, int]:
        current = snapshot.counters
        self.last_known_death_count = death_count

        if current.zeeks_killed < self.last_snapshot.zeeks_killed:
            self.banked_cumulative = self.banked_cumulative + self.last_snapshot
            logger.info(f"Counter reset detected for {self.name or snapshot.player_id}: banked "
                        f"{self.last_snapshot.zeeks_killed} zeek kill(s), "
                        f"{self.banked_cumulative.zeeks_killed} banked in total")
            self.last_snapshot = current
            update.reset_detected = True
            return {}

        deltas = current.positive_delta(self.last_snapshot)
        self.last_snapshot = current
        return deltas

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'banked_cumulative': self.banked_cumulative.to_dict(),
            'lifetime_snapshot': None,
            'death_checkpoint': None,
        })
        return data


class ExtendedAccount(KillAccount):
    """Accounts whose snapshots carry never-resetting lifetime counters."""

    has_extended_accounting = True

    def __init__(self, lifetime_snapshot: Optional[Counters] = None,
                 death_checkpoint: Optional[Counters] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.lifetime_snapshot = lifetime_snapshot or Counters()
        self.death_checkpoint = death_checkpoint

    @classmethod
    def from_legacy(cls, legacy: LegacyAccount, snapshot: PlayerSnapshot,
                    death_count: int) -> 'ExtendedAccount':
        """
        Migrate a legacy account. The banked total is dropped because the
        lifetime counters already contain it.
        """
        if legacy.banked_cumulative != Counters():
            logger.info(f"{legacy.name or snapshot.player_id} now reports lifetime counters, "
                        f"discarding {legacy.banked_cumulative.zeeks_killed} banked zeek kill(s)")
        account = cls(
            lifetime_snapshot=snapshot.lifetime,
            name=legacy.name,
            last_snapshot=snapshot.counters,
            last_known_death_count=legacy.last_known_death_count,
            activity_scalars=legacy.activity_scalars,
            activity_arrays=legacy.activity_arrays,
            challenges=legacy.challenges,
        )
        account._check_death(snapshot.lifetime, snapshot.counters, death_count)
        return account

    def _check_death(self, lifetime: Counters, session: Counters, death_count: int) -> bool:
        if death_count > self.last_known_death_count:
            self.death_checkpoint = lifetime - session
            self.last_known_death_count = death_count
            logger.debug(f"Death checkpoint for {self.name}: {self.death_checkpoint.zeeks_killed} zeek kill(s)")
            return True
        if death_count < self.last_known_death_count:
            # The log-derived counter was reset; follow it without a new checkpoint
            self.last_known_death_count = death_count
        return False

    def all_time(self) -> Counters:
        return Counters(**self.lifetime_snapshot.to_dict())

    def current_life(self) -> Counters:
        if self.death_checkpoint is None:
            return self.all_time()
        return (self.lifetime_snapshot - self.death_checkpoint).clamped()

    def observe(self, snapshot: PlayerSnapshot, death_count: int, update: PlayerUpdate) -> Dict[str, int]:
        self.last_snapshot = snapshot.counters

        if snapshot.lifetime is None:
            # Stale export without lifetime fields: keep the cached lifetime
            update.checkpoint_set = self._check_death(self.lifetime_snapshot, snapshot.counters, death_count)
            return {}

        deltas = snapshot.lifetime.positive_delta(self.lifetime_snapshot)
        self.lifetime_snapshot = snapshot.lifetime
        update.checkpoint_set = self._check_death(snapshot.lifetime, snapshot.counters, death_count)
        return deltas

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'banked_cumulative': Counters().to_dict(),
            'lifetime_snapshot': self.lifetime_snapshot.to_dict(),
            'death_checkpoint': self.death_checkpoint.to_dict() if self.death_checkpoint else None,
        })
        return data


class LifetimeStatReconciler:
    """Owns every player's kill account and reconciles snapshots into them."""

    def __init__(self, file_path: Optional[str] = None,
                 challenge_targets: Optional[Mapping[str, int]] = None) -> None:
        """
        Initialize the reconciler.

        Args:
            file_path: Optional kill-account file.
            challenge_targets: Progress value per challenge key at which it counts as completed.
        """
        self.state_file = JSONStateFile(file_path) if file_path else None
        self.challenge_targets = dict(DEFAULT_CHALLENGE_TARGETS)
        self.challenge_targets.update(challenge_targets or {})
        self.accounts: Dict[str, KillAccount] = {}
        self._dirty = False

    def load(self) -> int:
        """
        Load the kill-account file. Unreadable entries are skipped.

        Returns:
            Number of accounts loaded.
        """
        if self.state_file is None:
            return 0

        data = self.state_file.load({}, validate=lambda d: isinstance(d, dict)
                                    and isinstance(d.get('players', {}), dict))
        accounts = {}
        for player_id, entry in (data.get('players') or {}).items():
            try:
                accounts[str(player_id)] = KillAccount.from_dict(entry)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable kill account for {player_id}: {e}")
        self.accounts = accounts
        self._dirty = False
        logger.info(f"Loaded {len(accounts)} kill account(s)")
        return len(accounts)

    def reconcile(self, snapshots: Mapping[str, PlayerSnapshot],
                  death_counts: Mapping[str, int]) -> ReconcileReport:
        """
        Merge one poll's snapshots into the accounts.

        Args:
            snapshots: Latest snapshot per player id.
            death_counts: Authoritative log-derived death count per player id.

        Returns:
            Per-player increases to publish. Players seen for the first time only
            get a baseline and are listed in ``new_players``.
        """
        report = ReconcileReport()

        for player_id, snapshot in snapshots.items():
            death_count = int(death_counts.get(player_id, 0))
            account = self.accounts.get(player_id)

            if account is None:
                self.accounts[player_id] = self._create(snapshot, death_count)
                report.new_players.append(player_id)
                self._dirty = True
                continue

            before = account.to_dict()
            if snapshot.name:
                account.name = snapshot.name
            update = PlayerUpdate(player_id=player_id, name=account.name or player_id)

            if snapshot.has_extended_accounting and isinstance(account, LegacyAccount):
                account = ExtendedAccount.from_legacy(account, snapshot, death_count)
                self.accounts[player_id] = account
                update.migrated = True
                deltas = {}
            else:
                deltas = account.observe(snapshot, death_count, update)

            update.kill_deltas, update.survival_deltas = _split_deltas(deltas)
            update.activity = account.diff_activity(snapshot, self.challenge_targets)

            if account.to_dict() != before:
                self._dirty = True
            if (update.kill_deltas or update.survival_deltas or update.activity
                    or update.reset_detected or update.migrated):
                report.updates.append(update)

        return report

    def _create(self, snapshot: PlayerSnapshot, death_count: int) -> KillAccount:
        if snapshot.has_extended_accounting:
            checkpoint = snapshot.lifetime - snapshot.counters if death_count > 0 else None
            account = ExtendedAccount(lifetime_snapshot=snapshot.lifetime, death_checkpoint=checkpoint,
                                      name=snapshot.name, last_snapshot=snapshot.counters,
                                      last_known_death_count=death_count)
        else:
            account = LegacyAccount(name=snapshot.name, last_snapshot=snapshot.counters,
                                    last_known_death_count=death_count)
        account.diff_activity(snapshot, self.challenge_targets)
        logger.debug(f"Tracking {snapshot.name or snapshot.player_id} "
                     f"({'extended' if account.has_extended_accounting else 'legacy'} accounting)")
        return account

    def all_time(self, player_id: str) -> Optional[Counters]:
        account = self.accounts.get(player_id)
        return account.all_time() if account else None

    def current_life(self, player_id: str) -> Optional[Counters]:
        account = self.accounts.get(player_id)
        return account.current_life() if account else None

    def all_time_table(self) -> Dict[str, Dict[str, int]]:
        """All-time counters of every tracked player, e.g. for a weekly baseline."""
        return {player_id: account.all_time().to_dict() for player_id, account in self.accounts.items()}

    def save_if_dirty(self) -> bool:
        if not self._dirty or self.state_file is None:
            return False
        self.state_file.write({'players': {pid: acc.to_dict() for pid, acc in self.accounts.items()}})
        self._dirty = False
        return True
