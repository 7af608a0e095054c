"""
Slideshow

The SlideshowScheduler rotates wallpapers on a timer. It is a small state machine:

    Idle --start()--> Running --pause()--> Paused --resume()--> Running
    Running/Paused --stop()--> Stopped (terminal)

run() is a single cooperative loop. It fires the first tick right away and then one tick per
interval, measured from when the loop started so ticks don't drift. Between ticks it only ever
waits on the clock, and stop()/pause()/resume() wake it up early.

A tick picks the next wallpaper(s) according to the rotation policy, lets the MonitorAssigner bind
them to monitors, then for every monitor runs the pre commands, applies the wallpaper and runs the
post commands. A monitor that fails doesn't stop the others, and a tick that fails never stops the
timer. Only after the monitors are done does the scheduler tell the cache which records were set.
"""

import os
import json
import time
import random
import logging
import tempfile
import threading
from enum import Enum
from datetime import datetime
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from wallter.cache_handler import (
    CacheIOError,
    CacheStore,
    EvictionPolicy,
    NotFound,
    RecordFilter,
    WallpaperRecord,
    utcnow,
)
from wallter.command_handler import CommandTimeout, Phase, run_command
from wallter.config import MonitorConfig, RotationPolicy, SlideshowSettings
from wallter.downloader import Downloader
from wallter.monitor_handler import MonitorAssigner, NoEligibleWallpaper
from wallter.source_handler import InvalidResponse, SearchCriteria, SourceUnavailable
from wallter.wallpaper_handler import ApplyFailed, WallpaperApplier

logger = logging.getLogger(__name__)

# how long a paused loop sleeps before checking its state again, in seconds
PAUSE_POLL = 1.0


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class SchedulerStateError(Exception):
    """Raised when a method is called in a state that does not allow it."""

    pass


@dataclass
class SlideshowState:
    """Rotation bookkeeping for one scheduler run."""

    order: list[str]
    interval: float
    policy: RotationPolicy
    position: int = 0
    previous: list[str] = field(default_factory=list)
    ticks: int = 0


@dataclass
class TickResult:
    applied: dict[str, WallpaperRecord] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: bool = False


class SlideshowScheduler:
    def __init__(
        self,
        cache: CacheStore,
        assigner: MonitorAssigner,
        applier: WallpaperApplier,
        monitors: list[MonitorConfig],
        downloader: Optional[Downloader] = None,
        criteria: Optional[SearchCriteria] = None,
        download_count: int = 0,
        eviction: Optional[EvictionPolicy] = None,
        local_dir: Optional[Path] = None,
        command_runner: Callable = run_command,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
        now: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.cache = cache
        self.assigner = assigner
        self.applier = applier
        self.monitors = list(monitors)
        self.downloader = downloader
        self.criteria = criteria or SearchCriteria()
        self.download_count = download_count
        self.eviction = eviction
        self.local_dir = local_dir
        self.command_runner = command_runner
        self.clock = clock
        self.now = now
        self.rng = rng or random.Random()

        self._wake = threading.Event()
        self._sleep = sleep or self._wait
        self._stop_requested = False
        self._next_tick: Optional[float] = None
        self._remaining: Optional[float] = None

        self.status = SchedulerState.IDLE
        self.settings: Optional[SlideshowSettings] = None
        self.state: Optional[SlideshowState] = None

    """
    State transitions
    """

    def _require(self, *allowed: SchedulerState) -> None:
        if self.status not in allowed:
            names = " or ".join(s.value for s in allowed)
            raise SchedulerStateError(
                f"Slideshow is {self.status.value}, expected it to be {names}."
            )

    def start(self, settings: SlideshowSettings) -> SlideshowState:
        """Build the pool and rotation state and switch to Running. Call run() to start ticking."""

        self._require(SchedulerState.IDLE)
        self.settings = settings

        if settings.refresh_on_start:
            self.refresh()

        self.state = SlideshowState(
            order=[record.id for record in self._pool()],
            interval=settings.interval.seconds,
            policy=settings.rotation,
        )
        self._load_checkpoint()

        self.status = SchedulerState.RUNNING
        logger.info(
            "Slideshow started: %d wallpapers, %s rotation every %.0fs across %d monitor(s)",
            len(self.state.order),
            self.state.policy.value,
            self.state.interval,
            len(self.monitors),
        )
        return self.state

    def pause(self) -> None:
        self._require(SchedulerState.RUNNING)

        if self._next_tick is not None:
            self._remaining = max(0.0, self._next_tick - self.clock())

        self.status = SchedulerState.PAUSED
        self._wake.set()
        logger.info("Slideshow paused")

    def resume(self) -> None:
        self._require(SchedulerState.PAUSED)

        if self._remaining is not None:
            self._next_tick = self.clock() + self._remaining
            self._remaining = None

        self.status = SchedulerState.RUNNING
        self._wake.set()
        logger.info("Slideshow resumed")

    def stop(self) -> None:
        """Stop for good. A tick in progress finishes the monitor it is on and then returns."""

        if self.status is SchedulerState.STOPPED:
            return

        self._require(SchedulerState.RUNNING, SchedulerState.PAUSED)

        self._stop_requested = True
        self.status = SchedulerState.STOPPED
        self._wake.set()
        self._save_checkpoint()
        logger.info("Slideshow stopped")

    """
    Pool management
    """

    def _pool(self) -> list[WallpaperRecord]:
        if self.local_dir is not None:
            self.cache.add_local_dir(self.local_dir)

        favorites_only = self.settings is not None and self.settings.favorites_only
        records = self.cache.list(RecordFilter.FAVORITES if favorites_only else RecordFilter.ALL)

        return self.assigner.eligible(records)

    def reload_pool(self) -> None:
        """
        Re-read the eligible pool from the cache. Records that are still present keep their
        relative order and new ones are appended, so sequential rotation carries on where it was.
        """

        ids = [record.id for record in self._pool()]
        current = set(ids)

        kept = [id for id in self.state.order if id in current]
        position = len([id for id in self.state.order[: self.state.position] if id in current])
        known = set(kept)

        self.state.order = kept + [id for id in ids if id not in known]
        self.state.position = position % len(self.state.order) if self.state.order else 0
        self.state.previous = [id for id in self.state.previous if id in current]

    def refresh(self) -> None:
        """Download new wallpapers and trim the cache. A dead source leaves the cached pool in use."""

        if self.downloader is not None and self.download_count > 0:
            try:
                self.downloader.refresh(self.criteria, self.download_count)

            except SourceUnavailable as error:
                logger.warning("Wallpaper source unavailable (%s), using the cached pool", error)

            except InvalidResponse as error:
                logger.error("Wallpaper source returned bad data (%s), using the cached pool", error)

        if self.eviction is not None:
            try:
                evicted = self.cache.evict(self.eviction)
                if evicted:
                    logger.info("Evicted %d wallpaper(s) from the cache", evicted)

            except CacheIOError as error:
                logger.error("Eviction aborted: %s", error)

        if self.state is not None:
            self.reload_pool()

    """
    Rotation
    """

    def next_records(self, count: int) -> list[str]:
        """Advance the rotation and return the ids of the next count wallpapers (fewer if the pool is small)."""

        order = self.state.order
        size = len(order)

        if size == 0:
            raise NoEligibleWallpaper("The wallpaper pool is empty.")

        count = min(max(1, count), size)

        if self.state.policy is RotationPolicy.SEQUENTIAL:
            picks = [order[(self.state.position + i) % size] for i in range(count)]
            self.state.position = (self.state.position + count) % size

        else:
            previous = set(self.state.previous)
            fresh = [id for id in order if id not in previous]
            picks = self.rng.sample(fresh, min(count, len(fresh)))

            # pool too small to avoid every previous pick
            if len(picks) < count:
                stale = [id for id in order if id in previous]
                picks += self.rng.sample(stale, count - len(picks))

        self.state.previous = picks
        return picks

    def _candidates(self) -> list[WallpaperRecord]:
        """Resolve the next ids to records, dropping any that vanished from the cache."""

        while self.state.order:
            records = []

            for id in self.next_records(len(self.monitors)):
                try:
                    records.append(self.cache.get(id))
                except NotFound:
                    logger.warning("Wallpaper %s is no longer cached, dropping it from the rotation", id)
                    self.state.order.remove(id)

            if records:
                return records

            if self.state.order:
                self.state.position %= len(self.state.order)

        raise NoEligibleWallpaper("The wallpaper pool is empty.")

    """
    Ticks
    """

    def _run_commands(self, commands, phase: Phase, env: dict) -> None:
        for command in commands:
            try:
                result = self.command_runner(
                    command, phase, env, timeout=self.settings.command_timeout
                )

            except CommandTimeout as error:
                logger.warning("%s command timed out: %s", phase.value, error)
                continue

            if result.exit_code != 0:
                logger.warning(
                    "%s command '%s' exited with %d: %s",
                    phase.value,
                    command,
                    result.exit_code,
                    result.output.strip(),
                )

    def tick(self) -> TickResult:
        """Perform one rotation. Never raises for per-monitor or per-command failures."""

        self._require(SchedulerState.RUNNING)
        return self._tick()

    def _tick(self) -> TickResult:
        result = TickResult()

        try:
            assignment = self.assigner.assign(self._candidates(), self.monitors)

        except NoEligibleWallpaper as error:
            logger.warning("Skipping tick: %s", error)
            result.skipped = True
            return result

        for monitor in self.monitors:
            if self._stop_requested:
                logger.info("Stop requested, leaving the remaining monitors unchanged")
                break

            record = assignment[monitor.id]
            env = {"WALLTER_MONITOR": monitor.id, "WALLTER_WALLPAPER": str(record.path)}

            self._run_commands(self.settings.pre_commands, Phase.PRE, env)

            try:
                self.applier.apply(monitor.id, record.path)

            except ApplyFailed as error:
                logger.error("Could not set wallpaper on %s: %s", monitor.name, error)
                result.failed[monitor.id] = str(error)
                continue

            logger.info("%s -> %s", monitor.name, record.path.name)
            result.applied[monitor.id] = record

            self._run_commands(self.settings.post_commands, Phase.POST, env)

        timestamp = self.now()
        try:
            for record in {r.checksum: r for r in result.applied.values()}.values():
                self.cache.mark_set(record.id, timestamp)

        except (CacheIOError, NotFound) as error:
            logger.error("Could not record wallpaper change: %s", error)

        self.state.ticks += 1
        self._save_checkpoint()

        return result

    def _after_tick(self) -> None:
        every = self.settings.refresh_every
        if every and self.state.ticks % every == 0:
            self.refresh()

    def _wait(self, seconds: float) -> None:
        self._wake.wait(seconds)
        self._wake.clear()

    def run(self, duration: Optional[float] = None) -> None:
        """
        Drive ticks until stop() is called or, when duration (seconds) is given, until that much
        time has passed, after which the scheduler stops itself.
        """

        self._require(SchedulerState.RUNNING, SchedulerState.PAUSED)

        started = self.clock()
        deadline = started + duration if duration is not None else None
        interval = self.state.interval
        self._next_tick = started

        # stop() can land anywhere in this loop (signal handler, other thread); it never
        # touches _next_tick, only the status
        while self.status is not SchedulerState.STOPPED:
            now = self.clock()

            if self.status is SchedulerState.STOPPED:
                break

            if deadline is not None and now >= deadline:
                break

            if self.status is SchedulerState.PAUSED:
                wait = PAUSE_POLL if deadline is None else min(PAUSE_POLL, deadline - now)
                self._sleep(wait)
                continue

            next_tick = self._next_tick

            if now >= next_tick and self.status is SchedulerState.RUNNING:
                self._next_tick = next_tick + interval
                self._tick()

                if self.status is SchedulerState.RUNNING:
                    self._after_tick()

                # a tick that overran the interval skips the slots it missed
                while self._next_tick <= self.clock():
                    self._next_tick += interval
                continue

            wait = next_tick - now
            if deadline is not None:
                wait = min(wait, deadline - now)
            self._sleep(wait)

        self.stop()

    """
    Checkpoint
    """

    def _save_checkpoint(self) -> None:
        path = self.settings.checkpoint if self.settings else None
        if path is None or self.state is None:
            return

        data = json.dumps(
            {
                "order": self.state.order,
                "position": self.state.position,
                "previous": self.state.previous,
            }
        )

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            with os.fdopen(fd, "w") as file:
                file.write(data)
            os.replace(temp_name, path)

        except OSError as error:
            logger.warning("Could not write slideshow checkpoint %s: %s", path, error)

    def _load_checkpoint(self) -> None:
        """Resume from a checkpoint if it describes the same pool."""

        path = self.settings.checkpoint
        if path is None or not path.exists():
            return

        try:
            saved = json.loads(path.read_text())
            order = [str(id) for id in saved["order"]]
            position = int(saved["position"])
            previous = [str(id) for id in saved.get("previous", [])]

        except (OSError, ValueError, KeyError, TypeError) as error:
            logger.warning("Ignoring unreadable slideshow checkpoint %s: %s", path, error)
            return

        if sorted(order) != sorted(self.state.order):
            logger.info("Wallpaper pool changed since the last run, starting from the top")
            return

        self.state.order = order
        self.state.position = position % len(order) if order else 0
        self.state.previous = previous
        logger.info("Resuming slideshow at position %d", self.state.position)
