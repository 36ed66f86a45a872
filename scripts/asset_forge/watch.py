"""
Watch mode: turn filesystem events into minimal rebuilds.

A watchdog observer feeds FileEvents into a queue. The service coalesces
bursts with a debounce window, then flushes the dirty set through the same
planner and Scheduler a regular build uses.
"""

import os
import time
import queue
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Mapping, Optional, Set

from watchdog.events import (
    FileSystemEventHandler,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
)
from watchdog.observers import Observer

from .cache import CacheEntry
from .config import ForgeConfig, ConfigError
from .jobs import BuildJob
from .pipeline import AssetPipeline, BuildPlan
from .processors.base import Processor
from .scheduler import BuildReport, JobOutcome
from .transforms import AssetKind
from .utils.fs import format_size_change


logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.3


class WatchState(Enum):
    IDLE = "idle"
    PENDING = "pending"
    FLUSHING = "flushing"
    STOPPED = "stopped"


@dataclass(frozen=True)
class FileEvent:
    kind: str
    path: str


@dataclass
class WatchStats:
    """Counters for one watch session."""
    events: int = 0
    ignored: int = 0
    flushes: int = 0
    built: int = 0
    cached: int = 0
    failed: int = 0
    removed: int = 0
    discarded: int = 0
    input_size: int = 0
    output_size: int = 0

    @property
    def size_reduction(self) -> Optional[float]:
        if not self.input_size:
            return None
        return (1.0 - self.output_size / self.input_size) * 100.0


@dataclass
class FlushResult:
    """What one flush did."""
    report: Optional[BuildReport] = None
    deleted: List[str] = field(default_factory=list)
    removed_outputs: List[str] = field(default_factory=list)

    @property
    def jobs(self) -> int:
        return len(self.report) if self.report is not None else 0


class EventForwarder(FileSystemEventHandler):
    """Forwards watchdog file events onto a queue. Moves become delete + create."""

    def __init__(self, events: "queue.Queue[FileEvent]"):
        super().__init__()
        self.events = events

    def on_any_event(self, event):
        if event.is_directory:
            return

        if event.event_type == EVENT_TYPE_MOVED:
            self.events.put(FileEvent(EVENT_TYPE_DELETED, os.fsdecode(event.src_path)))
            self.events.put(FileEvent(EVENT_TYPE_CREATED, os.fsdecode(event.dest_path)))
        elif event.event_type in (EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED):
            self.events.put(FileEvent(event.event_type, os.fsdecode(event.src_path)))


class WatchService:
    """
    Debounced rebuild loop.

    IDLE -> PENDING on the first event, PENDING -> FLUSHING when the debounce
    window expires, back to IDLE after the flush. Cancelling while PENDING
    drops the dirty set; a flush that already started always completes.
    """

    def __init__(self, config: ForgeConfig, preset: Optional[str] = None,
                 jobs: Optional[int] = None, debounce: float = DEFAULT_DEBOUNCE,
                 clock: Callable[[], float] = time.monotonic,
                 processors: Optional[Mapping[AssetKind, Processor]] = None,
                 source_dir: Optional[Path] = None, output_dir: Optional[Path] = None,
                 on_outcome: Optional[Callable[[JobOutcome], None]] = None):
        # The scheduler gets its own cancel event so stopping the watch never drops flush jobs
        self.pipeline = AssetPipeline(
            config,
            preset=preset,
            jobs=jobs,
            processors=processors,
            source_dir=source_dir,
            output_dir=output_dir,
            on_outcome=on_outcome,
        )
        self.cache = self.pipeline.cache
        self.planner = self.pipeline.planner
        self.scheduler = self.pipeline.scheduler
        self.output_dir = self.pipeline.output_dir

        self.debounce = debounce
        self.clock = clock
        self.events: "queue.Queue[FileEvent]" = queue.Queue()
        self.cancel_event = threading.Event()
        self.state = WatchState.IDLE
        self.stats = WatchStats()

        self._dirty: Set[str] = set()
        self._deadline: Optional[float] = None
        self._loaded = False
        self._observer = None

    @property
    def dirty(self) -> List[str]:
        return sorted(self._dirty)

    def initial_build(self) -> BuildReport:
        """Full incremental build before watching starts."""
        report = self.pipeline.run()
        self._loaded = True
        self._record(report)
        return report

    def handle_event(self, event: FileEvent) -> bool:
        """Add an event to the dirty set and (re)arm the debounce timer."""
        if self.state is WatchState.STOPPED:
            return False

        rel = self.planner.relative(Path(event.path))
        if rel is None:
            self.stats.ignored += 1
            return False

        self.stats.events += 1
        self._dirty.add(rel)
        self._deadline = self.clock() + self.debounce
        if self.state is WatchState.IDLE:
            self.state = WatchState.PENDING
        logger.debug(f"{event.kind}: {rel} ({len(self._dirty)} dirty)")
        return True

    def poll(self, now: Optional[float] = None) -> Optional[FlushResult]:
        """Flush if the debounce window has expired."""
        if self.state is not WatchState.PENDING or self._deadline is None:
            return None
        now = self.clock() if now is None else now
        if now < self._deadline:
            return None
        return self.flush()

    def flush(self) -> FlushResult:
        """Rebuild the dirty set now."""
        dirty = sorted(self._dirty)
        self._dirty = set()
        self._deadline = None
        self.state = WatchState.FLUSHING

        try:
            result = self._flush(dirty)
        finally:
            self.state = WatchState.STOPPED if self.cancel_event.is_set() else WatchState.IDLE
        return result

    def _flush(self, dirty: List[str]) -> FlushResult:
        if not self._loaded:
            self.cache.load()
            self._loaded = True

        result = FlushResult()
        self.stats.flushes += 1
        changed: List[Path] = []
        groups: Set[str] = set()

        for rel in dirty:
            try:
                group_id = self.planner.atlas_group_of(rel)
            except ConfigError as e:
                # A bad rule for one file never stops the session
                logger.error(f"Cannot rebuild {rel}: {e}")
                self.stats.failed += 1
                continue
            if group_id is not None:
                groups.add(group_id)
                continue

            abs_path = self.planner.source_dir / rel
            # Dangling symlinks are planned so they surface as read failures
            if abs_path.is_file() or abs_path.is_symlink():
                changed.append(abs_path)
            else:
                result.deleted.append(rel)
                result.removed_outputs.extend(self._remove_outputs(self.cache.invalidate(rel)))

        jobs: List[BuildJob] = []
        unreadable: Dict[str, str] = {}
        try:
            plan = self.planner.plan(changed, include_atlas=False)
            jobs.extend(plan.jobs)
            unreadable.update(plan.unreadable)
        except ConfigError as e:
            logger.error(f"Cannot plan rebuild: {e}")

        for group_id in sorted(groups):
            try:
                job = self.planner.plan_group(group_id, unreadable)
            except ConfigError as e:
                logger.error(f"Cannot plan atlas {group_id or 'atlas'}: {e}")
                continue
            if job is None:
                # Last member deleted
                result.removed_outputs.extend(self._remove_outputs(self.cache.invalidate(group_id), atlas=True))
            else:
                jobs.append(job)

        if jobs or unreadable:
            logger.info(f"Rebuilding {len(jobs)} jobs")
            result.report = self.scheduler.submit(jobs)
            for outcome in BuildPlan(unreadable=unreadable).read_failures():
                result.report.record(outcome)
            self._record(result.report)

        self.cache.flush()
        return result

    def _remove_outputs(self, entries: List[CacheEntry], atlas: bool = False) -> List[str]:
        removed = []
        for entry in entries:
            paths = [entry.output_path]
            if atlas:
                paths.append(str(PurePosixPath(entry.output_path).with_suffix(".json")))
            for rel_path in paths:
                target = self.output_dir / rel_path
                try:
                    target.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Cannot remove {target}: {e}")
                    continue
                removed.append(rel_path)
                logger.info(f"Removed {rel_path}")
        self.stats.removed += len(removed)
        return removed

    def _record(self, report: BuildReport) -> None:
        self.stats.built += len(report.built)
        self.stats.cached += len(report.cached)
        self.stats.failed += len(report.failures)
        for outcome in report.built:
            self.stats.input_size += outcome.input_size
            self.stats.output_size += outcome.output_size
            logger.info(f"Rebuilt {outcome.label}: {format_size_change(outcome.input_size, outcome.output_size)}")
        for failure in report.failures:
            logger.warning(f"Build failed for {failure.label}: {failure.message}")

    def start(self) -> None:
        """Start the watchdog observer on the source directory."""
        if self._observer is not None:
            return
        self._observer = Observer()
        self._observer.schedule(EventForwarder(self.events), str(self.planner.source_dir), recursive=True)
        self._observer.daemon = True
        self._observer.start()
        logger.info(f"Watching {self.planner.source_dir}")

    def request_stop(self) -> None:
        self.cancel_event.set()

    def stop(self) -> None:
        """Discard pending changes and stop the observer."""
        if self._dirty:
            self.stats.discarded += len(self._dirty)
            logger.info(f"Discarding {len(self._dirty)} pending changes")
            self._dirty = set()
        self._deadline = None
        self.state = WatchState.STOPPED

        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def run(self, observe: bool = True, poll_interval: float = 0.05) -> WatchStats:
        """
        Process events until request_stop() is called.

        Args:
            observe: Start a watchdog observer; tests feed self.events directly
            poll_interval: Longest blocking wait on the event queue
        """
        if observe:
            self.start()

        try:
            while not self.cancel_event.is_set():
                timeout = poll_interval
                if self.state is WatchState.PENDING and self._deadline is not None:
                    timeout = max(0.0, min(poll_interval, self._deadline - self.clock()))

                try:
                    event = self.events.get(timeout=timeout)
                except queue.Empty:
                    event = None

                if event is not None:
                    self.handle_event(event)
                if not self.cancel_event.is_set():
                    self.poll()
        finally:
            self.stop()

        return self.stats
