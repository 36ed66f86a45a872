"""
Build coordinator.

BuildPlanner scans the source tree, resolves a Pipeline per file and groups
atlas members. AssetPipeline owns one build invocation: it loads the cache,
plans, submits the jobs to the Scheduler and flushes the manifest.
"""

import os
import shutil
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .cache import CacheStore
from .config import ForgeConfig, ConfigError
from .jobs import AssetRecord, AtlasGroup, BuildJob
from .processors import default_processors
from .processors.base import Processor
from .rules import RuleEngine
from .scheduler import BuildReport, JobOutcome, JobStatus, Scheduler
from .transforms import AssetKind, Pipeline
from .utils.fs import directory_size


logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.WARNING) -> logging.Logger:
    """Set up logging for asset-forge."""
    root = logging.getLogger("asset_forge")
    root.setLevel(level)

    if not root.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)

    return root


class PipelineError(Exception):
    """Fatal build error raised before any job runs."""
    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


@dataclass
class BuildPlan:
    """Jobs for one build plus the files that produced none."""
    jobs: List[BuildJob] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    unreadable: Dict[str, str] = field(default_factory=dict)

    @property
    def atlas_jobs(self) -> List[BuildJob]:
        return [job for job in self.jobs if job.is_atlas]

    def read_failures(self) -> List[JobOutcome]:
        """FAILED outcomes for sources that could not be read while planning."""
        return [
            JobOutcome(rel, rel, JobStatus.FAILED, f"Cannot read source: {message}")
            for rel, message in sorted(self.unreadable.items())
        ]


class BuildPlanner:
    """Turns source files into BuildJobs."""

    def __init__(self, rules: RuleEngine, source_dir: Path, ignore_dirs: Sequence[Path] = ()):
        self.rules = rules
        self.source_dir = Path(source_dir).resolve()
        self.ignore_dirs = [Path(d).resolve() for d in ignore_dirs]

    def relative(self, path: Path) -> Optional[str]:
        """Source-relative POSIX path, or None when outside the source tree or ignored."""
        path = Path(path)
        if not path.is_absolute():
            path = self.source_dir / path
        # Symlinks are not followed so names match what is on disk
        path = Path(os.path.abspath(path))
        try:
            rel = path.relative_to(self.source_dir)
        except ValueError:
            return None
        if any(part.startswith('.') for part in rel.parts):
            return None
        for ignored in self.ignore_dirs:
            if path == ignored or ignored in path.parents:
                return None
        return rel.as_posix()

    def scan(self) -> List[Path]:
        """All candidate source files, sorted."""
        found = []
        for dirpath, dirnames, filenames in os.walk(self.source_dir):
            current = Path(dirpath)
            dirnames[:] = sorted(
                d for d in dirnames
                if not d.startswith('.') and (current / d).resolve() not in self.ignore_dirs
            )
            for name in sorted(filenames):
                if not name.startswith('.'):
                    found.append(current / name)
        return sorted(found, key=lambda p: p.relative_to(self.source_dir).as_posix())

    def atlas_group_of(self, rel_path: str) -> Optional[str]:
        """Group id of the atlas this path belongs to, if any. Works for deleted files too."""
        pipeline = self.rules.resolve(rel_path)
        if pipeline.is_noop or not pipeline.is_atlas:
            return None
        return os.path.dirname(rel_path).replace(os.sep, '/')

    def plan(self, paths: Optional[Iterable[Path]] = None, include_atlas: bool = True) -> BuildPlan:
        """
        Resolve pipelines and build the job list.

        Args:
            paths: Files to plan; defaults to a full scan of the source tree
            include_atlas: Group atlas members into atlas jobs; when False they are left out

        Raises:
            ConfigError: If rules are invalid or two jobs would write the same output
        """
        plan = BuildPlan()
        members: Dict[str, List[Tuple[AssetRecord, Pipeline]]] = defaultdict(list)

        for path in (self.scan() if paths is None else paths):
            rel = self.relative(path)
            if rel is None:
                continue

            pipeline = self.rules.resolve(rel)
            if pipeline.is_noop:
                logger.debug(f"Skipping {rel}: unrecognized file type")
                plan.skipped.append(rel)
                continue
            if pipeline.is_atlas and not include_atlas:
                continue

            try:
                record = AssetRecord.from_path(self.source_dir / rel, self.source_dir)
            except OSError as e:
                logger.warning(f"Cannot read {rel}: {e}")
                plan.unreadable[rel] = str(e)
                continue

            if pipeline.is_atlas:
                members[record.parent].append((record, pipeline))
            else:
                plan.jobs.append(BuildJob.for_asset(record, pipeline, self.rules.output_path(rel, pipeline)))

        for group_id in sorted(members):
            plan.jobs.append(self._atlas_job(group_id, members[group_id]))

        self._check_collisions(plan.jobs)
        return plan

    def plan_group(self, group_id: str, unreadable: Optional[Dict[str, str]] = None) -> Optional[BuildJob]:
        """
        Rebuild the job for one atlas group from the files currently on disk.

        Members that cannot be read are left out and reported through unreadable.
        """
        directory = self.source_dir / group_id if group_id else self.source_dir
        if not directory.is_dir():
            return None

        found = []
        for path in sorted(p for p in directory.iterdir() if not p.is_dir()):
            rel = self.relative(path)
            if rel is None:
                continue
            pipeline = self.rules.resolve(rel)
            if pipeline.is_noop or not pipeline.is_atlas:
                continue
            try:
                found.append((AssetRecord.from_path(path, self.source_dir), pipeline))
            except OSError as e:
                logger.warning(f"Cannot read {rel}: {e}")
                if unreadable is not None:
                    unreadable[rel] = str(e)

        if not found:
            return None
        return self._atlas_job(group_id, found)

    @staticmethod
    def _atlas_job(group_id: str, members: List[Tuple[AssetRecord, Pipeline]]) -> BuildJob:
        members = sorted(members, key=lambda member: member[0].path)
        # The first member (by path) decides the group's settings
        pipeline = members[0][1]
        group = AtlasGroup(group_id, tuple(record for record, _ in members), pipeline)
        return BuildJob.for_atlas(group)

    @staticmethod
    def _check_collisions(jobs: Sequence[BuildJob]) -> None:
        owners: Dict[str, str] = {}
        for job in jobs:
            for output in job.output_paths:
                if output in owners:
                    raise ConfigError(f"{job.label} and {owners[output]} both write {output}")
                owners[output] = job.label


class AssetPipeline:
    """
    One build invocation: config -> plan -> schedule -> flush.

    The CacheStore is created here and flushed once at the end of run().
    """

    def __init__(self, config: ForgeConfig, preset: Optional[str] = None,
                 jobs: Optional[int] = None, force: bool = False, dry_run: bool = False,
                 processors: Optional[Mapping[AssetKind, Processor]] = None,
                 source_dir: Optional[Path] = None, output_dir: Optional[Path] = None,
                 cancel_event: Optional[threading.Event] = None,
                 on_outcome: Optional[Callable[[JobOutcome], None]] = None):
        """
        Initialize the build.

        Raises:
            ConfigError: If the preset is unknown or a rule is invalid
        """
        self.config = config
        self.source_dir = Path(source_dir) if source_dir is not None else config.source_dir
        self.output_dir = Path(output_dir) if output_dir is not None else config.output_dir
        self.dry_run = dry_run

        self.rules = RuleEngine(config, preset)
        self.cache = CacheStore(config.cache_dir, enabled=config.cache.enabled)
        self.planner = BuildPlanner(self.rules, self.source_dir, ignore_dirs=[self.output_dir, config.cache_dir])
        self.scheduler = Scheduler(
            self.cache,
            processors if processors is not None else default_processors(),
            self.output_dir,
            jobs=jobs or config.jobs,
            force=force,
            dry_run=dry_run,
            cancel_event=cancel_event,
            on_outcome=on_outcome,
        )

    def plan(self) -> BuildPlan:
        if not self.source_dir.is_dir():
            raise PipelineError(f"Source directory not found: {self.source_dir}")
        return self.planner.plan()

    def run(self, plan: Optional[BuildPlan] = None) -> BuildReport:
        """Run a full incremental build and return its report."""
        plan = plan if plan is not None else self.plan()
        logger.info(f"Building {len(plan.jobs)} jobs from {self.source_dir}")

        self.cache.load()
        report = self.scheduler.submit(plan.jobs)
        report.skipped = list(plan.skipped)
        for outcome in plan.read_failures():
            report.record(outcome)

        if not self.dry_run:
            # Entries of deleted sources only go away after a complete build
            if not self.scheduler.cancelled:
                self.cache.prune(self.source_dir)
            self.cache.flush()

        self._log_summary(report)
        return report

    def request_cancel(self) -> None:
        self.scheduler.request_cancel()

    def clean(self, include_output: bool = False) -> int:
        """Purge the cache (and the output directory). Returns bytes freed."""
        freed = self.cache.purge()
        if include_output and self.output_dir.exists():
            freed += directory_size(self.output_dir)
            shutil.rmtree(self.output_dir)
            logger.info(f"Removed output directory {self.output_dir}")
        return freed

    def _log_summary(self, report: BuildReport) -> None:
        verb = "would build" if self.dry_run else "built"
        built = report.count(JobStatus.WOULD_BUILD if self.dry_run else JobStatus.BUILT)
        logger.info(
            f"Build finished in {report.duration:.2f}s: {verb} {built}, "
            f"cached {report.count(JobStatus.CACHED)}, failed {report.count(JobStatus.FAILED)}, "
            f"cancelled {report.count(JobStatus.CANCELLED)}, skipped {len(report.skipped)}"
        )
        for failure in report.failures:
            logger.error(f"  {failure.label}: {failure.message}")
