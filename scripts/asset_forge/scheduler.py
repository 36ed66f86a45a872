"""
Bounded-parallelism job scheduler.

Jobs run on a thread pool. Each job checks the cache, runs its processor on a
miss, writes outputs atomically and commits a cache entry. A failing job is
recorded in the BuildReport and never stops the others.
"""

import os
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_COMPLETED
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .cache import CacheEntry, CacheStore
from .jobs import BuildJob
from .processing.atlas import AtlasOverflow
from .processors.atlas import AtlasProcessor, sprite_ids
from .processors.base import Processor, ProcessorError
from .transforms import AssetKind
from .utils.fs import atomic_write, sha256_bytes


logger = logging.getLogger(__name__)


class JobStatus(Enum):
    BUILT = "built"
    CACHED = "cached"
    WOULD_BUILD = "would_build"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class JobOutcome:
    """Result of one job."""
    label: str
    output_path: str
    status: JobStatus
    message: str = ""
    duration: float = 0.0
    input_size: int = 0
    output_size: int = 0


class BuildReport:
    """Thread-safe collection of job outcomes for one submit() call."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.start_time = time.time()
        self.end_time: Optional[float] = None
        self.skipped: List[str] = []
        self._outcomes: List[JobOutcome] = []
        self._invocations = 0
        self._lock = threading.Lock()

    def record(self, outcome: JobOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    def record_invocation(self) -> None:
        with self._lock:
            self._invocations += 1

    def finish(self) -> None:
        self.end_time = time.time()

    @property
    def outcomes(self) -> List[JobOutcome]:
        with self._lock:
            return sorted(self._outcomes, key=lambda o: (o.output_path, o.label))

    @property
    def processor_invocations(self) -> int:
        with self._lock:
            return self._invocations

    def count(self, status: JobStatus) -> int:
        with self._lock:
            return sum(1 for outcome in self._outcomes if outcome.status is status)

    def with_status(self, status: JobStatus) -> List[JobOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is status]

    @property
    def built(self) -> List[JobOutcome]:
        return self.with_status(JobStatus.BUILT)

    @property
    def cached(self) -> List[JobOutcome]:
        return self.with_status(JobStatus.CACHED)

    @property
    def failures(self) -> List[JobOutcome]:
        return self.with_status(JobStatus.FAILED)

    @property
    def input_size(self) -> int:
        """Source bytes of every built job."""
        return sum(outcome.input_size for outcome in self.built)

    @property
    def output_size(self) -> int:
        return sum(outcome.output_size for outcome in self.built)

    @property
    def size_reduction(self) -> Optional[float]:
        """Percent saved across built jobs, None when nothing was built."""
        original = self.input_size
        if not original:
            return None
        return (1.0 - self.output_size / original) * 100.0

    @property
    def succeeded(self) -> bool:
        return self.count(JobStatus.FAILED) == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    @property
    def duration(self) -> float:
        return (self.end_time or time.time()) - self.start_time

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)


class Scheduler:
    """Runs BuildJobs over a bounded worker pool."""

    def __init__(self, cache: CacheStore, processors: Mapping[AssetKind, Processor],
                 output_dir: Union[str, Path], jobs: Optional[int] = None,
                 force: bool = False, dry_run: bool = False,
                 cancel_event: Optional[threading.Event] = None,
                 on_outcome: Optional[Callable[[JobOutcome], None]] = None,
                 atlas_processor: Optional[AtlasProcessor] = None):
        self.cache = cache
        self.processors = dict(processors)
        self.output_dir = Path(output_dir)
        self.jobs = jobs or os.cpu_count() or 1
        self.force = force
        self.dry_run = dry_run
        self.on_outcome = on_outcome
        self.atlas_processor = atlas_processor or AtlasProcessor()
        self._cancel_event = cancel_event or threading.Event()

        if self.jobs < 1:
            raise ValueError("jobs must be at least 1")

    def request_cancel(self) -> None:
        """Stop dispatching; running jobs finish, queued jobs are dropped."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def submit(self, jobs: Sequence[BuildJob]) -> BuildReport:
        report = BuildReport(dry_run=self.dry_run)
        ordered = sorted(jobs, key=lambda job: job.output_path)

        if ordered:
            logger.debug(f"Scheduling {len(ordered)} jobs on {self.jobs} workers")
            with ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="asset-forge") as executor:
                futures = {executor.submit(self._run_job, job, report): job for job in ordered}
                pending = set(futures)

                while pending:
                    if self._cancel_event.is_set():
                        dropped = 0
                        for future in list(pending):
                            if future.cancel():
                                self._record(report, self._outcome(futures[future], JobStatus.CANCELLED, "Build cancelled"))
                                pending.discard(future)
                                dropped += 1
                        logger.warning(f"Build cancelled: dropped {dropped} queued jobs, "
                                       f"waiting for {len(pending)} in flight")
                        wait(pending)
                        break

                    done, pending = wait(pending, timeout=0.2, return_when=FIRST_COMPLETED)
                    for future in done:
                        future.result()

        report.finish()
        return report

    def _outcome(self, job: BuildJob, status: JobStatus, message: str = "", duration: float = 0.0,
                 output_size: int = 0) -> JobOutcome:
        input_size = job.size if status is JobStatus.BUILT else 0
        return JobOutcome(job.label, job.output_path, status, message, duration, input_size, output_size)

    def _record(self, report: BuildReport, outcome: JobOutcome) -> None:
        report.record(outcome)
        if self.on_outcome is not None:
            self.on_outcome(outcome)

    def _run_job(self, job: BuildJob, report: BuildReport) -> None:
        if self._cancel_event.is_set():
            self._record(report, self._outcome(job, JobStatus.CANCELLED, "Build cancelled"))
            return

        start = time.monotonic()
        try:
            status, message, output_size = self._execute(job, report)
        except (ProcessorError, AtlasOverflow, OSError) as e:
            status, message, output_size = JobStatus.FAILED, str(e), 0
            logger.error(f"Failed {job.label}: {e}")
        except Exception as e:
            status, message, output_size = JobStatus.FAILED, f"Unexpected error: {e}", 0
            logger.error(f"Failed {job.label}: {e}", exc_info=True)

        duration = time.monotonic() - start
        logger.debug(f"{job.label}: {status.value} ({duration:.2f}s)")
        self._record(report, self._outcome(job, status, message, duration, output_size))

    def _execute(self, job: BuildJob, report: BuildReport) -> Tuple[JobStatus, str, int]:
        key = job.cache_key()

        if not self.force and self.cache.lookup(key) is not None and self._outputs_present(job):
            return JobStatus.CACHED, "", 0

        if self.dry_run:
            return JobStatus.WOULD_BUILD, "", 0

        outputs = self._produce(job, report)
        for rel_path in sorted(outputs):
            atomic_write(self.output_dir / rel_path, outputs[rel_path])

        primary = outputs[job.output_path]
        self.cache.commit(CacheEntry(
            key=key,
            output_path=job.output_path,
            output_hash=sha256_bytes(primary),
            timestamp=job.mtime,
            source_path=job.source_path,
        ))
        return JobStatus.BUILT, f"{len(primary)} bytes", len(primary)

    def _outputs_present(self, job: BuildJob) -> bool:
        return all((self.output_dir / rel_path).is_file() for rel_path in job.output_paths)

    def _read_source(self, record) -> bytes:
        data = record.abs_path.read_bytes()
        if sha256_bytes(data) != record.content_hash:
            raise OSError(f"{record.path} changed during the build")
        return data

    def _produce(self, job: BuildJob, report: BuildReport) -> Dict[str, bytes]:
        """Run the processor and return output bytes keyed by relative path."""
        if job.is_atlas:
            members = job.group.members
            ids = sprite_ids([member.path for member in members])
            sprites = [(sprite_id, self._read_source(member)) for sprite_id, member in zip(ids, members)]
            report.record_invocation()
            image, metadata = self.atlas_processor.build(
                sprites, job.pipeline, PurePosixPath(job.output_path).name
            )
            return {
                job.output_path: image,
                job.group.metadata_path: AtlasProcessor.encode_metadata(metadata),
            }

        processor = self.processors.get(job.pipeline.kind)
        if processor is None:
            raise ProcessorError(f"No processor registered for {job.pipeline.kind.value} assets")
        data = self._read_source(job.record)
        report.record_invocation()
        return {job.output_path: processor.transform(data, job.pipeline)}
