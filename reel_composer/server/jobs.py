"""Job lifecycle manager: identities, working directories, and stages.

WHY: Every render request becomes a job that owns an isolated working
directory for its lifetime and walks a fixed sequence of stages. Two
jobs must never share a directory, a failed job must leave no files
behind, and a completed job's output must stay retrievable for a while.

HOW: Three components work together:
  JobStage       — enum of the ordered stages plus the terminal Failed
  Job            — dataclass holding the job's id, directories and state
  JobManager     — creates jobs (directory tree + registry entry), applies
                   stage transitions, and hands terminal jobs to the
                   CleanupRegistry (forced delete on failure, deferred
                   delete on completion)

RULES:
- Job IDs are UUID4 hex strings (cryptographically random)
- The job root is created with exist_ok=False; an id collision regenerates
  the id, any other OSError is fatal (JobDirectoryError, no retry)
- Stages advance one step at a time; no skipping, no going back
- Failed is reachable from every non-terminal stage
- Entering Failed calls cancel_and_delete_now() exactly once before
  returning; entering Completed arms deferred deletion instead
- The manager performs directory creation only; deletion belongs to the
  CleanupRegistry
- A capacity slot is reserved before create_job() first awaits
"""

from __future__ import annotations

import enum
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from reel_composer.config import (
    CLEANUP_DELAY_S,
    JOB_SUBDIRECTORIES,
    MAX_CONCURRENT_JOBS,
)
from reel_composer.errors import ErrorKind, JobDirectoryError
from reel_composer.server.cleanup import CleanupRegistry

logger = logging.getLogger(__name__)

OUTPUT_EXTENSION = ".mp4"

# Collisions of uuid4 are practically impossible; this only bounds the loop.
_MAX_ID_ATTEMPTS = 5


class JobStage(str, enum.Enum):
    """Ordered stages of a render job.

    RULES:
    - created → fetching_assets → validating_video → extracting_audio →
      transcribing → scheduling → rendering → completed
    - failed: terminal, reachable from any non-terminal stage
    """

    CREATED = "created"
    FETCHING_ASSETS = "fetching_assets"
    VALIDATING_VIDEO = "validating_video"
    EXTRACTING_AUDIO = "extracting_audio"
    TRANSCRIBING = "transcribing"
    SCHEDULING = "scheduling"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.COMPLETED, JobStage.FAILED)


STAGE_ORDER: List[JobStage] = [
    JobStage.CREATED,
    JobStage.FETCHING_ASSETS,
    JobStage.VALIDATING_VIDEO,
    JobStage.EXTRACTING_AUDIO,
    JobStage.TRANSCRIBING,
    JobStage.SCHEDULING,
    JobStage.RENDERING,
    JobStage.COMPLETED,
]


class InvalidTransitionError(RuntimeError):
    """Raised when a stage transition breaks the strict stage order."""


class TooManyJobsError(RuntimeError):
    """Raised when the manager already holds max_jobs active jobs."""


@dataclass(frozen=True)
class JobDirectories:
    """Role-named areas of one job's working directory."""

    root: Path
    images: Path
    videos: Path
    audio: Path
    output: Path

    @classmethod
    def under(cls, root: Path) -> JobDirectories:
        return cls(
            root=root,
            images=root / "images",
            videos=root / "videos",
            audio=root / "audio",
            output=root / "output",
        )


@dataclass(frozen=True)
class JobFailure:
    """Structured failure reported to the caller.

    RULES:
    - stage is the stage that was running when the error happened
    - kind is one of the ErrorKind values
    """

    job_id: str
    stage: JobStage
    kind: ErrorKind
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "jobId": self.job_id,
            "stage": self.stage.value,
            "kind": self.kind.value,
            "message": self.message,
        }


@dataclass
class Job:
    """Metadata and state for a single render job.

    RULES:
    - id: UUID4 hex string, unique and immutable after creation
    - dirs: the job's working directory tree
    - stage: current JobStage (starts as CREATED)
    - created_at / updated_at: epoch timestamps
    - completed_at: set when the job reaches a terminal stage
    - failure: set only when stage is FAILED
    """

    id: str
    dirs: JobDirectories
    stage: JobStage
    created_at: float
    updated_at: float
    completed_at: Optional[float] = None
    failure: Optional[JobFailure] = None

    @property
    def output_path(self) -> Path:
        return self.dirs.output / f"{self.id}{OUTPUT_EXTENSION}"


class JobManager:
    """Creates jobs and drives their stage transitions.

    WHY: The pipeline, the HTTP layer and the CLI all need the same job
    bookkeeping, and the cleanup guarantees must hold whichever of them
    drives a job.

    HOW: Jobs are stored in a dict keyed by id. Directory creation is
    synchronous (mkdir is fast); terminal transitions await the
    CleanupRegistry. The registry is injected, never global.

    RULES:
    - create_job() registers the new directory with the registry at once,
      so the sweep never mistakes a running job for an orphan
    - get_job() returns None for unknown ids (no exceptions)
    - A job stays retrievable until forget() or until its directory is gone
    """

    def __init__(
        self,
        root: Path,
        registry: CleanupRegistry,
        retention_s: float = CLEANUP_DELAY_S,
        max_jobs: int = MAX_CONCURRENT_JOBS,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.root = Path(root)
        self.registry = registry
        self.retention_s = retention_s
        self.max_jobs = max_jobs
        self._id_factory = id_factory
        self._jobs: Dict[str, Job] = {}
        self._active: Set[str] = set()
        self._finished: Set[str] = set()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _make_job_root(self) -> tuple:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise JobDirectoryError(
                f"Cannot create jobs root {self.root}: {exc}"
            ) from exc

        for _ in range(_MAX_ID_ATTEMPTS):
            job_id = self._id_factory()
            job_root = self.root / job_id
            try:
                job_root.mkdir(exist_ok=False)
            except FileExistsError:
                logger.warning("Job id collision for %s, generating a new id", job_id)
                continue
            except OSError as exc:
                raise JobDirectoryError(
                    f"Cannot create job directory {job_root}: {exc}"
                ) from exc
            return job_id, job_root

        raise JobDirectoryError(
            f"Could not allocate a unique job directory after {_MAX_ID_ATTEMPTS} attempts"
        )

    def active_count(self) -> int:
        return len(self._active)

    async def create_job(self) -> Job:
        """Allocate a fresh, exclusively owned job directory tree.

        Returns:
            The new Job in CREATED stage.

        Raises:
            TooManyJobsError: max_jobs active jobs are already running.
            JobDirectoryError: The directory tree could not be created.
        """
        self.prune()
        if self.active_count() >= self.max_jobs:
            raise TooManyJobsError(
                "Maximum number of concurrent jobs ({}) reached".format(self.max_jobs)
            )

        job_id, job_root = self._make_job_root()
        dirs = JobDirectories.under(job_root)
        # The slot is taken before the first await so concurrent callers
        # see it in the capacity check.
        self._active.add(job_id)
        try:
            # Register before creating subareas so a partial tree is still owned.
            await self.registry.register(job_id, job_root)
            for name in JOB_SUBDIRECTORIES:
                (job_root / name).mkdir(exist_ok=True)
        except OSError as exc:
            self._active.discard(job_id)
            await self.registry.cancel_and_delete_now(job_id)
            raise JobDirectoryError(
                f"Cannot create job subdirectories in {job_root}: {exc}"
            ) from exc
        except BaseException:
            self._active.discard(job_id)
            raise

        now = time.time()
        job = Job(
            id=job_id,
            dirs=dirs,
            stage=JobStage.CREATED,
            created_at=now,
            updated_at=now,
        )
        self._jobs[job_id] = job
        logger.info("Created job %s in %s", job_id, job_root)
        return job

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def list_jobs(self) -> List[Job]:
        """Return all known jobs, oldest first."""
        return sorted(self._jobs.values(), key=lambda j: j.created_at)

    def prune(self) -> int:
        """Forget terminal jobs whose directory has already been deleted."""
        gone = [
            job_id for job_id in self._finished
            if not self._jobs[job_id].dirs.root.exists()
        ]
        for job_id in gone:
            self._finished.discard(job_id)
            del self._jobs[job_id]
        return len(gone)

    def forget(self, job_id: str) -> bool:
        """Drop the in-memory handle of a terminal job."""
        job = self._jobs.get(job_id)
        if job is None or not job.stage.is_terminal:
            return False
        self._finished.discard(job_id)
        del self._jobs[job_id]
        return True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @staticmethod
    def check_transition(current: JobStage, target: JobStage) -> None:
        """Raise InvalidTransitionError unless current → target is allowed."""
        if current.is_terminal:
            raise InvalidTransitionError(
                f"Job already finished ({current.value}); cannot move to {target.value}"
            )
        if target is JobStage.FAILED:
            return
        expected = STAGE_ORDER[STAGE_ORDER.index(current) + 1]
        if target is not expected:
            raise InvalidTransitionError(
                f"Cannot move from {current.value} to {target.value}; "
                f"next stage is {expected.value}"
            )

    async def advance(self, job: Job, stage: JobStage) -> Job:
        """Move job to stage, running the terminal cleanup hooks.

        RULES:
        - FAILED: cancel_and_delete_now() runs exactly once, before return
        - COMPLETED: deferred deletion armed for retention_s
        """
        self.check_transition(job.stage, stage)

        now = time.time()
        previous = job.stage
        job.stage = stage
        job.updated_at = now
        if stage.is_terminal:
            job.completed_at = now
            self._active.discard(job.id)
            self._finished.add(job.id)
        logger.debug("Job %s: %s -> %s", job.id, previous.value, stage.value)

        if stage is JobStage.FAILED:
            await self.registry.cancel_and_delete_now(job.id)
            logger.info("Job %s failed during %s; directory removed", job.id, previous.value)
        elif stage is JobStage.COMPLETED:
            await self.registry.arm(job.id, job.dirs.root, self.retention_s)

        return job

    async def fail(self, job: Job, failure: JobFailure) -> Job:
        """Record a structured failure and move the job to FAILED."""
        job.failure = failure
        return await self.advance(job, JobStage.FAILED)
