"""Unit tests for the job lifecycle manager.

WHY: The manager decides which directory a job owns and when that
directory goes away. Two jobs sharing a directory, a skipped stage, or
a failed job whose files survive would corrupt renders or leak disk.

HOW: Tests are organized by class, one per concern:
  - TestJobCreation: ids, directory layout, registry tracking
  - TestIdUniqueness: bulk id generation and collision handling
  - TestTransitions: strict stage ordering
  - TestTerminalStages: cleanup hooks on Failed / Completed
  - TestCapacity: max_jobs guard and pruning

RULES:
- Each test creates its own JobManager and CleanupRegistry
- Async code runs inside asyncio.run()
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from reel_composer.errors import ErrorKind, JobDirectoryError
from reel_composer.server.cleanup import CleanupRegistry
from reel_composer.server.jobs import (
    STAGE_ORDER,
    InvalidTransitionError,
    JobFailure,
    JobManager,
    JobStage,
    TooManyJobsError,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_manager(root: Path, **kwargs) -> JobManager:
    """Create a JobManager with its own registry and optional overrides."""
    return JobManager(root, CleanupRegistry(root), **kwargs)


async def _advance_to(manager: JobManager, job, target: JobStage):
    for stage in STAGE_ORDER[STAGE_ORDER.index(job.stage) + 1:]:
        await manager.advance(job, stage)
        if stage is target:
            break
    return job


# ---------------------------------------------------------------------------
# TestJobCreation
# ---------------------------------------------------------------------------


class TestJobCreation:

    def test_creates_directory_tree(self, jobs_root):
        manager = _make_manager(jobs_root)
        job = asyncio.run(manager.create_job())

        assert job.stage is JobStage.CREATED
        assert job.dirs.root == jobs_root / job.id
        for area in ("images", "videos", "audio", "output"):
            assert (job.dirs.root / area).is_dir()
        assert job.dirs.images == job.dirs.root / "images"

    def test_id_is_uuid4_hex(self, jobs_root):
        job = asyncio.run(_make_manager(jobs_root).create_job())
        parsed = uuid.UUID(hex=job.id)
        assert parsed.version == 4
        assert job.id == parsed.hex

    def test_registers_without_arming(self, jobs_root):
        manager = _make_manager(jobs_root)
        job = asyncio.run(manager.create_job())
        entry = manager.registry.get_entry(job.id)
        assert entry is not None
        assert entry.directory == job.dirs.root
        assert entry.cleanup_at is None

    def test_output_path(self, jobs_root):
        job = asyncio.run(_make_manager(jobs_root).create_job())
        assert job.output_path == job.dirs.output / "{}.mp4".format(job.id)

    def test_creates_missing_root(self, tmp_path):
        root = tmp_path / "does" / "not" / "exist"
        job = asyncio.run(_make_manager(root).create_job())
        assert job.dirs.root.is_dir()

    def test_get_and_list(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            return await manager.create_job(), await manager.create_job()

        first, second = asyncio.run(scenario())
        assert manager.get_job(first.id) is first
        assert manager.get_job("unknown") is None
        assert [j.id for j in manager.list_jobs()] == [first.id, second.id]

    def test_unwritable_root_is_fatal(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        manager = _make_manager(blocker / "jobs")
        with pytest.raises(JobDirectoryError) as excinfo:
            asyncio.run(manager.create_job())
        assert excinfo.value.kind is ErrorKind.STORAGE_FAILED

    def test_subdirectory_failure_removes_job_root(self, jobs_root):
        manager = _make_manager(jobs_root, id_factory=lambda: "fixed")
        original_mkdir = Path.mkdir

        def failing_mkdir(self, *args, **kwargs):
            if self.name == "audio":
                raise PermissionError("denied")
            return original_mkdir(self, *args, **kwargs)

        with patch.object(Path, "mkdir", failing_mkdir):
            with pytest.raises(JobDirectoryError):
                asyncio.run(manager.create_job())
        assert not (jobs_root / "fixed").exists()
        assert not manager.registry.is_tracked("fixed")


# ---------------------------------------------------------------------------
# TestIdUniqueness
# ---------------------------------------------------------------------------


class TestIdUniqueness:

    def test_ten_thousand_ids_are_distinct(self, jobs_root):
        manager = _make_manager(jobs_root, max_jobs=20000)

        async def scenario():
            return [await manager.create_job() for _ in range(10000)]

        jobs = asyncio.run(scenario())
        ids = {j.id for j in jobs}
        assert len(ids) == 10000
        assert len({j.dirs.root for j in jobs}) == 10000

    def test_collision_regenerates_id(self, jobs_root):
        (jobs_root / "taken").mkdir()
        ids = iter(["taken", "fresh"])
        manager = _make_manager(jobs_root, id_factory=lambda: next(ids))

        job = asyncio.run(manager.create_job())

        assert job.id == "fresh"
        assert list((jobs_root / "taken").iterdir()) == []

    def test_persistent_collision_gives_up(self, jobs_root):
        (jobs_root / "taken").mkdir()
        manager = _make_manager(jobs_root, id_factory=lambda: "taken")
        with pytest.raises(JobDirectoryError, match="unique"):
            asyncio.run(manager.create_job())


# ---------------------------------------------------------------------------
# TestTransitions
# ---------------------------------------------------------------------------


class TestTransitions:

    def test_full_forward_sequence(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            job = await manager.create_job()
            seen = []
            for stage in STAGE_ORDER[1:]:
                await manager.advance(job, stage)
                seen.append(job.stage)
            await manager.registry.shutdown()
            return job, seen

        job, seen = asyncio.run(scenario())
        assert seen == STAGE_ORDER[1:]
        assert job.completed_at is not None

    def test_skipping_a_stage_is_rejected(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            job = await manager.create_job()
            await manager.advance(job, JobStage.VALIDATING_VIDEO)

        with pytest.raises(InvalidTransitionError, match="next stage is fetching_assets"):
            asyncio.run(scenario())

    def test_repeating_a_stage_is_rejected(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            job = await manager.create_job()
            await manager.advance(job, JobStage.FETCHING_ASSETS)
            await manager.advance(job, JobStage.FETCHING_ASSETS)

        with pytest.raises(InvalidTransitionError):
            asyncio.run(scenario())

    def test_going_backwards_is_rejected(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            job = await manager.create_job()
            await _advance_to(manager, job, JobStage.TRANSCRIBING)
            await manager.advance(job, JobStage.EXTRACTING_AUDIO)

        with pytest.raises(InvalidTransitionError):
            asyncio.run(scenario())

    @pytest.mark.parametrize("stage", STAGE_ORDER[:-1])
    def test_failed_reachable_from_every_active_stage(self, jobs_root, stage):
        manager = _make_manager(jobs_root)

        async def scenario():
            job = await manager.create_job()
            if stage is not JobStage.CREATED:
                await _advance_to(manager, job, stage)
            await manager.advance(job, JobStage.FAILED)
            return job

        job = asyncio.run(scenario())
        assert job.stage is JobStage.FAILED

    def test_terminal_stages_are_final(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            job = await manager.create_job()
            await manager.advance(job, JobStage.FAILED)
            await manager.advance(job, JobStage.FAILED)

        with pytest.raises(InvalidTransitionError, match="already finished"):
            asyncio.run(scenario())


# ---------------------------------------------------------------------------
# TestTerminalStages
# ---------------------------------------------------------------------------


class TestTerminalStages:

    def test_failed_deletes_directory_before_returning(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            job = await manager.create_job()
            await _advance_to(manager, job, JobStage.TRANSCRIBING)
            (job.dirs.videos / "file_0.mp4").write_bytes(b"clip")
            await manager.advance(job, JobStage.FAILED)
            return job

        job = asyncio.run(scenario())
        assert not job.dirs.root.exists()
        assert not manager.registry.is_tracked(job.id)

    def test_failed_calls_forced_cleanup_exactly_once(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            job = await manager.create_job()
            with patch.object(
                manager.registry, "cancel_and_delete_now", new=AsyncMock(return_value=True)
            ) as forced:
                await manager.advance(job, JobStage.FETCHING_ASSETS)
                await manager.advance(job, JobStage.FAILED)
            return forced, job

        forced, job = asyncio.run(scenario())
        forced.assert_awaited_once_with(job.id)

    def test_fail_records_failure(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            job = await manager.create_job()
            await manager.advance(job, JobStage.FETCHING_ASSETS)
            failure = JobFailure(job.id, job.stage, ErrorKind.DOWNLOAD_FAILED, "HTTP 404")
            await manager.fail(job, failure)
            return job

        job = asyncio.run(scenario())
        assert job.stage is JobStage.FAILED
        assert job.failure.stage is JobStage.FETCHING_ASSETS
        assert job.failure.to_dict() == {
            "jobId": job.id,
            "stage": "fetching_assets",
            "kind": "download-failed",
            "message": "HTTP 404",
        }

    def test_completed_arms_deferred_cleanup(self, jobs_root):
        manager = _make_manager(jobs_root, retention_s=600)

        async def scenario():
            job = await manager.create_job()
            await _advance_to(manager, job, JobStage.COMPLETED)
            entry = manager.registry.get_entry(job.id)
            pending = manager.registry.has_pending_timer(job.id)
            await manager.registry.shutdown()
            return job, entry, pending

        job, entry, pending = asyncio.run(scenario())
        assert job.dirs.root.exists()
        assert pending
        assert entry.cleanup_at >= job.completed_at + 599

    def test_completed_directory_removed_after_retention(self, jobs_root):
        manager = _make_manager(jobs_root, retention_s=0.05)

        async def scenario():
            job = await manager.create_job()
            await _advance_to(manager, job, JobStage.COMPLETED)
            await asyncio.sleep(0.3)
            return job

        job = asyncio.run(scenario())
        assert not job.dirs.root.exists()


# ---------------------------------------------------------------------------
# TestCapacity
# ---------------------------------------------------------------------------


class TestCapacity:

    def test_rejects_beyond_max_jobs(self, jobs_root):
        manager = _make_manager(jobs_root, max_jobs=2)

        async def scenario():
            await manager.create_job()
            await manager.create_job()
            await manager.create_job()

        with pytest.raises(TooManyJobsError):
            asyncio.run(scenario())
        assert len(list(jobs_root.iterdir())) == 2

    def test_concurrent_creates_respect_max_jobs(self, jobs_root):
        manager = _make_manager(jobs_root, max_jobs=1)
        real_register = manager.registry.register

        async def slow_register(job_id, directory):
            await asyncio.sleep(0.01)
            return await real_register(job_id, directory)

        async def scenario():
            with patch.object(manager.registry, "register", slow_register):
                return await asyncio.gather(
                    manager.create_job(), manager.create_job(), return_exceptions=True
                )

        results = asyncio.run(scenario())
        assert sum(isinstance(r, TooManyJobsError) for r in results) == 1
        assert manager.active_count() == 1
        assert len(list(jobs_root.iterdir())) == 1

    def test_failed_registration_releases_slot(self, jobs_root):
        manager = _make_manager(jobs_root, max_jobs=1)

        async def scenario():
            with patch.object(
                manager.registry, "register", AsyncMock(side_effect=RuntimeError("boom"))
            ):
                with pytest.raises(RuntimeError):
                    await manager.create_job()
            return await manager.create_job()

        job = asyncio.run(scenario())
        assert manager.active_count() == 1
        assert job.stage is JobStage.CREATED

    def test_finished_jobs_free_capacity(self, jobs_root):
        manager = _make_manager(jobs_root, max_jobs=1)

        async def scenario():
            first = await manager.create_job()
            await manager.advance(first, JobStage.FAILED)
            return await manager.create_job()

        second = asyncio.run(scenario())
        assert manager.active_count() == 1
        assert second.stage is JobStage.CREATED

    def test_prune_forgets_deleted_terminal_jobs(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            failed = await manager.create_job()
            await manager.advance(failed, JobStage.FAILED)
            live = await manager.create_job()
            return failed, live

        failed, live = asyncio.run(scenario())
        assert manager.get_job(failed.id) is None
        assert manager.get_job(live.id) is live
        assert manager.prune() == 0

    def test_forget_only_terminal_jobs(self, jobs_root):
        manager = _make_manager(jobs_root)

        async def scenario():
            job = await manager.create_job()
            kept = manager.forget(job.id)
            await manager.advance(job, JobStage.FAILED)
            return job, kept, manager.forget(job.id)

        job, kept, forgotten = asyncio.run(scenario())
        assert kept is False
        assert forgotten is True
        assert manager.get_job(job.id) is None
