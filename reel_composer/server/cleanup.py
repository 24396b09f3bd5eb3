"""Cleanup registry, deferred deletion timers, and the periodic sweep.

WHY: Every job writes hundreds of megabytes (source clip, images, audio,
render) into its own directory. A finished job's output must stay
retrievable for a retention window, a failed job must leave nothing
behind, and a process restart must not leak directories whose timers
were lost. The deferred timers, forced cleanup and the background sweep
can all target the same job at the same moment.

HOW: Three components work together:
  remove_tree     — explicit post-order deletion tolerant of missing entries
  CleanupRegistry — owned map of job_id → CleanupEntry with per-key
                    asyncio locks and DeferredTask timers
  CleanupSweeper  — background loop calling registry.sweep() on an interval

RULES:
- At most one CleanupEntry per job_id
- delete_now() on an absent entry is a no-op, never an error
- Operations on the same job_id are serialized; distinct ids never block
  each other
- Timers operate on (job_id, path) only, never on live Job objects
- A directory that is already gone counts as successfully deleted
- Cleanup failures are logged (cleanup-failed) and never raised
- The sweep only deletes directories the registry does not track
"""

from __future__ import annotations

import asyncio
import logging
import os
import stat
import time
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from reel_composer.errors import ErrorKind

logger = logging.getLogger(__name__)


def remove_tree(root: Path) -> bool:
    """Delete a directory tree depth-first, files before their parent.

    WHY: Deferred timers and forced cleanup can race on the same job, so
    any entry may disappear underneath the walk. Each missing entry is
    treated as already deleted.

    HOW: Iterative post-order traversal with an explicit stack. Symlinks
    are unlinked, never followed, so a link inside a job directory can
    never delete data outside it.

    RULES:
    - Returns True if anything was removed, False if root was already gone
    - Raises OSError only for failures other than "not found"
    """
    try:
        root_stat = os.lstat(root)
    except FileNotFoundError:
        return False

    if not stat.S_ISDIR(root_stat.st_mode):
        _unlink_missing_ok(root)
        return True

    # (path, children_pushed)
    stack: List[tuple] = [(Path(root), False)]
    while stack:
        path, expanded = stack.pop()
        if expanded:
            _rmdir_missing_ok(path)
            continue

        stack.append((path, True))
        try:
            entries = list(os.scandir(path))
        except FileNotFoundError:
            continue

        for entry in entries:
            entry_path = Path(entry.path)
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except FileNotFoundError:
                continue
            if is_dir:
                stack.append((entry_path, False))
            else:
                _unlink_missing_ok(entry_path)

    return True


def _unlink_missing_ok(path: Path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def _rmdir_missing_ok(path: Path) -> None:
    try:
        os.rmdir(path)
    except FileNotFoundError:
        pass


@dataclass
class CleanupEntry:
    """A job directory the registry is responsible for deleting.

    RULES:
    - cleanup_at is None while the job is only tracked (still running)
    - cleanup_at is an epoch timestamp once a deferred deletion is armed
    """

    job_id: str
    directory: Path
    registered_at: float
    cleanup_at: Optional[float] = None


class DeferredTask:
    """A one-shot delayed callback bound to a job id.

    WHY: Deferred deletion must fire independently of the request that
    scheduled it, and cancelling it must be explicit.

    HOW: Wraps an asyncio task that sleeps ``delay_s`` and then awaits the
    callback. The callback itself must be idempotent.
    """

    def __init__(
        self,
        job_id: str,
        delay_s: float,
        callback: Callable[[str], Awaitable[object]],
    ) -> None:
        self.job_id = job_id
        self.delay_s = delay_s
        self._callback = callback
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"cleanup-{job_id}"
        )

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_s)
        # Once firing, a late cancel() must not interrupt a deletion midway.
        await asyncio.shield(self._callback(self.job_id))

    @property
    def done(self) -> bool:
        return self._task.done()

    def add_done_callback(self, callback: Callable[["DeferredTask"], None]) -> None:
        self._task.add_done_callback(lambda _task: callback(self))

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the task to finish, swallowing its cancellation."""
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class CleanupRegistry:
    """Owned registry of job directories awaiting deletion.

    WHY: The lifecycle manager, the deferred timers and the sweep all need
    to agree on which directories are still owned by someone. A single
    registry object with per-key locking replaces any ambient global map.

    HOW: Entries live in a dict keyed by job id. Each job id has an
    asyncio.Lock held in a WeakValueDictionary, so a lock exists exactly
    as long as some coroutine uses it. Directory deletion runs in a worker
    thread so the event loop keeps serving other jobs.

    RULES:
    - register() tracks a live job; arm() schedules its deletion
    - arm() replaces a previously armed timer for the same job
    - delete_now() and cancel_and_delete_now() are safe to call repeatedly
    - A timer firing after cancel_and_delete_now() is a no-op
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._entries: Dict[str, CleanupEntry] = {}
        self._timers: Dict[str, DeferredTask] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_tracked(self, job_id: str) -> bool:
        return job_id in self._entries

    def get_entry(self, job_id: str) -> Optional[CleanupEntry]:
        return self._entries.get(job_id)

    def entries(self) -> List[CleanupEntry]:
        """Snapshot of all entries, oldest registration first."""
        return sorted(self._entries.values(), key=lambda e: e.registered_at)

    def has_pending_timer(self, job_id: str) -> bool:
        timer = self._timers.get(job_id)
        return timer is not None and not timer.done

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def register(self, job_id: str, directory: Path) -> CleanupEntry:
        """Track a freshly created job directory without scheduling deletion."""
        async with self._lock_for(job_id):
            entry = self._entries.get(job_id)
            if entry is None:
                entry = CleanupEntry(
                    job_id=job_id,
                    directory=Path(directory),
                    registered_at=time.time(),
                )
                self._entries[job_id] = entry
            return entry

    async def arm(self, job_id: str, directory: Path, delay_s: float) -> CleanupEntry:
        """Record a CleanupEntry and start its deferred deletion timer.

        RULES:
        - Replaces any earlier timer for the same job id
        - The timer calls delete_now(job_id) exactly once when it fires
        """
        async with self._lock_for(job_id):
            now = time.time()
            entry = self._entries.get(job_id)
            if entry is None:
                entry = CleanupEntry(
                    job_id=job_id,
                    directory=Path(directory),
                    registered_at=now,
                )
                self._entries[job_id] = entry
            entry.directory = Path(directory)
            entry.cleanup_at = now + delay_s

            previous = self._timers.pop(job_id, None)
            if previous is not None:
                previous.cancel()
            timer = DeferredTask(job_id, delay_s, self.delete_now)
            timer.add_done_callback(self._forget_timer)
            self._timers[job_id] = timer

        logger.info(
            "Scheduled cleanup for job %s in %.0fs (%s)", job_id, delay_s, directory
        )
        return entry

    def _forget_timer(self, timer: DeferredTask) -> None:
        if self._timers.get(timer.job_id) is timer:
            del self._timers[timer.job_id]

    async def delete_now(self, job_id: str) -> bool:
        """Delete a job's directory immediately if the registry tracks it.

        RULES:
        - Returns True if an entry was found and removed, False otherwise
        - Never raises; deletion failures are logged as cleanup-failed and
          the entry is dropped so the sweep can retry later
        """
        async with self._lock_for(job_id):
            entry = self._entries.pop(job_id, None)
            if entry is None:
                logger.debug("Cleanup for job %s skipped: not tracked", job_id)
                return False
            await self._delete_directory(job_id, entry.directory)
            return True

    async def cancel_and_delete_now(self, job_id: str) -> bool:
        """Cancel any pending timer for the job, then delete immediately."""
        timer = self._timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()
        return await self.delete_now(job_id)

    async def _delete_directory(self, job_id: str, directory: Path) -> None:
        try:
            removed = await asyncio.to_thread(remove_tree, directory)
        except OSError as exc:
            logger.error(
                "[%s] Failed to clean up job %s directory %s: %s",
                ErrorKind.CLEANUP_FAILED.value, job_id, directory, exc,
            )
            return
        if removed:
            logger.info("Cleaned up directory for job %s: %s", job_id, directory)
        else:
            logger.info("Directory for job %s already removed: %s", job_id, directory)

    async def sweep(self, max_age_s: float) -> int:
        """Delete untracked job directories older than max_age_s.

        WHY: The registry is volatile; after a restart, directories of
        jobs whose timers were lost are no longer tracked by anyone.

        HOW: Lists the root, and for every directory acquires its per-key
        lock, re-checks it is untracked, compares its mtime age with
        max_age_s, and deletes it.

        RULES:
        - Tracked directories are never touched
        - Age is measured from the directory's modification time
        - Returns the number of directories deleted
        """
        if not self.root.is_dir():
            return 0

        now = time.time()
        removed = 0
        for candidate in sorted(self.root.iterdir()):
            job_id = candidate.name
            async with self._lock_for(job_id):
                if job_id in self._entries:
                    continue
                try:
                    st = candidate.lstat()
                except FileNotFoundError:
                    continue
                if not stat.S_ISDIR(st.st_mode):
                    continue
                age = now - st.st_mtime
                if age <= max_age_s:
                    continue
                logger.info("Sweeping old job directory %s (age %.0fs)", candidate, age)
                await self._delete_directory(job_id, candidate)
                removed += 1

        return removed

    async def shutdown(self) -> None:
        """Cancel all pending timers; armed directories are left for the sweep."""
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        for timer in timers:
            await timer.wait()


class CleanupSweeper:
    """Runs CleanupRegistry.sweep() on a fixed interval in the background."""

    def __init__(
        self,
        registry: CleanupRegistry,
        interval_s: float,
        max_age_s: float,
    ) -> None:
        self.registry = registry
        self.interval_s = interval_s
        self.max_age_s = max_age_s
        self._task: Optional[asyncio.Task] = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            logger.info("Running periodic cleanup sweep of %s", self.registry.root)
            try:
                await self.registry.sweep(self.max_age_s)
            except OSError:
                logger.exception("Periodic cleanup sweep failed")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self._loop(), name="cleanup-sweeper"
            )
            logger.info(
                "Cleanup sweep started (every %.0fs, max age %.0fs)",
                self.interval_s, self.max_age_s,
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
