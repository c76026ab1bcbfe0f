"""Asynchronous render job service.

Jobs live in an in-memory table owned by a ``RenderJobService`` instance
(created on application startup, drained on shutdown). Each job runs the
render pipeline as an asyncio task, bounded by a worker semaphore, inside a
working directory only it touches. A periodic sweep evicts jobs older than
the retention window together with their files.
"""

import asyncio
import logging
import shutil
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Optional
from uuid import uuid4

from storyrender.config import Settings, get_settings
from storyrender.exceptions import (
    JobGoneError,
    JobNotFoundError,
    JobNotReadyError,
    RenderCancelledError,
    StoryRenderError,
)
from storyrender.render.pipeline import RenderPipeline
from storyrender.schemas.timeline import Timeline

logger = logging.getLogger(__name__)


class RenderJobStatus(str, Enum):
    """Render job status. ``completed`` and ``error`` are terminal."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


_ALLOWED_TRANSITIONS = {
    RenderJobStatus.PROCESSING: {RenderJobStatus.COMPLETED, RenderJobStatus.ERROR},
    RenderJobStatus.COMPLETED: set(),
    RenderJobStatus.ERROR: set(),
}


@dataclass
class RenderJob:
    """Render job record."""

    id: str
    title: str
    work_dir: Path
    created_at: float
    status: RenderJobStatus = RenderJobStatus.PROCESSING
    stage: Optional[str] = None
    output_path: Optional[Path] = None
    error: Optional[str] = None
    cancel_requested: bool = False

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "job_id": self.id,
            "status": self.status.value,
            "stage": self.stage,
            "error": self.error,
            "created_at": self.created_at,
        }


class JobTable:
    """Thread-safe job map; the only state shared between jobs."""

    def __init__(self) -> None:
        self._jobs: dict[str, RenderJob] = {}
        self._evicted: dict[str, float] = {}
        self._lock = threading.Lock()

    def add(self, job: RenderJob) -> None:
        with self._lock:
            self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[RenderJob]:
        """Snapshot of the job, so readers never see a half-applied update."""
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def update(self, job_id: str, **fields) -> bool:
        """Update non-status fields; False if the job is gone."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            for key, value in fields.items():
                setattr(job, key, value)
            return True

    def transition(self, job_id: str, status: RenderJobStatus, **fields) -> bool:
        """Move a job forward in its state machine.

        Returns False if the job no longer exists or the move would go
        backwards (terminal states are final).
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if status not in _ALLOWED_TRANSITIONS[job.status]:
                logger.warning(f"[JOBS] Ignoring transition {job.status.value} -> {status.value} for {job_id}")
                return False
            job.status = status
            for key, value in fields.items():
                setattr(job, key, value)
            return True

    def was_evicted(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._evicted

    def pop_expired(self, cutoff: float, now: float) -> list[RenderJob]:
        """Remove and return jobs created before ``cutoff``; remember their ids."""
        with self._lock:
            expired = [job for job in self._jobs.values() if job.created_at < cutoff]
            for job in expired:
                del self._jobs[job.id]
                self._evicted[job.id] = now
            return expired

    def prune_evicted(self, cutoff: float) -> None:
        with self._lock:
            for job_id in [k for k, t in self._evicted.items() if t < cutoff]:
                del self._evicted[job_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class RenderJobService:
    """Submit/poll/fetch front for the render pipeline."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        pipeline_factory: Optional[Callable[[], RenderPipeline]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_settings()
        # ffmpeg resolves concat entries against the list file, never the cwd
        self.storage_path = Path(self.settings.render_storage_path).resolve()
        self.retention_s = self.settings.render_retention_s
        self.jobs = JobTable()
        self._pipeline_factory = pipeline_factory or RenderPipeline
        self._clock = clock
        self._slots = asyncio.Semaphore(self.settings.worker_count)
        self._tasks: dict[str, asyncio.Task] = {}
        self._sweeper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.storage_path.mkdir(parents=True, exist_ok=True)
        if self.settings.render_sweep_interval_s > 0:
            self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"[JOBS] Started: storage={self.storage_path}, workers={self.settings.worker_count}, "
            f"retention={self.retention_s}s"
        )

    async def shutdown(self) -> None:
        """Stop sweeping and wait for running jobs to finish."""
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        running = list(self._tasks.values())
        if not running:
            return
        logger.info(f"[JOBS] Draining {len(running)} running jobs")
        _, pending = await asyncio.wait(running, timeout=self.settings.render_shutdown_grace_s)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def submit(self, timeline: Timeline) -> str:
        """Record a new job and start rendering it in the background.

        Must be called from the running event loop; returns immediately.
        """
        job_id = uuid4().hex
        job = RenderJob(
            id=job_id,
            title=timeline.title,
            work_dir=self.storage_path / job_id,
            created_at=self._clock(),
            stage="Queued",
        )
        self.jobs.add(job)

        task = asyncio.create_task(self._run(job_id, timeline), name=f"render-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._tasks.pop(jid, None))

        logger.info(f"[JOBS] Submitted {job_id}: '{timeline.title}' ({len(timeline.segments)} segments)")
        return job_id

    def poll(self, job_id: str) -> RenderJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def fetch(self, job_id: str) -> Path:
        """Path of a completed job's output."""
        return self.fetch_job(job_id).output_path

    def fetch_job(self, job_id: str) -> RenderJob:
        """Snapshot of a completed job whose output is still on disk.

        Raises:
            JobNotFoundError: Never existed
            JobGoneError: Evicted, or the file disappeared from storage
            JobNotReadyError: Still processing, or failed
        """
        job = self.jobs.get(job_id)
        if job is None:
            if self.jobs.was_evicted(job_id):
                raise JobGoneError(job_id)
            raise JobNotFoundError(job_id)
        if job.status is not RenderJobStatus.COMPLETED:
            raise JobNotReadyError(job_id, job.status.value)
        if job.output_path is None or not job.output_path.is_file():
            raise JobGoneError(job_id)
        return job

    def cancel(self, job_id: str) -> RenderJob:
        """Ask a processing job to stop at its next stage boundary."""
        job = self.poll(job_id)
        if job.status is RenderJobStatus.PROCESSING:
            self.jobs.update(job_id, cancel_requested=True)
            logger.info(f"[JOBS] Cancellation requested for {job_id}")
        return self.poll(job_id)

    def evict_expired(self, now: Optional[float] = None) -> list[str]:
        """Delete jobs (any status) older than the retention window."""
        now = self._clock() if now is None else now
        expired = self.jobs.pop_expired(now - self.retention_s, now)
        for job in expired:
            # A still-running job finds its record gone and cleans up after itself
            task = self._tasks.get(job.id)
            if task is None or task.done():
                shutil.rmtree(job.work_dir, ignore_errors=True)
            logger.info(f"[JOBS] Evicted {job.id} ({job.status.value})")
        # Tombstones only need to outlive a client's polling loop
        self.jobs.prune_evicted(now - 24 * 3600)
        return [job.id for job in expired]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.render_sweep_interval_s)
            try:
                self.evict_expired()
            except Exception:
                logger.exception("[JOBS] Eviction sweep failed")

    def _cancel_requested(self, job_id: str) -> bool:
        job = self.jobs.get(job_id)
        # An evicted job has nobody waiting for it
        return job is None or job.cancel_requested

    async def _run(self, job_id: str, timeline: Timeline) -> None:
        work_dir = self.storage_path / job_id
        output_path: Optional[Path] = None

        async with self._slots:
            started = time.monotonic()
            try:
                work_dir.mkdir(parents=True, exist_ok=True)
                pipeline = self._pipeline_factory()
                pipeline.set_progress_callback(lambda _p, stage: self.jobs.update(job_id, stage=stage))
                output_path = await pipeline.render(
                    timeline, work_dir, cancel_check=lambda: self._cancel_requested(job_id)
                )
            except RenderCancelledError as e:
                self.jobs.transition(job_id, RenderJobStatus.ERROR, error=e.message, stage="Cancelled")
                logger.info(f"[JOBS] {job_id} cancelled")
            except StoryRenderError as e:
                self.jobs.transition(job_id, RenderJobStatus.ERROR, error=e.message, stage="Failed")
                logger.error(f"[JOBS] {job_id} failed ({e.code}): {e.message}")
            except asyncio.CancelledError:
                self.jobs.transition(
                    job_id, RenderJobStatus.ERROR, error="Render interrupted by shutdown", stage="Failed"
                )
                raise
            except Exception as e:
                # One job's fault must never take down the service
                logger.exception(f"[JOBS] {job_id} crashed")
                self.jobs.transition(job_id, RenderJobStatus.ERROR, error=str(e) or type(e).__name__, stage="Failed")
            else:
                completed = self.jobs.transition(
                    job_id, RenderJobStatus.COMPLETED, output_path=output_path, stage="Complete"
                )
                if completed:
                    logger.info(f"[JOBS] {job_id} completed in {time.monotonic() - started:.1f}s")
            finally:
                self._cleanup(job_id, work_dir, output_path)

    def _cleanup(self, job_id: str, work_dir: Path, output_path: Optional[Path]) -> None:
        """Remove everything except a completed job's output."""
        job = self.jobs.get(job_id)
        if job is None or job.status is not RenderJobStatus.COMPLETED:
            # Failed, cancelled, or evicted while running
            shutil.rmtree(work_dir, ignore_errors=True)
            return
        for child in work_dir.iterdir():
            if output_path is not None and child == output_path:
                continue
            if child.is_dir():
                shutil.rmtree(child, ignore_errors=True)
            else:
                child.unlink(missing_ok=True)
