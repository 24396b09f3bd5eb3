"""Stage-sequenced job pipeline: URLs in, composed video (or failure) out.

WHY: One render request touches the network, two external binaries, a
speech-to-text provider and the render engine. Each of them can fail or
hang, and whatever happens the caller must learn which stage failed and
why, and the job's files must not outlive a failure.

HOW: JobPipeline walks a Job through the JobManager's stages in order:
  fetching_assets  → AssetFetcher downloads images, then the clip
  validating_video → is_playable_media() on the clip
  extracting_audio → extract_audio() to a WAV + duration
  transcribing     → transcriber(audio) → word timestamps
  scheduling       → build_caption_timeline() + build_image_schedule()
  rendering        → renderer.render(RenderRequest)
Every collaborator is injected so tests can substitute fakes. Each stage
runs under asyncio.wait_for with whatever remains of the job budget.

RULES:
- run() never raises for stage failures; it returns a JobResult whose
  failure names the stage and the ErrorKind
- A stage timeout fails the job with that stage's error kind
- Unexpected exceptions are logged with traceback and reported with the
  running stage's error kind
- Failure always goes through JobManager.fail(), which deletes the job
  directory before run() returns
- Cancellation still deletes the job directory, then propagates
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from reel_composer.api.deepgram import transcribe_with_deepgram
from reel_composer.api.fetcher import AssetFetcher
from reel_composer.config import CAPTION_BATCH_SIZE, IMAGE_SLOT_SECONDS, JOB_TIMEOUT_S
from reel_composer.core.ir import CaptionTimeline, ImageSchedule, Word
from reel_composer.core.timeline import build_caption_timeline, build_image_schedule
from reel_composer.errors import ErrorKind, InvalidInputError, InvalidMediaError, PipelineError
from reel_composer.media.ffmpeg import AudioExtraction, extract_audio, is_playable_media
from reel_composer.render.base import BaseRenderer, RenderRequest
from reel_composer.server.jobs import Job, JobFailure, JobManager, JobStage

logger = logging.getLogger(__name__)

Validator = Callable[[Path], Awaitable[bool]]
Extractor = Callable[[Path, Path], Awaitable[AudioExtraction]]
Transcriber = Callable[[Path], Awaitable[List[Word]]]
FetcherFactory = Callable[[], AssetFetcher]

# Error kind reported when a stage times out or raises something untyped.
STAGE_ERROR_KINDS: Dict[JobStage, ErrorKind] = {
    JobStage.CREATED: ErrorKind.STORAGE_FAILED,
    JobStage.FETCHING_ASSETS: ErrorKind.DOWNLOAD_FAILED,
    JobStage.VALIDATING_VIDEO: ErrorKind.INVALID_MEDIA,
    JobStage.EXTRACTING_AUDIO: ErrorKind.EXTRACTION_FAILED,
    JobStage.TRANSCRIBING: ErrorKind.TRANSCRIPTION_FAILED,
    JobStage.SCHEDULING: ErrorKind.INVALID_INPUT,
    JobStage.RENDERING: ErrorKind.RENDER_FAILED,
}


@dataclass
class RenderInput:
    """Source URLs for one top/bottom render."""

    image_urls: List[str]
    video_url: str

    def validate(self) -> None:
        """Raise InvalidInputError unless there is at least one image and a clip."""
        if not self.image_urls:
            raise InvalidInputError("At least one image URL is required")
        if any(not isinstance(u, str) or not u.strip() for u in self.image_urls):
            raise InvalidInputError("Image URLs must be non-empty strings")
        if not isinstance(self.video_url, str) or not self.video_url.strip():
            raise InvalidInputError("A video URL is required")


@dataclass
class StageOutputs:
    """Artifacts accumulated while a job moves through its stages."""

    image_paths: List[Path] = field(default_factory=list)
    video_path: Optional[Path] = None
    extraction: Optional[AudioExtraction] = None
    words: List[Word] = field(default_factory=list)
    captions: Optional[CaptionTimeline] = None
    images: Optional[ImageSchedule] = None
    output_path: Optional[Path] = None


@dataclass
class JobResult:
    """Outcome of JobPipeline.run(): an output file or a JobFailure."""

    job_id: str
    stage: JobStage
    output_path: Optional[Path] = None
    failure: Optional[JobFailure] = None
    outputs: Optional[StageOutputs] = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.output_path is not None


class _StageTimeout(Exception):
    """The job budget ran out while a stage was running."""


class JobPipeline:
    """Drives one job through every stage with injected collaborators.

    RULES:
    - fetcher_factory returns a fresh AssetFetcher (async context manager)
    - batch_size / slot_length feed the timeline scheduler
    - timeout_s is the budget for the whole job, not per stage
    """

    def __init__(
        self,
        manager: JobManager,
        renderer: BaseRenderer,
        fetcher_factory: FetcherFactory = AssetFetcher,
        validator: Validator = is_playable_media,
        extractor: Extractor = extract_audio,
        transcriber: Transcriber = transcribe_with_deepgram,
        batch_size: int = CAPTION_BATCH_SIZE,
        slot_length: float = IMAGE_SLOT_SECONDS,
        timeout_s: float = JOB_TIMEOUT_S,
    ) -> None:
        self.manager = manager
        self.renderer = renderer
        self.fetcher_factory = fetcher_factory
        self.validator = validator
        self.extractor = extractor
        self.transcriber = transcriber
        self.batch_size = batch_size
        self.slot_length = slot_length
        self.timeout_s = timeout_s

    async def submit(self, inputs: RenderInput) -> JobResult:
        """Validate inputs, create a job and run it.

        Raises:
            InvalidInputError: inputs are malformed (no job is created).
            TooManyJobsError: The manager is at capacity.
            JobDirectoryError: The job directory could not be created.
        """
        inputs.validate()
        job = await self.manager.create_job()
        return await self.run(job, inputs)

    async def run(self, job: Job, inputs: RenderInput) -> JobResult:
        """Run every stage for job; return the output or a structured failure."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_s
        outputs = StageOutputs()

        try:
            await self._execute(job, inputs, outputs, deadline)
        except PipelineError as exc:
            logger.error("[%s] %s failed: %s", job.id, job.stage.value, exc.message)
            return await self._fail(job, exc.kind, exc.message, outputs)
        except _StageTimeout:
            message = "{} timed out (job limit {:g}s)".format(
                job.stage.value, self.timeout_s
            )
            logger.error("[%s] %s", job.id, message)
            return await self._fail(job, STAGE_ERROR_KINDS[job.stage], message, outputs)
        except asyncio.CancelledError:
            logger.warning("[%s] Cancelled during %s", job.id, job.stage.value)
            if not job.stage.is_terminal:
                failure = JobFailure(
                    job_id=job.id,
                    stage=job.stage,
                    kind=STAGE_ERROR_KINDS[job.stage],
                    message="Job was cancelled",
                )
                await asyncio.shield(self.manager.fail(job, failure))
            raise
        except Exception as exc:
            logger.exception("[%s] Unexpected error during %s", job.id, job.stage.value)
            return await self._fail(job, STAGE_ERROR_KINDS[job.stage], str(exc), outputs)

        await self.manager.advance(job, JobStage.COMPLETED)
        logger.info("[%s] Completed: %s", job.id, outputs.output_path)
        return JobResult(
            job_id=job.id,
            stage=job.stage,
            output_path=outputs.output_path,
            outputs=outputs,
        )

    async def _fail(
        self,
        job: Job,
        kind: ErrorKind,
        message: str,
        outputs: StageOutputs,
    ) -> JobResult:
        failure = JobFailure(job_id=job.id, stage=job.stage, kind=kind, message=message)
        await self.manager.fail(job, failure)
        return JobResult(job_id=job.id, stage=job.stage, failure=failure, outputs=outputs)

    async def _stage(
        self,
        job: Job,
        stage: JobStage,
        deadline: float,
        work: Callable[[], Awaitable[None]],
    ) -> None:
        await self.manager.advance(job, stage)
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise _StageTimeout()
        try:
            await asyncio.wait_for(work(), timeout=remaining)
        except asyncio.TimeoutError as exc:
            raise _StageTimeout() from exc

    async def _execute(
        self,
        job: Job,
        inputs: RenderInput,
        outputs: StageOutputs,
        deadline: float,
    ) -> None:
        async def fetch_assets() -> None:
            logger.info(
                "[%s] Downloading %d image(s) and 1 video", job.id, len(inputs.image_urls)
            )
            async with self.fetcher_factory() as fetcher:
                fetcher.validate_sources(list(inputs.image_urls) + [inputs.video_url])
                images = await fetcher.fetch(inputs.image_urls, job.dirs.images)
                videos = await fetcher.fetch([inputs.video_url], job.dirs.videos)
            outputs.image_paths = [r.local_path for r in images]
            outputs.video_path = videos[0].local_path

        async def validate_video() -> None:
            if not await self.validator(outputs.video_path):
                raise InvalidMediaError(
                    "Downloaded video file is invalid or corrupted: {}".format(
                        outputs.video_path.name
                    )
                )

        async def extract() -> None:
            outputs.extraction = await self.extractor(outputs.video_path, job.dirs.audio)

        async def transcribe() -> None:
            outputs.words = await self.transcriber(outputs.extraction.audio_path)
            logger.info("[%s] Transcribed %d word(s)", job.id, len(outputs.words))

        async def schedule() -> None:
            duration = outputs.extraction.duration_s
            try:
                outputs.captions = build_caption_timeline(
                    outputs.words,
                    batch_size=self.batch_size,
                    total_duration=duration if duration > 0 else None,
                )
                outputs.images = build_image_schedule(
                    len(outputs.image_paths), duration, self.slot_length
                )
            except ValueError as exc:
                raise InvalidInputError("Cannot build timelines: {}".format(exc)) from exc
            logger.info(
                "[%s] Scheduled %d caption batch(es), %d image slot(s)",
                job.id, len(outputs.captions.batches), len(outputs.images.slots),
            )

        async def render() -> None:
            duration = outputs.extraction.duration_s
            if duration <= 0:
                duration = outputs.captions.batches[-1].end_s
            request = RenderRequest(
                job_id=job.id,
                job_root=job.dirs.root,
                video_path=outputs.video_path,
                image_paths=outputs.image_paths,
                captions=outputs.captions,
                images=outputs.images,
                duration_s=duration,
                output_path=job.output_path,
            )
            logger.info("[%s] Rendering with %s", job.id, self.renderer.name)
            outputs.output_path = await self.renderer.render(request)

        await self._stage(job, JobStage.FETCHING_ASSETS, deadline, fetch_assets)
        await self._stage(job, JobStage.VALIDATING_VIDEO, deadline, validate_video)
        await self._stage(job, JobStage.EXTRACTING_AUDIO, deadline, extract)
        await self._stage(job, JobStage.TRANSCRIBING, deadline, transcribe)
        await self._stage(job, JobStage.SCHEDULING, deadline, schedule)
        await self._stage(job, JobStage.RENDERING, deadline, render)
