"""FastAPI application exposing the top/bottom render endpoint.

WHY: Automation clients (n8n flows, curl, internal tools) post a list of
image URLs plus a clip URL and expect the finished MP4 in the response.
FastAPI provides request validation and OpenAPI docs for free.

HOW: The module is the composition root: it builds one CleanupRegistry,
one JobManager and one JobPipeline and wires them into the routes. The
lifespan starts the periodic cleanup sweep and, on shutdown, stops it
and cancels pending deletion timers.

RULES:
- POST /render/top-bottom-template runs the job inline and streams the
  MP4 back (200), or answers 400 / 429 / 500 with a JSON body
- Error responses use ErrorResponse; job failures use JobFailureResponse
- Request validation errors are reported as 400, not 422
- The rendered file stays downloadable from GET /renders/{job_id} until
  the deferred cleanup deletes it
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse

from reel_composer import __version__
from reel_composer.config import JOBS_ROOT, PORT, SWEEP_INTERVAL_S, SWEEP_MAX_AGE_S
from reel_composer.errors import InvalidInputError, JobDirectoryError
from reel_composer.render.command import CommandRenderer
from reel_composer.server.cleanup import CleanupRegistry, CleanupSweeper
from reel_composer.server.jobs import JobManager, JobStage, TooManyJobsError
from reel_composer.server.models import (
    ErrorResponse,
    HealthResponse,
    JobFailureResponse,
    JobResponse,
    RenderTemplateRequest,
)
from reel_composer.server.pipeline import JobPipeline, RenderInput

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Composition root
# ---------------------------------------------------------------------------

registry = CleanupRegistry(JOBS_ROOT)
manager = JobManager(JOBS_ROOT, registry)
pipeline = JobPipeline(manager, CommandRenderer())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the periodic sweep on startup; stop it and pending timers on shutdown."""
    sweeper = CleanupSweeper(registry, SWEEP_INTERVAL_S, SWEEP_MAX_AGE_S)
    sweeper.start()
    yield
    await sweeper.stop()
    await registry.shutdown()


app = FastAPI(
    lifespan=lifespan,
    title="Reel Composer API",
    description=(
        "Composes a vertical 1080x1920 video: an image slideshow on top, a "
        "user-generated clip on the bottom, and word-synchronized captions "
        "in the middle."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append("{}: {}".format(location, err.get("msg")) if location else err.get("msg"))
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(detail="; ".join(messages) or "Invalid request").model_dump(),
    )


# ---------------------------------------------------------------------------
# Endpoints: Render
# ---------------------------------------------------------------------------


@app.post(
    "/render/top-bottom-template",
    response_class=FileResponse,
    tags=["render"],
    summary="Render a top/bottom template video",
    description=(
        "Downloads the images and the clip, transcribes the clip, builds "
        "caption and slideshow timelines, renders the composition and "
        "returns the MP4. The request stays open until the render is done."
    ),
    responses={
        200: {"content": {"video/mp4": {}}, "description": "The rendered video"},
        400: {"model": ErrorResponse, "description": "Invalid request body"},
        429: {"model": ErrorResponse, "description": "Too many concurrent jobs"},
        500: {"model": JobFailureResponse, "description": "A pipeline stage failed"},
    },
)
async def render_top_bottom_template(body: RenderTemplateRequest):
    inputs = RenderInput(
        image_urls=list(body.variables.imageUrls),
        video_url=body.variables.ugcVideoUrl,
    )
    try:
        result = await pipeline.submit(inputs)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    except TooManyJobsError as exc:
        raise HTTPException(status_code=429, detail=str(exc))
    except JobDirectoryError as exc:
        logger.error("Could not create a job directory: %s", exc.message)
        raise HTTPException(status_code=500, detail=exc.message)

    if not result.ok:
        return JSONResponse(
            status_code=500,
            content=JobFailureResponse.from_failure(result.failure).model_dump(),
        )

    return FileResponse(
        result.output_path,
        media_type="video/mp4",
        filename="{}.mp4".format(result.job_id),
        headers={"X-Job-Id": result.job_id},
    )


@app.get(
    "/renders/{job_id}",
    response_class=FileResponse,
    tags=["render"],
    summary="Download a rendered video again",
    description=(
        "Returns the rendered MP4 of a completed job while it is retained. "
        "Answers 404 once the deferred cleanup has removed it."
    ),
    responses={
        200: {"content": {"video/mp4": {}}, "description": "The rendered video"},
        404: {"model": ErrorResponse, "description": "Job or output not found"},
    },
)
async def download_render(job_id: str):
    job = manager.get_job(job_id)
    if job is None or job.stage is not JobStage.COMPLETED:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    if not job.output_path.is_file():
        raise HTTPException(
            status_code=404,
            detail="Output for job {} is no longer available".format(job_id),
        )
    return FileResponse(
        job.output_path,
        media_type="video/mp4",
        filename="{}.mp4".format(job.id),
    )


@app.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    tags=["render"],
    summary="Get render job status",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
    },
)
async def get_job_status(job_id: str) -> JobResponse:
    job = manager.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return JobResponse.from_job(job)


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness and readiness check for load balancers and orchestrators.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__, active_jobs=manager.active_count())


def run_api(host: str = "0.0.0.0", port: int = PORT) -> None:
    """Entry point for the ``serve`` command."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)
