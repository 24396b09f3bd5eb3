"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation. The render
endpoint keeps the body shape of the existing template-render clients
(``{"variables": {"imageUrls": [...], "ugcVideoUrl": "..."}}``).

HOW: Request bodies use camelCase field names as sent by clients; the
response models mirror JobFailure and the job status view.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Error responses share ErrorResponse; failed renders use
  JobFailureResponse so clients see stage and kind
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from reel_composer.server.jobs import Job, JobFailure


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class TemplateVariables(BaseModel):
    """Template inputs for the top/bottom layout.

    RULES:
    - imageUrls: at least one image URL, shown in order then looped
    - ugcVideoUrl: the clip shown on the bottom half and transcribed
    """

    imageUrls: List[str] = Field(
        description="Ordered image URLs for the top-half slideshow.",
        min_length=1,
    )
    ugcVideoUrl: str = Field(
        description="URL of the user-generated clip for the bottom half.",
        min_length=1,
    )


class RenderTemplateRequest(BaseModel):
    """Body of POST /render/top-bottom-template."""

    variables: TemplateVariables = Field(description="Template variables.")

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "variables": {
                    "imageUrls": [
                        "https://drive.google.com/file/d/IMAGE_ID_1/view",
                        "https://drive.google.com/file/d/IMAGE_ID_2/view",
                    ],
                    "ugcVideoUrl": "https://drive.google.com/file/d/VIDEO_ID/view",
                }
            }
        ]
    }}


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Standard error response body.

    RULES:
    - detail is always a human-readable error message
    """

    detail: str = Field(description="Human-readable error description.")


class JobFailureResponse(BaseModel):
    """Body returned when a render job fails.

    WHY: Clients need to know whether to fix their input (source-rejected,
    invalid-media) or retry later (download-failed, render-failed).
    """

    error: str = Field(description="Short error summary.")
    details: str = Field(description="Failure message from the failing stage.")
    jobId: str = Field(description="Identifier of the failed job.")
    stage: str = Field(description="Stage that was running when the job failed.")
    kind: str = Field(description="Error kind, e.g. 'download-failed'.")

    @classmethod
    def from_failure(cls, failure: JobFailure) -> JobFailureResponse:
        return cls(
            error="Failed to render video",
            details=failure.message,
            jobId=failure.job_id,
            stage=failure.stage.value,
            kind=failure.kind.value,
        )


class JobResponse(BaseModel):
    """Status of a known render job."""

    id: str = Field(description="Unique job identifier (UUID4 hex).")
    stage: str = Field(description="Current job stage.")
    created_at: float = Field(description="Job creation timestamp (Unix epoch seconds).")
    completed_at: Optional[float] = Field(
        default=None,
        description="Completion timestamp, set once the job finished or failed.",
    )
    output_available: bool = Field(
        description="Whether the rendered file can still be downloaded.",
    )
    error: Optional[JobFailureResponse] = Field(
        default=None,
        description="Failure details, only present when stage is 'failed'.",
    )

    @classmethod
    def from_job(cls, job: Job) -> JobResponse:
        return cls(
            id=job.id,
            stage=job.stage.value,
            created_at=job.created_at,
            completed_at=job.completed_at,
            output_available=job.output_path.is_file(),
            error=JobFailureResponse.from_failure(job.failure) if job.failure else None,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
    active_jobs: int = Field(description="Jobs currently running.")
