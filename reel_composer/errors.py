"""Error taxonomy shared by every pipeline stage.

WHY: A caller must always learn *which* stage failed and *why* in a
structured way, whatever collaborator raised. One small hierarchy of
typed exceptions lets every stage report failures the same way, and the
pipeline converts them into a JobFailure result at the stage boundary.

HOW: ErrorKind enumerates the failure classes. PipelineError carries a
kind and a message; each subclass fixes its kind. DownloadFailedError
also carries the offending URL.

RULES:
- Every exception raised by a stage derives from PipelineError
- ErrorKind values are kebab-case strings and serialize directly to JSON
- SourceRejectedError is a DownloadFailedError so callers that only care
  about "download failed" can catch the base class
- cleanup-failed is logged by the cleanup registry, never raised
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    """Failure classes reported to callers."""

    INVALID_INPUT = "invalid-input"
    SOURCE_REJECTED = "source-rejected"
    DOWNLOAD_FAILED = "download-failed"
    INVALID_MEDIA = "invalid-media"
    EXTRACTION_FAILED = "extraction-failed"
    TRANSCRIPTION_FAILED = "transcription-failed"
    RENDER_FAILED = "render-failed"
    CLEANUP_FAILED = "cleanup-failed"
    STORAGE_FAILED = "storage-failed"


class PipelineError(Exception):
    """Base class for all job pipeline failures."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidInputError(PipelineError):
    kind = ErrorKind.INVALID_INPUT


class DownloadFailedError(PipelineError):
    """Raised when any URL of a fetch call could not be stored locally.

    RULES:
    - url is the URL that caused the failure
    - Raised only after every file written by the call has been removed
    """

    kind = ErrorKind.DOWNLOAD_FAILED

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to download file from {url}: {reason}")


class SourceRejectedError(DownloadFailedError):
    """Raised before any network activity when a URL fails the allowlist."""

    kind = ErrorKind.SOURCE_REJECTED


class InvalidMediaError(PipelineError):
    kind = ErrorKind.INVALID_MEDIA


class ExtractionError(PipelineError):
    kind = ErrorKind.EXTRACTION_FAILED


class TranscriptionError(PipelineError):
    kind = ErrorKind.TRANSCRIPTION_FAILED


class RenderFailedError(PipelineError):
    kind = ErrorKind.RENDER_FAILED


class JobDirectoryError(PipelineError):
    """Raised when a job's working directory cannot be created (fatal, no retry)."""

    kind = ErrorKind.STORAGE_FAILED
