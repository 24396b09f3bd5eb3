"""Abstract renderer boundary and its request container.

WHY: The pixel-level scene engine is an external collaborator. The
pipeline only needs to hand it resolved asset paths plus the two
timelines and get back either a finished file or a typed failure. This
base class fixes that contract so different engines can be swapped in
and tests can use a fake.

HOW: BaseRenderer is an ABC with two requirements — a ``name`` property
and an async ``render()`` method. RenderRequest is a plain dataclass
bundling everything the engine consumes.

RULES:
- Subclasses MUST implement ``name`` and ``render()``
- ``render()`` returns the path of an existing output file
- Every failure raises RenderFailedError (render-failed)
- Renderers never modify the timelines they receive
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List

from reel_composer.core.ir import CaptionTimeline, ImageSchedule


@dataclass
class RenderRequest:
    """Everything the render engine consumes for one job.

    Attributes:
        job_id: Owning job, used for naming and log correlation.
        job_root: The job's working directory; manifest paths are relative
                  to it.
        video_path: Resolved local path of the source clip.
        image_paths: Resolved local image paths, indexed by ImageSlot.
        captions: Caption batching/highlight timeline.
        images: Slideshow schedule.
        duration_s: Target output duration (the clip's audio duration).
        output_path: Where the finished file must be written.
    """

    job_id: str
    job_root: Path
    video_path: Path
    image_paths: List[Path]
    captions: CaptionTimeline
    images: ImageSchedule
    duration_s: float
    output_path: Path


class BaseRenderer(ABC):
    """Abstract base for render engine adapters.

    To add a new engine:
    1. Subclass BaseRenderer
    2. Implement ``name`` and ``render()``
    3. Pass an instance to JobPipeline
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable engine name, e.g. 'External command'."""

    @abstractmethod
    async def render(self, request: RenderRequest) -> Path:
        """Render the composed video.

        Args:
            request: Resolved assets, both timelines and the output path.

        Returns:
            Path of the finished output file.

        Raises:
            RenderFailedError: The engine failed or produced no file.
        """
